"""
Employees service layer: departments, employee records and account invitations.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.hrms.audit import record_event
from app.hrms.db import reload_relationships
from app.hrms.models import Role, User
from app.hrms.security import generate_token
from app.hrms.tenancy import org_user
from app.hrms.utils import clean, parse_date, parse_decimal, parse_int

from app.hrms.modules.leave.service import get_or_create_balance
from app.hrms.modules.onboarding.service import complete_by_key, create_standard_checklist

from .models import Department, Employee

if TYPE_CHECKING:
    from app.hrms.modules.onboarding.models import OnboardingChecklistItem


EMPLOYMENT_TYPES = {"full_time", "part_time", "contract", "intern"}
EMPLOYEE_STATUSES = {"onboarding", "active", "on_leave", "terminated"}
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Fields an employee may edit on their own profile
PROFILE_FIELDS = (
    "phone",
    "address",
    "date_of_birth",
    "emergency_contact_name",
    "emergency_contact_phone",
    "emergency_contact_relationship",
    "bank_name",
    "bank_account_number",
    "bank_routing_number",
)


# --- departments -----------------------------------------------------------


def validate_department_payload(
    s: Session,
    payload: dict[str, Any],
    *,
    department: Department | None = None,
    organization_id: str | None = None,
) -> list[str]:
    errors: list[str] = []
    name = clean(payload.get("name"))
    code = (clean(payload.get("code")) or "").upper()
    if not name:
        errors.append("Name is required.")
    if not code:
        errors.append("Code is required.")
    if name:
        q = s.query(Department).filter(func.lower(Department.name) == name.lower(), Department.in_org(organization_id))
        if department is not None:
            q = q.filter(Department.id != department.id)
        if q.first():
            errors.append(f"Department '{name}' already exists.")
    if code:
        q = s.query(Department).filter(Department.code == code, Department.in_org(organization_id))
        if department is not None:
            q = q.filter(Department.id != department.id)
        if q.first():
            errors.append(f"Department code '{code}' already exists.")
    head_id = parse_int(payload.get("head_user_id"))
    if head_id and org_user(s, head_id, organization_id) is None:
        errors.append("Department head not found.")
    return errors


def create_department(s: Session, payload: dict[str, Any], *, user: User) -> Department:
    dept = Department(
        organization_id=user.organization_id,
        name=clean(payload.get("name")) or "",
        code=(clean(payload.get("code")) or "").upper(),
        description=clean(payload.get("description")),
        head_user_id=parse_int(payload.get("head_user_id")),
    )
    s.add(dept)
    s.flush()
    record_event(s, actor=user, action="department.create", entity_type="Department", entity_id=dept.id, metadata={"code": dept.code})
    return dept


def update_department(s: Session, dept: Department, payload: dict[str, Any], *, user: User) -> Department:
    if "name" in payload:
        dept.name = clean(payload.get("name")) or dept.name
    if "code" in payload:
        dept.code = (clean(payload.get("code")) or dept.code).upper()
    if "description" in payload:
        dept.description = clean(payload.get("description"))
    if "head_user_id" in payload:
        dept.head_user_id = parse_int(payload.get("head_user_id"))
        reload_relationships(s, dept, "head")
    dept.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="department.update", entity_type="Department", entity_id=dept.id)
    return dept


# --- employees -------------------------------------------------------------


def validate_employee_payload(
    s: Session,
    payload: dict[str, Any],
    *,
    creating: bool,
    organization_id: str | None = None,
) -> list[str]:
    errors: list[str] = []
    if creating:
        email = (clean(payload.get("email")) or "").lower()
        if not email or not _EMAIL_RE.match(email):
            errors.append("A valid email is required.")
        elif s.query(User).filter(User.email == email).first():
            errors.append(f"A user with email {email} already exists.")
        if not clean(payload.get("first_name")):
            errors.append("First name is required.")
        if not clean(payload.get("last_name")):
            errors.append("Last name is required.")
        username = clean(payload.get("username"))
        if username and s.query(User).filter(User.username == username.lower()).first():
            errors.append(f"Username {username} is taken.")
        role_key = clean(payload.get("role"))
        if role_key and s.query(Role.id).filter(Role.key == role_key).first() is None:
            errors.append(f"Unknown role '{role_key}'.")

    employment_type = clean(payload.get("employment_type"))
    if employment_type and employment_type not in EMPLOYMENT_TYPES:
        errors.append(f"Employment type must be one of: {', '.join(sorted(EMPLOYMENT_TYPES))}.")
    status = clean(payload.get("status"))
    if status and status not in EMPLOYEE_STATUSES:
        errors.append(f"Status must be one of: {', '.join(sorted(EMPLOYEE_STATUSES))}.")
    dept_id = parse_int(payload.get("department_id"))
    if payload.get("department_id") not in (None, "") and (
        dept_id is None
        or s.query(Department.id).filter(Department.id == dept_id, Department.in_org(organization_id)).first() is None
    ):
        errors.append("Department not found.")
    manager_id = parse_int(payload.get("manager_user_id"))
    if payload.get("manager_user_id") not in (None, "") and org_user(s, manager_id, organization_id) is None:
        errors.append("Manager not found.")
    for field in ("hire_date", "date_of_birth"):
        try:
            parse_date(payload.get(field))
        except ValueError:
            errors.append(f"{field.replace('_', ' ').capitalize()} must be YYYY-MM-DD.")
    try:
        salary = parse_decimal(payload.get("salary"))
        if salary is not None and salary < 0:
            errors.append("Salary cannot be negative.")
    except ValueError:
        errors.append("Salary must be a number.")
    return errors


def next_employee_number(s: Session) -> str:
    n = (s.query(func.count(Employee.id)).scalar() or 0) + 1
    while True:
        candidate = f"EMP{n:03d}"
        if not s.query(Employee.id).filter(Employee.employee_number == candidate).first():
            return candidate
        n += 1


def unique_username(s: Session, seed: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "", (seed or "").lower()) or "user"
    candidate = base
    i = 1
    while s.query(User.id).filter(User.username == candidate).first():
        i += 1
        candidate = f"{base}{i}"
    return candidate


def create_employee(s: Session, payload: dict[str, Any], *, user: User) -> Employee:
    """
    Create the login account and employee record, seed the onboarding checklist and this year's leave
    balance. The caller commits and then sends the invitation email.
    """
    email = (clean(payload.get("email")) or "").lower()
    first_name = clean(payload.get("first_name"))
    last_name = clean(payload.get("last_name"))
    account = User(
        email=email,
        username=(clean(payload.get("username")) or "").lower() or unique_username(s, f"{first_name}{last_name}"),
        first_name=first_name,
        last_name=last_name,
        phone=clean(payload.get("phone")),
        # Unusable until the invitee sets a password through the onboarding link.
        password_hash=generate_password_hash(generate_token()),
        is_active=True,
        status="onboarding",
        onboarding_token=generate_token(),
        organization_id=user.organization_id,
    )
    role_key = clean(payload.get("role")) or "employee"
    account.roles.append(s.query(Role).filter(Role.key == role_key).one())
    s.add(account)
    s.flush()

    emp = Employee(
        user=account,
        employee_number=clean(payload.get("employee_number")) or next_employee_number(s),
        department_id=parse_int(payload.get("department_id")),
        position=clean(payload.get("position")),
        employment_type=clean(payload.get("employment_type")) or "full_time",
        manager_user_id=parse_int(payload.get("manager_user_id")),
        hire_date=parse_date(payload.get("hire_date")),
        salary=parse_decimal(payload.get("salary")),
        phone=clean(payload.get("phone")),
        status="onboarding",
        created_by_user_id=user.id,
    )
    s.add(emp)
    s.flush()

    create_standard_checklist(s, emp)
    get_or_create_balance(s, emp.id)

    record_event(
        s,
        actor=user,
        action="employee.create",
        entity_type="Employee",
        entity_id=emp.id,
        metadata={"employee_number": emp.employee_number, "email": email, "role": role_key},
    )
    return emp


def update_employee(s: Session, emp: Employee, payload: dict[str, Any], *, user: User) -> Employee:
    changes: dict[str, Any] = {}

    def _set(obj: Any, attr: str, value: Any) -> None:
        if getattr(obj, attr) != value:
            changes[attr] = {"from": str(getattr(obj, attr)), "to": str(value)}
            setattr(obj, attr, value)

    for attr in ("first_name", "last_name"):
        if attr in payload:
            _set(emp.user, attr, clean(payload.get(attr)))
    if "position" in payload:
        _set(emp, "position", clean(payload.get("position")))
    if "employment_type" in payload:
        _set(emp, "employment_type", clean(payload.get("employment_type")) or emp.employment_type)
    if "status" in payload:
        _set(emp, "status", clean(payload.get("status")) or emp.status)
    if "department_id" in payload:
        _set(emp, "department_id", parse_int(payload.get("department_id")))
    if "manager_user_id" in payload:
        _set(emp, "manager_user_id", parse_int(payload.get("manager_user_id")))
    if "hire_date" in payload:
        _set(emp, "hire_date", parse_date(payload.get("hire_date")))
    if "salary" in payload:
        _set(emp, "salary", parse_decimal(payload.get("salary")))
    _apply_profile_fields(emp, payload, _set)

    if "manager_user_id" in changes or "department_id" in changes:
        reload_relationships(s, emp, "manager", "department")

    if emp.status == "terminated":
        emp.user.is_active = False
        emp.user.status = "inactive"

    emp.updated_at = datetime.utcnow()
    if changes:
        # Bank details are not written to the audit trail.
        redacted = {k: v for k, v in changes.items() if not k.startswith("bank_")}
        record_event(s, actor=user, action="employee.update", entity_type="Employee", entity_id=emp.id, metadata={"changes": redacted})
    return emp


def _apply_profile_fields(emp: Employee, payload: dict[str, Any], setter) -> None:
    for field in PROFILE_FIELDS:
        if field not in payload:
            continue
        value = parse_date(payload.get(field)) if field == "date_of_birth" else clean(payload.get(field))
        setter(emp, field, value)


def complete_personal_profile(s: Session, emp: Employee, payload: dict[str, Any], *, user: User) -> list[OnboardingChecklistItem]:
    """
    Save the employee's own profile and tick the matching onboarding steps.
    """
    errors: list[str] = []
    if not clean(payload.get("phone")) and not emp.phone:
        errors.append("Phone is required.")
    if not clean(payload.get("address")) and not emp.address:
        errors.append("Address is required.")
    if errors:
        raise ValueError("; ".join(errors))

    _apply_profile_fields(emp, payload, setattr)
    emp.updated_at = datetime.utcnow()
    ticked: list[OnboardingChecklistItem] = []
    for key, done in (
        ("personal_profile", bool(emp.phone and emp.address)),
        ("emergency_contact", bool(emp.emergency_contact_name and emp.emergency_contact_phone)),
        ("banking_information", bool(emp.bank_name and emp.bank_account_number)),
    ):
        if done:
            item = complete_by_key(s, emp, key, user=user)
            if item is not None:
                ticked.append(item)
    record_event(s, actor=user, action="employee.profile_update", entity_type="Employee", entity_id=emp.id)
    return ticked


def set_profile_picture(s: Session, emp: Employee, storage_key: str, *, user: User) -> None:
    emp.profile_picture_key = storage_key
    emp.updated_at = datetime.utcnow()
    complete_by_key(s, emp, "profile_picture", user=user)
    record_event(s, actor=user, action="employee.profile_picture", entity_type="Employee", entity_id=emp.id)


def list_employees(
    s: Session,
    *,
    organization_id: str | None = None,
    department_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
) -> list[Employee]:
    q = s.query(Employee).join(Employee.user)
    q = q.filter(Employee.in_org(organization_id))
    if department_id:
        q = q.filter(Employee.department_id == department_id)
    if status:
        q = q.filter(Employee.status == status)
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(
            or_(
                func.lower(User.first_name).like(like),
                func.lower(User.last_name).like(like),
                func.lower(User.email).like(like),
                func.lower(Employee.employee_number).like(like),
            )
        )
    return q.order_by(Employee.created_at.desc(), Employee.id.desc()).all()


def employee_for_user(s: Session, user: User | None) -> Employee | None:
    if user is None:
        return None
    return s.query(Employee).filter(Employee.user_id == user.id).one_or_none()


def find_pending_invite(s: Session, token: str) -> User | None:
    if not token:
        return None
    return s.query(User).filter(User.onboarding_token == token, User.is_active.is_(True)).one_or_none()


def activate_account(s: Session, account: User, *, password: str) -> User:
    if len(password or "") < 8:
        raise ValueError("Password must be at least 8 characters.")
    account.password_hash = generate_password_hash(password)
    account.onboarding_token = None
    account.status = "active"
    account.updated_at = datetime.utcnow()
    record_event(s, actor=account, action="employee.account_activate", entity_type="User", entity_id=account.id)
    return account
