from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request

from app.hrms.db import db_session
from app.hrms.emails import send_onboarding_invite
from app.hrms.rbac import require_login, require_permission, user_has_permission
from app.hrms.security import generate_token
from app.hrms.storage import save_upload
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, parse_int, user_summary

from .models import Department, Employee
from .service import (
    activate_account,
    complete_personal_profile,
    create_department,
    create_employee,
    employee_for_user,
    find_pending_invite,
    list_employees,
    set_profile_picture,
    update_department,
    update_employee,
    validate_department_payload,
    validate_employee_payload,
)

bp = Blueprint("employees", __name__)
public_bp = Blueprint("public_employees", __name__)


def department_json(d: Department) -> dict:
    return {
        "id": d.id,
        "name": d.name,
        "code": d.code,
        "description": d.description,
        "head": user_summary(d.head),
        "created_at": iso(d.created_at),
    }


def employee_json(emp: Employee, *, include_private: bool = False) -> dict:
    data = {
        "id": emp.id,
        "employee_number": emp.employee_number,
        "user": user_summary(emp.user),
        "department": {"id": emp.department.id, "name": emp.department.name} if emp.department else None,
        "position": emp.position,
        "employment_type": emp.employment_type,
        "manager": user_summary(emp.manager),
        "hire_date": iso(emp.hire_date),
        "status": emp.status,
        "onboarding_status": emp.onboarding_status,
        "onboarding_progress": emp.onboarding_progress,
        "phone": emp.phone,
        "has_profile_picture": bool(emp.profile_picture_key),
        "created_at": iso(emp.created_at),
    }
    if include_private:
        data.update(
            {
                "salary": iso(emp.salary),
                "date_of_birth": iso(emp.date_of_birth),
                "address": emp.address,
                "emergency_contact_name": emp.emergency_contact_name,
                "emergency_contact_phone": emp.emergency_contact_phone,
                "emergency_contact_relationship": emp.emergency_contact_relationship,
                "bank_name": emp.bank_name,
                "bank_account_last4": (emp.bank_account_number or "")[-4:] or None,
            }
        )
    return data


def _send_invite(emp: Employee) -> None:
    if emp.user.onboarding_token:
        send_onboarding_invite(emp.user, token=emp.user.onboarding_token, position=emp.position)


# --- departments -----------------------------------------------------------


@bp.get("/departments")
@require_login
def departments_list():
    s = db_session()
    items = s.query(Department).filter(Department.in_org(current_org())).order_by(Department.name.asc()).all()
    return jsonify({"items": [department_json(d) for d in items]})


@bp.post("/departments")
@require_permission("departments.manage")
def departments_create():
    s = db_session()
    payload = get_payload()
    errors = validate_department_payload(s, payload, organization_id=current_org())
    if errors:
        return error_response("Invalid department.", errors)
    dept = create_department(s, payload, user=g.current_user)
    s.commit()
    return jsonify(department_json(dept)), 201


@bp.patch("/departments/<int:department_id>")
@require_permission("departments.manage")
def departments_update(department_id: int):
    s = db_session()
    dept = get_in_org_or_404(s, Department, department_id)
    payload = get_payload()
    merged = {"name": dept.name, "code": dept.code, **payload}
    errors = validate_department_payload(s, merged, department=dept, organization_id=current_org())
    if errors:
        return error_response("Invalid department.", errors)
    update_department(s, dept, payload, user=g.current_user)
    s.commit()
    return jsonify(department_json(dept))


# --- employees -------------------------------------------------------------


@bp.get("/employees")
@require_permission("employees.view")
def employees_list():
    s = db_session()
    items = list_employees(
        s,
        organization_id=current_org(),
        department_id=parse_int(request.args.get("department_id")),
        status=(request.args.get("status") or "").strip() or None,
        search=(request.args.get("q") or "").strip() or None,
    )
    return jsonify({"items": [employee_json(e) for e in items]})


@bp.post("/employees")
@require_permission("employees.manage")
def employees_create():
    s = db_session()
    payload = get_payload()
    errors = validate_employee_payload(s, payload, creating=True, organization_id=current_org())
    if errors:
        return error_response("Invalid employee.", errors)
    emp = create_employee(s, payload, user=g.current_user)
    s.commit()
    current_app.logger.info("Employee created: %s (%s)", emp.employee_number, emp.user.email)
    _send_invite(emp)
    return jsonify(employee_json(emp, include_private=True)), 201


@bp.get("/employees/me")
@require_login
def employees_me():
    s = db_session()
    emp = employee_for_user(s, g.current_user)
    if emp is None:
        abort(404)
    return jsonify(employee_json(emp, include_private=True))


@bp.get("/employees/<int:employee_id>")
@require_login
def employees_detail(employee_id: int):
    s = db_session()
    emp = get_in_org_or_404(s, Employee, employee_id)
    is_self = emp.user_id == g.current_user.id
    if not is_self and not user_has_permission(g.current_user, "employees.view"):
        g.missing_permission = "employees.view"
        abort(403)
    private = is_self or user_has_permission(g.current_user, "employees.manage")
    return jsonify(employee_json(emp, include_private=private))


@bp.patch("/employees/<int:employee_id>")
@require_permission("employees.manage")
def employees_update(employee_id: int):
    s = db_session()
    emp = get_in_org_or_404(s, Employee, employee_id)
    payload = get_payload()
    errors = validate_employee_payload(s, payload, creating=False, organization_id=current_org())
    if errors:
        return error_response("Invalid employee.", errors)
    update_employee(s, emp, payload, user=g.current_user)
    s.commit()
    return jsonify(employee_json(emp, include_private=True))


@bp.post("/employees/<int:employee_id>/resend-invite")
@require_permission("employees.manage")
def employees_resend_invite(employee_id: int):
    s = db_session()
    emp = get_in_org_or_404(s, Employee, employee_id)
    if emp.user.status != "onboarding":
        return error_response("Account is already activated.", status=409)
    emp.user.onboarding_token = generate_token()
    s.commit()
    _send_invite(emp)
    return jsonify({"ok": True})


@bp.put("/employees/me/profile")
@require_login
def employees_me_profile():
    s = db_session()
    emp = employee_for_user(s, g.current_user)
    if emp is None:
        abort(404)
    payload = get_payload()
    errors = validate_employee_payload(s, {k: payload.get(k) for k in ("date_of_birth",)}, creating=False)
    if errors:
        return error_response("Invalid profile.", errors)
    try:
        ticked = complete_personal_profile(s, emp, payload, user=g.current_user)
    except ValueError as e:
        s.rollback()
        return error_response(str(e))
    s.commit()
    return jsonify({"employee": employee_json(emp, include_private=True), "completed_items": [i.key for i in ticked]})


@bp.post("/employees/me/profile-picture")
@require_login
def employees_me_profile_picture():
    s = db_session()
    emp = employee_for_user(s, g.current_user)
    if emp is None:
        abort(404)
    f = request.files.get("file")
    if not f or not f.filename:
        return error_response("File is required.")
    try:
        stored = save_upload(current_app.config, f, namespace="profile-pictures", entity_id=emp.id)
    except ValueError as e:
        return error_response(str(e))
    set_profile_picture(s, emp, stored.key, user=g.current_user)
    s.commit()
    return jsonify(employee_json(emp, include_private=True))


# --- public invitation links -------------------------------------------------


@public_bp.get("/onboarding/<token>")
def onboarding_invite_get(token: str):
    s = db_session()
    account = find_pending_invite(s, token)
    if account is None:
        return error_response("Invitation link is invalid or has already been used.", status=404)
    emp = employee_for_user(s, account)
    return jsonify(
        {
            "user": user_summary(account),
            "employee_number": emp.employee_number if emp else None,
            "position": emp.position if emp else None,
        }
    )


@public_bp.post("/onboarding/<token>/activate")
def onboarding_invite_activate(token: str):
    s = db_session()
    account = find_pending_invite(s, token)
    if account is None:
        return error_response("Invitation link is invalid or has already been used.", status=404)
    payload = get_payload()
    password = payload.get("password") or ""
    if password != (payload.get("confirm_password") or password):
        return error_response("Passwords do not match.")
    try:
        activate_account(s, account, password=password)
    except ValueError as e:
        return error_response(str(e))
    s.commit()
    return jsonify({"ok": True, "username": account.username or account.email})
