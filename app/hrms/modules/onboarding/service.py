"""
Onboarding checklist service.
Seeds the standard checklist, enforces completion gates and keeps the employee's progress current.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from app.hrms.audit import record_event
from app.hrms.storage import StoredUpload
from app.hrms.tenancy import org_user
from app.hrms.utils import clean, parse_date, parse_datetime, parse_int, round_half_up

from app.hrms.modules.employees.models import Department
from app.hrms.modules.notifications.service import notify_many

from .models import OnboardingChecklistItem, TeamIntroductionMeeting

if TYPE_CHECKING:
    from app.hrms.models import User
    from app.hrms.modules.employees.models import Employee

logger = logging.getLogger(__name__)


STANDARD_CHECKLIST: list[dict[str, Any]] = [
    {
        "key": "personal_profile",
        "title": "Complete Personal Profile",
        "description": "Update your personal information, contact details, and emergency contacts",
        "due_days": 3,
    },
    {
        "key": "profile_picture",
        "title": "Upload Profile Picture",
        "description": "Add a professional profile picture to your account",
        "due_days": 3,
    },
    {
        "key": "emergency_contact",
        "title": "Complete Emergency Contact Information",
        "description": "Provide emergency contact details for company records",
        "due_days": 5,
    },
    {
        "key": "personality_test",
        "title": "Personality Assessment Test",
        "description": "Complete the personality traits assessment",
        "psychometric_test_type": "personality",
        "due_days": 7,
    },
    {
        "key": "cognitive_test",
        "title": "Cognitive Abilities Assessment Test",
        "description": "Complete the cognitive abilities and logical reasoning test",
        "psychometric_test_type": "cognitive",
        "due_days": 7,
    },
    {
        "key": "communication_test",
        "title": "Communication Skills Assessment Test",
        "description": "Complete the workplace communication scenarios evaluation",
        "psychometric_test_type": "communication",
        "due_days": 7,
    },
    {
        "key": "technical_test",
        "title": "Technical Skills Assessment Test",
        "description": "Complete the technical aptitude and problem-solving assessment",
        "psychometric_test_type": "technical",
        "due_days": 10,
    },
    {
        "key": "culture_test",
        "title": "Values and Culture Fit Assessment Test",
        "description": "Complete the company values alignment and culture fit evaluation",
        "psychometric_test_type": "culture",
        "due_days": 10,
    },
    {
        "key": "handbook",
        "title": "Review Company Handbook",
        "description": "Read and acknowledge the company policies and procedures",
        "requires_document": True,
        "due_days": 7,
    },
    {
        "key": "it_equipment",
        "title": "Setup IT Equipment",
        "description": "Configure your computer, email, and necessary software tools",
        "due_days": 10,
    },
    {
        "key": "required_documents",
        "title": "Upload Required Documents",
        "description": "Upload identity documents, educational certificates, experience letters, and other required documents",
        "requires_document": True,
        "due_days": 14,
    },
    {
        "key": "banking_information",
        "title": "Complete Banking Information",
        "description": "Provide bank account details and salary payment information",
        "due_days": 14,
    },
    {
        "key": "team_meeting",
        "title": "Attend Team Introduction Meeting",
        "description": "Participate in your scheduled team introduction meeting to meet your colleagues",
        "due_days": 10,
    },
]

# Extra items by position, appended after the standard checklist.
ROLE_TEMPLATES: dict[str, list[dict[str, Any]]] = {
    "team_lead": [
        {
            "key": "leadership_training",
            "title": "Leadership Training Module",
            "description": "Complete team leadership and management training specific to your role.",
            "due_days": 21,
        },
        {
            "key": "team_metrics_review",
            "title": "Review Team Performance Metrics",
            "description": "Learn about team KPIs, performance tracking, and reporting requirements.",
            "due_days": 14,
        },
    ],
    "branch_manager": [
        {
            "key": "management_training",
            "title": "Management Training Program",
            "description": "Complete comprehensive management training covering leadership, finance, and operations.",
            "requires_document": True,
            "due_days": 30,
        },
        {
            "key": "budget_overview",
            "title": "Budget & Financial Overview",
            "description": "Review branch budget, financial responsibilities, and reporting requirements.",
            "due_days": 21,
        },
        {
            "key": "regional_leadership",
            "title": "Meet Regional Leadership",
            "description": "Introduction meetings with regional managers and executive team.",
            "due_days": 14,
        },
    ],
    "hr_admin": [
        {
            "key": "hr_systems_training",
            "title": "HR Systems Training",
            "description": "Complete training on all HR systems, databases, and compliance requirements.",
            "due_days": 21,
        },
        {
            "key": "legal_compliance_training",
            "title": "Legal Compliance Training",
            "description": "Complete employment law, data privacy, and regulatory compliance training.",
            "requires_document": True,
            "due_days": 30,
        },
    ],
    "logistics_manager": [
        {
            "key": "inventory_training",
            "title": "Inventory Management Training",
            "description": "Learn inventory systems, procurement processes, and vendor management.",
            "due_days": 21,
        },
        {
            "key": "vendor_relations",
            "title": "Vendor Relations Overview",
            "description": "Meet with key vendors and learn about existing supplier relationships.",
            "due_days": 14,
        },
    ],
}

# Extra items by department name, appended after the role items.
DEPARTMENT_TEMPLATES: dict[str, list[dict[str, Any]]] = {
    "information_technology": [
        {
            "key": "it_security_training",
            "title": "IT Security Training",
            "description": "Complete cybersecurity training and obtain necessary security clearances.",
            "requires_document": True,
            "due_days": 7,
        },
        {
            "key": "development_tools",
            "title": "Access Development Tools",
            "description": "Set up development environment, version control, and deployment tools.",
            "due_days": 7,
        },
    ],
    "finance_accounting": [
        {
            "key": "financial_systems_training",
            "title": "Financial Systems Training",
            "description": "Learn accounting software, financial reporting tools, and compliance procedures.",
            "due_days": 14,
        },
    ],
    "sales_marketing": [
        {
            "key": "crm_training",
            "title": "CRM System Training",
            "description": "Learn customer relationship management system and sales processes.",
            "due_days": 10,
        },
        {
            "key": "product_knowledge",
            "title": "Product Knowledge Training",
            "description": "Complete comprehensive training on all company products and services.",
            "due_days": 14,
        },
    ],
}

TEAM_MEETING_KEY = "team_meeting"
MEETING_TYPES = ("in_person", "virtual")
OPEN_MEETING_STATUSES = ("scheduled", "confirmed")


def template_key(value: str | None) -> str:
    """'Team Lead' -> 'team_lead'; 'Finance & Accounting' -> 'finance_accounting'."""
    return re.sub(r"[^a-z0-9]+", "_", (value or "").lower()).strip("_")


def checklist_for(position: str | None, department_name: str | None = None) -> list[dict[str, Any]]:
    return (
        STANDARD_CHECKLIST
        + ROLE_TEMPLATES.get(template_key(position), [])
        + DEPARTMENT_TEMPLATES.get(template_key(department_name), [])
    )


def _new_item(employee: Employee, tpl: dict[str, Any], *, order: int, today: date) -> OnboardingChecklistItem:
    return OnboardingChecklistItem(
        employee=employee,
        key=tpl["key"],
        title=tpl["title"],
        description=tpl["description"],
        order=order,
        due_date=today + timedelta(days=tpl["due_days"]),
        requires_document=bool(tpl.get("requires_document")),
        psychometric_test_type=tpl.get("psychometric_test_type"),
    )


def create_standard_checklist(s: Session, employee: Employee, *, today: date | None = None) -> list[OnboardingChecklistItem]:
    """Standard items plus any extras for the employee's position and department."""
    today = today or datetime.utcnow().date()
    department = s.get(Department, employee.department_id) if employee.department_id else None
    items: list[OnboardingChecklistItem] = []
    for order, tpl in enumerate(checklist_for(employee.position, department.name if department else None), start=1):
        item = _new_item(employee, tpl, order=order, today=today)
        s.add(item)
        items.append(item)
    recalculate_progress(employee)
    return items


def validate_item_payload(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not clean(payload.get("title")):
        errors.append("Title is required.")
    try:
        parse_date(payload.get("due_date"))
    except ValueError:
        errors.append("Due date must be YYYY-MM-DD.")
    return errors


def add_item(s: Session, employee: Employee, payload: dict[str, Any], *, user: User) -> OnboardingChecklistItem:
    next_order = max((i.order for i in employee.checklist_items), default=0) + 1
    item = OnboardingChecklistItem(
        employee=employee,
        title=clean(payload.get("title")) or "",
        description=clean(payload.get("description")),
        order=parse_int(payload.get("order"), next_order) or next_order,
        due_date=parse_date(payload.get("due_date")),
        requires_document=bool(payload.get("requires_document")),
        psychometric_test_type=clean(payload.get("psychometric_test_type")),
    )
    s.add(item)
    s.flush()
    recalculate_progress(employee)
    record_event(
        s,
        actor=user,
        action="onboarding.item.create",
        entity_type="OnboardingChecklistItem",
        entity_id=item.id,
        metadata={"employee_id": employee.id, "title": item.title},
    )
    return item


def can_complete(item: OnboardingChecklistItem) -> tuple[bool, list[str]]:
    errors: list[str] = []
    if item.is_completed:
        errors.append("Item is already completed.")
    if item.requires_document and not item.document_key:
        errors.append("A document must be uploaded before this item can be completed.")
    if item.psychometric_test_type and item.psychometric_attempt_id is None:
        errors.append(f"The {item.psychometric_test_type} assessment must be completed first.")
    return (not errors), errors


def complete_item(
    s: Session,
    item: OnboardingChecklistItem,
    *,
    user: User | None,
    notes: str | None = None,
) -> OnboardingChecklistItem:
    ok, errors = can_complete(item)
    if not ok:
        raise ValueError("; ".join(errors))
    item.is_completed = True
    item.completed_at = datetime.utcnow()
    item.completed_by_user_id = user.id if user else None
    if notes:
        item.notes = notes
    item.updated_at = datetime.utcnow()
    recalculate_progress(item.employee)
    record_event(
        s,
        actor=user,
        action="onboarding.item.complete",
        entity_type="OnboardingChecklistItem",
        entity_id=item.id,
        metadata={"employee_id": item.employee_id, "title": item.title},
    )
    return item


def complete_by_key(s: Session, employee: Employee, key: str, *, user: User | None) -> OnboardingChecklistItem | None:
    item = next((i for i in employee.checklist_items if i.key == key), None)
    if item is None or item.is_completed:
        return item
    return complete_item(s, item, user=user)


def record_psychometric_result(
    s: Session,
    employee: Employee,
    *,
    test_type: str,
    attempt_id: int,
    score: int | None,
) -> OnboardingChecklistItem | None:
    """Attach a finished assessment to the matching checklist item and tick it."""
    item = next(
        (i for i in employee.checklist_items if i.psychometric_test_type == test_type and not i.is_completed),
        None,
    )
    if item is None:
        return None
    item.psychometric_attempt_id = attempt_id
    item.score = score
    return complete_item(s, item, user=employee.user)


def reopen_item(s: Session, item: OnboardingChecklistItem, *, user: User, reason: str | None = None) -> OnboardingChecklistItem:
    if not item.is_completed:
        raise ValueError("Item is not completed.")
    item.is_completed = False
    item.completed_at = None
    item.completed_by_user_id = None
    item.updated_at = datetime.utcnow()
    recalculate_progress(item.employee)
    record_event(
        s,
        actor=user,
        action="onboarding.item.reopen",
        entity_type="OnboardingChecklistItem",
        entity_id=item.id,
        reason=reason,
    )
    return item


def attach_document(s: Session, item: OnboardingChecklistItem, stored: StoredUpload, *, user: User) -> OnboardingChecklistItem:
    item.document_key = stored.key
    item.document_name = stored.filename
    item.document_uploaded_at = datetime.utcnow()
    # A replaced document has to be verified again.
    item.document_verified = False
    item.verified_at = None
    item.verified_by_user_id = None
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="onboarding.item.document_upload",
        entity_type="OnboardingChecklistItem",
        entity_id=item.id,
        metadata={"filename": stored.filename, "sha256": stored.sha256, "size_bytes": stored.size_bytes},
    )
    return item


def verify_document(s: Session, item: OnboardingChecklistItem, *, user: User, verified: bool = True) -> OnboardingChecklistItem:
    if not item.document_key:
        raise ValueError("No document has been uploaded for this item.")
    item.document_verified = verified
    item.verified_at = datetime.utcnow() if verified else None
    item.verified_by_user_id = user.id if verified else None
    item.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="onboarding.item.document_verify" if verified else "onboarding.item.document_unverify",
        entity_type="OnboardingChecklistItem",
        entity_id=item.id,
    )
    return item


def delete_item(s: Session, item: OnboardingChecklistItem, *, user: User) -> None:
    employee = item.employee
    record_event(
        s,
        actor=user,
        action="onboarding.item.delete",
        entity_type="OnboardingChecklistItem",
        entity_id=item.id,
        metadata={"employee_id": item.employee_id, "title": item.title},
    )
    employee.checklist_items.remove(item)
    s.delete(item)
    recalculate_progress(employee)


def calculate_progress(items: list[OnboardingChecklistItem]) -> int:
    if not items:
        return 0
    completed = sum(1 for i in items if i.is_completed)
    return round_half_up(completed / len(items) * 100)


def recalculate_progress(employee: Employee) -> int:
    items = list(employee.checklist_items)
    progress = calculate_progress(items)
    employee.onboarding_progress = progress
    if progress >= 100:
        employee.onboarding_status = "completed"
        if employee.status == "onboarding":
            employee.status = "active"
    elif any(i.is_completed for i in items):
        employee.onboarding_status = "in_progress"
    else:
        employee.onboarding_status = "not_started"
    employee.updated_at = datetime.utcnow()
    return progress


# ---- team introduction meetings ----


def _team_meeting_template() -> dict[str, Any]:
    return next(t for t in STANDARD_CHECKLIST if t["key"] == TEAM_MEETING_KEY)


def ensure_team_meeting_item(s: Session, employee: Employee) -> OnboardingChecklistItem:
    """The employee's `team_meeting` checklist item, added at the end if their checklist predates it."""
    item = next((i for i in employee.checklist_items if i.key == TEAM_MEETING_KEY), None)
    if item is not None:
        return item
    order = max((i.order for i in employee.checklist_items), default=0) + 1
    item = _new_item(employee, _team_meeting_template(), order=order, today=datetime.utcnow().date())
    s.add(item)
    recalculate_progress(employee)
    return item


def validate_meeting_payload(
    s: Session,
    payload: dict[str, Any],
    *,
    creating: bool,
    organization_id: str | None,
    now: datetime | None = None,
) -> list[str]:
    now = now or datetime.utcnow()
    errors: list[str] = []
    if creating or "scheduled_date" in payload:
        try:
            when = parse_datetime(payload.get("scheduled_date"))
            if when is None:
                errors.append("Scheduled date is required.")
            elif when <= now:
                errors.append("Meeting must be scheduled in the future.")
        except ValueError:
            errors.append("Scheduled date must be an ISO date/time.")
    meeting_type = payload.get("meeting_type", "in_person" if creating else None)
    if meeting_type is not None and meeting_type not in MEETING_TYPES:
        errors.append("Meeting type must be in_person or virtual.")
    if meeting_type == "virtual" and not clean(payload.get("meeting_link")):
        errors.append("A meeting link is required for virtual meetings.")
    if "attendee_user_ids" in payload:
        ids = payload.get("attendee_user_ids")
        if not isinstance(ids, list):
            errors.append("Attendees must be a list of user ids.")
        elif any(org_user(s, parse_int(uid), organization_id) is None for uid in ids):
            errors.append("Attendee not found.")
    return errors


def _attendees(payload: dict[str, Any]) -> list[int]:
    return list(dict.fromkeys(parse_int(uid) for uid in payload.get("attendee_user_ids") or []))


def _notify_meeting(s: Session, meeting: TeamIntroductionMeeting, *, type: str, message: str) -> None:
    notify_many(
        s,
        [meeting.employee.user_id, *meeting.attendee_user_ids],
        type=type,
        title="Team Introduction Meeting",
        message=message,
        entity_type="TeamIntroductionMeeting",
        entity_id=meeting.id,
    )


def schedule_team_meeting(s: Session, employee: Employee, payload: dict[str, Any], *, user: User) -> TeamIntroductionMeeting:
    meeting = TeamIntroductionMeeting(
        employee=employee,
        title=clean(payload.get("title")) or f"Welcome {employee.user.full_name}",
        description=clean(payload.get("description")),
        scheduled_date=parse_datetime(payload.get("scheduled_date")),
        meeting_type=payload.get("meeting_type") or "in_person",
        location=clean(payload.get("location")),
        meeting_link=clean(payload.get("meeting_link")),
        attendee_user_ids=_attendees(payload),
        notes=clean(payload.get("notes")),
        scheduled_by=user,
    )
    s.add(meeting)
    ensure_team_meeting_item(s, employee)
    s.flush()
    _notify_meeting(
        s,
        meeting,
        type="meeting_scheduled",
        message=f"Team introduction meeting scheduled for {employee.user.full_name} on {meeting.scheduled_date:%Y-%m-%d %H:%M}",
    )
    record_event(
        s,
        actor=user,
        action="onboarding.meeting.schedule",
        entity_type="TeamIntroductionMeeting",
        entity_id=meeting.id,
        metadata={"employee_id": employee.id, "scheduled_date": meeting.scheduled_date.isoformat()},
    )
    return meeting


def _require_open(meeting: TeamIntroductionMeeting) -> None:
    if meeting.status not in OPEN_MEETING_STATUSES:
        raise ValueError(f"Meeting is already {meeting.status}.")


def update_team_meeting(
    s: Session, meeting: TeamIntroductionMeeting, payload: dict[str, Any], *, user: User
) -> TeamIntroductionMeeting:
    _require_open(meeting)
    previous = meeting.scheduled_date
    for field in ("title", "description", "location", "meeting_link", "notes"):
        if field in payload:
            setattr(meeting, field, clean(payload.get(field)))
    if payload.get("meeting_type"):
        meeting.meeting_type = payload["meeting_type"]
    if "attendee_user_ids" in payload:
        meeting.attendee_user_ids = _attendees(payload)
    if payload.get("scheduled_date"):
        meeting.scheduled_date = parse_datetime(payload["scheduled_date"])
    meeting.updated_at = datetime.utcnow()
    if meeting.scheduled_date != previous:
        # attendance has to be confirmed again for the new slot
        meeting.status = "scheduled"
        _notify_meeting(
            s,
            meeting,
            type="meeting_rescheduled",
            message=(
                f"Team introduction meeting for {meeting.employee.user.full_name} "
                f"has been rescheduled to {meeting.scheduled_date:%Y-%m-%d %H:%M}"
            ),
        )
    record_event(
        s,
        actor=user,
        action="onboarding.meeting.update",
        entity_type="TeamIntroductionMeeting",
        entity_id=meeting.id,
        metadata={"rescheduled": meeting.scheduled_date != previous},
    )
    return meeting


def confirm_meeting_attendance(s: Session, meeting: TeamIntroductionMeeting, *, user: User) -> TeamIntroductionMeeting:
    if meeting.employee.user_id != user.id:
        raise PermissionError("Only the new hire can confirm attendance.")
    _require_open(meeting)
    meeting.status = "confirmed"
    meeting.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="onboarding.meeting.confirm",
        entity_type="TeamIntroductionMeeting",
        entity_id=meeting.id,
    )
    return meeting


def complete_team_meeting(
    s: Session, meeting: TeamIntroductionMeeting, *, user: User, notes: str | None = None
) -> TeamIntroductionMeeting:
    """Mark the meeting held and tick the new hire's `team_meeting` checklist item."""
    _require_open(meeting)
    meeting.status = "completed"
    if notes:
        meeting.notes = notes
    meeting.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="onboarding.meeting.complete",
        entity_type="TeamIntroductionMeeting",
        entity_id=meeting.id,
    )
    employee = meeting.employee
    ensure_team_meeting_item(s, employee)
    s.flush()
    item = complete_by_key(s, employee, TEAM_MEETING_KEY, user=user)
    logger.info("Team meeting %s completed; checklist item %s ticked", meeting.id, item.id if item else None)
    return meeting


def cancel_team_meeting(
    s: Session, meeting: TeamIntroductionMeeting, *, user: User, reason: str | None = None
) -> TeamIntroductionMeeting:
    _require_open(meeting)
    meeting.status = "cancelled"
    meeting.updated_at = datetime.utcnow()
    _notify_meeting(
        s,
        meeting,
        type="meeting_cancelled",
        message=f"Team introduction meeting for {meeting.employee.user.full_name} has been cancelled",
    )
    record_event(
        s,
        actor=user,
        action="onboarding.meeting.cancel",
        entity_type="TeamIntroductionMeeting",
        entity_id=meeting.id,
        reason=reason,
    )
    return meeting


def list_team_meetings(
    s: Session,
    *,
    organization_id: str | None = None,
    employee_id: int | None = None,
    status: str | None = None,
) -> list[TeamIntroductionMeeting]:
    q = s.query(TeamIntroductionMeeting).filter(TeamIntroductionMeeting.in_org(organization_id))
    if employee_id is not None:
        q = q.filter(TeamIntroductionMeeting.employee_id == employee_id)
    if status:
        q = q.filter(TeamIntroductionMeeting.status == status)
    return q.order_by(TeamIntroductionMeeting.scheduled_date.asc()).all()
