"""
Leave service layer.
Submission validation, approval workflow and yearly balance deduction.
"""
from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from app.hrms.audit import record_event
from app.hrms.utils import clean, parse_date

from .models import LeaveBalance, LeaveRequest

if TYPE_CHECKING:
    from app.hrms.models import User
    from app.hrms.modules.employees.models import Employee


LEAVE_TYPES = ("sick_leave", "casual_leave", "public_holiday", "bereavement_leave", "unpaid_leave")
LEAVE_STATUSES = ("pending", "approved", "rejected", "cancelled")


class LeaveError(ValueError):
    """Workflow violation (wrong status, not the requester, ...)."""


class InsufficientLeaveBalance(LeaveError):
    pass


def calculate_total_days(start: date, end: date) -> int:
    """Calendar days, inclusive of both ends."""
    return (end - start).days + 1


def validate_leave_payload(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    leave_type = clean(payload.get("leave_type"))
    if not leave_type:
        errors.append("Leave type is required.")
    elif leave_type not in LEAVE_TYPES:
        errors.append(f"Leave type must be one of: {', '.join(LEAVE_TYPES)}.")
    if not clean(payload.get("reason")):
        errors.append("Reason is required.")

    start = end = None
    try:
        start = parse_date(payload.get("start_date"))
        if start is None:
            errors.append("Start date is required.")
    except ValueError:
        errors.append("Start date must be YYYY-MM-DD.")
    try:
        end = parse_date(payload.get("end_date"))
        if end is None:
            errors.append("End date is required.")
    except ValueError:
        errors.append("End date must be YYYY-MM-DD.")
    if start and end and end < start:
        errors.append("End date cannot be before start date.")
    return errors


def get_or_create_balance(s: Session, employee_id: int, year: int | None = None) -> LeaveBalance:
    year = year or datetime.utcnow().year
    balance = (
        s.query(LeaveBalance)
        .filter(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
        .one_or_none()
    )
    if balance is None:
        balance = LeaveBalance(
            employee_id=employee_id,
            year=year,
            sick_leave_paid_total=15,
            sick_leave_paid_used=0,
            sick_leave_unpaid_total=15,
            sick_leave_unpaid_used=0,
            casual_leave_paid_total=5,
            casual_leave_paid_used=0,
            casual_leave_unpaid_used=0,
            bereavement_leave_used=0,
            public_holidays_used=0,
            unpaid_leave_used=0,
        )
        s.add(balance)
        s.flush()
    return balance


def remaining(balance: LeaveBalance) -> dict[str, int]:
    return {
        "sick_leave_paid": balance.sick_leave_paid_total - balance.sick_leave_paid_used,
        "sick_leave_unpaid": balance.sick_leave_unpaid_total - balance.sick_leave_unpaid_used,
        "casual_leave_paid": balance.casual_leave_paid_total - balance.casual_leave_paid_used,
    }


def apply_to_balance(balance: LeaveBalance, leave_type: str, total_days: int) -> dict[str, int]:
    """
    Deduct `total_days` of `leave_type` from `balance` in place.

    Sick leave draws paid days first, then unpaid days; running out of both refuses the deduction.
    Casual leave beyond the paid allowance is recorded as unpaid casual leave.
    Returns the {column: new value} changes.
    """
    changes: dict[str, int] = {}
    if leave_type == "sick_leave":
        paid_left = balance.sick_leave_paid_total - balance.sick_leave_paid_used
        if paid_left >= total_days:
            changes["sick_leave_paid_used"] = balance.sick_leave_paid_used + total_days
        else:
            unpaid_days = total_days - paid_left
            unpaid_left = balance.sick_leave_unpaid_total - balance.sick_leave_unpaid_used
            if unpaid_days > unpaid_left:
                raise InsufficientLeaveBalance(
                    f"Insufficient sick leave balance. Remaining: {paid_left} paid, {unpaid_left} unpaid days"
                )
            changes["sick_leave_paid_used"] = balance.sick_leave_paid_total
            changes["sick_leave_unpaid_used"] = balance.sick_leave_unpaid_used + unpaid_days
    elif leave_type == "casual_leave":
        paid_left = balance.casual_leave_paid_total - balance.casual_leave_paid_used
        if paid_left >= total_days:
            changes["casual_leave_paid_used"] = balance.casual_leave_paid_used + total_days
        else:
            changes["casual_leave_paid_used"] = balance.casual_leave_paid_total
            changes["casual_leave_unpaid_used"] = balance.casual_leave_unpaid_used + (total_days - paid_left)
    elif leave_type == "bereavement_leave":
        changes["bereavement_leave_used"] = balance.bereavement_leave_used + total_days
    elif leave_type == "public_holiday":
        changes["public_holidays_used"] = balance.public_holidays_used + total_days
    elif leave_type == "unpaid_leave":
        changes["unpaid_leave_used"] = balance.unpaid_leave_used + total_days
    else:
        raise LeaveError(f"Unknown leave type: {leave_type}")

    for column, value in changes.items():
        setattr(balance, column, value)
    balance.updated_at = datetime.utcnow()
    return changes


def submit_leave_request(s: Session, employee: Employee, payload: dict[str, Any], *, user: User) -> LeaveRequest:
    start = parse_date(payload.get("start_date"))
    end = parse_date(payload.get("end_date"))
    if start is None or end is None:
        raise LeaveError("Start and end dates are required.")
    leave = LeaveRequest(
        employee_id=employee.id,
        employee=employee,
        requested_by_user_id=user.id,
        leave_type=clean(payload.get("leave_type")) or "",
        start_date=start,
        end_date=end,
        total_days=calculate_total_days(start, end),
        reason=clean(payload.get("reason")) or "",
        status="pending",
    )
    s.add(leave)
    s.flush()
    record_event(
        s,
        actor=user,
        action="leave_request.submit",
        entity_type="LeaveRequest",
        entity_id=leave.id,
        metadata={"employee_id": employee.id, "leave_type": leave.leave_type, "total_days": leave.total_days},
    )
    return leave


def attach_medical_certificate(s: Session, leave: LeaveRequest, *, key: str, filename: str, user: User) -> None:
    leave.medical_certificate_key = key
    leave.medical_certificate_name = filename
    leave.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="leave_request.certificate_upload", entity_type="LeaveRequest", entity_id=leave.id)


def _require_status(leave: LeaveRequest, *allowed: str) -> None:
    if leave.status not in allowed:
        raise LeaveError(f"Leave request is {leave.status}; expected {' or '.join(allowed)}.")


def approve_leave_request(s: Session, leave: LeaveRequest, *, approver: User) -> LeaveRequest:
    """
    Deduct the balance and approve. Both changes ride on the caller's single commit, so a refused
    deduction leaves the request pending and the balance untouched.
    """
    _require_status(leave, "pending")
    balance = get_or_create_balance(s, leave.employee_id, leave.start_date.year)
    changes = apply_to_balance(balance, leave.leave_type, leave.total_days)

    now = datetime.utcnow()
    leave.status = "approved"
    leave.approver = approver
    leave.approved_at = now
    leave.updated_at = now
    record_event(
        s,
        actor=approver,
        action="leave_request.approve",
        entity_type="LeaveRequest",
        entity_id=leave.id,
        metadata={"balance_id": balance.id, "balance_changes": changes},
    )
    return leave


def reject_leave_request(s: Session, leave: LeaveRequest, *, approver: User, reason: str) -> LeaveRequest:
    reason = (reason or "").strip()
    if not reason:
        raise LeaveError("A rejection reason is required.")
    _require_status(leave, "pending")
    now = datetime.utcnow()
    leave.status = "rejected"
    leave.approver = approver
    leave.approved_at = now
    leave.rejection_reason = reason
    leave.updated_at = now
    record_event(s, actor=approver, action="leave_request.reject", entity_type="LeaveRequest", entity_id=leave.id, reason=reason)
    return leave


def cancel_leave_request(s: Session, leave: LeaveRequest, *, user: User) -> LeaveRequest:
    if leave.employee.user_id != user.id and leave.requested_by_user_id != user.id:
        raise LeaveError("Only the requester can cancel a leave request.")
    _require_status(leave, "pending")
    now = datetime.utcnow()
    leave.status = "cancelled"
    leave.cancelled_at = now
    leave.updated_at = now
    record_event(s, actor=user, action="leave_request.cancel", entity_type="LeaveRequest", entity_id=leave.id)
    return leave


def process_leave_by_admin(s: Session, leave: LeaveRequest, *, admin: User) -> LeaveRequest:
    _require_status(leave, "approved")
    if leave.admin_processed:
        raise LeaveError("Leave request has already been processed.")
    now = datetime.utcnow()
    leave.admin_processed = True
    leave.admin_processed_by_user_id = admin.id
    leave.admin_processed_at = now
    leave.bdm_notified = True
    leave.crm_notified = True
    leave.updated_at = now
    record_event(s, actor=admin, action="leave_request.admin_process", entity_type="LeaveRequest", entity_id=leave.id)
    return leave


def list_leave_requests(
    s: Session,
    *,
    organization_id: str | None = None,
    employee_id: int | None = None,
    status: str | None = None,
) -> list[LeaveRequest]:
    q = s.query(LeaveRequest).filter(LeaveRequest.in_org(organization_id))
    if employee_id:
        q = q.filter(LeaveRequest.employee_id == employee_id)
    if status:
        q = q.filter(LeaveRequest.status == status)
    return q.order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc()).all()
