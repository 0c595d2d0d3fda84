from __future__ import annotations

from datetime import datetime

from flask import Blueprint, abort, current_app, g, jsonify, request

from app.hrms.db import db_session
from app.hrms.emails import send_leave_decision, send_leave_submitted
from app.hrms.rbac import require_login, require_permission, user_has_permission
from app.hrms.storage import save_upload
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, parse_int, user_summary

from app.hrms.modules.employees.models import Employee
from app.hrms.modules.employees.service import employee_for_user
from app.hrms.modules.notifications.service import notify, users_with_permission

from .models import LeaveBalance, LeaveRequest
from .service import (
    LeaveError,
    approve_leave_request,
    attach_medical_certificate,
    cancel_leave_request,
    get_or_create_balance,
    list_leave_requests,
    process_leave_by_admin,
    reject_leave_request,
    remaining,
    submit_leave_request,
    validate_leave_payload,
)

bp = Blueprint("leave", __name__)


def leave_json(leave: LeaveRequest) -> dict:
    return {
        "id": leave.id,
        "employee_id": leave.employee_id,
        "employee_name": leave.employee.display_name if leave.employee else None,
        "leave_type": leave.leave_type,
        "start_date": iso(leave.start_date),
        "end_date": iso(leave.end_date),
        "total_days": leave.total_days,
        "reason": leave.reason,
        "status": leave.status,
        "has_medical_certificate": bool(leave.medical_certificate_key),
        "approved_by": user_summary(leave.approver),
        "approved_at": iso(leave.approved_at),
        "rejection_reason": leave.rejection_reason,
        "cancelled_at": iso(leave.cancelled_at),
        "admin_processed": leave.admin_processed,
        "admin_processed_at": iso(leave.admin_processed_at),
        "bdm_notified": leave.bdm_notified,
        "crm_notified": leave.crm_notified,
        "created_at": iso(leave.created_at),
    }


def balance_json(b: LeaveBalance) -> dict:
    return {
        "employee_id": b.employee_id,
        "year": b.year,
        "sick_leave_paid_total": b.sick_leave_paid_total,
        "sick_leave_paid_used": b.sick_leave_paid_used,
        "sick_leave_unpaid_total": b.sick_leave_unpaid_total,
        "sick_leave_unpaid_used": b.sick_leave_unpaid_used,
        "casual_leave_paid_total": b.casual_leave_paid_total,
        "casual_leave_paid_used": b.casual_leave_paid_used,
        "casual_leave_unpaid_used": b.casual_leave_unpaid_used,
        "bereavement_leave_used": b.bereavement_leave_used,
        "public_holidays_used": b.public_holidays_used,
        "unpaid_leave_used": b.unpaid_leave_used,
        "remaining": remaining(b),
    }


def _can_see(leave: LeaveRequest) -> bool:
    user = g.current_user
    if leave.employee and leave.employee.user_id == user.id:
        return True
    return user_has_permission(user, "leave.view_all") or user_has_permission(user, "leave.approve")


@bp.get("/leave/requests")
@require_login
def leave_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    if user_has_permission(g.current_user, "leave.view_all"):
        items = list_leave_requests(
            s,
            organization_id=current_org(),
            employee_id=parse_int(request.args.get("employee_id")),
            status=status,
        )
    else:
        emp = employee_for_user(s, g.current_user)
        items = list_leave_requests(s, organization_id=current_org(), employee_id=emp.id, status=status) if emp else []
    return jsonify({"items": [leave_json(r) for r in items]})


@bp.get("/leave/pending-approvals")
@require_permission("leave.approve")
def leave_pending_approvals():
    s = db_session()
    items = list_leave_requests(s, organization_id=current_org(), status="pending")
    return jsonify({"items": [leave_json(r) for r in items]})


@bp.post("/leave/requests")
@require_login
def leave_submit():
    s = db_session()
    payload = get_payload()
    errors = validate_leave_payload(payload)
    if errors:
        return error_response("Invalid leave request.", errors)

    target_id = parse_int(payload.get("employee_id"))
    own = employee_for_user(s, g.current_user)
    if target_id and (own is None or target_id != own.id):
        # Filing on someone else's behalf
        if not user_has_permission(g.current_user, "employees.manage"):
            g.missing_permission = "employees.manage"
            abort(403)
        emp = get_in_org_or_404(s, Employee, target_id)
    else:
        emp = own
    if emp is None:
        return error_response("No employee record is linked to this account.", status=409)

    leave = submit_leave_request(s, emp, payload, user=g.current_user)
    f = request.files.get("medical_certificate")
    if f and f.filename:
        try:
            stored = save_upload(current_app.config, f, namespace="leave-certificates", entity_id=leave.id)
        except ValueError as e:
            s.rollback()
            return error_response(str(e))
        attach_medical_certificate(s, leave, key=stored.key, filename=stored.filename, user=g.current_user)

    approvers = users_with_permission(s, "leave.approve", organization_id=current_org())
    for approver in approvers:
        if approver.id != g.current_user.id:
            notify(
                s,
                approver.id,
                type="leave_request",
                title="Leave request awaiting approval",
                message=f"{emp.display_name} requested {leave.total_days} day(s) of {leave.leave_type.replace('_', ' ')}.",
                entity_type="LeaveRequest",
                entity_id=leave.id,
            )
    s.commit()
    send_leave_submitted(leave, [a.email for a in approvers if a.id != g.current_user.id])
    return jsonify(leave_json(leave)), 201


@bp.get("/leave/requests/<int:leave_id>")
@require_login
def leave_detail(leave_id: int):
    s = db_session()
    leave = get_in_org_or_404(s, LeaveRequest, leave_id)
    if not _can_see(leave):
        abort(404)
    return jsonify(leave_json(leave))


def _decided(s, leave: LeaveRequest) -> None:
    notify(
        s,
        leave.employee.user_id,
        type=f"leave_{leave.status}",
        title=f"Leave request {leave.status}",
        message=f"Your leave from {leave.start_date.isoformat()} to {leave.end_date.isoformat()} was {leave.status}.",
        entity_type="LeaveRequest",
        entity_id=leave.id,
    )


@bp.post("/leave/requests/<int:leave_id>/approve")
@require_permission("leave.approve")
def leave_approve(leave_id: int):
    s = db_session()
    leave = get_in_org_or_404(s, LeaveRequest, leave_id)
    try:
        approve_leave_request(s, leave, approver=g.current_user)
        _decided(s, leave)
        s.commit()
    except LeaveError as e:
        s.rollback()
        return error_response(str(e), status=409)
    send_leave_decision(leave)
    return jsonify(leave_json(leave))


@bp.post("/leave/requests/<int:leave_id>/reject")
@require_permission("leave.approve")
def leave_reject(leave_id: int):
    s = db_session()
    leave = get_in_org_or_404(s, LeaveRequest, leave_id)
    payload = get_payload()
    reason = (payload.get("reason") or "").strip()
    if not reason:
        return error_response("A rejection reason is required.")
    try:
        reject_leave_request(s, leave, approver=g.current_user, reason=reason)
    except LeaveError as e:
        return error_response(str(e), status=409)
    _decided(s, leave)
    s.commit()
    send_leave_decision(leave)
    return jsonify(leave_json(leave))


@bp.post("/leave/requests/<int:leave_id>/cancel")
@require_login
def leave_cancel(leave_id: int):
    s = db_session()
    leave = get_in_org_or_404(s, LeaveRequest, leave_id)
    if not _can_see(leave):
        abort(404)
    try:
        cancel_leave_request(s, leave, user=g.current_user)
    except LeaveError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(leave_json(leave))


@bp.post("/leave/requests/<int:leave_id>/process")
@require_permission("leave.process")
def leave_admin_process(leave_id: int):
    s = db_session()
    leave = get_in_org_or_404(s, LeaveRequest, leave_id)
    try:
        process_leave_by_admin(s, leave, admin=g.current_user)
    except LeaveError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(leave_json(leave))


@bp.get("/leave/balance")
@require_login
def leave_balance_mine():
    s = db_session()
    emp = employee_for_user(s, g.current_user)
    if emp is None:
        abort(404)
    year = parse_int(request.args.get("year")) or datetime.utcnow().year
    balance = get_or_create_balance(s, emp.id, year)
    s.commit()
    return jsonify(balance_json(balance))


@bp.get("/leave/balance/<int:employee_id>")
@require_permission("leave.view_all")
def leave_balance_for(employee_id: int):
    s = db_session()
    emp = get_in_org_or_404(s, Employee, employee_id)
    year = parse_int(request.args.get("year")) or datetime.utcnow().year
    balance = get_or_create_balance(s, emp.id, year)
    s.commit()
    return jsonify(balance_json(balance))
