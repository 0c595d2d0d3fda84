from __future__ import annotations

from flask import Blueprint, Response, abort, current_app, g, jsonify, request, send_file

from app.hrms.db import db_session
from app.hrms.models import User
from app.hrms.pdf import render_onboarding_summary
from app.hrms.rbac import require_login, require_permission, user_has_permission
from app.hrms.storage import StorageError, save_upload, storage_from_config
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, parse_bool, parse_int, user_summary

from app.hrms.modules.employees.models import Employee

from .models import OnboardingChecklistItem, TeamIntroductionMeeting
from .service import (
    add_item,
    attach_document,
    can_complete,
    cancel_team_meeting,
    complete_item,
    complete_team_meeting,
    confirm_meeting_attendance,
    delete_item,
    list_team_meetings,
    reopen_item,
    schedule_team_meeting,
    update_team_meeting,
    validate_item_payload,
    validate_meeting_payload,
    verify_document,
)

bp = Blueprint("onboarding", __name__)


def item_json(item: OnboardingChecklistItem) -> dict:
    ok, blockers = can_complete(item) if not item.is_completed else (False, [])
    return {
        "id": item.id,
        "employee_id": item.employee_id,
        "key": item.key,
        "title": item.title,
        "description": item.description,
        "order": item.order,
        "due_date": iso(item.due_date),
        "is_completed": item.is_completed,
        "completed_at": iso(item.completed_at),
        "requires_document": item.requires_document,
        "document_name": item.document_name,
        "document_uploaded_at": iso(item.document_uploaded_at),
        "document_verified": item.document_verified,
        "verified_at": iso(item.verified_at),
        "psychometric_test_type": item.psychometric_test_type,
        "psychometric_attempt_id": item.psychometric_attempt_id,
        "score": item.score,
        "notes": item.notes,
        "can_complete": ok,
        "blockers": blockers,
    }


def _check_access(user: User, employee: Employee, permission_key: str) -> None:
    if employee.user_id == user.id:
        return
    if not user_has_permission(user, permission_key):
        g.missing_permission = permission_key
        abort(403)


@bp.get("/employees/<int:employee_id>/onboarding")
@require_login
def onboarding_checklist(employee_id: int):
    s = db_session()
    emp = get_in_org_or_404(s, Employee, employee_id)
    _check_access(g.current_user, emp, "onboarding.view")
    return jsonify(
        {
            "employee_id": emp.id,
            "progress": emp.onboarding_progress,
            "status": emp.onboarding_status,
            "items": [item_json(i) for i in emp.checklist_items],
        }
    )


@bp.post("/employees/<int:employee_id>/onboarding/items")
@require_permission("onboarding.manage")
def onboarding_item_create(employee_id: int):
    s = db_session()
    emp = get_in_org_or_404(s, Employee, employee_id)
    payload = get_payload()
    errors = validate_item_payload(payload)
    if errors:
        return error_response("Invalid checklist item.", errors)
    item = add_item(s, emp, payload, user=g.current_user)
    s.commit()
    return jsonify(item_json(item)), 201


@bp.post("/onboarding/items/<int:item_id>/complete")
@require_login
def onboarding_item_complete(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, OnboardingChecklistItem, item_id)
    _check_access(g.current_user, item.employee, "onboarding.manage")
    payload = get_payload()
    try:
        complete_item(s, item, user=g.current_user, notes=(payload.get("notes") or "").strip() or None)
    except ValueError as e:
        s.rollback()
        return error_response(str(e), status=409)
    s.commit()
    return jsonify({"item": item_json(item), "progress": item.employee.onboarding_progress})


@bp.post("/onboarding/items/<int:item_id>/reopen")
@require_permission("onboarding.manage")
def onboarding_item_reopen(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, OnboardingChecklistItem, item_id)
    payload = get_payload()
    try:
        reopen_item(s, item, user=g.current_user, reason=(payload.get("reason") or "").strip() or None)
    except ValueError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify({"item": item_json(item), "progress": item.employee.onboarding_progress})


@bp.post("/onboarding/items/<int:item_id>/document")
@require_login
def onboarding_item_upload(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, OnboardingChecklistItem, item_id)
    _check_access(g.current_user, item.employee, "onboarding.manage")
    f = request.files.get("file")
    if not f or not f.filename:
        return error_response("File is required.")
    try:
        stored = save_upload(current_app.config, f, namespace="onboarding", entity_id=item.id)
    except ValueError as e:
        return error_response(str(e))
    attach_document(s, item, stored, user=g.current_user)
    s.commit()
    return jsonify(item_json(item))


@bp.get("/onboarding/items/<int:item_id>/document")
@require_login
def onboarding_item_download(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, OnboardingChecklistItem, item_id)
    _check_access(g.current_user, item.employee, "onboarding.view")
    if not item.document_key:
        abort(404)
    try:
        fobj = storage_from_config(current_app.config).open(item.document_key)
    except StorageError:
        current_app.logger.error("Onboarding document missing from storage: %s", item.document_key)
        abort(404)
    return send_file(fobj, as_attachment=True, download_name=item.document_name or "document")


@bp.post("/onboarding/items/<int:item_id>/verify")
@require_permission("onboarding.verify")
def onboarding_item_verify(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, OnboardingChecklistItem, item_id)
    payload = get_payload()
    verified = parse_bool(payload.get("verified", True))
    try:
        verify_document(s, item, user=g.current_user, verified=verified)
    except ValueError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(item_json(item))


@bp.delete("/onboarding/items/<int:item_id>")
@require_permission("onboarding.manage")
def onboarding_item_delete(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, OnboardingChecklistItem, item_id)
    emp = item.employee
    delete_item(s, item, user=g.current_user)
    s.commit()
    return jsonify({"ok": True, "progress": emp.onboarding_progress})


@bp.get("/employees/<int:employee_id>/onboarding/pdf")
@require_login
def onboarding_pdf(employee_id: int):
    s = db_session()
    emp = get_in_org_or_404(s, Employee, employee_id)
    _check_access(g.current_user, emp, "onboarding.view")
    pdf_bytes = render_onboarding_summary(emp)
    filename = f"onboarding_{emp.employee_number}.pdf"
    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def meeting_json(m: TeamIntroductionMeeting) -> dict:
    return {
        "id": m.id,
        "employee_id": m.employee_id,
        "employee": user_summary(m.employee.user),
        "title": m.title,
        "description": m.description,
        "scheduled_date": iso(m.scheduled_date),
        "meeting_type": m.meeting_type,
        "location": m.location,
        "meeting_link": m.meeting_link,
        "attendee_user_ids": list(m.attendee_user_ids or []),
        "status": m.status,
        "notes": m.notes,
        "scheduled_by": user_summary(m.scheduled_by),
        "created_at": iso(m.created_at),
        "updated_at": iso(m.updated_at),
    }


@bp.get("/onboarding/team-meetings")
@require_permission("onboarding.view")
def team_meeting_list():
    s = db_session()
    meetings = list_team_meetings(
        s,
        organization_id=current_org(),
        employee_id=parse_int(request.args.get("employee_id")),
        status=(request.args.get("status") or "").strip() or None,
    )
    return jsonify({"items": [meeting_json(m) for m in meetings]})


@bp.get("/employees/<int:employee_id>/team-meetings")
@require_login
def employee_team_meetings(employee_id: int):
    s = db_session()
    emp = get_in_org_or_404(s, Employee, employee_id)
    _check_access(g.current_user, emp, "onboarding.view")
    meetings = list_team_meetings(s, organization_id=current_org(), employee_id=emp.id)
    return jsonify({"items": [meeting_json(m) for m in meetings]})


@bp.post("/employees/<int:employee_id>/team-meetings")
@require_permission("onboarding.manage")
def team_meeting_create(employee_id: int):
    s = db_session()
    emp = get_in_org_or_404(s, Employee, employee_id)
    payload = get_payload()
    errors = validate_meeting_payload(s, payload, creating=True, organization_id=current_org())
    if errors:
        return error_response("Invalid meeting.", errors)
    meeting = schedule_team_meeting(s, emp, payload, user=g.current_user)
    s.commit()
    return jsonify(meeting_json(meeting)), 201


@bp.get("/onboarding/team-meetings/<int:meeting_id>")
@require_login
def team_meeting_detail(meeting_id: int):
    s = db_session()
    meeting = get_in_org_or_404(s, TeamIntroductionMeeting, meeting_id)
    _check_access(g.current_user, meeting.employee, "onboarding.view")
    return jsonify(meeting_json(meeting))


@bp.patch("/onboarding/team-meetings/<int:meeting_id>")
@require_permission("onboarding.manage")
def team_meeting_update(meeting_id: int):
    s = db_session()
    meeting = get_in_org_or_404(s, TeamIntroductionMeeting, meeting_id)
    payload = get_payload()
    errors = validate_meeting_payload(s, payload, creating=False, organization_id=current_org())
    if errors:
        return error_response("Invalid meeting.", errors)
    try:
        update_team_meeting(s, meeting, payload, user=g.current_user)
    except ValueError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(meeting_json(meeting))


@bp.post("/onboarding/team-meetings/<int:meeting_id>/confirm")
@require_login
def team_meeting_confirm(meeting_id: int):
    s = db_session()
    meeting = get_in_org_or_404(s, TeamIntroductionMeeting, meeting_id)
    try:
        confirm_meeting_attendance(s, meeting, user=g.current_user)
    except PermissionError as e:
        return error_response(str(e), status=403)
    except ValueError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(meeting_json(meeting))


@bp.post("/onboarding/team-meetings/<int:meeting_id>/complete")
@require_permission("onboarding.manage")
def team_meeting_complete(meeting_id: int):
    s = db_session()
    meeting = get_in_org_or_404(s, TeamIntroductionMeeting, meeting_id)
    payload = get_payload()
    try:
        complete_team_meeting(s, meeting, user=g.current_user, notes=(payload.get("notes") or "").strip() or None)
    except ValueError as e:
        s.rollback()
        return error_response(str(e), status=409)
    s.commit()
    return jsonify({"meeting": meeting_json(meeting), "progress": meeting.employee.onboarding_progress})


@bp.post("/onboarding/team-meetings/<int:meeting_id>/cancel")
@require_permission("onboarding.manage")
def team_meeting_cancel(meeting_id: int):
    s = db_session()
    meeting = get_in_org_or_404(s, TeamIntroductionMeeting, meeting_id)
    payload = get_payload()
    try:
        cancel_team_meeting(s, meeting, user=g.current_user, reason=(payload.get("reason") or "").strip() or None)
    except ValueError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(meeting_json(meeting))
