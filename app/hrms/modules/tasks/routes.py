from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.hrms.db import db_session
from app.hrms.emails import send_task_assigned, send_task_overdue
from app.hrms.rbac import require_login, require_permission, user_has_permission
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, parse_int, user_summary

from .models import Task, TaskRequest, TaskUpdate
from .service import (
    add_update,
    change_status,
    create_task,
    create_task_request,
    list_tasks,
    mark_overdue_tasks,
    respond_to_task_request,
    update_task,
    validate_task_payload,
    validate_task_request_payload,
    validate_update_payload,
)

bp = Blueprint("tasks", __name__)


def task_json(task: Task, *, include_children: bool = False) -> dict:
    data = {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "assigned_to": user_summary(task.assignee),
        "assigned_by": user_summary(task.assigner),
        "priority": task.priority,
        "status": task.status,
        "due_date": iso(task.due_date),
        "completed_at": iso(task.completed_at),
        "latest_progress": task.updates[0].progress_percentage if task.updates else 0,
        "created_at": iso(task.created_at),
        "updated_at": iso(task.updated_at),
    }
    if include_children:
        data["updates"] = [update_json(u) for u in task.updates]
        data["requests"] = [task_request_json(r) for r in task.requests]
    return data


def update_json(u: TaskUpdate) -> dict:
    return {
        "id": u.id,
        "task_id": u.task_id,
        "user": user_summary(u.user),
        "update_text": u.update_text,
        "progress_percentage": u.progress_percentage,
        "hours_worked": iso(u.hours_worked),
        "created_at": iso(u.created_at),
    }


def task_request_json(r: TaskRequest) -> dict:
    return {
        "id": r.id,
        "task_id": r.task_id,
        "task_title": r.task.title if r.task else None,
        "requester": user_summary(r.requester),
        "request_type": r.request_type,
        "subject": r.subject,
        "description": r.description,
        "requested_extension_days": r.requested_extension_days,
        "status": r.status,
        "response": r.response,
        "responded_by": user_summary(r.responder),
        "responded_at": iso(r.responded_at),
        "created_at": iso(r.created_at),
    }


def _is_party(task: Task) -> bool:
    uid = g.current_user.id
    return uid in (task.assigned_to_user_id, task.assigned_by_user_id)


def _visible_task_or_404(s, task_id: int) -> Task:
    task = get_in_org_or_404(s, Task, task_id)
    if not (_is_party(task) or user_has_permission(g.current_user, "tasks.view_all")):
        abort(404)
    return task


@bp.get("/tasks")
@require_login
def tasks_list():
    s = db_session()
    include_all = (request.args.get("scope") == "all") and user_has_permission(g.current_user, "tasks.view_all")
    items = list_tasks(
        s,
        organization_id=current_org(),
        user=g.current_user,
        include_all=include_all,
        status=(request.args.get("status") or "").strip() or None,
        assignee_id=parse_int(request.args.get("assignee_id")),
    )
    return jsonify({"items": [task_json(t) for t in items]})


@bp.post("/tasks")
@require_permission("tasks.manage")
def tasks_create():
    s = db_session()
    payload = get_payload()
    errors = validate_task_payload(s, payload, creating=True, organization_id=current_org())
    if errors:
        return error_response("Invalid task.", errors)
    task = create_task(s, payload, user=g.current_user)
    s.commit()
    send_task_assigned(task)
    return jsonify(task_json(task)), 201


@bp.get("/tasks/<int:task_id>")
@require_login
def tasks_detail(task_id: int):
    s = db_session()
    task = _visible_task_or_404(s, task_id)
    return jsonify(task_json(task, include_children=True))


@bp.patch("/tasks/<int:task_id>")
@require_login
def tasks_update(task_id: int):
    s = db_session()
    task = get_in_org_or_404(s, Task, task_id)
    if task.assigned_by_user_id != g.current_user.id and not user_has_permission(g.current_user, "tasks.manage"):
        g.missing_permission = "tasks.manage"
        abort(403)
    payload = get_payload()
    errors = validate_task_payload(s, payload, creating=False, organization_id=current_org())
    if errors:
        return error_response("Invalid task.", errors)
    reassigned = "assigned_to_user_id" in payload and parse_int(payload.get("assigned_to_user_id")) != task.assigned_to_user_id
    update_task(s, task, payload, user=g.current_user)
    s.commit()
    if reassigned:
        send_task_assigned(task)
    return jsonify(task_json(task))


@bp.post("/tasks/<int:task_id>/status")
@require_login
def tasks_change_status(task_id: int):
    s = db_session()
    task = _visible_task_or_404(s, task_id)
    if not _is_party(task) and not user_has_permission(g.current_user, "tasks.manage"):
        g.missing_permission = "tasks.manage"
        abort(403)
    new_status = (get_payload().get("status") or "").strip()
    try:
        change_status(s, task, new_status, user=g.current_user)
    except ValueError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(task_json(task))


@bp.get("/tasks/<int:task_id>/updates")
@require_login
def tasks_updates_list(task_id: int):
    s = db_session()
    task = _visible_task_or_404(s, task_id)
    return jsonify({"items": [update_json(u) for u in task.updates]})


@bp.post("/tasks/<int:task_id>/updates")
@require_login
def tasks_updates_add(task_id: int):
    s = db_session()
    task = _visible_task_or_404(s, task_id)
    if task.assigned_to_user_id != g.current_user.id:
        return error_response("Only the assignee can post progress updates.", status=403)
    payload = get_payload()
    errors = validate_update_payload(payload)
    if errors:
        return error_response("Invalid update.", errors)
    upd = add_update(s, task, payload, user=g.current_user)
    s.commit()
    return jsonify(update_json(upd)), 201


@bp.post("/tasks/overdue-sweep")
@require_permission("tasks.manage")
def tasks_overdue_sweep():
    s = db_session()
    flagged = mark_overdue_tasks(s)
    s.commit()
    for task, recipients in flagged:
        send_task_overdue(task, recipients)
    org = current_org()
    return jsonify({"marked_overdue": [t.id for t, _ in flagged if t.assignee.organization_id == org]})


# --- task requests -----------------------------------------------------------


@bp.get("/task-requests")
@require_login
def task_requests_list():
    s = db_session()
    q = s.query(TaskRequest).filter(TaskRequest.in_org(current_org()))
    if not user_has_permission(g.current_user, "tasks.manage"):
        q = q.filter(TaskRequest.requester_user_id == g.current_user.id)
    status = (request.args.get("status") or "").strip()
    if status:
        q = q.filter(TaskRequest.status == status)
    items = q.order_by(TaskRequest.created_at.desc(), TaskRequest.id.desc()).all()
    return jsonify({"items": [task_request_json(r) for r in items]})


@bp.post("/task-requests")
@require_login
def task_requests_create():
    s = db_session()
    payload = get_payload()
    errors = validate_task_request_payload(s, payload, organization_id=current_org())
    if errors:
        return error_response("Invalid request.", errors)
    task_id = parse_int(payload.get("task_id"))
    if task_id:
        task = get_in_org_or_404(s, Task, task_id)
        if task.assigned_to_user_id != g.current_user.id:
            return error_response("You can only raise requests on tasks assigned to you.", status=403)
    req = create_task_request(s, payload, user=g.current_user)
    s.commit()
    return jsonify(task_request_json(req)), 201


@bp.post("/task-requests/<int:request_id>/respond")
@require_permission("tasks.manage")
def task_requests_respond(request_id: int):
    s = db_session()
    req = get_in_org_or_404(s, TaskRequest, request_id)
    payload = get_payload()
    decision = (payload.get("decision") or "").strip()
    if decision not in ("approved", "rejected"):
        return error_response("Decision must be 'approved' or 'rejected'.")
    try:
        respond_to_task_request(
            s,
            req,
            user=g.current_user,
            decision=decision,
            response=payload.get("response"),
        )
    except ValueError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(task_request_json(req))
