from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.hrms.db import db_session
from app.hrms.emails import send_project_started
from app.hrms.rbac import require_feature, require_permission, user_has_permission
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, parse_int, user_summary

from .models import Project, ProjectTask
from .service import (
    ProjectError,
    add_member,
    create_project,
    create_project_task,
    extend_project_task,
    is_member,
    list_projects,
    project_progress,
    remove_member,
    update_project,
    update_project_task,
    validate_project_payload,
    validate_project_task_payload,
)

bp = Blueprint("projects", __name__)


def project_task_json(t: ProjectTask) -> dict:
    return {
        "id": t.id,
        "project_id": t.project_id,
        "title": t.title,
        "description": t.description,
        "assigned_to": user_summary(t.assignee),
        "status": t.status,
        "priority": t.priority,
        "due_date": iso(t.due_date),
        "estimated_hours": iso(t.estimated_hours),
        "actual_hours": iso(t.actual_hours),
        "completed_at": iso(t.completed_at),
        "overdue_explanation": t.overdue_explanation,
        "extension_days": t.extension_days,
        "extension_reason": t.extension_reason,
    }


def project_json(p: Project, *, detail: bool = False) -> dict:
    data = {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "manager": user_summary(p.manager),
        "department_id": p.department_id,
        "status": p.status,
        "priority": p.priority,
        "start_date": iso(p.start_date),
        "end_date": iso(p.end_date),
        "budget": iso(p.budget),
        "progress": project_progress(p),
        "member_count": len(p.members),
        "task_count": len(p.tasks),
        "created_at": iso(p.created_at),
    }
    if detail:
        data["members"] = [
            {"user": user_summary(m.user), "role": m.role, "joined_at": iso(m.joined_at)} for m in p.members
        ]
        data["tasks"] = [project_task_json(t) for t in p.tasks]
    return data


def _visible_project_or_404(s, project_id: int) -> Project:
    project = get_in_org_or_404(s, Project, project_id)
    if not (is_member(project, g.current_user.id) or user_has_permission(g.current_user, "projects.manage")):
        abort(404)
    return project


def _require_manager(project: Project) -> None:
    if project.manager_user_id != g.current_user.id and not user_has_permission(g.current_user, "projects.manage"):
        g.missing_permission = "projects.manage"
        abort(403)


def _task_or_404(project: Project, task_id: int) -> ProjectTask:
    task = next((t for t in project.tasks if t.id == task_id), None)
    if task is None:
        abort(404)
    return task


@bp.get("/projects")
@require_permission("projects.view")
@require_feature("project_management")
def projects_list():
    s = db_session()
    include_all = user_has_permission(g.current_user, "projects.manage")
    status = (request.args.get("status") or "").strip() or None
    items = list_projects(s, user=g.current_user, organization_id=current_org(), include_all=include_all, status=status)
    return jsonify({"items": [project_json(p) for p in items]})


@bp.post("/projects")
@require_permission("projects.manage")
@require_feature("project_management")
def projects_create():
    s = db_session()
    payload = get_payload()
    errors = validate_project_payload(s, payload, creating=True, organization_id=current_org())
    if errors:
        return error_response("Invalid project.", errors)
    project = create_project(s, payload, user=g.current_user)
    s.commit()
    if project.status == "active":
        send_project_started(project)
    return jsonify(project_json(project, detail=True)), 201


@bp.get("/projects/<int:project_id>")
@require_permission("projects.view")
@require_feature("project_management")
def projects_detail(project_id: int):
    s = db_session()
    project = _visible_project_or_404(s, project_id)
    return jsonify(project_json(project, detail=True))


@bp.patch("/projects/<int:project_id>")
@require_permission("projects.view")
@require_feature("project_management")
def projects_update(project_id: int):
    s = db_session()
    project = _visible_project_or_404(s, project_id)
    _require_manager(project)
    payload = get_payload()
    errors = validate_project_payload(s, payload, creating=False, organization_id=current_org())
    if errors:
        return error_response("Invalid project.", errors)
    changes = update_project(s, project, payload, user=g.current_user)
    s.commit()
    if changes.get("status", {}).get("to") == "active":
        send_project_started(project)
    return jsonify(project_json(project, detail=True))


@bp.post("/projects/<int:project_id>/members")
@require_permission("projects.view")
@require_feature("project_management")
def projects_add_member(project_id: int):
    s = db_session()
    project = _visible_project_or_404(s, project_id)
    _require_manager(project)
    payload = get_payload()
    user_id = parse_int(payload.get("user_id"))
    if not user_id:
        return error_response("user_id is required.")
    try:
        add_member(s, project, user_id, role=payload.get("role"), user=g.current_user)
    except ProjectError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(project_json(project, detail=True)), 201


@bp.delete("/projects/<int:project_id>/members/<int:user_id>")
@require_permission("projects.view")
@require_feature("project_management")
def projects_remove_member(project_id: int, user_id: int):
    s = db_session()
    project = _visible_project_or_404(s, project_id)
    _require_manager(project)
    try:
        remove_member(s, project, user_id, user=g.current_user)
    except ProjectError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(project_json(project, detail=True))


@bp.post("/projects/<int:project_id>/tasks")
@require_permission("projects.view")
@require_feature("project_management")
def projects_task_create(project_id: int):
    s = db_session()
    project = _visible_project_or_404(s, project_id)
    _require_manager(project)
    payload = get_payload()
    errors = validate_project_task_payload(project, payload, creating=True)
    if errors:
        return error_response("Invalid project task.", errors)
    task = create_project_task(s, project, payload, user=g.current_user)
    s.commit()
    return jsonify(project_task_json(task)), 201


@bp.patch("/projects/<int:project_id>/tasks/<int:task_id>")
@require_permission("projects.view")
@require_feature("project_management")
def projects_task_update(project_id: int, task_id: int):
    s = db_session()
    project = _visible_project_or_404(s, project_id)
    task = _task_or_404(project, task_id)
    if task.assigned_to_user_id != g.current_user.id:
        _require_manager(project)
    payload = get_payload()
    errors = validate_project_task_payload(project, payload, creating=False)
    if errors:
        return error_response("Invalid project task.", errors)
    update_project_task(s, task, payload, user=g.current_user)
    s.commit()
    return jsonify(project_task_json(task))


@bp.post("/projects/<int:project_id>/tasks/<int:task_id>/extend")
@require_permission("projects.view")
@require_feature("project_management")
def projects_task_extend(project_id: int, task_id: int):
    s = db_session()
    project = _visible_project_or_404(s, project_id)
    task = _task_or_404(project, task_id)
    _require_manager(project)
    payload = get_payload()
    days = parse_int(payload.get("days"))
    if not days:
        return error_response("days is required.")
    try:
        extend_project_task(s, task, days=days, reason=payload.get("reason"), user=g.current_user)
    except ProjectError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(project_task_json(task))
