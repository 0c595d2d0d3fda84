"""
Projects service layer.
Projects, membership, project tasks, progress, and the start/overdue sweeps.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.hrms.audit import record_event
from app.hrms.db import reload_relationships
from app.hrms.models import User
from app.hrms.tenancy import org_user
from app.hrms.utils import clean, parse_date, parse_datetime, parse_decimal, parse_int, round_half_up

from app.hrms.modules.notifications.service import notify, notify_many

from .models import Project, ProjectMember, ProjectTask

logger = logging.getLogger(__name__)

PROJECT_STATUSES = ("planning", "active", "on_hold", "completed", "cancelled")
TASK_STATUSES = ("pending", "in_progress", "completed", "overdue")
PRIORITIES = ("low", "medium", "high", "urgent")


class ProjectError(ValueError):
    pass


def validate_project_payload(
    s: Session,
    payload: dict[str, Any],
    *,
    creating: bool,
    organization_id: str | None = None,
) -> list[str]:
    errors: list[str] = []
    if creating or "name" in payload:
        if not clean(payload.get("name")):
            errors.append("Project name is required.")
    status = clean(payload.get("status"))
    if status and status not in PROJECT_STATUSES:
        errors.append(f"Status must be one of: {', '.join(PROJECT_STATUSES)}.")
    priority = clean(payload.get("priority"))
    if priority and priority not in PRIORITIES:
        errors.append(f"Priority must be one of: {', '.join(PRIORITIES)}.")
    manager_id = parse_int(payload.get("manager_user_id"))
    if manager_id and org_user(s, manager_id, organization_id) is None:
        errors.append("Manager not found.")

    start = end = None
    try:
        start = parse_date(payload.get("start_date"))
    except ValueError:
        errors.append("Start date must be YYYY-MM-DD.")
    try:
        end = parse_date(payload.get("end_date"))
    except ValueError:
        errors.append("End date must be YYYY-MM-DD.")
    if start and end and end < start:
        errors.append("End date cannot be before start date.")
    try:
        budget = parse_decimal(payload.get("budget"))
        if budget is not None and budget < 0:
            errors.append("Budget cannot be negative.")
    except ValueError:
        errors.append("Budget must be a number.")
    return errors


def create_project(s: Session, payload: dict[str, Any], *, user: User) -> Project:
    project = Project(
        organization_id=user.organization_id,
        name=clean(payload.get("name")) or "",
        description=clean(payload.get("description")),
        manager_user_id=parse_int(payload.get("manager_user_id")) or user.id,
        department_id=parse_int(payload.get("department_id")),
        status=clean(payload.get("status")) or "planning",
        priority=clean(payload.get("priority")) or "medium",
        start_date=parse_date(payload.get("start_date")),
        end_date=parse_date(payload.get("end_date")),
        budget=parse_decimal(payload.get("budget")),
        created_by_user_id=user.id,
    )
    s.add(project)
    s.flush()
    s.add(ProjectMember(project_id=project.id, user_id=project.manager_user_id, role="manager"))
    s.flush()
    s.refresh(project)
    record_event(s, actor=user, action="project.create", entity_type="Project", entity_id=project.id)
    return project


def update_project(s: Session, project: Project, payload: dict[str, Any], *, user: User) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for attr, parser in (
        ("name", clean),
        ("description", clean),
        ("status", clean),
        ("priority", clean),
        ("manager_user_id", parse_int),
        ("department_id", parse_int),
        ("start_date", parse_date),
        ("end_date", parse_date),
        ("budget", parse_decimal),
    ):
        if attr not in payload:
            continue
        value = parser(payload.get(attr))
        if attr in ("name", "status", "priority") and value is None:
            continue
        if getattr(project, attr) != value:
            changes[attr] = {"from": str(getattr(project, attr)), "to": str(value)}
            setattr(project, attr, value)
    if "manager_user_id" in changes:
        reload_relationships(s, project, "manager")
    if changes:
        project.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="project.update", entity_type="Project", entity_id=project.id, metadata={"changes": changes})
    return changes


def is_member(project: Project, user_id: int) -> bool:
    return project.manager_user_id == user_id or any(m.user_id == user_id for m in project.members)


def add_member(s: Session, project: Project, user_id: int, *, role: str | None, user: User) -> ProjectMember:
    if org_user(s, user_id, project.organization_id) is None:
        raise ProjectError("User not found.")
    if any(m.user_id == user_id for m in project.members):
        raise ProjectError("User is already a member of this project.")
    member = ProjectMember(project=project, user_id=user_id, role=(role or "").strip() or "member")
    s.add(member)
    s.flush()
    notify(
        s,
        user_id,
        type="project_member_added",
        title="Added to project",
        message=f"You were added to '{project.name}'.",
        entity_type="Project",
        entity_id=project.id,
    )
    record_event(s, actor=user, action="project.member_add", entity_type="Project", entity_id=project.id, metadata={"user_id": user_id})
    return member


def remove_member(s: Session, project: Project, user_id: int, *, user: User) -> None:
    if user_id == project.manager_user_id:
        raise ProjectError("The project manager cannot be removed.")
    member = next((m for m in project.members if m.user_id == user_id), None)
    if member is None:
        raise ProjectError("User is not a member of this project.")
    project.members.remove(member)
    s.flush()
    record_event(s, actor=user, action="project.member_remove", entity_type="Project", entity_id=project.id, metadata={"user_id": user_id})


def validate_project_task_payload(project: Project, payload: dict[str, Any], *, creating: bool) -> list[str]:
    errors: list[str] = []
    if creating or "title" in payload:
        if not clean(payload.get("title")):
            errors.append("Title is required.")
    assignee_id = parse_int(payload.get("assigned_to_user_id"))
    if assignee_id and not is_member(project, assignee_id):
        errors.append("Assignee must be a member of the project.")
    status = clean(payload.get("status"))
    if status and status not in TASK_STATUSES:
        errors.append(f"Status must be one of: {', '.join(TASK_STATUSES)}.")
    priority = clean(payload.get("priority"))
    if priority and priority not in PRIORITIES:
        errors.append(f"Priority must be one of: {', '.join(PRIORITIES)}.")
    try:
        parse_datetime(payload.get("due_date"))
    except ValueError:
        errors.append("Due date must be an ISO date/time.")
    for field in ("estimated_hours", "actual_hours"):
        try:
            hours = parse_decimal(payload.get(field))
            if hours is not None and hours < 0:
                errors.append(f"{field.replace('_', ' ').capitalize()} cannot be negative.")
        except ValueError:
            errors.append(f"{field.replace('_', ' ').capitalize()} must be a number.")
    return errors


def create_project_task(s: Session, project: Project, payload: dict[str, Any], *, user: User) -> ProjectTask:
    task = ProjectTask(
        project=project,
        title=clean(payload.get("title")) or "",
        description=clean(payload.get("description")),
        assigned_to_user_id=parse_int(payload.get("assigned_to_user_id")),
        status="pending",
        priority=clean(payload.get("priority")) or "medium",
        due_date=parse_datetime(payload.get("due_date")),
        estimated_hours=parse_decimal(payload.get("estimated_hours")),
    )
    s.add(task)
    s.flush()
    notify(
        s,
        task.assigned_to_user_id,
        type="project_task_assigned",
        title="New project task",
        message=f"{project.name}: {task.title}",
        entity_type="ProjectTask",
        entity_id=task.id,
    )
    record_event(s, actor=user, action="project_task.create", entity_type="ProjectTask", entity_id=task.id, metadata={"project_id": project.id})
    return task


def update_project_task(s: Session, task: ProjectTask, payload: dict[str, Any], *, user: User) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for attr, parser in (
        ("title", clean),
        ("description", clean),
        ("assigned_to_user_id", parse_int),
        ("status", clean),
        ("priority", clean),
        ("due_date", parse_datetime),
        ("estimated_hours", parse_decimal),
        ("actual_hours", parse_decimal),
        ("overdue_explanation", clean),
    ):
        if attr not in payload:
            continue
        value = parser(payload.get(attr))
        if attr in ("title", "status", "priority") and value is None:
            continue
        if getattr(task, attr) != value:
            changes[attr] = {"from": str(getattr(task, attr)), "to": str(value)}
            setattr(task, attr, value)
    if "assigned_to_user_id" in changes:
        reload_relationships(s, task, "assignee")

    now = datetime.utcnow()
    if "status" in changes:
        task.completed_at = now if task.status == "completed" else None
    if "due_date" in changes:
        task.overdue_notification_sent = False
        if task.status == "overdue" and task.due_date and task.due_date > now:
            task.status = "in_progress"
    if changes:
        task.updated_at = now
        record_event(s, actor=user, action="project_task.update", entity_type="ProjectTask", entity_id=task.id, metadata={"changes": changes})
    return changes


def extend_project_task(s: Session, task: ProjectTask, *, days: int, reason: str | None, user: User) -> ProjectTask:
    if days < 1:
        raise ProjectError("Extension must be at least one day.")
    if task.status == "completed":
        raise ProjectError("Completed tasks cannot be extended.")
    now = datetime.utcnow()
    task.due_date = (task.due_date or now) + timedelta(days=days)
    task.extension_days = (task.extension_days or 0) + days
    task.extension_reason = (reason or "").strip() or None
    task.overdue_notification_sent = False
    if task.status == "overdue":
        task.status = "in_progress"
    task.updated_at = now
    record_event(
        s,
        actor=user,
        action="project_task.extend",
        entity_type="ProjectTask",
        entity_id=task.id,
        reason=task.extension_reason,
        metadata={"days": days, "new_due_date": task.due_date},
    )
    return task


def project_progress(project: Project) -> int:
    """Completed tasks as a whole percentage of all tasks (0 when there are none)."""
    total = len(project.tasks)
    if total == 0:
        return 0
    done = sum(1 for t in project.tasks if t.status == "completed")
    return round_half_up(done * 100 / total)


def list_projects(
    s: Session,
    *,
    user: User,
    organization_id: str | None = None,
    include_all: bool = False,
    status: str | None = None,
) -> list[Project]:
    q = s.query(Project).filter(Project.in_org(organization_id))
    if not include_all:
        member_ids = s.query(ProjectMember.project_id).filter(ProjectMember.user_id == user.id)
        q = q.filter(or_(Project.manager_user_id == user.id, Project.id.in_(member_ids)))
    if status:
        q = q.filter(Project.status == status)
    return q.order_by(Project.created_at.desc(), Project.id.desc()).all()


# --- sweeps ------------------------------------------------------------------


def start_due_projects(s: Session, *, today: date | None = None) -> list[Project]:
    """Planning projects whose start date has arrived become active."""
    today = today or datetime.utcnow().date()
    projects = (
        s.query(Project)
        .filter(Project.status == "planning", Project.start_date.is_not(None), Project.start_date <= today)
        .all()
    )
    for project in projects:
        project.status = "active"
        project.updated_at = datetime.utcnow()
        notify(
            s,
            project.manager_user_id,
            type="project_started",
            title="Project started",
            message=f"'{project.name}' is now active.",
            entity_type="Project",
            entity_id=project.id,
        )
        record_event(s, actor=None, action="project.auto_start", entity_type="Project", entity_id=project.id)
    s.flush()
    if projects:
        logger.info("Started %d project(s)", len(projects))
    return projects


def mark_overdue_project_tasks(s: Session, *, now: datetime | None = None) -> list[ProjectTask]:
    """Flag unfinished project tasks past due. Each task is notified at most once."""
    now = now or datetime.utcnow()
    tasks = (
        s.query(ProjectTask)
        .filter(
            ProjectTask.status.in_(("pending", "in_progress")),
            ProjectTask.due_date.is_not(None),
            ProjectTask.due_date < now,
            ProjectTask.overdue_notification_sent.is_(False),
        )
        .all()
    )
    for task in tasks:
        task.status = "overdue"
        task.overdue_notification_sent = True
        task.updated_at = now
        notify_many(
            s,
            [task.assigned_to_user_id, task.project.manager_user_id],
            type="project_task_overdue",
            title="Project task overdue",
            message=f"{task.project.name}: '{task.title}' is past its due date. Please add an explanation.",
            entity_type="ProjectTask",
            entity_id=task.id,
        )
        record_event(s, actor=None, action="project_task.overdue", entity_type="ProjectTask", entity_id=task.id)
    s.flush()
    if tasks:
        logger.info("Marked %d project task(s) overdue", len(tasks))
    return tasks
