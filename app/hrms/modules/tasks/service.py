"""
Tasks service layer.
Task CRUD and status transitions, daily updates, task requests and the overdue sweep.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.hrms.audit import record_event
from app.hrms.db import reload_relationships
from app.hrms.models import User
from app.hrms.tenancy import org_user
from app.hrms.utils import clean, parse_datetime, parse_decimal, parse_int

from app.hrms.modules.notifications.service import hr_admins, notify_many

from .models import Task, TaskRequest, TaskUpdate

logger = logging.getLogger(__name__)

TASK_STATUSES = ("pending", "in_progress", "completed", "overdue")
PRIORITIES = ("low", "medium", "high", "urgent")
REQUEST_TYPES = ("time_extension", "document_request", "help_request", "clarification")

# "overdue" is only ever entered by the sweep
STATUS_TRANSITIONS = {
    "pending": {"in_progress", "completed"},
    "in_progress": {"pending", "completed"},
    "overdue": {"in_progress", "completed"},
    "completed": {"in_progress"},
}


def validate_task_payload(
    s: Session,
    payload: dict[str, Any],
    *,
    creating: bool,
    organization_id: str | None = None,
) -> list[str]:
    errors: list[str] = []
    if creating or "title" in payload:
        if not clean(payload.get("title")):
            errors.append("Title is required.")
    if creating or "assigned_to_user_id" in payload:
        assignee_id = parse_int(payload.get("assigned_to_user_id"))
        if not assignee_id:
            errors.append("Assignee is required.")
        elif org_user(s, assignee_id, organization_id) is None:
            errors.append("Assignee not found.")
    priority = clean(payload.get("priority"))
    if priority and priority not in PRIORITIES:
        errors.append(f"Priority must be one of: {', '.join(PRIORITIES)}.")
    try:
        parse_datetime(payload.get("due_date"))
    except ValueError:
        errors.append("Due date must be an ISO date/time.")
    return errors


def create_task(s: Session, payload: dict[str, Any], *, user: User) -> Task:
    task = Task(
        title=clean(payload.get("title")) or "",
        description=clean(payload.get("description")),
        assigned_to_user_id=parse_int(payload.get("assigned_to_user_id")),
        assigned_by_user_id=user.id,
        priority=clean(payload.get("priority")) or "medium",
        status="pending",
        due_date=parse_datetime(payload.get("due_date")),
    )
    s.add(task)
    s.flush()
    s.refresh(task)
    notify_many(
        s,
        [task.assigned_to_user_id],
        type="task_assigned",
        title="New task assigned",
        message=task.title,
        entity_type="Task",
        entity_id=task.id,
    )
    record_event(
        s,
        actor=user,
        action="task.create",
        entity_type="Task",
        entity_id=task.id,
        metadata={"assigned_to_user_id": task.assigned_to_user_id, "priority": task.priority},
    )
    return task


def update_task(s: Session, task: Task, payload: dict[str, Any], *, user: User) -> Task:
    changes: dict[str, Any] = {}
    for attr, parser in (
        ("title", clean),
        ("description", clean),
        ("priority", clean),
        ("due_date", parse_datetime),
        ("assigned_to_user_id", parse_int),
    ):
        if attr not in payload:
            continue
        value = parser(payload.get(attr))
        if attr in ("title", "priority", "assigned_to_user_id") and value is None:
            continue
        if getattr(task, attr) != value:
            changes[attr] = {"from": str(getattr(task, attr)), "to": str(value)}
            setattr(task, attr, value)
    if "assigned_to_user_id" in changes:
        reload_relationships(s, task, "assignee")
    if "due_date" in changes:
        task.overdue_notified_at = None
        if task.status == "overdue" and task.due_date and task.due_date > datetime.utcnow():
            task.status = "in_progress"
    task.updated_at = datetime.utcnow()
    if changes:
        record_event(s, actor=user, action="task.update", entity_type="Task", entity_id=task.id, metadata={"changes": changes})
    return task


def can_transition_to(task: Task, new_status: str) -> tuple[bool, list[str]]:
    errors: list[str] = []
    if new_status not in TASK_STATUSES:
        errors.append(f"Unknown status '{new_status}'")
        return False, errors
    if new_status not in STATUS_TRANSITIONS.get(task.status, set()):
        errors.append(f"Cannot transition from '{task.status}' to '{new_status}'")
        return False, errors
    return True, []


def change_status(s: Session, task: Task, new_status: str, *, user: User) -> Task:
    ok, errors = can_transition_to(task, new_status)
    if not ok:
        raise ValueError("; ".join(errors))
    old = task.status
    task.status = new_status
    now = datetime.utcnow()
    task.completed_at = now if new_status == "completed" else None
    task.updated_at = now
    if new_status == "completed" and task.assigned_by_user_id and task.assigned_by_user_id != user.id:
        notify_many(
            s,
            [task.assigned_by_user_id],
            type="task_completed",
            title="Task completed",
            message=f"{user.full_name} completed: {task.title}",
            entity_type="Task",
            entity_id=task.id,
        )
    record_event(
        s,
        actor=user,
        action="task.status_change",
        entity_type="Task",
        entity_id=task.id,
        metadata={"from": old, "to": new_status},
    )
    return task


def validate_update_payload(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not clean(payload.get("update_text")):
        errors.append("Update text is required.")
    progress = parse_int(payload.get("progress_percentage"), 0)
    if progress is None or not 0 <= progress <= 100:
        errors.append("Progress must be between 0 and 100.")
    try:
        hours = parse_decimal(payload.get("hours_worked"))
        if hours is not None and (hours < 0 or hours > 24):
            errors.append("Hours worked must be between 0 and 24.")
    except ValueError:
        errors.append("Hours worked must be a number.")
    return errors


def add_update(s: Session, task: Task, payload: dict[str, Any], *, user: User) -> TaskUpdate:
    upd = TaskUpdate(
        task=task,
        user_id=user.id,
        update_text=clean(payload.get("update_text")) or "",
        progress_percentage=parse_int(payload.get("progress_percentage"), 0) or 0,
        hours_worked=parse_decimal(payload.get("hours_worked")),
    )
    s.add(upd)
    if task.status == "pending":
        task.status = "in_progress"
    task.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="task.update_log",
        entity_type="Task",
        entity_id=task.id,
        metadata={"progress_percentage": upd.progress_percentage},
    )
    return upd


def list_tasks(
    s: Session,
    *,
    user: User,
    organization_id: str | None = None,
    include_all: bool = False,
    status: str | None = None,
    assignee_id: int | None = None,
) -> list[Task]:
    q = s.query(Task).filter(Task.in_org(organization_id))
    if not include_all:
        q = q.filter(or_(Task.assigned_to_user_id == user.id, Task.assigned_by_user_id == user.id))
    if status:
        q = q.filter(Task.status == status)
    if assignee_id:
        q = q.filter(Task.assigned_to_user_id == assignee_id)
    return q.order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.id.desc()).all()


# --- task requests -----------------------------------------------------------


def validate_task_request_payload(s: Session, payload: dict[str, Any], *, organization_id: str | None = None) -> list[str]:
    errors: list[str] = []
    request_type = clean(payload.get("request_type"))
    if request_type not in REQUEST_TYPES:
        errors.append(f"Request type must be one of: {', '.join(REQUEST_TYPES)}.")
    if not clean(payload.get("subject")):
        errors.append("Subject is required.")
    if not clean(payload.get("description")):
        errors.append("Description is required.")
    task_id = parse_int(payload.get("task_id"))
    if payload.get("task_id") not in (None, "") and (
        task_id is None or s.query(Task.id).filter(Task.id == task_id, Task.in_org(organization_id)).first() is None
    ):
        errors.append("Task not found.")
    if request_type == "time_extension":
        if not task_id:
            errors.append("A time extension must reference a task.")
        days = parse_int(payload.get("requested_extension_days"))
        if not days or days < 1:
            errors.append("Requested extension must be at least one day.")
    return errors


def create_task_request(s: Session, payload: dict[str, Any], *, user: User) -> TaskRequest:
    req = TaskRequest(
        task_id=parse_int(payload.get("task_id")),
        requester_user_id=user.id,
        request_type=clean(payload.get("request_type")) or "",
        subject=clean(payload.get("subject")) or "",
        description=clean(payload.get("description")) or "",
        requested_extension_days=parse_int(payload.get("requested_extension_days")),
        status="pending",
    )
    s.add(req)
    s.flush()
    s.refresh(req)
    if req.task and req.task.assigned_by_user_id:
        recipients = [req.task.assigned_by_user_id]
    else:
        recipients = [u.id for u in hr_admins(s, organization_id=user.organization_id)]
    notify_many(
        s,
        recipients,
        type="task_request",
        title=f"New {req.request_type.replace('_', ' ')} request",
        message=req.subject,
        entity_type="TaskRequest",
        entity_id=req.id,
    )
    record_event(s, actor=user, action="task_request.create", entity_type="TaskRequest", entity_id=req.id, metadata={"type": req.request_type})
    return req


def respond_to_task_request(
    s: Session,
    req: TaskRequest,
    *,
    user: User,
    decision: str,
    response: str | None,
) -> TaskRequest:
    if decision not in ("approved", "rejected"):
        raise ValueError("Decision must be 'approved' or 'rejected'.")
    if req.status != "pending":
        raise ValueError(f"Request is already {req.status}.")
    now = datetime.utcnow()
    req.status = decision
    req.response = (response or "").strip() or None
    req.responder = user
    req.responded_at = now
    req.updated_at = now

    task = req.task
    if decision == "approved" and req.request_type == "time_extension" and task is not None:
        # extend from today when the task is already late
        base = max(task.due_date, now) if task.due_date else now
        task.due_date = base + timedelta(days=req.requested_extension_days or 0)
        task.overdue_notified_at = None
        if task.status == "overdue":
            task.status = "in_progress"
        task.updated_at = now

    notify_many(
        s,
        [req.requester_user_id],
        type=f"task_request_{decision}",
        title=f"Your request was {decision}",
        message=req.subject,
        entity_type="TaskRequest",
        entity_id=req.id,
    )
    record_event(
        s,
        actor=user,
        action="task_request.approve" if decision == "approved" else "task_request.reject",
        entity_type="TaskRequest",
        entity_id=req.id,
        metadata={"task_id": req.task_id, "new_due_date": task.due_date if task is not None else None},
    )
    return req


# --- overdue sweep -----------------------------------------------------------


def mark_overdue_tasks(s: Session, *, now: datetime | None = None) -> list[tuple[Task, list[str]]]:
    """
    Flip open tasks past their due date to 'overdue' and raise in-app notifications.
    Returns (task, email recipients) pairs; the caller commits before emailing.
    """
    now = now or datetime.utcnow()
    tasks = (
        s.query(Task)
        .filter(
            Task.status.in_(("pending", "in_progress")),
            Task.due_date.is_not(None),
            Task.due_date < now,
        )
        .all()
    )
    hr_by_org: dict[str | None, list[User]] = {}
    out: list[tuple[Task, list[str]]] = []
    for task in tasks:
        org = task.assignee.organization_id
        if org not in hr_by_org:
            hr_by_org[org] = hr_admins(s, organization_id=org)
        hr = hr_by_org[org]
        task.status = "overdue"
        task.overdue_notified_at = now
        task.updated_at = now
        people = [task.assignee, task.assigner, *hr]
        notify_many(
            s,
            [p.id for p in people if p is not None],
            type="task_overdue",
            title="Task overdue",
            message=f"'{task.title}' passed its due date without being completed.",
            entity_type="Task",
            entity_id=task.id,
        )
        record_event(s, actor=None, action="task.overdue", entity_type="Task", entity_id=task.id)
        out.append((task, [p.email for p in people if p is not None]))
    s.flush()
    if out:
        logger.info("Marked %d task(s) overdue", len(out))
    return out
