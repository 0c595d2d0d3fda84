from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.hrms.audit import record_event
from app.hrms.models import User
from app.hrms.tenancy import org_user
from app.hrms.utils import clean, parse_int

from app.hrms.modules.notifications.service import notify

from .models import Recognition

RECOGNITION_TYPES = ("employee_of_month", "achievement", "milestone")


def validate_nomination_payload(s: Session, payload: dict[str, Any], *, user: User) -> list[str]:
    errors: list[str] = []
    nominee_id = parse_int(payload.get("nominee_user_id"))
    if not nominee_id:
        errors.append("Nominee is required.")
    elif org_user(s, nominee_id, user.organization_id) is None:
        errors.append("Nominee not found.")
    elif nominee_id == user.id:
        errors.append("You cannot nominate yourself.")
    if not clean(payload.get("title")):
        errors.append("Title is required.")
    if not clean(payload.get("description")):
        errors.append("Description is required.")
    if clean(payload.get("type")) not in RECOGNITION_TYPES:
        errors.append(f"Type must be one of: {', '.join(RECOGNITION_TYPES)}.")
    return errors


def nominate(s: Session, payload: dict[str, Any], *, user: User) -> Recognition:
    rec = Recognition(
        nominee_user_id=parse_int(payload.get("nominee_user_id")),
        nominated_by_user_id=user.id,
        title=clean(payload.get("title")) or "",
        description=clean(payload.get("description")) or "",
        type=clean(payload.get("type")) or "achievement",
        is_approved=False,
    )
    s.add(rec)
    s.flush()
    s.refresh(rec)
    record_event(s, actor=user, action="recognition.nominate", entity_type="Recognition", entity_id=rec.id, metadata={"nominee_user_id": rec.nominee_user_id})
    return rec


def approve(s: Session, rec: Recognition, *, user: User) -> Recognition:
    if rec.is_approved:
        raise ValueError("Recognition is already approved.")
    now = datetime.utcnow()
    rec.is_approved = True
    rec.approver = user
    rec.approved_at = now
    rec.updated_at = now
    notify(
        s,
        rec.nominee_user_id,
        type="recognition",
        title="You have been recognised",
        message=rec.title,
        entity_type="Recognition",
        entity_id=rec.id,
    )
    record_event(s, actor=user, action="recognition.approve", entity_type="Recognition", entity_id=rec.id)
    return rec


def delete(s: Session, rec: Recognition, *, user: User) -> None:
    record_event(s, actor=user, action="recognition.delete", entity_type="Recognition", entity_id=rec.id, metadata={"title": rec.title})
    s.delete(rec)


def list_recognitions(s: Session, *, include_pending: bool, organization_id: str | None = None) -> list[Recognition]:
    q = s.query(Recognition).filter(Recognition.in_org(organization_id))
    if not include_pending:
        q = q.filter(Recognition.is_approved.is_(True))
    return q.order_by(Recognition.created_at.desc(), Recognition.id.desc()).all()
