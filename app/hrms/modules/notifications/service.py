from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from flask import current_app
from sqlalchemy.orm import Session

from app.hrms.constants import HR_ROLE_KEYS
from app.hrms.models import Permission, Role, User, org_user_ids

from .models import Notification


def notify(
    s: Session,
    user_id: int | None,
    *,
    type: str,
    title: str,
    message: str,
    entity_type: str | None = None,
    entity_id: int | None = None,
) -> Notification | None:
    if not user_id:
        return None
    n = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        related_entity_type=entity_type,
        related_entity_id=entity_id,
    )
    s.add(n)
    return n


def notify_many(s: Session, user_ids: Iterable[int | None], **kwargs) -> list[Notification]:
    out: list[Notification] = []
    for uid in dict.fromkeys(u for u in user_ids if u):
        n = notify(s, uid, **kwargs)
        if n is not None:
            out.append(n)
    return out


def users_with_permission(s: Session, permission_key: str, *, organization_id: str | None = None) -> list[User]:
    return (
        s.query(User)
        .join(User.roles)
        .join(Role.permissions)
        .filter(
            Permission.key == permission_key,
            User.is_active.is_(True),
            User.id.in_(org_user_ids(organization_id)),
        )
        .distinct()
        .order_by(User.id)
        .all()
    )


def hr_admins(s: Session, *, organization_id: str | None = None) -> list[User]:
    """Active HR users of one organisation (the host organisation by default)."""
    return (
        s.query(User)
        .join(User.roles)
        .filter(Role.key.in_(HR_ROLE_KEYS), User.is_active.is_(True), User.id.in_(org_user_ids(organization_id)))
        .distinct()
        .order_by(User.id)
        .all()
    )


def hr_admin_emails(s: Session, *, organization_id: str | None = None) -> list[str]:
    emails = [u.email for u in hr_admins(s, organization_id=organization_id)]
    # the configured HR mailbox belongs to the host organisation
    extra = (current_app.config.get("HR_NOTIFICATION_EMAIL") or "").strip() if organization_id is None else ""
    if extra and extra not in emails:
        emails.append(extra)
    return emails


def list_for_user(s: Session, user: User, *, unread_only: bool = False, limit: int = 100) -> list[Notification]:
    q = s.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def unread_count(s: Session, user: User) -> int:
    return s.query(Notification).filter(Notification.user_id == user.id, Notification.is_read.is_(False)).count()


def mark_read(n: Notification) -> None:
    if not n.is_read:
        n.is_read = True
        n.read_at = datetime.utcnow()


def mark_all_read(s: Session, user: User) -> int:
    now = datetime.utcnow()
    count = 0
    for n in s.query(Notification).filter(Notification.user_id == user.id, Notification.is_read.is_(False)).all():
        n.is_read = True
        n.read_at = now
        count += 1
    return count
