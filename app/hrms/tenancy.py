"""
Organisation isolation for request handlers.

Host staff have no organisation id; every trial or customer account carries its own.
A record is visible only inside the organisation that owns it, through the model's `in_org`
clause (a stored organisation id, the owning user, or the parent record).
"""

from typing import Any, TypeVar

from flask import abort, g
from sqlalchemy.orm import Session

from app.hrms.models import User

T = TypeVar("T")


def current_org() -> str | None:
    user: User | None = getattr(g, "current_user", None)
    return user.organization_id if user is not None else None


def get_in_org_or_404(s: Session, model: type[T], ident: Any) -> T:
    """Like get_or_404, but records owned by another organisation are reported as missing."""
    obj = s.get(model, ident)
    if obj is None:
        abort(404)
    found = s.query(model.id).filter(model.id == obj.id, model.in_org(current_org())).first()  # type: ignore[attr-defined]
    if found is None:
        abort(404)
    return obj


def org_user(s: Session, user_id: int | None, organization_id: str | None) -> User | None:
    """The user with this id, if they belong to the organisation."""
    if not user_id:
        return None
    user = s.get(User, user_id)
    if user is None or user.organization_id != organization_id:
        return None
    return user
