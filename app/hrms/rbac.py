from collections.abc import Callable
from datetime import datetime
from functools import wraps
from typing import Any

from flask import abort, g, jsonify

from app.hrms.constants import PLAN_FEATURES, TRIAL_PLAN
from app.hrms.models import User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def user_has_role(user: User | None, *role_keys: str) -> bool:
    if not user or not user.is_active:
        return False
    return any(r.key in role_keys for r in user.roles)


def user_permission_keys(user: User | None) -> list[str]:
    if not user or not user.is_active:
        return []
    return sorted({p.key for r in user.roles for p in r.permissions})


def _unauthenticated():
    return jsonify({"message": "Authentication required"}), 401


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _unauthenticated()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return _unauthenticated()
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def current_plan(user: User | None, *, now: datetime | None = None) -> str:
    """
    Effective plan for feature gating:
    host organisation -> enterprise, unexpired trial -> professional,
    active subscription -> its plan, anyone else -> starter.
    """
    if user is None:
        return "starter"
    if user.organization_id is None:
        return "enterprise"
    now = now or datetime.utcnow()
    if user.trial_end_date and now < user.trial_end_date:
        return TRIAL_PLAN
    if user.subscription_plan in PLAN_FEATURES and user.subscription_status == "active":
        return user.subscription_plan
    return "starter"


def user_has_feature(user: User | None, feature: str) -> bool:
    return feature in PLAN_FEATURES[current_plan(user)]


def required_plan(feature: str) -> str:
    for plan, features in PLAN_FEATURES.items():
        if feature in features:
            return plan
    return "enterprise"


def require_feature(feature: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return _unauthenticated()
            if not user_has_feature(user, feature):
                return (
                    jsonify(
                        {
                            "message": f"Feature '{feature}' is not available in your current plan",
                            "current_plan": current_plan(user),
                            "required_plan": required_plan(feature),
                        }
                    ),
                    403,
                )
            return fn(*args, **kwargs)

        return wrapped

    return decorator
