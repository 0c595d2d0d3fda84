from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy import or_
from werkzeug.security import check_password_hash, generate_password_hash

from app.hrms.audit import record_event
from app.hrms.db import db_session
from app.hrms.models import User
from app.hrms.rbac import require_login, user_permission_keys
from app.hrms.security import ensure_csrf_token
from app.hrms.utils import error_response, get_payload, iso, user_summary

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
MIN_PASSWORD_LENGTH = 8


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def reset_login_attempts() -> None:
    _login_attempts.clear()


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    s = db_session()
    user = s.get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


def current_user_json(user: User) -> dict:
    data = user_summary(user) or {}
    data.update(
        {
            "status": user.status,
            "roles": user.role_keys,
            "permissions": user_permission_keys(user),
            "organization_id": user.organization_id,
            "subscription_plan": user.subscription_plan,
            "subscription_status": user.subscription_status,
            "trial_end_date": iso(user.trial_end_date),
            "contract_signed": user.contract_signed,
        }
    )
    return data


@bp.post("/login")
def login():
    payload = get_payload()
    identifier = (payload.get("email") or payload.get("username") or "").strip().lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return error_response("Too many login attempts. Please wait 5 minutes.", status=429)

    _record_attempt(ip)

    try:
        s = db_session()
        user = (
            s.query(User)
            .filter(or_(User.email == identifier, User.username == identifier))
            .one_or_none()
        )
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=identifier,
                reason="Invalid credentials",
                metadata={"identifier": identifier},
            )
            s.commit()
            return error_response("Invalid credentials.", status=401)

        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        _login_attempts[ip].clear()
        user.last_login_at = datetime.utcnow()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=user.id)
        s.commit()
        return jsonify({"user": current_user_json(user), "csrf_token": ensure_csrf_token()})
    except Exception:
        current_app.logger.exception("Login crashed (identifier=%s request_id=%s)", identifier, getattr(g, "request_id", None))
        raise


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=user.id)
        s.commit()
    session.clear()
    return jsonify({"ok": True})


@bp.get("/me")
@require_login
def me():
    return jsonify({"user": current_user_json(g.current_user), "csrf_token": ensure_csrf_token()})


@bp.get("/csrf")
def csrf():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.post("/change-password")
@require_login
def change_password():
    payload = get_payload()
    current = payload.get("current_password") or ""
    new = payload.get("new_password") or ""
    user: User = g.current_user
    if not check_password_hash(user.password_hash, current):
        return error_response("Current password is incorrect.", status=400)
    if len(new) < MIN_PASSWORD_LENGTH:
        return error_response(f"New password must be at least {MIN_PASSWORD_LENGTH} characters.")
    s = db_session()
    user.password_hash = generate_password_hash(new)
    record_event(s, actor=user, action="auth.password_change", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify({"ok": True})
