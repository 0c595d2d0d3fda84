from flask import Blueprint, abort, g, jsonify, request
from werkzeug.security import generate_password_hash

from app.hrms.audit import event_metadata, query_events, record_event
from app.hrms.auth import current_user_json
from app.hrms.db import db_session
from app.hrms.models import AuditEvent, Role, User, org_user_ids
from app.hrms.rbac import require_permission
from app.hrms.tenancy import current_org, org_user
from app.hrms.utils import error_response, get_payload, iso, parse_bool, parse_date, parse_int

bp = Blueprint("admin", __name__)


def audit_event_json(ev: AuditEvent) -> dict:
    return {
        "id": ev.id,
        "created_at": iso(ev.created_at),
        "request_id": ev.request_id,
        "actor_user_id": ev.actor_user_id,
        "actor_user_email": ev.actor_user_email,
        "client_ip": ev.client_ip,
        "action": ev.action,
        "entity_type": ev.entity_type,
        "entity_id": ev.entity_id,
        "reason": ev.reason,
        "metadata": event_metadata(ev),
    }


def account_json(user: User) -> dict:
    data = current_user_json(user)
    data.update({"is_active": user.is_active, "last_login_at": iso(user.last_login_at), "created_at": iso(user.created_at)})
    return data


def account_or_404(s, user_id: int) -> User:
    user = org_user(s, user_id, current_org())
    if user is None:
        abort(404)
    return user


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """Last 200 events, filterable by action, actor email, entity and date range (YYYY-MM-DD)."""
    s = db_session()
    try:
        date_from = parse_date(request.args.get("date_from"))
        date_to = parse_date(request.args.get("date_to"))
    except ValueError:
        return error_response("date_from and date_to must be YYYY-MM-DD.")
    events = query_events(
        s,
        action=(request.args.get("action") or "").strip() or None,
        actor_email=(request.args.get("actor_email") or "").strip() or None,
        entity_type=(request.args.get("entity_type") or "").strip() or None,
        entity_id=(request.args.get("entity_id") or "").strip() or None,
        date_from=date_from,
        date_to=date_to,
        limit=min(parse_int(request.args.get("limit"), 200) or 200, 500),
    )
    return jsonify({"items": [audit_event_json(ev) for ev in events]})


@bp.get("/roles")
@require_permission("users.manage")
def roles_list():
    s = db_session()
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return jsonify({"items": [{"key": r.key, "name": r.name, "permissions": sorted(p.key for p in r.permissions)} for r in roles]})


@bp.get("/users")
@require_permission("users.manage")
def users_list():
    s = db_session()
    users = s.query(User).filter(User.id.in_(org_user_ids(current_org()))).order_by(User.email.asc()).all()
    return jsonify({"items": [account_json(u) for u in users]})


@bp.get("/users/<int:user_id>")
@require_permission("users.manage")
def users_detail(user_id: int):
    s = db_session()
    return jsonify(account_json(account_or_404(s, user_id)))


@bp.put("/users/<int:user_id>")
@require_permission("users.manage")
def users_update(user_id: int):
    s = db_session()
    user = account_or_404(s, user_id)
    if user.id == g.current_user.id:
        return error_response("You cannot modify your own account here.", status=409)

    payload = get_payload()
    before = {"is_active": user.is_active, "roles": user.role_keys}

    if "roles" in payload:
        keys = payload.get("roles")
        if not isinstance(keys, list):
            return error_response("Roles must be a list of role keys.")
        roles = s.query(Role).filter(Role.key.in_([str(k) for k in keys])).all()
        unknown = sorted(set(str(k) for k in keys) - {r.key for r in roles})
        if unknown:
            return error_response("Unknown role(s).", unknown)
        user.roles.clear()
        user.roles.extend(roles)
    if "is_active" in payload:
        user.is_active = parse_bool(payload.get("is_active"))

    after = {"is_active": user.is_active, "roles": user.role_keys}
    if after != before:
        record_event(
            s,
            actor=g.current_user,
            action="user.update",
            entity_type="User",
            entity_id=user.id,
            metadata={"before": before, "after": after},
        )
    s.commit()
    return jsonify(account_json(user))


@bp.post("/users/<int:user_id>/reset-password")
@require_permission("users.manage")
def users_reset_password(user_id: int):
    s = db_session()
    user = account_or_404(s, user_id)
    payload = get_payload()
    password = payload.get("password") or ""
    if len(password) < 8:
        return error_response("Password must be at least 8 characters.")
    if password != (payload.get("password_confirm") or ""):
        return error_response("Passwords do not match.")

    user.password_hash = generate_password_hash(password)
    record_event(
        s,
        actor=g.current_user,
        action="user.password_reset",
        entity_type="User",
        entity_id=user.id,
        metadata={"target_email": user.email},
    )
    s.commit()
    return jsonify(account_json(user))
