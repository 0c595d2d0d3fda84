from __future__ import annotations

from flask import Blueprint, abort, g, jsonify, request

from app.hrms.db import db_session, get_or_404
from app.hrms.rbac import require_login
from app.hrms.utils import iso, parse_bool

from .models import Notification
from .service import list_for_user, mark_all_read, mark_read, unread_count

bp = Blueprint("notifications", __name__)


def notification_json(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "related_entity_type": n.related_entity_type,
        "related_entity_id": n.related_entity_id,
        "is_read": n.is_read,
        "read_at": iso(n.read_at),
        "created_at": iso(n.created_at),
    }


@bp.get("/notifications")
@require_login
def notifications_list():
    s = db_session()
    items = list_for_user(s, g.current_user, unread_only=parse_bool(request.args.get("unread")))
    return jsonify({"items": [notification_json(n) for n in items], "unread": unread_count(s, g.current_user)})


@bp.post("/notifications/<int:notification_id>/read")
@require_login
def notifications_mark_read(notification_id: int):
    s = db_session()
    n = get_or_404(s, Notification, notification_id)
    if n.user_id != g.current_user.id:
        abort(404)
    mark_read(n)
    s.commit()
    return jsonify(notification_json(n))


@bp.post("/notifications/read-all")
@require_login
def notifications_mark_all_read():
    s = db_session()
    count = mark_all_read(s, g.current_user)
    s.commit()
    return jsonify({"updated": count})
