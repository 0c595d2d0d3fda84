from __future__ import annotations

from flask import Blueprint, abort, g, jsonify

from app.hrms.db import db_session
from app.hrms.emails import send_recognition_approved
from app.hrms.rbac import require_feature, require_login, require_permission, user_has_permission
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, user_summary

from .models import Recognition
from .service import approve, delete, list_recognitions, nominate, validate_nomination_payload

bp = Blueprint("recognition", __name__)


def recognition_json(rec: Recognition) -> dict:
    return {
        "id": rec.id,
        "nominee": user_summary(rec.nominee),
        "nominated_by": user_summary(rec.nominator),
        "title": rec.title,
        "description": rec.description,
        "type": rec.type,
        "is_approved": rec.is_approved,
        "approved_by": user_summary(rec.approver),
        "approved_at": iso(rec.approved_at),
        "created_at": iso(rec.created_at),
    }


@bp.get("/recognition")
@require_login
@require_feature("recognition")
def recognition_list():
    s = db_session()
    items = list_recognitions(
        s,
        include_pending=user_has_permission(g.current_user, "recognition.approve"),
        organization_id=current_org(),
    )
    return jsonify({"items": [recognition_json(r) for r in items]})


@bp.post("/recognition")
@require_permission("recognition.nominate")
@require_feature("recognition")
def recognition_nominate():
    s = db_session()
    payload = get_payload()
    errors = validate_nomination_payload(s, payload, user=g.current_user)
    if errors:
        return error_response("Invalid nomination.", errors)
    rec = nominate(s, payload, user=g.current_user)
    s.commit()
    return jsonify(recognition_json(rec)), 201


@bp.post("/recognition/<int:rec_id>/approve")
@require_permission("recognition.approve")
@require_feature("recognition")
def recognition_approve(rec_id: int):
    s = db_session()
    rec = get_in_org_or_404(s, Recognition, rec_id)
    try:
        approve(s, rec, user=g.current_user)
    except ValueError as e:
        return error_response(str(e), status=409)
    s.commit()
    send_recognition_approved(rec)
    return jsonify(recognition_json(rec))


@bp.delete("/recognition/<int:rec_id>")
@require_login
@require_feature("recognition")
def recognition_delete(rec_id: int):
    s = db_session()
    rec = get_in_org_or_404(s, Recognition, rec_id)
    own_pending = rec.nominated_by_user_id == g.current_user.id and not rec.is_approved
    if not own_pending and not user_has_permission(g.current_user, "recognition.approve"):
        abort(404)
    delete(s, rec, user=g.current_user)
    s.commit()
    return jsonify({"deleted": rec_id})
