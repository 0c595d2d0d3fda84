from __future__ import annotations

from flask import Blueprint, Response, abort, current_app, g, jsonify, request

from app.hrms.db import db_session
from app.hrms.emails import send_contract_issued, send_contract_signed
from app.hrms.pdf import render_contract
from app.hrms.rbac import require_login, require_permission, user_has_permission
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, parse_int, user_summary

from app.hrms.modules.notifications.service import hr_admin_emails

from .models import EmploymentContract
from .service import (
    CONTRACT_STATUSES,
    ContractError,
    create_contract,
    decline_contract,
    is_expired,
    list_contracts,
    sign_contract,
    validate_contract_payload,
)

bp = Blueprint("contracts", __name__)


def contract_json(c: EmploymentContract) -> dict:
    return {
        "id": c.id,
        "user": user_summary(c.user),
        "position": c.position,
        "salary": iso(c.salary),
        "currency": c.currency,
        "start_date": iso(c.start_date),
        "content": c.content,
        "status": c.status,
        "expires_at": iso(c.expires_at),
        "is_expired": c.status == "pending" and is_expired(c),
        "signature": c.signature,
        "signed_at": iso(c.signed_at),
        "signed_ip": c.signed_ip,
        "declined_at": iso(c.declined_at),
        "decline_reason": c.decline_reason,
        "created_by": user_summary(c.created_by),
        "created_at": iso(c.created_at),
    }


def _load_visible(s, contract_id: int) -> EmploymentContract:
    contract = get_in_org_or_404(s, EmploymentContract, contract_id)
    if contract.user_id != g.current_user.id and not user_has_permission(g.current_user, "contracts.view"):
        abort(404)
    return contract


@bp.get("/contracts")
@require_login
def contracts_list():
    s = db_session()
    status = request.args.get("status")
    if status and status not in CONTRACT_STATUSES:
        return error_response(f"Status must be one of: {', '.join(CONTRACT_STATUSES)}.")
    include_all = request.args.get("scope") == "all" and user_has_permission(g.current_user, "contracts.view")
    contracts = list_contracts(
        s,
        user=g.current_user,
        organization_id=current_org(),
        include_all=include_all,
        status=status,
        user_id=parse_int(request.args.get("user_id")),
    )
    return jsonify({"items": [contract_json(c) for c in contracts]})


@bp.post("/contracts")
@require_permission("contracts.manage")
def contracts_create():
    s = db_session()
    payload = get_payload()
    errors = validate_contract_payload(s, payload, organization_id=current_org())
    if errors:
        return error_response("Invalid contract.", errors)
    contract = create_contract(
        s,
        payload,
        user=g.current_user,
        expiry_days=int(current_app.config.get("CONTRACT_EXPIRY_DAYS") or 14),
    )
    s.commit()
    send_contract_issued(contract)
    return jsonify(contract_json(contract)), 201


@bp.get("/contracts/<int:contract_id>")
@require_login
def contracts_detail(contract_id: int):
    s = db_session()
    return jsonify(contract_json(_load_visible(s, contract_id)))


@bp.post("/contracts/<int:contract_id>/sign")
@require_login
def contracts_sign(contract_id: int):
    s = db_session()
    contract = _load_visible(s, contract_id)
    payload = get_payload()
    if not (payload.get("signature") or "").strip():
        return error_response("A signature is required.")
    try:
        sign_contract(
            s,
            contract,
            signature=payload.get("signature"),
            user=g.current_user,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
    except ContractError as e:
        return error_response(str(e), status=409)
    s.commit()
    send_contract_signed(contract, hr_admin_emails(s, organization_id=current_org()))
    return jsonify(contract_json(contract))


@bp.post("/contracts/<int:contract_id>/decline")
@require_login
def contracts_decline(contract_id: int):
    s = db_session()
    contract = _load_visible(s, contract_id)
    payload = get_payload()
    try:
        decline_contract(s, contract, reason=payload.get("reason"), user=g.current_user)
    except ContractError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(contract_json(contract))


@bp.get("/contracts/<int:contract_id>/pdf")
@require_login
def contracts_pdf(contract_id: int):
    s = db_session()
    contract = _load_visible(s, contract_id)
    pdf_bytes = render_contract(contract)
    filename = f"contract_{contract.id}.pdf"
    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
