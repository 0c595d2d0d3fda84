from __future__ import annotations

from flask import Blueprint, abort, current_app, g, jsonify, request, send_file

from app.hrms.db import db_session
from app.hrms.emails import send_logistics_status, send_logistics_submitted
from app.hrms.rbac import require_feature, require_login, require_permission, user_has_permission
from app.hrms.storage import StorageError, save_upload, storage_from_config
from app.hrms.tenancy import current_org, get_in_org_or_404
from app.hrms.utils import error_response, get_payload, iso, parse_date, parse_int, user_summary

from app.hrms.modules.notifications.service import notify, users_with_permission

from .models import LogisticsExpense, LogisticsItem, LogisticsMovement, LogisticsRequest
from .service import (
    LogisticsError,
    approve_request,
    complete_request,
    create_expense,
    create_item,
    create_request,
    dashboard_stats,
    deactivate_item,
    delete_expense,
    expense_report,
    list_expenses,
    list_requests,
    low_stock_items,
    mark_delivered,
    mark_purchased,
    record_movement,
    reject_request,
    update_expense,
    update_item,
    validate_expense_payload,
    validate_item_payload,
    validate_request_payload,
)

bp = Blueprint("logistics", __name__)


def item_json(item: LogisticsItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "category": item.category,
        "quantity": item.quantity,
        "min_quantity": item.min_quantity,
        "max_quantity": item.max_quantity,
        "unit_cost": iso(item.unit_cost),
        "location": item.location,
        "supplier": item.supplier,
        "barcode": item.barcode,
        "is_active": item.is_active,
        "is_low_stock": item.is_low_stock,
        "updated_at": iso(item.updated_at),
    }


def movement_json(m: LogisticsMovement) -> dict:
    return {
        "id": m.id,
        "item_id": m.item_id,
        "movement_type": m.movement_type,
        "quantity": m.quantity,
        "previous_quantity": m.previous_quantity,
        "new_quantity": m.new_quantity,
        "reason": m.reason,
        "reference_type": m.reference_type,
        "reference_id": m.reference_id,
        "performed_by": user_summary(m.performed_by),
        "created_at": iso(m.created_at),
    }


def request_json(r: LogisticsRequest) -> dict:
    return {
        "id": r.id,
        "requester": user_summary(r.requester),
        "item_id": r.item_id,
        "item_name": r.item_name,
        "description": r.description,
        "category": r.category,
        "quantity": r.quantity,
        "reason": r.reason,
        "priority": r.priority,
        "status": r.status,
        "estimated_cost": iso(r.estimated_cost),
        "actual_cost": iso(r.actual_cost),
        "vendor": r.vendor,
        "purchase_date": iso(r.purchase_date),
        "delivery_date": iso(r.delivery_date),
        "has_receipt": bool(r.receipt_key),
        "receipt_filename": r.receipt_filename,
        "notes": r.notes,
        "approved_by": user_summary(r.approver),
        "approved_at": iso(r.approved_at),
        "rejection_reason": r.rejection_reason,
        "created_at": iso(r.created_at),
    }


def expense_json(e: LogisticsExpense) -> dict:
    return {
        "id": e.id,
        "request_id": e.request_id,
        "expense_type": e.expense_type,
        "category": e.category,
        "amount": iso(e.amount),
        "currency": e.currency,
        "description": e.description,
        "expense_date": iso(e.expense_date),
        "vendor": e.vendor,
        "invoice_number": e.invoice_number,
        "payment_method": e.payment_method,
        "payment_status": e.payment_status,
        "notes": e.notes,
        "created_at": iso(e.created_at),
    }


def _notify_requester(s, req: LogisticsRequest) -> None:
    notify(
        s,
        req.requester_user_id,
        type=f"logistics_{req.status}",
        title=f"Logistics request {req.status}",
        message=f"{req.quantity} x {req.item_name}",
        entity_type="LogisticsRequest",
        entity_id=req.id,
    )


# --- dashboard ---------------------------------------------------------------


@bp.get("/logistics/dashboard")
@require_permission("logistics.view")
@require_feature("logistics_basic")
def logistics_dashboard():
    s = db_session()
    return jsonify(dashboard_stats(s, organization_id=current_org()))


# --- items -------------------------------------------------------------------


@bp.get("/logistics/items")
@require_login
@require_feature("logistics_basic")
def logistics_items_list():
    s = db_session()
    q = s.query(LogisticsItem).filter(LogisticsItem.in_org(current_org()))
    if request.args.get("include_inactive") != "1":
        q = q.filter(LogisticsItem.is_active.is_(True))
    category = (request.args.get("category") or "").strip()
    if category:
        q = q.filter(LogisticsItem.category == category)
    items = q.order_by(LogisticsItem.name.asc()).all()
    return jsonify({"items": [item_json(i) for i in items]})


@bp.get("/logistics/items/low-stock")
@require_permission("logistics.view")
@require_feature("logistics_basic")
def logistics_items_low_stock():
    s = db_session()
    return jsonify({"items": [item_json(i) for i in low_stock_items(s, organization_id=current_org())]})


@bp.post("/logistics/items")
@require_permission("logistics.manage")
@require_feature("logistics_basic")
def logistics_items_create():
    s = db_session()
    payload = get_payload()
    errors = validate_item_payload(payload, creating=True)
    if errors:
        return error_response("Invalid item.", errors)
    item = create_item(s, payload, user=g.current_user)
    s.commit()
    return jsonify(item_json(item)), 201


@bp.patch("/logistics/items/<int:item_id>")
@require_permission("logistics.manage")
@require_feature("logistics_basic")
def logistics_items_update(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, LogisticsItem, item_id)
    payload = get_payload()
    errors = validate_item_payload(payload, creating=False)
    if errors:
        return error_response("Invalid item.", errors)
    update_item(s, item, payload, user=g.current_user)
    s.commit()
    return jsonify(item_json(item))


@bp.delete("/logistics/items/<int:item_id>")
@require_permission("logistics.manage")
@require_feature("logistics_basic")
def logistics_items_delete(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, LogisticsItem, item_id)
    deactivate_item(s, item, user=g.current_user)
    s.commit()
    return jsonify(item_json(item))


@bp.get("/logistics/items/<int:item_id>/movements")
@require_permission("logistics.view")
@require_feature("logistics_basic")
def logistics_movements_list(item_id: int):
    s = db_session()
    get_in_org_or_404(s, LogisticsItem, item_id)
    movements = (
        s.query(LogisticsMovement)
        .filter(LogisticsMovement.item_id == item_id)
        .order_by(LogisticsMovement.created_at.desc(), LogisticsMovement.id.desc())
        .all()
    )
    return jsonify({"items": [movement_json(m) for m in movements]})


@bp.post("/logistics/items/<int:item_id>/movements")
@require_permission("logistics.manage")
@require_feature("logistics_basic")
def logistics_movements_create(item_id: int):
    s = db_session()
    item = get_in_org_or_404(s, LogisticsItem, item_id)
    payload = get_payload()
    quantity = parse_int(payload.get("quantity"))
    if quantity is None:
        return error_response("Quantity must be a whole number.")
    try:
        movement = record_movement(
            s,
            item,
            movement_type=(payload.get("movement_type") or "").strip(),
            quantity=quantity,
            reason=payload.get("reason"),
            user=g.current_user,
            reference_type="adjustment" if payload.get("movement_type") == "adjustment" else None,
        )
    except LogisticsError as e:
        s.rollback()
        return error_response(str(e), status=409)
    s.commit()
    return jsonify({"movement": movement_json(movement), "item": item_json(item)}), 201


# --- requests ----------------------------------------------------------------


@bp.get("/logistics/requests")
@require_login
@require_feature("logistics_basic")
def logistics_requests_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    if user_has_permission(g.current_user, "logistics.view"):
        items = list_requests(s, organization_id=current_org(), requester_id=parse_int(request.args.get("requester_id")), status=status)
    else:
        items = list_requests(s, organization_id=current_org(), requester_id=g.current_user.id, status=status)
    return jsonify({"items": [request_json(r) for r in items]})


@bp.post("/logistics/requests")
@require_permission("logistics.request")
@require_feature("logistics_basic")
def logistics_requests_create():
    s = db_session()
    payload = get_payload()
    errors = validate_request_payload(s, payload, organization_id=current_org())
    if errors:
        return error_response("Invalid logistics request.", errors)
    req = create_request(s, payload, user=g.current_user)
    approvers = [u for u in users_with_permission(s, "logistics.approve", organization_id=current_org()) if u.id != g.current_user.id]
    for approver in approvers:
        notify(
            s,
            approver.id,
            type="logistics_request",
            title="New logistics request",
            message=f"{g.current_user.full_name} requested {req.quantity} x {req.item_name}.",
            entity_type="LogisticsRequest",
            entity_id=req.id,
        )
    s.commit()
    send_logistics_submitted(req, [a.email for a in approvers])
    return jsonify(request_json(req)), 201


@bp.get("/logistics/requests/<int:request_id>")
@require_login
@require_feature("logistics_basic")
def logistics_requests_detail(request_id: int):
    s = db_session()
    req = get_in_org_or_404(s, LogisticsRequest, request_id)
    if req.requester_user_id != g.current_user.id and not user_has_permission(g.current_user, "logistics.view"):
        abort(404)
    return jsonify(request_json(req))


def _decide(request_id: int, action) -> tuple:
    s = db_session()
    req = get_in_org_or_404(s, LogisticsRequest, request_id)
    try:
        action(s, req)
    except LogisticsError as e:
        s.rollback()
        return error_response(str(e), status=409)
    _notify_requester(s, req)
    s.commit()
    send_logistics_status(req)
    return jsonify(request_json(req)), 200


@bp.post("/logistics/requests/<int:request_id>/approve")
@require_permission("logistics.approve")
@require_feature("logistics_basic")
def logistics_requests_approve(request_id: int):
    notes = get_payload().get("notes")
    return _decide(request_id, lambda s, req: approve_request(s, req, user=g.current_user, notes=notes))


@bp.post("/logistics/requests/<int:request_id>/reject")
@require_permission("logistics.approve")
@require_feature("logistics_basic")
def logistics_requests_reject(request_id: int):
    reason = (get_payload().get("reason") or "").strip()
    if not reason:
        return error_response("A rejection reason is required.")
    return _decide(request_id, lambda s, req: reject_request(s, req, user=g.current_user, reason=reason))


@bp.post("/logistics/requests/<int:request_id>/purchase")
@require_permission("logistics.manage")
@require_feature("logistics_basic")
def logistics_requests_purchase(request_id: int):
    payload = get_payload()

    def purchase(s, req: LogisticsRequest) -> None:
        key = filename = None
        f = request.files.get("receipt")
        if f and f.filename:
            try:
                stored = save_upload(current_app.config, f, namespace="logistics-receipts", entity_id=req.id)
            except ValueError as e:
                raise LogisticsError(str(e)) from e
            key, filename = stored.key, stored.filename
        mark_purchased(s, req, payload, user=g.current_user, receipt_key=key, receipt_filename=filename)

    return _decide(request_id, purchase)


@bp.post("/logistics/requests/<int:request_id>/deliver")
@require_permission("logistics.manage")
@require_feature("logistics_basic")
def logistics_requests_deliver(request_id: int):
    return _decide(request_id, lambda s, req: mark_delivered(s, req, user=g.current_user))


@bp.post("/logistics/requests/<int:request_id>/complete")
@require_permission("logistics.manage")
@require_feature("logistics_basic")
def logistics_requests_complete(request_id: int):
    return _decide(request_id, lambda s, req: complete_request(s, req, user=g.current_user))


@bp.get("/logistics/requests/<int:request_id>/receipt")
@require_login
@require_feature("logistics_basic")
def logistics_requests_receipt(request_id: int):
    s = db_session()
    req = get_in_org_or_404(s, LogisticsRequest, request_id)
    if req.requester_user_id != g.current_user.id and not user_has_permission(g.current_user, "logistics.view"):
        abort(404)
    if not req.receipt_key:
        abort(404)
    storage = storage_from_config(current_app.config)
    try:
        fh = storage.open(req.receipt_key)
    except StorageError:
        abort(404)
    return send_file(fh, as_attachment=True, download_name=req.receipt_filename or "receipt")


# --- expenses ----------------------------------------------------------------


@bp.get("/logistics/expenses")
@require_permission("logistics.expenses")
@require_feature("logistics_basic")
def logistics_expenses_list():
    s = db_session()
    try:
        start = parse_date(request.args.get("start"))
        end = parse_date(request.args.get("end"))
    except ValueError:
        return error_response("Dates must be YYYY-MM-DD.")
    items = list_expenses(
        s,
        organization_id=current_org(),
        start=start,
        end=end,
        category=(request.args.get("category") or "").strip() or None)
    return jsonify({"items": [expense_json(e) for e in items]})


@bp.get("/logistics/expenses/report")
@require_permission("logistics.expenses")
@require_feature("logistics_basic")
def logistics_expenses_report():
    s = db_session()
    try:
        start = parse_date(request.args.get("start"))
        end = parse_date(request.args.get("end"))
    except ValueError:
        return error_response("Dates must be YYYY-MM-DD.")
    return jsonify(expense_report(list_expenses(s, organization_id=current_org(), start=start, end=end)))


@bp.post("/logistics/expenses")
@require_permission("logistics.expenses")
@require_feature("logistics_basic")
def logistics_expenses_create():
    s = db_session()
    payload = get_payload()
    errors = validate_expense_payload(payload, creating=True)
    if errors:
        return error_response("Invalid expense.", errors)
    expense = create_expense(s, payload, user=g.current_user)
    s.commit()
    return jsonify(expense_json(expense)), 201


@bp.patch("/logistics/expenses/<int:expense_id>")
@require_permission("logistics.expenses")
@require_feature("logistics_basic")
def logistics_expenses_update(expense_id: int):
    s = db_session()
    expense = get_in_org_or_404(s, LogisticsExpense, expense_id)
    payload = get_payload()
    errors = validate_expense_payload(payload, creating=False)
    if errors:
        return error_response("Invalid expense.", errors)
    update_expense(s, expense, payload, user=g.current_user)
    s.commit()
    return jsonify(expense_json(expense))


@bp.delete("/logistics/expenses/<int:expense_id>")
@require_permission("logistics.expenses")
@require_feature("logistics_basic")
def logistics_expenses_delete(expense_id: int):
    s = db_session()
    expense = get_in_org_or_404(s, LogisticsExpense, expense_id)
    delete_expense(s, expense, user=g.current_user)
    s.commit()
    return jsonify({"deleted": expense_id})
