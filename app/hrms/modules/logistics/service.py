"""
Logistics service layer.

Inventory items and stock movements, the request lifecycle
(pending -> approved -> purchased -> delivered -> completed, or rejected),
expense tracking and the reporting rollups used by the dashboard.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.hrms.audit import record_event
from app.hrms.models import User
from app.hrms.utils import clean, parse_date, parse_datetime, parse_decimal, parse_int

from .models import LogisticsExpense, LogisticsItem, LogisticsMovement, LogisticsRequest

logger = logging.getLogger(__name__)

PRIORITIES = ("low", "medium", "high", "urgent")
MOVEMENT_TYPES = ("in", "out", "adjustment")
EXPENSE_TYPES = ("purchase", "shipping", "maintenance", "return", "other")
PAYMENT_STATUSES = ("pending", "paid", "overdue", "cancelled")

REQUEST_TRANSITIONS = {
    "pending": {"approved", "rejected"},
    "approved": {"purchased"},
    "purchased": {"delivered"},
    "delivered": {"completed"},
}


class LogisticsError(ValueError):
    pass


def _money_error(payload: dict[str, Any], field: str, label: str, errors: list[str], *, required: bool = False) -> None:
    try:
        value = parse_decimal(payload.get(field))
    except ValueError:
        errors.append(f"{label} must be a number.")
        return
    if value is None:
        if required:
            errors.append(f"{label} is required.")
    elif value < 0:
        errors.append(f"{label} cannot be negative.")


# --- items / stock -----------------------------------------------------------


def validate_item_payload(payload: dict[str, Any], *, creating: bool) -> list[str]:
    errors: list[str] = []
    if creating or "name" in payload:
        if not clean(payload.get("name")):
            errors.append("Item name is required.")
    if creating or "category" in payload:
        if not clean(payload.get("category")):
            errors.append("Category is required.")
    for field in ("quantity", "min_quantity", "max_quantity"):
        raw = payload.get(field)
        if raw in (None, ""):
            continue
        value = parse_int(raw)
        if value is None or value < 0:
            errors.append(f"{field.replace('_', ' ').capitalize()} must be a whole number >= 0.")
    _money_error(payload, "unit_cost", "Unit cost", errors)
    return errors


def create_item(s: Session, payload: dict[str, Any], *, user: User) -> LogisticsItem:
    item = LogisticsItem(
        organization_id=user.organization_id,
        name=clean(payload.get("name")) or "",
        description=clean(payload.get("description")),
        category=clean(payload.get("category")) or "",
        quantity=0,
        min_quantity=parse_int(payload.get("min_quantity"), 0) or 0,
        max_quantity=parse_int(payload.get("max_quantity")),
        unit_cost=parse_decimal(payload.get("unit_cost")),
        location=clean(payload.get("location")),
        supplier=clean(payload.get("supplier")),
        barcode=clean(payload.get("barcode")),
    )
    s.add(item)
    s.flush()
    opening = parse_int(payload.get("quantity"), 0) or 0
    if opening:
        record_movement(s, item, movement_type="in", quantity=opening, reason="Opening stock", user=user)
    record_event(s, actor=user, action="logistics_item.create", entity_type="LogisticsItem", entity_id=item.id)
    return item


def update_item(s: Session, item: LogisticsItem, payload: dict[str, Any], *, user: User) -> dict[str, Any]:
    """Quantity is not editable here; stock only changes through movements."""
    changes: dict[str, Any] = {}
    for attr, parser in (
        ("name", clean),
        ("description", clean),
        ("category", clean),
        ("min_quantity", parse_int),
        ("max_quantity", parse_int),
        ("unit_cost", parse_decimal),
        ("location", clean),
        ("supplier", clean),
        ("barcode", clean),
    ):
        if attr not in payload:
            continue
        value = parser(payload.get(attr))
        if attr in ("name", "category", "min_quantity") and value is None:
            continue
        if getattr(item, attr) != value:
            changes[attr] = {"from": str(getattr(item, attr)), "to": str(value)}
            setattr(item, attr, value)
    if changes:
        item.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="logistics_item.update", entity_type="LogisticsItem", entity_id=item.id, metadata={"changes": changes})
    return changes


def deactivate_item(s: Session, item: LogisticsItem, *, user: User) -> None:
    item.is_active = False
    item.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="logistics_item.deactivate", entity_type="LogisticsItem", entity_id=item.id)


def record_movement(
    s: Session,
    item: LogisticsItem,
    *,
    movement_type: str,
    quantity: int,
    reason: str | None = None,
    user: User | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
) -> LogisticsMovement:
    """
    Apply a stock movement to `item`.

    `in` and `out` take a positive quantity. `adjustment` takes a signed delta.
    Raises LogisticsError when the result would be negative.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise LogisticsError(f"Movement type must be one of: {', '.join(MOVEMENT_TYPES)}.")
    if movement_type == "adjustment":
        if quantity == 0:
            raise LogisticsError("Adjustment quantity cannot be zero.")
        delta = quantity
    else:
        if quantity <= 0:
            raise LogisticsError("Quantity must be greater than zero.")
        delta = quantity if movement_type == "in" else -quantity

    previous = item.quantity or 0
    new = previous + delta
    if new < 0:
        raise LogisticsError(f"Insufficient stock for '{item.name}': {previous} available.")

    item.quantity = new
    item.updated_at = datetime.utcnow()
    movement = LogisticsMovement(
        item_id=item.id,
        movement_type=movement_type,
        quantity=quantity,
        previous_quantity=previous,
        new_quantity=new,
        reason=(reason or "").strip() or None,
        reference_type=reference_type,
        reference_id=reference_id,
        performed_by_user_id=user.id if user else None,
    )
    s.add(movement)
    s.flush()
    if item.is_low_stock:
        logger.info("Item %s (%s) at or below minimum stock: %d", item.id, item.name, new)
    return movement


def low_stock_items(s: Session, *, organization_id: str | None = None) -> list[LogisticsItem]:
    return (
        s.query(LogisticsItem)
        .filter(
            LogisticsItem.in_org(organization_id),
            LogisticsItem.is_active.is_(True),
            LogisticsItem.quantity <= LogisticsItem.min_quantity,
        )
        .order_by(LogisticsItem.quantity.asc(), LogisticsItem.name.asc())
        .all()
    )


# --- requests ----------------------------------------------------------------


def validate_request_payload(
    s: Session,
    payload: dict[str, Any],
    *,
    organization_id: str | None = None,
) -> list[str]:
    errors: list[str] = []
    item_id = parse_int(payload.get("item_id"))
    known = s.query(LogisticsItem.id).filter(LogisticsItem.id == item_id, LogisticsItem.in_org(organization_id))
    if item_id and known.first() is None:
        errors.append("Item not found.")
    if not item_id and not clean(payload.get("item_name")):
        errors.append("Item name is required.")
    quantity = parse_int(payload.get("quantity"))
    if quantity is None or quantity < 1:
        errors.append("Quantity must be at least 1.")
    priority = clean(payload.get("priority"))
    if priority and priority not in PRIORITIES:
        errors.append(f"Priority must be one of: {', '.join(PRIORITIES)}.")
    _money_error(payload, "estimated_cost", "Estimated cost", errors)
    return errors


def create_request(s: Session, payload: dict[str, Any], *, user: User) -> LogisticsRequest:
    item = s.get(LogisticsItem, parse_int(payload.get("item_id"))) if payload.get("item_id") else None
    req = LogisticsRequest(
        organization_id=user.organization_id,
        requester_user_id=user.id,
        item_id=item.id if item else None,
        item_name=clean(payload.get("item_name")) or (item.name if item else ""),
        description=clean(payload.get("description")),
        category=clean(payload.get("category")) or (item.category if item else None),
        quantity=parse_int(payload.get("quantity")) or 1,
        reason=clean(payload.get("reason")),
        priority=clean(payload.get("priority")) or "medium",
        estimated_cost=parse_decimal(payload.get("estimated_cost")),
        status="pending",
    )
    s.add(req)
    s.flush()
    s.refresh(req)
    record_event(
        s,
        actor=user,
        action="logistics_request.create",
        entity_type="LogisticsRequest",
        entity_id=req.id,
        metadata={"item_name": req.item_name, "quantity": req.quantity},
    )
    return req


def _transition(req: LogisticsRequest, new_status: str) -> None:
    if new_status not in REQUEST_TRANSITIONS.get(req.status, set()):
        raise LogisticsError(f"Cannot move a {req.status} request to {new_status}.")
    req.status = new_status
    req.updated_at = datetime.utcnow()


def approve_request(s: Session, req: LogisticsRequest, *, user: User, notes: str | None = None) -> LogisticsRequest:
    _transition(req, "approved")
    req.approver = user
    req.approved_at = datetime.utcnow()
    if clean(notes):
        req.notes = clean(notes)
    record_event(s, actor=user, action="logistics_request.approve", entity_type="LogisticsRequest", entity_id=req.id)
    return req


def reject_request(s: Session, req: LogisticsRequest, *, user: User, reason: str) -> LogisticsRequest:
    reason = (reason or "").strip()
    if not reason:
        raise LogisticsError("A rejection reason is required.")
    _transition(req, "rejected")
    req.approver = user
    req.approved_at = datetime.utcnow()
    req.rejection_reason = reason
    record_event(s, actor=user, action="logistics_request.reject", entity_type="LogisticsRequest", entity_id=req.id, reason=reason)
    return req


def mark_purchased(
    s: Session,
    req: LogisticsRequest,
    payload: dict[str, Any],
    *,
    user: User,
    receipt_key: str | None = None,
    receipt_filename: str | None = None,
) -> LogisticsExpense:
    """Record the purchase and its expense line."""
    actual_cost = parse_decimal(payload.get("actual_cost"))
    if actual_cost is None:
        raise LogisticsError("Actual cost is required.")
    if actual_cost < 0:
        raise LogisticsError("Actual cost must not be negative.")
    _transition(req, "purchased")
    req.actual_cost = actual_cost
    req.vendor = clean(payload.get("vendor")) or req.vendor
    req.purchase_date = parse_datetime(payload.get("purchase_date")) or datetime.utcnow()
    if clean(payload.get("notes")):
        req.notes = clean(payload.get("notes"))
    if receipt_key:
        req.receipt_key = receipt_key
        req.receipt_filename = receipt_filename

    expense = LogisticsExpense(
        organization_id=req.organization_id,
        request_id=req.id,
        expense_type="purchase",
        category=req.category,
        amount=actual_cost,
        currency=(clean(payload.get("currency")) or "USD").upper(),
        description=f"Purchase: {req.quantity} x {req.item_name}",
        expense_date=req.purchase_date.date(),
        vendor=req.vendor,
        invoice_number=clean(payload.get("invoice_number")),
        payment_method=clean(payload.get("payment_method")),
        payment_status=clean(payload.get("payment_status")) or "pending",
        recorded_by_user_id=user.id,
    )
    s.add(expense)
    s.flush()
    record_event(
        s,
        actor=user,
        action="logistics_request.purchase",
        entity_type="LogisticsRequest",
        entity_id=req.id,
        metadata={"actual_cost": actual_cost, "vendor": req.vendor, "expense_id": expense.id},
    )
    return expense


def mark_delivered(s: Session, req: LogisticsRequest, *, user: User) -> LogisticsRequest:
    _transition(req, "delivered")
    req.delivery_date = datetime.utcnow()
    record_event(s, actor=user, action="logistics_request.deliver", entity_type="LogisticsRequest", entity_id=req.id)
    return req


def complete_request(s: Session, req: LogisticsRequest, *, user: User) -> LogisticsRequest:
    _transition(req, "completed")
    if req.item is not None:
        record_movement(
            s,
            req.item,
            movement_type="in",
            quantity=req.quantity,
            reason=f"Logistics request #{req.id} completed",
            user=user,
            reference_type="request",
            reference_id=req.id,
        )
    record_event(s, actor=user, action="logistics_request.complete", entity_type="LogisticsRequest", entity_id=req.id)
    return req


def list_requests(
    s: Session,
    *,
    organization_id: str | None = None,
    requester_id: int | None = None,
    status: str | None = None,
) -> list[LogisticsRequest]:
    q = s.query(LogisticsRequest).filter(LogisticsRequest.in_org(organization_id))
    if requester_id:
        q = q.filter(LogisticsRequest.requester_user_id == requester_id)
    if status:
        q = q.filter(LogisticsRequest.status == status)
    return q.order_by(LogisticsRequest.created_at.desc(), LogisticsRequest.id.desc()).all()


# --- expenses ----------------------------------------------------------------


def validate_expense_payload(payload: dict[str, Any], *, creating: bool) -> list[str]:
    errors: list[str] = []
    if creating or "expense_type" in payload:
        expense_type = clean(payload.get("expense_type"))
        if expense_type not in EXPENSE_TYPES:
            errors.append(f"Expense type must be one of: {', '.join(EXPENSE_TYPES)}.")
    if creating or "amount" in payload:
        _money_error(payload, "amount", "Amount", errors, required=True)
    if creating or "expense_date" in payload:
        try:
            if parse_date(payload.get("expense_date")) is None:
                errors.append("Expense date is required.")
        except ValueError:
            errors.append("Expense date must be YYYY-MM-DD.")
    status = clean(payload.get("payment_status"))
    if status and status not in PAYMENT_STATUSES:
        errors.append(f"Payment status must be one of: {', '.join(PAYMENT_STATUSES)}.")
    return errors


def create_expense(s: Session, payload: dict[str, Any], *, user: User) -> LogisticsExpense:
    expense = LogisticsExpense(
        organization_id=user.organization_id,
        request_id=parse_int(payload.get("request_id")),
        expense_type=clean(payload.get("expense_type")) or "other",
        category=clean(payload.get("category")),
        amount=parse_decimal(payload.get("amount")) or Decimal("0"),
        currency=(clean(payload.get("currency")) or "USD").upper(),
        description=clean(payload.get("description")),
        expense_date=parse_date(payload.get("expense_date")) or datetime.utcnow().date(),
        vendor=clean(payload.get("vendor")),
        invoice_number=clean(payload.get("invoice_number")),
        payment_method=clean(payload.get("payment_method")),
        payment_status=clean(payload.get("payment_status")) or "pending",
        recorded_by_user_id=user.id,
        notes=clean(payload.get("notes")),
    )
    s.add(expense)
    s.flush()
    record_event(s, actor=user, action="logistics_expense.create", entity_type="LogisticsExpense", entity_id=expense.id, metadata={"amount": expense.amount})
    return expense


def update_expense(s: Session, expense: LogisticsExpense, payload: dict[str, Any], *, user: User) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for attr, parser in (
        ("expense_type", clean),
        ("category", clean),
        ("amount", parse_decimal),
        ("description", clean),
        ("expense_date", parse_date),
        ("vendor", clean),
        ("invoice_number", clean),
        ("payment_method", clean),
        ("payment_status", clean),
        ("notes", clean),
    ):
        if attr not in payload:
            continue
        value = parser(payload.get(attr))
        if attr in ("expense_type", "amount", "expense_date", "payment_status") and value is None:
            continue
        if getattr(expense, attr) != value:
            changes[attr] = {"from": str(getattr(expense, attr)), "to": str(value)}
            setattr(expense, attr, value)
    if changes:
        expense.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="logistics_expense.update", entity_type="LogisticsExpense", entity_id=expense.id, metadata={"changes": changes})
    return changes


def delete_expense(s: Session, expense: LogisticsExpense, *, user: User) -> None:
    record_event(s, actor=user, action="logistics_expense.delete", entity_type="LogisticsExpense", entity_id=expense.id, metadata={"amount": expense.amount})
    s.delete(expense)


def list_expenses(
    s: Session,
    *,
    organization_id: str | None = None,
    start: date | None = None,
    end: date | None = None,
    category: str | None = None,
) -> list[LogisticsExpense]:
    q = s.query(LogisticsExpense).filter(LogisticsExpense.in_org(organization_id))
    if start:
        q = q.filter(LogisticsExpense.expense_date >= start)
    if end:
        q = q.filter(LogisticsExpense.expense_date <= end)
    if category:
        q = q.filter(LogisticsExpense.category == category)
    return q.order_by(LogisticsExpense.expense_date.desc(), LogisticsExpense.id.desc()).all()


def expense_report(expenses: list[LogisticsExpense]) -> dict[str, Any]:
    """Totals by category, vendor and month (YYYY-MM). Cancelled expenses are left out."""
    by_category: dict[str, Decimal] = defaultdict(Decimal)
    by_vendor: dict[str, Decimal] = defaultdict(Decimal)
    by_month: dict[str, Decimal] = defaultdict(Decimal)
    total = Decimal("0")
    for e in expenses:
        if e.payment_status == "cancelled":
            continue
        amount = e.amount or Decimal("0")
        total += amount
        by_category[e.category or "uncategorized"] += amount
        by_vendor[e.vendor or "unknown"] += amount
        by_month[e.expense_date.strftime("%Y-%m")] += amount

    def rows(bucket: dict[str, Decimal], key: str) -> list[dict[str, Any]]:
        return [{key: k, "total": str(v)} for k, v in sorted(bucket.items(), key=lambda kv: (-kv[1], kv[0]))]

    return {
        "total": str(total),
        "by_category": rows(by_category, "category"),
        "by_vendor": rows(by_vendor, "vendor"),
        "by_month": [{"month": k, "total": str(v)} for k, v in sorted(by_month.items())],
    }


def dashboard_stats(s: Session, *, organization_id: str | None = None, today: date | None = None) -> dict[str, Any]:
    today = today or datetime.utcnow().date()
    month_start = today.replace(day=1)
    month_expenses = list_expenses(s, organization_id=organization_id, start=month_start, end=today)
    requests = s.query(LogisticsRequest).filter(LogisticsRequest.in_org(organization_id))
    return {
        "total_requests": requests.count(),
        "pending_requests": requests.filter(LogisticsRequest.status == "pending").count(),
        "monthly_spend": expense_report(month_expenses)["total"],
        "low_stock_count": len(low_stock_items(s, organization_id=organization_id)),
        "active_items": s.query(LogisticsItem)
        .filter(LogisticsItem.in_org(organization_id), LogisticsItem.is_active.is_(True))
        .count(),
    }
