from __future__ import annotations

import logging

from flask import Blueprint, current_app, g, jsonify, request

from app.hrms.db import db_session, get_or_404
from app.hrms.emails import (
    send_payment_failed,
    send_trial_approved,
    send_trial_rejected,
    send_trial_request_confirmation,
    send_trial_request_received,
)
from app.hrms.models import User
from app.hrms.rbac import require_login, require_permission
from app.hrms.utils import error_response, get_payload, iso, parse_bool, user_summary

from app.hrms.modules.notifications.service import hr_admin_emails

from .models import BillingEvent, Customer, Payment, Subscription, SubscriptionPlan, TrialRequest
from .service import (
    BillingError,
    active_plans,
    approve_trial_request,
    billing_stats,
    cancel_subscription,
    extend_trial,
    get_plan,
    handle_stripe_event,
    list_trial_requests,
    list_trial_users,
    parse_days,
    plan_info,
    reject_trial_request,
    start_subscription,
    submit_trial_request,
    validate_trial_request_payload,
)
from .stripe_client import StripeError, StripeSignatureError, client_from_config, verify_webhook

logger = logging.getLogger(__name__)

bp = Blueprint("billing", __name__)
public_bp = Blueprint("public_billing", __name__)


def plan_json(p: SubscriptionPlan) -> dict:
    return {
        "id": p.id,
        "plan_id": p.plan_key,
        "name": p.name,
        "description": p.description,
        "monthly_price": iso(p.monthly_price),
        "yearly_price": iso(p.yearly_price),
        "features": p.features,
        "max_employees": p.max_employees,
        "max_projects": p.max_projects,
        "max_storage_gb": p.max_storage_gb,
    }


def trial_request_json(t: TrialRequest) -> dict:
    return {
        "id": t.id,
        "first_name": t.first_name,
        "last_name": t.last_name,
        "email": t.email,
        "company": t.company,
        "phone": t.phone,
        "job_title": t.job_title,
        "team_size": t.team_size,
        "plan_id": t.plan_id,
        "billing_cycle": t.billing_cycle,
        "message": t.message,
        "status": t.status,
        "approved_by": user_summary(t.approver),
        "approved_at": iso(t.approved_at),
        "rejection_reason": t.rejection_reason,
        "trial_start_date": iso(t.trial_start_date),
        "trial_end_date": iso(t.trial_end_date),
        "created_user": user_summary(t.created_user),
        "created_at": iso(t.created_at),
    }


def trial_user_json(u: User) -> dict:
    data = user_summary(u) or {}
    data.update(
        {
            "organization_id": u.organization_id,
            "subscription_plan": u.subscription_plan,
            "subscription_status": u.subscription_status,
            "trial_end_date": iso(u.trial_end_date),
            "is_active": u.is_active,
        }
    )
    return data


def customer_json(c: Customer) -> dict:
    return {
        "id": c.id,
        "company_name": c.company_name,
        "contact_name": c.contact_name,
        "contact_email": c.contact_email,
        "phone": c.phone,
        "status": c.status,
        "plan_id": c.plan_id,
        "billing_cycle": c.billing_cycle,
        "stripe_customer_id": c.stripe_customer_id,
        "trial_start_date": iso(c.trial_start_date),
        "trial_end_date": iso(c.trial_end_date),
        "subscription_start_date": iso(c.subscription_start_date),
        "user": user_summary(c.user),
        "created_at": iso(c.created_at),
    }


def subscription_json(sub: Subscription) -> dict:
    return {
        "id": sub.id,
        "customer_id": sub.customer_id,
        "stripe_subscription_id": sub.stripe_subscription_id,
        "plan_id": sub.plan_id,
        "status": sub.status,
        "billing_cycle": sub.billing_cycle,
        "current_period_start": iso(sub.current_period_start),
        "current_period_end": iso(sub.current_period_end),
        "trial_end": iso(sub.trial_end),
        "canceled_at": iso(sub.canceled_at),
        "cancel_at_period_end": sub.cancel_at_period_end,
        "amount": iso(sub.amount),
        "currency": sub.currency,
    }


def payment_json(p: Payment) -> dict:
    return {
        "id": p.id,
        "customer_id": p.customer_id,
        "subscription_id": p.subscription_id,
        "stripe_invoice_id": p.stripe_invoice_id,
        "amount": iso(p.amount),
        "currency": p.currency,
        "status": p.status,
        "payment_method": p.payment_method,
        "description": p.description,
        "paid_at": iso(p.paid_at),
        "failure_reason": p.failure_reason,
        "created_at": iso(p.created_at),
    }


def billing_event_json(ev: BillingEvent) -> dict:
    return {
        "id": ev.id,
        "customer_id": ev.customer_id,
        "subscription_id": ev.subscription_id,
        "payment_id": ev.payment_id,
        "event_type": ev.event_type,
        "description": ev.description,
        "created_at": iso(ev.created_at),
    }


# --- public ------------------------------------------------------------------


@public_bp.get("/plans")
def public_plans():
    s = db_session()
    return jsonify({"items": [plan_json(p) for p in active_plans(s)]})


@public_bp.post("/trial-requests")
def public_trial_request_submit():
    s = db_session()
    payload = get_payload()
    errors = validate_trial_request_payload(s, payload)
    if errors:
        return error_response("Invalid trial request.", errors)
    trial = submit_trial_request(s, payload)
    s.commit()
    send_trial_request_received(trial, hr_admin_emails(s))
    send_trial_request_confirmation(trial)
    return jsonify({"id": trial.id, "status": trial.status}), 201


@public_bp.post("/stripe/webhook")
def stripe_webhook():
    payload = request.get_data(cache=False)
    try:
        event = verify_webhook(
            payload,
            request.headers.get("Stripe-Signature"),
            current_app.config.get("STRIPE_WEBHOOK_SECRET") or "",
        )
    except StripeSignatureError as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        return error_response("Webhook signature verification failed.", status=400)

    s = db_session()
    outcome = handle_stripe_event(s, event)
    s.commit()
    for account, amount_display in outcome.failed_payments:
        send_payment_failed(account, amount_display=amount_display)
    return jsonify({"received": True, "handled": outcome.handled})


# --- signed-in ---------------------------------------------------------------


@bp.get("/billing/plan-info")
@require_login
def billing_plan_info():
    info = plan_info(g.current_user)
    info["trial_end_date"] = iso(info["trial_end_date"])
    return jsonify(info)


@bp.get("/billing/stats")
@require_permission("billing.view")
def billing_stats_view():
    s = db_session()
    stats = billing_stats(s)
    return jsonify({k: iso(v) for k, v in stats.items()})


@bp.get("/billing/trial-requests")
@require_permission("billing.view")
def billing_trial_requests_list():
    s = db_session()
    items = list_trial_requests(s, status=request.args.get("status"))
    return jsonify({"items": [trial_request_json(t) for t in items]})


@bp.get("/billing/trial-requests/<int:trial_id>")
@require_permission("billing.view")
def billing_trial_requests_detail(trial_id: int):
    s = db_session()
    return jsonify(trial_request_json(get_or_404(s, TrialRequest, trial_id)))


@bp.post("/billing/trial-requests/<int:trial_id>/approve")
@require_permission("billing.manage")
def billing_trial_requests_approve(trial_id: int):
    s = db_session()
    trial = get_or_404(s, TrialRequest, trial_id)
    try:
        account, password = approve_trial_request(
            s,
            trial,
            user=g.current_user,
            trial_days=int(current_app.config.get("TRIAL_DAYS") or 14),
        )
    except BillingError as e:
        return error_response(str(e), status=409)
    s.commit()
    send_trial_approved(trial, username=account.username or account.email, password=password)
    return jsonify(trial_request_json(trial))


@bp.post("/billing/trial-requests/<int:trial_id>/reject")
@require_permission("billing.manage")
def billing_trial_requests_reject(trial_id: int):
    s = db_session()
    trial = get_or_404(s, TrialRequest, trial_id)
    payload = get_payload()
    if not (payload.get("reason") or "").strip():
        return error_response("A rejection reason is required.")
    try:
        reject_trial_request(s, trial, reason=payload.get("reason"), user=g.current_user)
    except BillingError as e:
        return error_response(str(e), status=409)
    s.commit()
    send_trial_rejected(trial)
    return jsonify(trial_request_json(trial))


@bp.get("/billing/trial-users")
@require_permission("billing.view")
def billing_trial_users():
    s = db_session()
    return jsonify({"items": [trial_user_json(u) for u in list_trial_users(s)]})


@bp.post("/billing/trial-users/<int:user_id>/extend")
@require_permission("billing.manage")
def billing_trial_users_extend(user_id: int):
    s = db_session()
    account = get_or_404(s, User, user_id)
    days = parse_days(get_payload().get("days"))
    if days is None:
        return error_response("Days must be a positive whole number.")
    try:
        extend_trial(s, account, days=days, user=g.current_user)
    except BillingError as e:
        return error_response(str(e), status=409)
    s.commit()
    return jsonify(trial_user_json(account))


@bp.get("/billing/customers")
@require_permission("billing.view")
def billing_customers_list():
    s = db_session()
    customers = s.query(Customer).order_by(Customer.created_at.desc(), Customer.id.desc()).all()
    return jsonify({"items": [customer_json(c) for c in customers]})


@bp.get("/billing/customers/<int:customer_id>")
@require_permission("billing.view")
def billing_customers_detail(customer_id: int):
    s = db_session()
    customer = get_or_404(s, Customer, customer_id)
    payments = (
        s.query(Payment).filter(Payment.customer_id == customer.id).order_by(Payment.created_at.desc()).all()
    )
    events = (
        s.query(BillingEvent)
        .filter(BillingEvent.customer_id == customer.id)
        .order_by(BillingEvent.created_at.desc(), BillingEvent.id.desc())
        .all()
    )
    return jsonify(
        {
            "customer": customer_json(customer),
            "subscriptions": [subscription_json(sub) for sub in customer.subscriptions],
            "payments": [payment_json(p) for p in payments],
            "billing_events": [billing_event_json(ev) for ev in events],
        }
    )


@bp.post("/billing/customers/<int:customer_id>/subscriptions")
@require_permission("billing.manage")
def billing_subscriptions_create(customer_id: int):
    s = db_session()
    customer = get_or_404(s, Customer, customer_id)
    payload = get_payload()
    plan = get_plan(s, (payload.get("plan_id") or "").strip())
    if plan is None:
        return error_response("Subscription plan not found.", status=404)
    try:
        sub, client_secret = start_subscription(
            s,
            customer,
            plan=plan,
            billing_cycle=(payload.get("billing_cycle") or customer.billing_cycle or "monthly").strip(),
            client=client_from_config(current_app.config),
            user=g.current_user,
            trial_days=parse_days(payload.get("trial_period_days")),
        )
    except BillingError as e:
        return error_response(str(e))
    except StripeError as e:
        s.rollback()
        logger.error("Stripe subscription create failed for customer %s: %s", customer_id, e)
        return error_response("Payment provider error.", [str(e)], status=502)
    s.commit()
    return jsonify({"subscription": subscription_json(sub), "client_secret": client_secret}), 201


@bp.post("/billing/subscriptions/<int:subscription_id>/cancel")
@require_permission("billing.manage")
def billing_subscriptions_cancel(subscription_id: int):
    s = db_session()
    sub = get_or_404(s, Subscription, subscription_id)
    payload = get_payload()
    at_period_end = parse_bool(payload.get("cancel_at_period_end", True))
    try:
        cancel_subscription(s, sub, client=client_from_config(current_app.config), at_period_end=at_period_end, user=g.current_user)
    except BillingError as e:
        return error_response(str(e), status=409)
    except StripeError as e:
        s.rollback()
        logger.error("Stripe cancel failed for subscription %s: %s", subscription_id, e)
        return error_response("Payment provider error.", [str(e)], status=502)
    s.commit()
    return jsonify(subscription_json(sub))


@bp.get("/billing/payments")
@require_permission("billing.view")
def billing_payments_list():
    s = db_session()
    payments = s.query(Payment).order_by(Payment.created_at.desc(), Payment.id.desc()).all()
    return jsonify({"items": [payment_json(p) for p in payments]})
