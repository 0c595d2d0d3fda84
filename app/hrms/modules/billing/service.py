"""
Billing service layer.

Subscription plans, trial requests and trial accounts, Stripe-backed subscriptions,
webhook event handling and the trial-expiry sweep.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.hrms.audit import record_event
from app.hrms.constants import PLAN_FEATURES
from app.hrms.models import Role, User
from app.hrms.rbac import current_plan
from app.hrms.security import generate_password
from app.hrms.utils import clean, parse_int

from app.hrms.modules.employees.service import unique_username
from app.hrms.modules.notifications.service import hr_admins, notify_many

from .models import BillingEvent, Customer, Payment, Subscription, SubscriptionPlan, TrialRequest
from .stripe_client import StripeClient

logger = logging.getLogger(__name__)

BILLING_CYCLES = ("monthly", "yearly")
TEAM_SIZES = ("1-10", "11-50", "51-200", "201-500", "500+")
TRIAL_WARNING_DAYS = 3
TRIAL_USER_ROLE = "manager"

# Seeded catalogue: (key, name, description, monthly, yearly, max_employees, max_projects, max_storage_gb)
DEFAULT_PLANS: tuple[tuple[str, str, str, str, str, int | None, int | None, int | None], ...] = (
    ("starter", "Starter", "Core HR for small teams.", "29.00", "290.00", 10, 5, 5),
    ("professional", "Professional", "Projects, logistics and recognition for growing teams.", "79.00", "790.00", 50, 25, 50),
    ("enterprise", "Enterprise", "Everything, including psychometrics and the social media hub.", "199.00", "1990.00", None, None, None),
)

# Stripe subscription status -> users.subscription_status
_USER_STATUS = {
    "trialing": "trial",
    "active": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "incomplete": "past_due",
    "canceled": "canceled",
    "incomplete_expired": "canceled",
}


class BillingError(ValueError):
    pass


def _ts(value: Any) -> datetime | None:
    if value in (None, "", 0):
        return None
    try:
        return datetime.utcfromtimestamp(int(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _cents(value: Any) -> Decimal:
    try:
        return (Decimal(int(value or 0)) / 100).quantize(Decimal("0.01"))
    except (TypeError, ValueError):
        return Decimal("0.00")


def _log_billing_event(
    s: Session,
    customer: Customer,
    event_type: str,
    description: str,
    *,
    subscription: Subscription | None = None,
    payment: Payment | None = None,
    data: dict[str, Any] | None = None,
) -> BillingEvent:
    ev = BillingEvent(
        customer_id=customer.id,
        subscription_id=subscription.id if subscription else None,
        payment_id=payment.id if payment else None,
        event_type=event_type,
        description=description,
        event_data=data,
    )
    s.add(ev)
    s.flush()
    return ev


# --- plans -------------------------------------------------------------------


def ensure_plans(s: Session) -> int:
    """Insert any missing catalogue plans; returns the number created. Existing rows are left alone."""
    created = 0
    for key, name, description, monthly, yearly, max_emp, max_proj, max_storage in DEFAULT_PLANS:
        if s.query(SubscriptionPlan.id).filter(SubscriptionPlan.plan_key == key).first():
            continue
        s.add(
            SubscriptionPlan(
                plan_key=key,
                name=name,
                description=description,
                monthly_price=Decimal(monthly),
                yearly_price=Decimal(yearly),
                features=list(PLAN_FEATURES[key]),
                max_employees=max_emp,
                max_projects=max_proj,
                max_storage_gb=max_storage,
                is_active=True,
            )
        )
        created += 1
    if created:
        s.flush()
    return created


def active_plans(s: Session) -> list[SubscriptionPlan]:
    return (
        s.query(SubscriptionPlan)
        .filter(SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.monthly_price.asc())
        .all()
    )


def get_plan(s: Session, plan_key: str | None) -> SubscriptionPlan | None:
    if not plan_key:
        return None
    return s.query(SubscriptionPlan).filter(SubscriptionPlan.plan_key == plan_key).one_or_none()


def plan_info(user: User, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.utcnow()
    plan = current_plan(user, now=now)
    days_left = None
    if user.trial_end_date:
        days_left = max(0, math.ceil((user.trial_end_date - now).total_seconds() / 86400))
    return {
        "current_plan": plan,
        "features": list(PLAN_FEATURES[plan]),
        "organization_id": user.organization_id,
        "subscription_plan": user.subscription_plan,
        "subscription_status": user.subscription_status,
        "trial_end_date": user.trial_end_date,
        "trial_days_left": days_left,
    }


# --- trial requests ----------------------------------------------------------


def _split_name(payload: dict[str, Any]) -> tuple[str | None, str | None]:
    first = clean(payload.get("first_name"))
    last = clean(payload.get("last_name"))
    if not first and clean(payload.get("name")):
        parts = clean(payload.get("name")).split(None, 1)  # type: ignore[union-attr]
        first = parts[0]
        last = last or (parts[1] if len(parts) > 1 else None)
    return first, last


def validate_trial_request_payload(s: Session, payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    first, last = _split_name(payload)
    if not first or not last:
        errors.append("First and last name are required.")
    email = (clean(payload.get("email")) or "").lower()
    if not email or "@" not in email:
        errors.append("A valid email is required.")
    if not clean(payload.get("company")):
        errors.append("Company is required.")
    if not clean(payload.get("job_title")):
        errors.append("Job title is required.")
    if clean(payload.get("team_size")) not in TEAM_SIZES:
        errors.append(f"Team size must be one of: {', '.join(TEAM_SIZES)}.")
    plan_key = clean(payload.get("plan_id"))
    if plan_key not in PLAN_FEATURES:
        errors.append(f"Plan must be one of: {', '.join(PLAN_FEATURES)}.")
    if clean(payload.get("billing_cycle")) not in BILLING_CYCLES:
        errors.append("Billing cycle must be monthly or yearly.")
    if email and (
        s.query(TrialRequest.id)
        .filter(func.lower(TrialRequest.email) == email, TrialRequest.status == "pending")
        .first()
    ):
        errors.append("A trial request for this email is already pending.")
    return errors


def submit_trial_request(s: Session, payload: dict[str, Any]) -> TrialRequest:
    first, last = _split_name(payload)
    trial = TrialRequest(
        first_name=first or "",
        last_name=last or "",
        email=(clean(payload.get("email")) or "").lower(),
        company=clean(payload.get("company")) or "",
        phone=clean(payload.get("phone")),
        job_title=clean(payload.get("job_title")) or "",
        team_size=clean(payload.get("team_size")) or "",
        plan_id=clean(payload.get("plan_id")) or "professional",
        billing_cycle=clean(payload.get("billing_cycle")) or "monthly",
        message=clean(payload.get("message")),
        status="pending",
    )
    s.add(trial)
    s.flush()
    notify_many(
        s,
        [u.id for u in hr_admins(s)],
        type="trial_request",
        title="New trial request",
        message=f"{trial.full_name} from {trial.company} requested a {trial.plan_id} trial.",
        entity_type="TrialRequest",
        entity_id=trial.id,
    )
    record_event(s, actor=None, action="trial_request.submit", entity_type="TrialRequest", entity_id=trial.id, metadata={"company": trial.company})
    return trial


def approve_trial_request(
    s: Session,
    trial: TrialRequest,
    *,
    user: User,
    trial_days: int = 14,
    now: datetime | None = None,
) -> tuple[User, str]:
    """
    Create the trial account and its customer record.
    Returns (account, plaintext password) so the caller can email credentials after commit.
    """
    if trial.status != "pending":
        raise BillingError(f"Trial request is already {trial.status}.")
    if s.query(User.id).filter(func.lower(User.email) == trial.email.lower()).first():
        raise BillingError("An account with this email already exists.")

    now = now or datetime.utcnow()
    end = now + timedelta(days=trial_days)
    password = generate_password()
    account = User(
        email=trial.email.lower(),
        username=unique_username(s, trial.email.split("@", 1)[0]),
        password_hash=generate_password_hash(password),
        first_name=trial.first_name,
        last_name=trial.last_name,
        phone=trial.phone,
        is_active=True,
        status="active",
        trial_end_date=end,
        subscription_plan=trial.plan_id,
        subscription_status="trial",
    )
    role = s.query(Role).filter(Role.key == TRIAL_USER_ROLE).one_or_none()
    if role is not None:
        account.roles.append(role)
    s.add(account)
    s.flush()
    account.organization_id = f"trial-{account.id}"

    trial.status = "approved"
    trial.approver = user
    trial.approved_at = now
    trial.trial_start_date = now
    trial.trial_end_date = end
    trial.created_user = account
    trial.updated_at = now

    customer = Customer(
        trial_request_id=trial.id,
        user_id=account.id,
        company_name=trial.company,
        contact_name=trial.full_name,
        contact_email=trial.email,
        phone=trial.phone,
        status="trial",
        trial_start_date=now,
        trial_end_date=end,
        plan_id=trial.plan_id,
        billing_cycle=trial.billing_cycle,
    )
    s.add(customer)
    s.flush()
    _log_billing_event(
        s,
        customer,
        "trial_started",
        f"{trial_days}-day trial started for {trial.company}",
        data={"trial_request_id": trial.id, "trial_end_date": end.isoformat()},
    )
    record_event(
        s,
        actor=user,
        action="trial_request.approve",
        entity_type="TrialRequest",
        entity_id=trial.id,
        metadata={"user_id": account.id, "customer_id": customer.id},
    )
    logger.info("Approved trial request %s; created user %s", trial.id, account.id)
    return account, password


def reject_trial_request(s: Session, trial: TrialRequest, *, reason: str | None, user: User) -> TrialRequest:
    if trial.status != "pending":
        raise BillingError(f"Trial request is already {trial.status}.")
    reason = clean(reason)
    if not reason:
        raise BillingError("A rejection reason is required.")
    trial.status = "rejected"
    trial.approver = user
    trial.rejection_reason = reason
    trial.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="trial_request.reject", entity_type="TrialRequest", entity_id=trial.id, reason=reason)
    return trial


def customer_for_user(s: Session, account: User) -> Customer | None:
    return s.query(Customer).filter(Customer.user_id == account.id).order_by(Customer.id.desc()).first()


def extend_trial(s: Session, account: User, *, days: int, user: User, now: datetime | None = None) -> User:
    if days < 1:
        raise BillingError("Extension must be at least one day.")
    if account.trial_end_date is None:
        raise BillingError("This account is not on a trial.")
    if account.subscription_status not in ("trial", "expired"):
        raise BillingError("Only trial accounts can be extended.")
    now = now or datetime.utcnow()
    base = max(account.trial_end_date, now)
    account.trial_end_date = base + timedelta(days=days)
    account.subscription_status = "trial"
    account.trial_warning_sent_at = None

    customer = customer_for_user(s, account)
    if customer is not None:
        customer.trial_end_date = account.trial_end_date
        customer.status = "trial"
        customer.updated_at = now
        _log_billing_event(
            s,
            customer,
            "trial_extended",
            f"Trial extended by {days} day(s)",
            data={"days": days, "trial_end_date": account.trial_end_date.isoformat()},
        )
    record_event(
        s,
        actor=user,
        action="trial.extend",
        entity_type="User",
        entity_id=account.id,
        metadata={"days": days, "trial_end_date": account.trial_end_date},
    )
    return account


# --- subscriptions -----------------------------------------------------------


def start_subscription(
    s: Session,
    customer: Customer,
    *,
    plan: SubscriptionPlan,
    billing_cycle: str,
    client: StripeClient,
    user: User,
    trial_days: int | None = None,
) -> tuple[Subscription, str | None]:
    """Create the Stripe customer (once) and subscription. Returns (subscription, payment client secret)."""
    if billing_cycle not in BILLING_CYCLES:
        raise BillingError("Billing cycle must be monthly or yearly.")
    price_id = plan.stripe_price_for(billing_cycle)
    if not price_id:
        raise BillingError("Price ID not configured for this plan and billing cycle.")

    if not customer.stripe_customer_id:
        remote_customer = client.create_customer(
            email=customer.contact_email,
            name=customer.contact_name,
            company=customer.company_name,
            phone=customer.phone,
        )
        customer.stripe_customer_id = remote_customer["id"]
        if customer.user is not None:
            customer.user.stripe_customer_id = customer.stripe_customer_id

    remote = client.create_subscription(customer_id=customer.stripe_customer_id, price_id=price_id, trial_days=trial_days)
    now = datetime.utcnow()
    sub = Subscription(
        customer_id=customer.id,
        stripe_subscription_id=remote.get("id"),
        plan_id=plan.plan_key,
        status=remote.get("status") or "incomplete",
        billing_cycle=billing_cycle,
        current_period_start=_ts(remote.get("current_period_start")),
        current_period_end=_ts(remote.get("current_period_end")),
        trial_start=_ts(remote.get("trial_start")),
        trial_end=_ts(remote.get("trial_end")),
        amount=plan.price_for(billing_cycle),
        currency="usd",
    )
    s.add(sub)
    customer.plan_id = plan.plan_key
    customer.billing_cycle = billing_cycle
    customer.subscription_start_date = now
    customer.updated_at = now
    s.flush()
    if customer.user is not None:
        customer.user.stripe_subscription_id = sub.stripe_subscription_id
    _log_billing_event(s, customer, "subscription_created", f"Subscription created for {customer.company_name}", subscription=sub)
    record_event(s, actor=user, action="subscription.create", entity_type="Subscription", entity_id=sub.id, metadata={"plan": plan.plan_key})

    invoice = remote.get("latest_invoice") or {}
    intent = invoice.get("payment_intent") if isinstance(invoice, dict) else None
    client_secret = intent.get("client_secret") if isinstance(intent, dict) else None
    return sub, client_secret


def cancel_subscription(
    s: Session,
    sub: Subscription,
    *,
    client: StripeClient,
    at_period_end: bool,
    user: User,
) -> Subscription:
    if sub.status == "canceled":
        raise BillingError("Subscription is already canceled.")
    if sub.stripe_subscription_id:
        client.cancel_subscription(sub.stripe_subscription_id, at_period_end=at_period_end)
    now = datetime.utcnow()
    sub.cancel_at_period_end = at_period_end
    if not at_period_end:
        sub.status = "canceled"
        sub.canceled_at = now
        _sync_user_status(sub.customer, "canceled")
    sub.updated_at = now
    _log_billing_event(
        s,
        sub.customer,
        "subscription_cancel_scheduled" if at_period_end else "subscription_canceled",
        "Subscription scheduled for cancellation at period end" if at_period_end else "Subscription canceled immediately",
        subscription=sub,
    )
    record_event(s, actor=user, action="subscription.cancel", entity_type="Subscription", entity_id=sub.id, metadata={"at_period_end": at_period_end})
    return sub


def billing_stats(s: Session) -> dict[str, Any]:
    by_status = dict(s.query(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status).all())
    revenue = s.query(func.coalesce(func.sum(Payment.amount), 0)).filter(Payment.status == "succeeded").scalar()
    customers = s.query(func.count(Customer.id)).scalar() or 0
    total = Decimal(str(revenue or 0)).quantize(Decimal("0.01"))
    return {
        "customers": customers,
        "active_subscriptions": by_status.get("active", 0),
        "trialing_subscriptions": by_status.get("trialing", 0),
        "canceled_subscriptions": by_status.get("canceled", 0),
        "pending_trial_requests": s.query(func.count(TrialRequest.id)).filter(TrialRequest.status == "pending").scalar() or 0,
        "total_revenue": total,
        "avg_revenue_per_customer": (total / customers).quantize(Decimal("0.01")) if customers else Decimal("0.00"),
    }


# --- webhooks ----------------------------------------------------------------


@dataclass
class WebhookOutcome:
    event_type: str
    handled: bool = False
    # (user, amount display) pairs to email once the transaction is committed
    failed_payments: list[tuple[User, str]] = field(default_factory=list)


def _customer_by_stripe_id(s: Session, stripe_customer_id: Any) -> Customer | None:
    if not stripe_customer_id:
        return None
    return s.query(Customer).filter(Customer.stripe_customer_id == str(stripe_customer_id)).one_or_none()


def _subscription_by_stripe_id(s: Session, stripe_subscription_id: Any) -> Subscription | None:
    if not stripe_subscription_id:
        return None
    return s.query(Subscription).filter(Subscription.stripe_subscription_id == str(stripe_subscription_id)).one_or_none()


def _plan_for_price(s: Session, price_id: str | None) -> tuple[str | None, str | None]:
    if not price_id:
        return None, None
    plan = (
        s.query(SubscriptionPlan)
        .filter((SubscriptionPlan.stripe_price_id_monthly == price_id) | (SubscriptionPlan.stripe_price_id_yearly == price_id))
        .first()
    )
    if plan is None:
        return None, None
    return plan.plan_key, ("yearly" if plan.stripe_price_id_yearly == price_id else "monthly")


def _sync_user_status(customer: Customer, stripe_status: str, *, plan_key: str | None = None, subscription_id: str | None = None) -> None:
    account = customer.user
    if account is None:
        return
    account.subscription_status = _USER_STATUS.get(stripe_status, account.subscription_status)
    if plan_key:
        account.subscription_plan = plan_key
    if subscription_id:
        account.stripe_subscription_id = subscription_id
    if account.subscription_status == "active":
        account.trial_end_date = None
        customer.status = "active"
    elif account.subscription_status == "canceled":
        customer.status = "cancelled"


def _upsert_subscription(s: Session, customer: Customer, obj: dict[str, Any]) -> Subscription:
    items = (obj.get("items") or {}).get("data") or []
    price = (items[0].get("price") if items else None) or {}
    plan_key, cycle = _plan_for_price(s, price.get("id"))
    interval = ((price.get("recurring") or {}).get("interval"))
    cycle = cycle or ("yearly" if interval == "year" else "monthly")

    sub = _subscription_by_stripe_id(s, obj.get("id"))
    if sub is None:
        sub = Subscription(customer_id=customer.id, stripe_subscription_id=obj.get("id"), plan_id=plan_key or customer.plan_id, status="incomplete")
        s.add(sub)
    sub.plan_id = plan_key or sub.plan_id
    sub.status = obj.get("status") or sub.status
    sub.billing_cycle = cycle
    sub.current_period_start = _ts(obj.get("current_period_start")) or sub.current_period_start
    sub.current_period_end = _ts(obj.get("current_period_end")) or sub.current_period_end
    sub.trial_start = _ts(obj.get("trial_start")) or sub.trial_start
    sub.trial_end = _ts(obj.get("trial_end")) or sub.trial_end
    sub.canceled_at = _ts(obj.get("canceled_at")) or sub.canceled_at
    sub.cancel_at_period_end = bool(obj.get("cancel_at_period_end"))
    if price.get("unit_amount") is not None:
        sub.amount = _cents(price.get("unit_amount"))
    sub.currency = (obj.get("currency") or sub.currency or "usd")[:3]
    sub.updated_at = datetime.utcnow()
    s.flush()
    _sync_user_status(customer, sub.status, plan_key=sub.plan_id, subscription_id=sub.stripe_subscription_id)
    return sub


def _on_subscription_changed(s: Session, event_type: str, obj: dict[str, Any], outcome: WebhookOutcome) -> None:
    customer = _customer_by_stripe_id(s, obj.get("customer"))
    if customer is None:
        logger.warning("Stripe %s for unknown customer %s", event_type, obj.get("customer"))
        return
    if event_type == "customer.subscription.deleted":
        sub = _subscription_by_stripe_id(s, obj.get("id"))
        if sub is not None:
            sub.status = "canceled"
            sub.canceled_at = datetime.utcnow()
            sub.updated_at = sub.canceled_at
        _sync_user_status(customer, "canceled")
        _log_billing_event(s, customer, "subscription_canceled", f"Subscription {obj.get('id')} canceled", subscription=sub)
    else:
        sub = _upsert_subscription(s, customer, obj)
        verb = "created" if event_type.endswith("created") else "updated"
        _log_billing_event(s, customer, f"subscription_{verb}", f"Subscription {sub.stripe_subscription_id} {verb}", subscription=sub)
    outcome.handled = True


def _on_invoice(s: Session, event_type: str, obj: dict[str, Any], outcome: WebhookOutcome) -> None:
    customer = _customer_by_stripe_id(s, obj.get("customer"))
    if customer is None:
        logger.warning("Stripe %s for unknown customer %s", event_type, obj.get("customer"))
        return
    succeeded = event_type == "invoice.payment_succeeded"
    status = "succeeded" if succeeded else "failed"
    existing = (
        s.query(Payment)
        .filter(Payment.stripe_invoice_id == obj.get("id"), Payment.status == status)
        .first()
    )
    if existing is not None:
        # Stripe retries deliveries; one payment row per invoice outcome
        outcome.handled = True
        return

    sub = _subscription_by_stripe_id(s, obj.get("subscription"))
    amount = _cents(obj.get("amount_paid") if succeeded else obj.get("amount_due"))
    currency = (obj.get("currency") or "usd")[:3]
    paid_at = _ts((obj.get("status_transitions") or {}).get("paid_at")) if succeeded else None
    payment = Payment(
        customer_id=customer.id,
        subscription_id=sub.id if sub else None,
        stripe_invoice_id=obj.get("id"),
        stripe_payment_intent_id=obj.get("payment_intent") if succeeded and isinstance(obj.get("payment_intent"), str) else None,
        amount=amount,
        currency=currency,
        status=status,
        payment_method="card" if succeeded else None,
        description=obj.get("description") or f"{'Payment' if succeeded else 'Failed payment'} for invoice {obj.get('number') or obj.get('id')}",
        paid_at=paid_at or (datetime.utcnow() if succeeded else None),
        failure_reason=None if succeeded else "Payment failed",
    )
    s.add(payment)
    s.flush()
    _log_billing_event(
        s,
        customer,
        f"payment_{status}",
        f"Payment {status} for invoice {obj.get('number') or obj.get('id')}",
        subscription=sub,
        payment=payment,
    )
    if succeeded:
        if customer.user is not None and customer.user.subscription_status == "past_due":
            _sync_user_status(customer, "active")
    else:
        if sub is not None:
            sub.status = "past_due"
            sub.updated_at = datetime.utcnow()
        _sync_user_status(customer, "past_due")
        if customer.user is not None:
            outcome.failed_payments.append((customer.user, f"{amount} {currency.upper()}"))
    outcome.handled = True


_HANDLERS = {
    "customer.subscription.created": _on_subscription_changed,
    "customer.subscription.updated": _on_subscription_changed,
    "customer.subscription.deleted": _on_subscription_changed,
    "invoice.payment_succeeded": _on_invoice,
    "invoice.payment_failed": _on_invoice,
}


def handle_stripe_event(s: Session, event: dict[str, Any]) -> WebhookOutcome:
    event_type = str(event.get("type") or "")
    outcome = WebhookOutcome(event_type=event_type)
    obj = (event.get("data") or {}).get("object") or {}
    handler = _HANDLERS.get(event_type)
    if handler is None:
        logger.info("Ignoring Stripe event type %s", event_type)
        return outcome
    handler(s, event_type, obj, outcome)
    return outcome


# --- sweeps ------------------------------------------------------------------


@dataclass
class TrialSweepResult:
    warned: list[tuple[User, int]] = field(default_factory=list)
    expired: list[User] = field(default_factory=list)


def process_trial_expirations(s: Session, *, now: datetime | None = None) -> TrialSweepResult:
    """
    Warn trial users once when three days or fewer remain; expire trials whose end date has passed.
    Emails are left to the caller (send after commit).
    """
    now = now or datetime.utcnow()
    result = TrialSweepResult()
    users = (
        s.query(User)
        .filter(User.subscription_status == "trial", User.trial_end_date.is_not(None))
        .all()
    )
    for account in users:
        end = account.trial_end_date
        if end <= now:
            account.subscription_status = "expired"
            customer = customer_for_user(s, account)
            if customer is not None:
                customer.status = "expired"
                customer.updated_at = now
                _log_billing_event(s, customer, "trial_ended", "Trial period ended")
            record_event(s, actor=None, action="trial.expire", entity_type="User", entity_id=account.id)
            result.expired.append(account)
            continue
        days_left = math.ceil((end - now).total_seconds() / 86400)
        if days_left <= TRIAL_WARNING_DAYS and account.trial_warning_sent_at is None:
            account.trial_warning_sent_at = now
            result.warned.append((account, days_left))
    s.flush()
    if result.warned or result.expired:
        logger.info("Trial sweep: %d warned, %d expired", len(result.warned), len(result.expired))
    return result


def list_trial_requests(s: Session, *, status: str | None = None) -> list[TrialRequest]:
    q = s.query(TrialRequest)
    if status:
        q = q.filter(TrialRequest.status == status)
    return q.order_by(TrialRequest.created_at.desc(), TrialRequest.id.desc()).all()


def list_trial_users(s: Session) -> list[User]:
    return (
        s.query(User)
        .filter(User.trial_end_date.is_not(None))
        .order_by(User.trial_end_date.asc())
        .all()
    )


def parse_days(value: Any) -> int | None:
    days = parse_int(value)
    return days if days is not None and days > 0 else None
