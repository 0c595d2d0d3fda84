import json
import re
import time
from datetime import datetime, timedelta

import pytest

from app.hrms.db import session_scope
from app.hrms.models import User
from app.hrms.modules.billing.models import BillingEvent, Customer, Payment
from app.hrms.modules.billing.service import process_trial_expirations
from app.hrms.modules.billing.stripe_client import StripeSignatureError, compute_signature, encode_params, verify_webhook

TRIAL = {
    "name": "Dana Whitfield",
    "email": "Dana@Acme.example",
    "company": "Acme Events",
    "job_title": "Operations Director",
    "team_size": "11-50",
    "plan_id": "professional",
    "billing_cycle": "monthly",
}


def _signed(payload: bytes, secret: str = "whsec_test", ts: int | None = None) -> str:
    ts = ts or int(time.time())
    return f"t={ts},v1={compute_signature(payload, str(ts), secret)}"


def test_verify_webhook_accepts_valid_signature():
    body = json.dumps({"type": "invoice.payment_succeeded", "data": {"object": {}}}).encode()
    event = verify_webhook(body, _signed(body), "whsec_test")
    assert event["type"] == "invoice.payment_succeeded"


@pytest.mark.parametrize(
    "header",
    [None, "garbage", "t=abc,v1=00", "t=1700000000,v1=deadbeef"],
)
def test_verify_webhook_rejects_bad_headers(header):
    with pytest.raises(StripeSignatureError):
        verify_webhook(b"{}", header, "whsec_test", now=1700000000)


def test_verify_webhook_rejects_stale_timestamp():
    body = b'{"type": "x"}'
    with pytest.raises(StripeSignatureError):
        verify_webhook(body, _signed(body, ts=1700000000), "whsec_test", now=1700000000 + 301)


def test_encode_params_flattens_nested_values():
    encoded = encode_params({"customer": "cus_1", "items": [{"price": "price_1"}], "skip": None, "flag": True})
    assert encoded == "customer=cus_1&items%5B0%5D%5Bprice%5D=price_1&flag=true"


def test_plans_are_public(client):
    r = client.get("/public/plans")
    assert r.status_code == 200
    assert [p["plan_id"] for p in r.json["items"]] == ["starter", "professional", "enterprise"]
    assert r.json["items"][0]["monthly_price"] == "29.00"


def test_trial_request_validation(client):
    r = client.post("/public/trial-requests", json={"email": "nope", "team_size": "huge", "plan_id": "gold"})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 7


def test_trial_request_approval_creates_account(app, client, make_user, login, mail):
    make_user("hr@example.com", "hr_admin")
    r = client.post("/public/trial-requests", json=TRIAL)
    assert r.status_code == 201
    trial_id = r.json["id"]
    assert sorted(m.to for m in mail) == ["dana@acme.example", "hr@example.com"]
    assert client.post("/public/trial-requests", json=TRIAL).status_code == 400
    mail.clear()

    hr = app.test_client()
    login(hr, "hr@example.com")
    r = hr.post(f"/api/billing/trial-requests/{trial_id}/approve")
    assert r.status_code == 200
    assert r.json["status"] == "approved"
    account_id = r.json["created_user"]["id"]
    assert r.json["approved_by"]["email"] == "hr@example.com"
    assert hr.post(f"/api/billing/trial-requests/{trial_id}/approve").status_code == 409

    assert [m.to for m in mail] == ["dana@acme.example"]
    password = re.search(r"Temporary password: <strong>(\w+)</strong>", mail[0].html).group(1)

    trial_client = app.test_client()
    user = login(trial_client, "dana@acme.example", password)
    assert user["roles"] == ["manager"]
    assert user["organization_id"] == f"trial-{account_id}"

    info = trial_client.get("/api/billing/plan-info").json
    assert info["current_plan"] == "professional"
    assert info["trial_days_left"] == 14

    with session_scope(app) as s:
        customer = s.query(Customer).filter(Customer.user_id == account_id).one()
        assert customer.status == "trial"
        events = s.query(BillingEvent).filter(BillingEvent.customer_id == customer.id).all()
        assert [ev.event_type for ev in events] == ["trial_started"]


def test_reject_and_extend_trial(app, client, as_user):
    hr = as_user("hr@example.com", "hr_admin")
    trial_id = client.post("/public/trial-requests", json=TRIAL).json["id"]
    assert hr.post(f"/api/billing/trial-requests/{trial_id}/reject", json={}).status_code == 400
    r = hr.post(f"/api/billing/trial-requests/{trial_id}/reject", json={"reason": "Outside our market"})
    assert r.json["status"] == "rejected"

    second = client.post("/public/trial-requests", json=dict(TRIAL, email="lee@acme.example")).json["id"]
    account_id = hr.post(f"/api/billing/trial-requests/{second}/approve").json["created_user"]["id"]
    assert hr.post(f"/api/billing/trial-users/{account_id}/extend", json={"days": 0}).status_code == 400
    r = hr.post(f"/api/billing/trial-users/{account_id}/extend", json={"days": 7})
    assert r.status_code == 200
    end = datetime.fromisoformat(r.json["trial_end_date"])
    assert timedelta(days=20) < end - datetime.utcnow() <= timedelta(days=21)


def test_employee_cannot_view_billing(as_user):
    emp = as_user("emp@example.com", "employee")
    r = emp.get("/api/billing/trial-requests")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "billing.view"


def _approved_customer(app, client, as_user) -> tuple[int, int]:
    hr = as_user("hr@example.com", "hr_admin")
    trial_id = client.post("/public/trial-requests", json=TRIAL).json["id"]
    account_id = hr.post(f"/api/billing/trial-requests/{trial_id}/approve").json["created_user"]["id"]
    with session_scope(app) as s:
        customer = s.query(Customer).filter(Customer.user_id == account_id).one()
        customer.stripe_customer_id = "cus_test"
        return account_id, customer.id


def _post_event(client, event: dict, secret: str = "whsec_test"):
    body = json.dumps(event).encode()
    return client.post(
        "/public/stripe/webhook",
        data=body,
        headers={"Stripe-Signature": _signed(body, secret), "Content-Type": "application/json"},
    )


def test_webhook_rejects_bad_signature(client):
    r = _post_event(client, {"type": "invoice.payment_failed"}, secret="whsec_other")
    assert r.status_code == 400


def test_webhook_subscription_and_invoice_events(app, client, as_user, mail):
    account_id, customer_id = _approved_customer(app, client, as_user)

    r = _post_event(
        client,
        {
            "type": "customer.subscription.updated",
            "data": {
                "object": {
                    "id": "sub_1",
                    "customer": "cus_test",
                    "status": "active",
                    "items": {"data": [{"price": {"id": "price_x", "unit_amount": 7900, "recurring": {"interval": "month"}}}]},
                }
            },
        },
    )
    assert r.json == {"received": True, "handled": True}

    with session_scope(app) as s:
        account = s.get(User, account_id)
        assert account.subscription_status == "active"
        assert account.trial_end_date is None
        assert account.stripe_subscription_id == "sub_1"

    mail.clear()
    failed = {
        "type": "invoice.payment_failed",
        "data": {"object": {"id": "in_1", "customer": "cus_test", "subscription": "sub_1", "amount_due": 7900, "currency": "usd"}},
    }
    assert _post_event(client, failed).json["handled"] is True
    assert _post_event(client, failed).json["handled"] is True
    assert [m.to for m in mail] == ["dana@acme.example"]

    with session_scope(app) as s:
        payments = s.query(Payment).filter(Payment.customer_id == customer_id).all()
        assert [(p.status, str(p.amount)) for p in payments] == [("failed", "79.00")]
        assert s.get(User, account_id).subscription_status == "past_due"

    paid = {
        "type": "invoice.payment_succeeded",
        "data": {"object": {"id": "in_1", "customer": "cus_test", "subscription": "sub_1", "amount_paid": 7900}},
    }
    _post_event(client, paid)
    with session_scope(app) as s:
        assert s.get(User, account_id).subscription_status == "active"

    assert _post_event(client, {"type": "charge.refunded", "data": {"object": {}}}).json["handled"] is False


def test_trial_sweep_warns_once_then_expires(app, client, as_user):
    account_id, _customer_id = _approved_customer(app, client, as_user)
    now = datetime.utcnow()

    with session_scope(app) as s:
        result = process_trial_expirations(s, now=now + timedelta(days=12))
        assert [(u.id, days) for u, days in result.warned] == [(account_id, 2)]
    with session_scope(app) as s:
        assert process_trial_expirations(s, now=now + timedelta(days=12, hours=1)).warned == []
    with session_scope(app) as s:
        result = process_trial_expirations(s, now=now + timedelta(days=15))
        assert [u.id for u in result.expired] == [account_id]
    with session_scope(app) as s:
        assert s.get(User, account_id).subscription_status == "expired"
        assert s.query(Customer).filter(Customer.user_id == account_id).one().status == "expired"
