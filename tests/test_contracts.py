from datetime import datetime, timedelta

import pytest

from app.hrms.db import session_scope
from app.hrms.modules.contracts.models import EmploymentContract
from app.hrms.modules.contracts.service import expire_contracts


@pytest.fixture()
def parties(app, make_user, login):
    make_user("hr@example.com", "hr_admin")
    emp_id = make_user("signer@example.com", "employee")
    hr = app.test_client()
    login(hr, "hr@example.com")
    emp = app.test_client()
    login(emp, "signer@example.com")
    return hr, emp, emp_id


def _issue(hr, emp_id, **extra):
    payload = {
        "user_id": emp_id,
        "position": "Account Manager",
        "salary": "52000",
        "currency": "usd",
        "start_date": "2025-04-01",
        "content": "This agreement sets out the terms of employment.",
    }
    payload.update(extra)
    r = hr.post("/api/contracts", json=payload)
    assert r.status_code == 201, r.json
    return r.json


def test_issue_validates_payload(parties):
    hr, emp, emp_id = parties
    r = hr.post("/api/contracts", json={"user_id": emp_id, "currency": "dollars", "expires_at": "2000-01-01T00:00:00"})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 4
    assert emp.post("/api/contracts", json={"user_id": emp_id}).status_code == 403


def test_issue_and_sign(parties, mail):
    hr, emp, emp_id = parties
    contract = _issue(hr, emp_id)
    assert contract["status"] == "pending"
    assert contract["currency"] == "USD"
    assert contract["is_expired"] is False
    assert [m.to for m in mail] == ["signer@example.com"]
    mail.clear()

    assert [c["id"] for c in emp.get("/api/contracts").json["items"]] == [contract["id"]]

    assert emp.post(f"/api/contracts/{contract['id']}/sign", json={"signature": "  "}).status_code == 400
    assert hr.post(f"/api/contracts/{contract['id']}/sign", json={"signature": "HR"}).status_code == 409

    r = emp.post(f"/api/contracts/{contract['id']}/sign", json={"signature": "Sam Signer"})
    assert r.status_code == 200
    assert r.json["status"] == "signed"
    assert r.json["signed_at"] is not None
    assert [m.to for m in mail] == ["hr@example.com"]

    me = emp.get("/auth/me").json["user"]
    assert me["contract_signed"] is True

    assert emp.post(f"/api/contracts/{contract['id']}/decline", json={}).status_code == 409

    pdf = emp.get(f"/api/contracts/{contract['id']}/pdf")
    assert pdf.status_code == 200
    assert pdf.data.startswith(b"%PDF")


def test_decline_records_reason(parties):
    hr, emp, emp_id = parties
    contract = _issue(hr, emp_id)
    r = emp.post(f"/api/contracts/{contract['id']}/decline", json={"reason": "Accepted another offer"})
    assert r.status_code == 200
    assert r.json["decline_reason"] == "Accepted another offer"
    assert emp.post(f"/api/contracts/{contract['id']}/sign", json={"signature": "Sam"}).status_code == 409


def test_contracts_are_private(parties, as_user):
    hr, _emp, emp_id = parties
    contract = _issue(hr, emp_id)
    other = as_user("other@example.com", "employee")
    assert other.get(f"/api/contracts/{contract['id']}").status_code == 404
    assert hr.get("/api/contracts?scope=all").json["items"][0]["id"] == contract["id"]
    assert hr.get("/api/contracts?status=lost").status_code == 400


def test_expiry_sweep_and_expired_signing(app, parties):
    hr, emp, emp_id = parties
    contract = _issue(hr, emp_id)

    with session_scope(app) as s:
        assert expire_contracts(s, now=datetime.utcnow()) == []
        later = datetime.utcnow() + timedelta(days=15)
        expired = expire_contracts(s, now=later)
        assert [c.id for c in expired] == [contract["id"]]

    with session_scope(app) as s:
        assert s.get(EmploymentContract, contract["id"]).status == "expired"

    r = emp.post(f"/api/contracts/{contract['id']}/sign", json={"signature": "Too late"})
    assert r.status_code == 409
