from datetime import date
from decimal import Decimal

import pytest

from app.hrms.modules.logistics.models import LogisticsExpense
from app.hrms.modules.logistics.service import expense_report


@pytest.fixture()
def clients(as_user):
    lm = as_user("stores@example.com", "logistics_manager")
    emp = as_user("worker@example.com", "employee")
    return lm, emp


def _item(lm, **extra):
    payload = {"name": "Printer paper", "category": "office", "quantity": 10, "min_quantity": 5, "unit_cost": "4.50"}
    payload.update(extra)
    r = lm.post("/api/logistics/items", json=payload)
    assert r.status_code == 201, r.json
    return r.json


def test_item_stock_movements(clients):
    lm, _emp = clients
    assert lm.post("/api/logistics/items", json={"quantity": -1}).status_code == 400

    item = _item(lm)
    assert item["quantity"] == 10
    assert item["is_low_stock"] is False

    r = lm.post(f"/api/logistics/items/{item['id']}/movements", json={"movement_type": "out", "quantity": 6})
    assert r.status_code == 201
    assert r.json["item"]["quantity"] == 4
    assert r.json["item"]["is_low_stock"] is True

    r = lm.post(f"/api/logistics/items/{item['id']}/movements", json={"movement_type": "out", "quantity": 5})
    assert r.status_code == 409

    r = lm.post(
        f"/api/logistics/items/{item['id']}/movements",
        json={"movement_type": "adjustment", "quantity": -1, "reason": "Damaged ream"},
    )
    assert r.status_code == 201
    assert r.json["movement"]["previous_quantity"] == 4
    assert r.json["movement"]["new_quantity"] == 3

    movements = lm.get(f"/api/logistics/items/{item['id']}/movements").json["items"]
    assert [m["movement_type"] for m in movements] == ["adjustment", "out", "in"]

    low = lm.get("/api/logistics/items/low-stock").json["items"]
    assert [i["id"] for i in low] == [item["id"]]


def test_deleting_an_item_deactivates_it(clients):
    lm, _emp = clients
    item = _item(lm)
    r = lm.delete(f"/api/logistics/items/{item['id']}")
    assert r.status_code == 200
    assert r.json["is_active"] is False
    assert lm.get("/api/logistics/items").json["items"] == []
    assert len(lm.get("/api/logistics/items?include_inactive=1").json["items"]) == 1


def test_request_lifecycle_restocks_on_completion(clients, mail):
    lm, emp = clients
    item = _item(lm, quantity=0)

    assert emp.post("/api/logistics/requests", json={"item_id": item["id"], "quantity": 0}).status_code == 400

    r = emp.post("/api/logistics/requests", json={"item_id": item["id"], "quantity": 20, "reason": "Month end"})
    assert r.status_code == 201
    req = r.json
    assert req["item_name"] == "Printer paper"
    assert "stores@example.com" in [m.to for m in mail]

    # purchase before approval is refused
    assert lm.post(f"/api/logistics/requests/{req['id']}/purchase", json={"actual_cost": "90"}).status_code == 409
    assert emp.post(f"/api/logistics/requests/{req['id']}/approve").status_code == 403

    r = lm.post(f"/api/logistics/requests/{req['id']}/approve", json={"notes": "ok"})
    assert r.json["status"] == "approved"
    assert r.json["approved_by"]["email"] == "stores@example.com"
    r = lm.post(f"/api/logistics/requests/{req['id']}/purchase", json={})
    assert r.status_code == 409
    assert r.json["message"] == "Actual cost is required."
    r = lm.post(f"/api/logistics/requests/{req['id']}/purchase", json={"actual_cost": "-5"})
    assert r.status_code == 409
    assert r.json["message"] == "Actual cost must not be negative."
    r = lm.post(
        f"/api/logistics/requests/{req['id']}/purchase",
        json={"actual_cost": "90.00", "vendor": "Paper Co", "purchase_date": "2025-03-04"},
    )
    assert r.status_code == 200
    assert r.json["status"] == "purchased"

    assert lm.post(f"/api/logistics/requests/{req['id']}/deliver").json["status"] == "delivered"
    assert lm.post(f"/api/logistics/requests/{req['id']}/complete").json["status"] == "completed"

    restocked = lm.get("/api/logistics/items").json["items"][0]
    assert restocked["quantity"] == 20

    expenses = lm.get("/api/logistics/expenses").json["items"]
    assert len(expenses) == 1
    assert expenses[0]["expense_type"] == "purchase"
    assert Decimal(expenses[0]["amount"]) == Decimal("90")

    mine = emp.get("/api/logistics/requests").json["items"]
    assert [m["status"] for m in mine] == ["completed"]


def test_reject_requires_reason(clients):
    lm, emp = clients
    req = emp.post("/api/logistics/requests", json={"item_name": "Desk lamp", "quantity": 1}).json
    assert lm.post(f"/api/logistics/requests/{req['id']}/reject", json={}).status_code == 400
    r = lm.post(f"/api/logistics/requests/{req['id']}/reject", json={"reason": "Use the spare"})
    assert r.status_code == 200
    assert r.json["rejection_reason"] == "Use the spare"
    assert lm.post(f"/api/logistics/requests/{req['id']}/approve").status_code == 409


def test_expenses_crud_and_report(clients):
    lm, _emp = clients
    r = lm.post("/api/logistics/expenses", json={"expense_type": "gift", "amount": "-3"})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 3

    for amount, vendor, day in (("100", "Acme", "2025-01-15"), ("50", "Acme", "2025-02-01"), ("25", "Speedy", "2025-02-10")):
        r = lm.post(
            "/api/logistics/expenses",
            json={"expense_type": "shipping", "amount": amount, "vendor": vendor, "category": "freight", "expense_date": day},
        )
        assert r.status_code == 201
    cancelled = r.json

    r = lm.patch(f"/api/logistics/expenses/{cancelled['id']}", json={"payment_status": "cancelled"})
    assert r.json["payment_status"] == "cancelled"

    report = lm.get("/api/logistics/expenses/report?start=2025-01-01&end=2025-12-31").json
    assert Decimal(report["total"]) == Decimal("150")
    assert [row["month"] for row in report["by_month"]] == ["2025-01", "2025-02"]

    assert lm.get("/api/logistics/expenses?start=bad").status_code == 400
    assert lm.delete(f"/api/logistics/expenses/{cancelled['id']}").json == {"deleted": cancelled["id"]}


def test_expense_report_groups_and_sorts():
    rows = [
        LogisticsExpense(amount=Decimal("10"), category="office", vendor="A", expense_date=date(2025, 1, 5), payment_status="paid"),
        LogisticsExpense(amount=Decimal("30"), category="travel", vendor="B", expense_date=date(2025, 1, 9), payment_status="pending"),
        LogisticsExpense(amount=Decimal("5"), category=None, vendor=None, expense_date=date(2025, 2, 1), payment_status="paid"),
    ]
    report = expense_report(rows)
    assert report["total"] == "45"
    assert [r["category"] for r in report["by_category"]] == ["travel", "office", "uncategorized"]
    assert report["by_vendor"][-1] == {"vendor": "unknown", "total": "5"}
    assert report["by_month"] == [{"month": "2025-01", "total": "40"}, {"month": "2025-02", "total": "5"}]


def test_logistics_needs_a_professional_plan(as_user):
    starter = as_user(
        "starter@example.com",
        "logistics_manager",
        organization_id="org-1",
        subscription_plan="starter",
        subscription_status="active",
    )
    r = starter.get("/api/logistics/items")
    assert r.status_code == 403
    assert r.json["required_plan"] == "professional"
