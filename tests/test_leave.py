from datetime import date

import pytest

from app.hrms.modules.leave.models import LeaveBalance
from app.hrms.modules.leave.service import (
    InsufficientLeaveBalance,
    LeaveError,
    apply_to_balance,
    calculate_total_days,
)


def _balance(**overrides) -> LeaveBalance:
    fields = dict(
        employee_id=1,
        year=2025,
        sick_leave_paid_total=15,
        sick_leave_paid_used=0,
        sick_leave_unpaid_total=15,
        sick_leave_unpaid_used=0,
        casual_leave_paid_total=5,
        casual_leave_paid_used=0,
        casual_leave_unpaid_used=0,
        bereavement_leave_used=0,
        public_holidays_used=0,
        unpaid_leave_used=0,
    )
    fields.update(overrides)
    return LeaveBalance(**fields)


def test_total_days_is_inclusive():
    assert calculate_total_days(date(2025, 3, 3), date(2025, 3, 3)) == 1
    assert calculate_total_days(date(2025, 3, 3), date(2025, 3, 7)) == 5


def test_sick_leave_draws_paid_then_unpaid():
    b = _balance(sick_leave_paid_used=12)
    changes = apply_to_balance(b, "sick_leave", 5)
    assert changes == {"sick_leave_paid_used": 15, "sick_leave_unpaid_used": 2}
    assert b.sick_leave_paid_used == 15
    assert b.sick_leave_unpaid_used == 2


def test_sick_leave_refused_when_both_pools_are_exhausted():
    b = _balance(sick_leave_paid_used=15, sick_leave_unpaid_used=14)
    with pytest.raises(InsufficientLeaveBalance):
        apply_to_balance(b, "sick_leave", 2)
    assert b.sick_leave_unpaid_used == 14


def test_casual_leave_overflow_is_unpaid():
    b = _balance(casual_leave_paid_used=3)
    apply_to_balance(b, "casual_leave", 4)
    assert b.casual_leave_paid_used == 5
    assert b.casual_leave_unpaid_used == 2


def test_other_types_only_count_usage():
    b = _balance()
    apply_to_balance(b, "bereavement_leave", 3)
    apply_to_balance(b, "public_holiday", 1)
    apply_to_balance(b, "unpaid_leave", 10)
    assert (b.bereavement_leave_used, b.public_holidays_used, b.unpaid_leave_used) == (3, 1, 10)
    with pytest.raises(LeaveError):
        apply_to_balance(b, "sabbatical", 1)


@pytest.fixture()
def staff(app, make_employee, login):
    make_employee("worker@example.com")
    make_employee("boss@example.com", "hr_admin")
    emp = app.test_client()
    login(emp, "worker@example.com")
    hr = app.test_client()
    login(hr, "boss@example.com")
    return emp, hr


def _submit(client, **overrides):
    payload = {
        "leave_type": "sick_leave",
        "reason": "Flu",
        "start_date": "2025-02-03",
        "end_date": "2025-02-05",
    }
    payload.update(overrides)
    return client.post("/api/leave/requests", json=payload)


def test_submit_validates_payload(staff):
    emp, _hr = staff
    r = _submit(emp, leave_type="holiday", end_date="2025-02-01", reason="")
    assert r.status_code == 400
    assert len(r.json["errors"]) == 3


def test_submit_and_approve_deducts_balance(staff, mail):
    emp, hr = staff
    r = _submit(emp)
    assert r.status_code == 201
    leave = r.json
    assert leave["total_days"] == 3
    assert leave["status"] == "pending"
    assert "boss@example.com" in [m.to for m in mail]

    pending = hr.get("/api/leave/pending-approvals").json["items"]
    assert [p["id"] for p in pending] == [leave["id"]]

    assert emp.post(f"/api/leave/requests/{leave['id']}/approve").status_code == 403

    mail.clear()
    r = hr.post(f"/api/leave/requests/{leave['id']}/approve")
    assert r.status_code == 200
    assert r.json["status"] == "approved"
    assert r.json["approved_by"]["email"] == "boss@example.com"
    assert [m.to for m in mail] == ["worker@example.com"]

    balance = emp.get("/api/leave/balance?year=2025").json
    assert balance["sick_leave_paid_used"] == 3
    assert balance["remaining"]["sick_leave_paid"] == 12

    r = hr.post(f"/api/leave/requests/{leave['id']}/approve")
    assert r.status_code == 409


def test_approval_refused_when_sick_leave_runs_out(staff):
    emp, hr = staff
    leave = _submit(emp, start_date="2025-01-01", end_date="2025-02-05").json
    assert leave["total_days"] == 36
    r = hr.post(f"/api/leave/requests/{leave['id']}/approve")
    assert r.status_code == 409
    assert "Insufficient" in r.json["message"]

    assert emp.get(f"/api/leave/requests/{leave['id']}").json["status"] == "pending"
    assert emp.get("/api/leave/balance?year=2025").json["sick_leave_paid_used"] == 0


def test_reject_needs_reason(staff):
    emp, hr = staff
    leave = _submit(emp).json
    assert hr.post(f"/api/leave/requests/{leave['id']}/reject", json={}).status_code == 400
    r = hr.post(f"/api/leave/requests/{leave['id']}/reject", json={"reason": "Cover unavailable"})
    assert r.status_code == 200
    assert r.json["rejection_reason"] == "Cover unavailable"


def test_only_requester_cancels_pending_leave(staff):
    emp, hr = staff
    leave = _submit(emp).json
    r = hr.post(f"/api/leave/requests/{leave['id']}/cancel")
    assert r.status_code == 409
    r = emp.post(f"/api/leave/requests/{leave['id']}/cancel")
    assert r.status_code == 200
    assert r.json["status"] == "cancelled"
    assert emp.post(f"/api/leave/requests/{leave['id']}/cancel").status_code == 409


def test_admin_processing_after_approval(staff):
    emp, hr = staff
    leave = _submit(emp, leave_type="casual_leave").json
    assert hr.post(f"/api/leave/requests/{leave['id']}/process").status_code == 409
    hr.post(f"/api/leave/requests/{leave['id']}/approve")
    r = hr.post(f"/api/leave/requests/{leave['id']}/process")
    assert r.status_code == 200
    assert r.json["admin_processed"] is True
    assert r.json["bdm_notified"] and r.json["crm_notified"]
    assert hr.post(f"/api/leave/requests/{leave['id']}/process").status_code == 409


def test_employee_sees_only_own_requests(staff, make_employee, login, app):
    emp, _hr = staff
    _submit(emp)
    make_employee("peer@example.com")
    peer = app.test_client()
    login(peer, "peer@example.com")
    assert peer.get("/api/leave/requests").json["items"] == []
