import io
from datetime import datetime, timedelta

import pytest

from app.hrms.modules.onboarding.service import STANDARD_CHECKLIST, checklist_for


@pytest.fixture()
def hr_and_checklist(as_user):
    hr = as_user("hr@example.com", "hr_admin")
    r = hr.post(
        "/api/employees",
        json={"email": "starter@example.com", "first_name": "Sam", "last_name": "Starter", "position": "Clerk"},
    )
    assert r.status_code == 201
    emp_id = r.json["id"]
    items = {i["key"]: i for i in hr.get(f"/api/employees/{emp_id}/onboarding").json["items"]}
    return hr, emp_id, items


def test_document_items_need_an_upload(hr_and_checklist):
    hr, emp_id, items = hr_and_checklist
    handbook = items["handbook"]
    assert handbook["requires_document"] is True

    r = hr.post(f"/api/onboarding/items/{handbook['id']}/complete", json={})
    assert r.status_code == 409
    assert "document" in r.json["message"]

    r = hr.post(f"/api/onboarding/items/{handbook['id']}/verify", json={})
    assert r.status_code == 409

    r = hr.post(
        f"/api/onboarding/items/{handbook['id']}/document",
        data={"file": (io.BytesIO(b"%PDF-1.4 signed handbook"), "handbook.pdf")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["document_name"] == "handbook.pdf"

    r = hr.get(f"/api/onboarding/items/{handbook['id']}/document")
    assert r.status_code == 200
    assert r.data.startswith(b"%PDF")

    r = hr.post(f"/api/onboarding/items/{handbook['id']}/verify", json={})
    assert r.status_code == 200
    assert r.json["document_verified"] is True

    r = hr.post(f"/api/onboarding/items/{handbook['id']}/complete", json={"notes": "Signed"})
    assert r.status_code == 200
    assert r.json["item"]["is_completed"] is True
    assert r.json["progress"] == 8


def test_psychometric_items_cannot_be_ticked_by_hand(hr_and_checklist):
    hr, _emp_id, items = hr_and_checklist
    r = hr.post(f"/api/onboarding/items/{items['cognitive_test']['id']}/complete", json={})
    assert r.status_code == 409
    assert "cognitive" in r.json["message"]


def test_reopen_and_custom_items(hr_and_checklist):
    hr, emp_id, items = hr_and_checklist
    it = items["it_equipment"]

    r = hr.post(f"/api/onboarding/items/{it['id']}/reopen", json={})
    assert r.status_code == 409

    assert hr.post(f"/api/onboarding/items/{it['id']}/complete", json={}).status_code == 200
    r = hr.post(f"/api/onboarding/items/{it['id']}/complete", json={})
    assert r.status_code == 409

    r = hr.post(f"/api/onboarding/items/{it['id']}/reopen", json={"reason": "Laptop returned"})
    assert r.status_code == 200
    assert r.json["progress"] == 0

    r = hr.post(f"/api/employees/{emp_id}/onboarding/items", json={})
    assert r.status_code == 400
    r = hr.post(f"/api/employees/{emp_id}/onboarding/items", json={"title": "Meet the team"})
    assert r.status_code == 201
    custom = r.json
    assert custom["order"] == len(items) + 1

    r = hr.delete(f"/api/onboarding/items/{custom['id']}")
    assert r.status_code == 200


def test_completing_every_item_activates_employee(app, hr_and_checklist):
    from app.hrms.db import session_scope
    from app.hrms.modules.employees.models import Employee

    hr, emp_id, items = hr_and_checklist
    for key, item in items.items():
        if item["requires_document"] or item["psychometric_test_type"]:
            hr.delete(f"/api/onboarding/items/{item['id']}")
            continue
        assert hr.post(f"/api/onboarding/items/{item['id']}/complete", json={}).status_code == 200

    with session_scope(app) as s:
        emp = s.get(Employee, emp_id)
        assert emp.onboarding_progress == 100
        assert emp.onboarding_status == "completed"
        assert emp.status == "active"


def test_onboarding_summary_pdf(hr_and_checklist):
    hr, emp_id, _items = hr_and_checklist
    r = hr.get(f"/api/employees/{emp_id}/onboarding/pdf")
    assert r.status_code == 200
    assert r.mimetype == "application/pdf"
    assert r.data.startswith(b"%PDF")


def test_other_employees_cannot_touch_a_checklist(as_user, hr_and_checklist):
    _hr, emp_id, items = hr_and_checklist
    peer = as_user("peer@example.com", "employee")
    assert peer.get(f"/api/employees/{emp_id}/onboarding").status_code == 403
    assert peer.post(f"/api/onboarding/items/{items['it_equipment']['id']}/complete", json={}).status_code == 403


def _future(days: int = 3) -> str:
    return (datetime.utcnow() + timedelta(days=days)).replace(microsecond=0).isoformat()


def _notifications(app, user_id: int) -> list[tuple[str, str]]:
    from app.hrms.db import session_scope
    from app.hrms.modules.notifications.models import Notification

    with session_scope(app) as s:
        rows = s.query(Notification).filter(Notification.user_id == user_id).order_by(Notification.id.asc()).all()
        return [(n.type, n.message) for n in rows]


def test_team_meeting_is_on_the_standard_checklist(hr_and_checklist):
    _hr, _emp_id, items = hr_and_checklist
    meeting = items["team_meeting"]
    assert meeting["title"] == "Attend Team Introduction Meeting"
    assert meeting["requires_document"] is False


def test_scheduling_a_team_meeting_notifies_hire_and_attendees(app, make_user, hr_and_checklist):
    hr, emp_id, _items = hr_and_checklist
    lead_id = make_user("lead@example.com", "manager")

    r = hr.post(
        f"/api/employees/{emp_id}/team-meetings",
        json={"scheduled_date": _future(), "location": "Room 4", "attendee_user_ids": [lead_id]},
    )
    assert r.status_code == 201, r.json
    meeting = r.json
    assert meeting["status"] == "scheduled"
    assert meeting["attendee_user_ids"] == [lead_id]
    assert meeting["scheduled_by"]["email"] == "hr@example.com"

    sent = _notifications(app, lead_id)
    assert [t for t, _ in sent] == ["meeting_scheduled"]
    assert sent[0][1].startswith("Team introduction meeting scheduled for Sam Starter on ")

    r = hr.patch(f"/api/onboarding/team-meetings/{meeting['id']}", json={"scheduled_date": _future(5)})
    assert r.status_code == 200
    assert [t for t, _ in _notifications(app, lead_id)] == ["meeting_scheduled", "meeting_rescheduled"]

    listed = hr.get(f"/api/employees/{emp_id}/team-meetings").json["items"]
    assert [m["id"] for m in listed] == [meeting["id"]]


@pytest.mark.parametrize(
    "payload, error",
    [
        ({}, "Scheduled date is required."),
        ({"scheduled_date": "2020-01-01T09:00:00"}, "Meeting must be scheduled in the future."),
        ({"scheduled_date": "next tuesday"}, "Scheduled date must be an ISO date/time."),
        ({"scheduled_date": "FUTURE", "meeting_type": "carrier_pigeon"}, "Meeting type must be in_person or virtual."),
        ({"scheduled_date": "FUTURE", "meeting_type": "virtual"}, "A meeting link is required for virtual meetings."),
        ({"scheduled_date": "FUTURE", "attendee_user_ids": [99999]}, "Attendee not found."),
    ],
)
def test_team_meeting_validation(hr_and_checklist, payload, error):
    hr, emp_id, _items = hr_and_checklist
    if payload.get("scheduled_date") == "FUTURE":
        payload = {**payload, "scheduled_date": _future()}
    r = hr.post(f"/api/employees/{emp_id}/team-meetings", json=payload)
    assert r.status_code == 400
    assert error in r.json["errors"]


def test_attendees_from_another_organisation_are_rejected(make_user, hr_and_checklist):
    hr, emp_id, _items = hr_and_checklist
    outsider = make_user("outsider@trial.example.com", "manager", organization_id="trial-42")
    r = hr.post(
        f"/api/employees/{emp_id}/team-meetings",
        json={"scheduled_date": _future(), "attendee_user_ids": [outsider]},
    )
    assert r.status_code == 400
    assert "Attendee not found." in r.json["errors"]


def test_completing_the_meeting_ticks_the_checklist_item(hr_and_checklist):
    hr, emp_id, _items = hr_and_checklist
    meeting = hr.post(f"/api/employees/{emp_id}/team-meetings", json={"scheduled_date": _future()}).json

    r = hr.post(f"/api/onboarding/team-meetings/{meeting['id']}/complete", json={"notes": "Met everyone"})
    assert r.status_code == 200
    assert r.json["meeting"]["status"] == "completed"
    # 1 of 13 items
    assert r.json["progress"] == 8

    items = {i["key"]: i for i in hr.get(f"/api/employees/{emp_id}/onboarding").json["items"]}
    assert items["team_meeting"]["is_completed"] is True

    r = hr.post(f"/api/onboarding/team-meetings/{meeting['id']}/cancel", json={})
    assert r.status_code == 409


def test_hire_confirms_attendance_and_checklist_gains_meeting_item(app, as_user, make_employee, login):
    user_id, emp_id = make_employee("joiner@example.com", status="onboarding")
    hr = as_user("hr@example.com", "hr_admin")
    peer = as_user("peer@example.com", "employee")
    joiner = app.test_client()
    login(joiner, "joiner@example.com")

    meeting = hr.post(f"/api/employees/{emp_id}/team-meetings", json={"scheduled_date": _future()}).json
    # an employee created without a checklist still gets the meeting item
    keys = [i["key"] for i in joiner.get(f"/api/employees/{emp_id}/onboarding").json["items"]]
    assert keys == ["team_meeting"]

    assert peer.post(f"/api/onboarding/team-meetings/{meeting['id']}/confirm").status_code == 403
    r = joiner.post(f"/api/onboarding/team-meetings/{meeting['id']}/confirm")
    assert r.status_code == 200
    assert r.json["status"] == "confirmed"
    assert joiner.get(f"/api/employees/{emp_id}/team-meetings").status_code == 200

    r = hr.post(f"/api/onboarding/team-meetings/{meeting['id']}/complete", json={})
    assert r.json["progress"] == 100
    assert joiner.get(f"/api/employees/{emp_id}/onboarding").json["status"] == "completed"


def test_cancelled_meeting_notifies_and_leaves_item_open(app, hr_and_checklist):
    hr, emp_id, _items = hr_and_checklist
    meeting = hr.post(f"/api/employees/{emp_id}/team-meetings", json={"scheduled_date": _future()}).json
    r = hr.post(f"/api/onboarding/team-meetings/{meeting['id']}/cancel", json={"reason": "Team offsite"})
    assert r.status_code == 200
    assert r.json["status"] == "cancelled"

    hire_user_id = hr.get(f"/api/employees/{emp_id}").json["user"]["id"]
    assert [t for t, _ in _notifications(app, hire_user_id)] == ["meeting_scheduled", "meeting_cancelled"]
    assert hr.post(f"/api/onboarding/team-meetings/{meeting['id']}/complete", json={}).status_code == 409

    items = {i["key"]: i for i in hr.get(f"/api/employees/{emp_id}/onboarding").json["items"]}
    assert items["team_meeting"]["is_completed"] is False


def test_team_lead_checklist_adds_leadership_items(as_user):
    hr = as_user("hr@example.com", "hr_admin")
    r = hr.post(
        "/api/employees",
        json={"email": "lead@example.com", "first_name": "Lee", "last_name": "Dear", "position": "Team Lead"},
    )
    assert r.status_code == 201, r.json
    keys = [i["key"] for i in hr.get(f"/api/employees/{r.json['id']}/onboarding").json["items"]]
    assert keys == [t["key"] for t in STANDARD_CHECKLIST] + ["leadership_training", "team_metrics_review"]


def test_department_items_follow_role_items(as_user):
    hr = as_user("hr@example.com", "hr_admin")
    dept = hr.post("/api/departments", json={"name": "Information Technology", "code": "IT"}).json
    r = hr.post(
        "/api/employees",
        json={
            "email": "admin.hire@example.com",
            "first_name": "Ada",
            "last_name": "Min",
            "position": "HR Admin",
            "department_id": dept["id"],
        },
    )
    assert r.status_code == 201, r.json
    items = hr.get(f"/api/employees/{r.json['id']}/onboarding").json["items"]
    extra = [i["key"] for i in items[len(STANDARD_CHECKLIST):]]
    assert extra == ["hr_systems_training", "legal_compliance_training", "it_security_training", "development_tools"]
    assert [i["order"] for i in items] == list(range(1, len(items) + 1))
    assert items[-2]["requires_document"] is True


@pytest.mark.parametrize(
    "position, department, extra",
    [
        ("Analyst", None, 0),
        ("Branch Manager", None, 3),
        ("logistics-manager", "Sales & Marketing", 4),
        (None, "Finance & Accounting", 1),
    ],
)
def test_checklist_for_position_and_department(position, department, extra):
    assert len(checklist_for(position, department)) == len(STANDARD_CHECKLIST) + extra
