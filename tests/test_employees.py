import io
import re

from app.hrms.db import session_scope
from app.hrms.modules.onboarding.models import OnboardingChecklistItem
from app.hrms.modules.onboarding.service import STANDARD_CHECKLIST, calculate_progress


def _create_employee(hr, **overrides):
    payload = {
        "email": "new.hire@example.com",
        "first_name": "New",
        "last_name": "Hire",
        "position": "Analyst",
        "role": "employee",
    }
    payload.update(overrides)
    r = hr.post("/api/employees", json=payload)
    assert r.status_code == 201, r.json
    return r.json


def _invite_token(mail) -> str:
    m = re.search(r"onboarding/([A-Za-z0-9_\-]+)", mail[-1].html)
    assert m, mail[-1].html
    return m.group(1)


def test_create_department_requires_name_and_code(as_user):
    hr = as_user("hr@example.com", "hr_admin")
    r = hr.post("/api/departments", json={"name": "Finance"})
    assert r.status_code == 400
    r = hr.post("/api/departments", json={"name": "Finance", "code": "FIN"})
    assert r.status_code == 201
    assert r.json["code"] == "FIN"
    assert [d["name"] for d in hr.get("/api/departments").json["items"]] == ["Finance"]


def test_create_employee_seeds_number_checklist_and_invite(as_user, mail):
    hr = as_user("hr@example.com", "hr_admin")
    emp = _create_employee(hr)
    assert emp["employee_number"] == "EMP001"
    assert emp["status"] == "onboarding"
    assert emp["onboarding_progress"] == 0

    second = _create_employee(hr, email="second@example.com", first_name="Second")
    assert second["employee_number"] == "EMP002"

    r = hr.get(f"/api/employees/{emp['id']}/onboarding")
    assert r.status_code == 200
    keys = [i["key"] for i in r.json["items"]]
    assert keys == [tpl["key"] for tpl in STANDARD_CHECKLIST]

    assert [m.to for m in mail] == ["new.hire@example.com", "second@example.com"]
    assert "onboarding" in mail[0].subject.lower()


def test_create_employee_rejects_duplicate_email(as_user):
    hr = as_user("hr@example.com", "hr_admin")
    _create_employee(hr)
    r = hr.post(
        "/api/employees",
        json={"email": "new.hire@example.com", "first_name": "Again", "last_name": "Hire"},
    )
    assert r.status_code == 400


def test_create_employee_rejects_unknown_role(as_user):
    hr = as_user("hr@example.com", "hr_admin")
    r = hr.post(
        "/api/employees",
        json={"email": "wiz@example.com", "first_name": "Wiz", "last_name": "Ard", "role": "wizard"},
    )
    assert r.status_code == 400
    assert "Unknown role 'wizard'." in r.json["errors"]
    assert hr.get("/api/employees").json["items"] == []


def test_reassigned_manager_and_department_are_returned(as_user, make_user):
    hr = as_user("hr@example.com", "hr_admin")
    lead_id = make_user("lead@example.com", "manager")
    dept = hr.post("/api/departments", json={"name": "Finance", "code": "FIN"}).json
    emp = _create_employee(hr)
    assert emp["manager"] is None

    r = hr.patch(f"/api/employees/{emp['id']}", json={"manager_user_id": lead_id, "department_id": dept["id"]})
    assert r.status_code == 200, r.json
    assert r.json["manager"]["email"] == "lead@example.com"
    assert r.json["department"] == {"id": dept["id"], "name": "Finance"}


def test_invite_activation_and_profile_completion(app, as_user, mail, login):
    hr = as_user("hr@example.com", "hr_admin")
    emp = _create_employee(hr)
    token = _invite_token(mail)

    anon = app.test_client()
    r = anon.get(f"/public/onboarding/{token}")
    assert r.status_code == 200
    assert r.json["employee_number"] == "EMP001"

    r = anon.post(f"/public/onboarding/{token}/activate", json={"password": "short", "confirm_password": "short"})
    assert r.status_code == 400
    r = anon.post(
        f"/public/onboarding/{token}/activate",
        json={"password": "a-long-password", "confirm_password": "something-else"},
    )
    assert r.status_code == 400
    r = anon.post(
        f"/public/onboarding/{token}/activate",
        json={"password": "a-long-password", "confirm_password": "a-long-password"},
    )
    assert r.status_code == 200

    # token is single-use
    assert anon.get(f"/public/onboarding/{token}").status_code == 404

    me = app.test_client()
    login(me, "new.hire@example.com", "a-long-password")

    r = me.put("/api/employees/me/profile", json={"phone": "555-0100"})
    assert r.status_code == 400

    r = me.put(
        "/api/employees/me/profile",
        json={
            "phone": "555-0100",
            "address": "1 Main Street",
            "emergency_contact_name": "Pat Hire",
            "emergency_contact_phone": "555-0199",
        },
    )
    assert r.status_code == 200
    assert sorted(r.json["completed_items"]) == ["emergency_contact", "personal_profile"]
    # 2 of 13 items
    assert r.json["employee"]["onboarding_progress"] == 15
    assert r.json["employee"]["onboarding_status"] == "in_progress"

    r = me.get(f"/api/employees/{emp['id']}")
    assert r.status_code == 200
    assert r.json["address"] == "1 Main Street"


def test_employee_cannot_view_other_employees(app, as_user, make_user, login):
    hr = as_user("hr@example.com", "hr_admin")
    emp = _create_employee(hr)
    other = as_user("other@example.com", "employee")
    r = other.get(f"/api/employees/{emp['id']}")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "employees.view"


def test_profile_picture_ticks_checklist(app, as_user, mail):
    hr = as_user("hr@example.com", "hr_admin")
    _create_employee(hr)
    token = _invite_token(mail)
    anon = app.test_client()
    anon.post(f"/public/onboarding/{token}/activate", json={"password": "a-long-password"})

    me = app.test_client()
    r = me.post("/auth/login", json={"email": "new.hire@example.com", "password": "a-long-password"})
    me.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]

    r = me.post(
        "/api/employees/me/profile-picture",
        data={"file": (io.BytesIO(b"\x89PNG fake"), "me.exe")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400

    r = me.post(
        "/api/employees/me/profile-picture",
        data={"file": (io.BytesIO(b"\x89PNG fake"), "me.png")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["has_profile_picture"] is True

    with session_scope(app) as s:
        item = s.query(OnboardingChecklistItem).filter(OnboardingChecklistItem.key == "profile_picture").one()
        assert item.is_completed


def test_calculate_progress_rounds_half_up():
    items = [OnboardingChecklistItem(is_completed=(i < 1)) for i in range(8)]
    # 12.5% rounds up
    assert calculate_progress(items) == 13
    assert calculate_progress([]) == 0
