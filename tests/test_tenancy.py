from datetime import datetime, timedelta

import pytest

TRIAL_ORG = "trial-42"


@pytest.fixture()
def host_leave(app, make_employee, login):
    """A host employee with a pending sick-leave request."""
    make_employee("patient@example.com")
    emp = app.test_client()
    login(emp, "patient@example.com")
    r = emp.post(
        "/api/leave/requests",
        json={
            "leave_type": "sick_leave",
            "reason": "Chemotherapy session",
            "start_date": "2025-02-03",
            "end_date": "2025-02-04",
        },
    )
    assert r.status_code == 201, r.json
    return r.json


@pytest.fixture()
def trial_manager(as_user):
    return as_user(
        "prospect@example.com",
        "manager",
        organization_id=TRIAL_ORG,
        trial_end_date=datetime.utcnow() + timedelta(days=10),
    )


def test_trial_manager_cannot_see_host_staff_or_leave(trial_manager, host_leave):
    assert trial_manager.get("/api/employees").json["items"] == []
    assert trial_manager.get("/api/leave/requests").json["items"] == []
    assert trial_manager.get("/api/leave/pending-approvals").json["items"] == []

    r = trial_manager.get(f"/api/leave/requests/{host_leave['id']}")
    assert r.status_code == 404
    assert "Chemotherapy" not in r.get_data(as_text=True)

    assert trial_manager.post(f"/api/leave/requests/{host_leave['id']}/approve").status_code == 404
    assert trial_manager.get(f"/api/employees/{host_leave['employee_id']}").status_code == 404


def test_host_hr_does_not_see_trial_employees(as_user, host_leave):
    trial_hr = as_user("owner@trial.example.com", "hr_admin", organization_id=TRIAL_ORG)
    r = trial_hr.post(
        "/api/employees",
        json={"email": "hire@trial.example.com", "first_name": "Tri", "last_name": "Al", "role": "employee"},
    )
    assert r.status_code == 201, r.json
    trial_emp_id = r.json["id"]

    assert [e["id"] for e in trial_hr.get("/api/employees").json["items"]] == [trial_emp_id]
    assert trial_hr.get(f"/api/employees/{trial_emp_id}/onboarding").status_code == 200

    host_hr = as_user("hr@example.com", "hr_admin")
    emails = [e["user"]["email"] for e in host_hr.get("/api/employees").json["items"]]
    assert emails == ["patient@example.com"]
    assert host_hr.get(f"/api/employees/{trial_emp_id}").status_code == 404
    assert [l["id"] for l in host_hr.get("/api/leave/requests").json["items"]] == [host_leave["id"]]


def test_cross_org_references_are_rejected(app, as_user, make_user):
    host_user_id = make_user("host.staff@example.com", "employee")
    trial_hr = as_user("owner@trial.example.com", "hr_admin", organization_id=TRIAL_ORG)

    r = trial_hr.post(
        "/api/employees",
        json={
            "email": "hire@trial.example.com",
            "first_name": "Tri",
            "last_name": "Al",
            "role": "employee",
            "manager_user_id": host_user_id,
        },
    )
    assert r.status_code == 400
    assert "Manager not found." in r.json["errors"]

    r = trial_hr.post("/api/tasks", json={"title": "Poach", "assigned_to_user_id": host_user_id})
    assert r.status_code == 400
    assert "Assignee not found." in r.json["errors"]

    r = trial_hr.get("/api/admin/users")
    assert [u["email"] for u in r.json["items"]] == ["owner@trial.example.com"]
    assert trial_hr.get(f"/api/admin/users/{host_user_id}").status_code == 404


def test_departments_are_per_organisation(as_user):
    host_hr = as_user("hr@example.com", "hr_admin")
    trial_hr = as_user("owner@trial.example.com", "hr_admin", organization_id=TRIAL_ORG)
    assert host_hr.post("/api/departments", json={"name": "Finance", "code": "FIN"}).status_code == 201
    assert trial_hr.get("/api/departments").json["items"] == []
    r = trial_hr.post("/api/departments", json={"name": "Finance", "code": "FIN"})
    assert r.status_code == 201
    assert [d["id"] for d in trial_hr.get("/api/departments").json["items"]] == [r.json["id"]]
    assert len(host_hr.get("/api/departments").json["items"]) == 1
