from datetime import datetime, timedelta

import pytest


@pytest.fixture()
def people(app, make_user, login):
    mgr_id = make_user("boss@example.com", "manager")
    emp_id = make_user("worker@example.com", "employee")
    mgr = app.test_client()
    login(mgr, "boss@example.com")
    emp = app.test_client()
    login(emp, "worker@example.com")
    return mgr, emp, emp_id


def _task(mgr, emp_id, **extra):
    payload = {"title": "Prepare quarterly report", "assigned_to_user_id": emp_id, "priority": "high"}
    payload.update(extra)
    r = mgr.post("/api/tasks", json=payload)
    assert r.status_code == 201, r.json
    return r.json


def test_create_task_validates_and_notifies(people, mail):
    mgr, emp, emp_id = people
    r = mgr.post("/api/tasks", json={"title": "", "assigned_to_user_id": 9999, "priority": "asap"})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 3

    task = _task(mgr, emp_id)
    assert task["status"] == "pending"
    assert task["assigned_to"]["id"] == emp_id
    assert [m.to for m in mail] == ["worker@example.com"]

    notes = emp.get("/api/notifications").json["items"]
    assert notes[0]["type"] == "task_assigned"

    assert emp.post("/api/tasks", json={"title": "x", "assigned_to_user_id": emp_id}).status_code == 403


def test_status_transitions(people):
    mgr, emp, emp_id = people
    task = _task(mgr, emp_id)

    r = emp.post(f"/api/tasks/{task['id']}/status", json={"status": "overdue"})
    assert r.status_code == 409

    r = emp.post(f"/api/tasks/{task['id']}/status", json={"status": "completed"})
    assert r.status_code == 200
    assert r.json["completed_at"] is not None

    r = emp.post(f"/api/tasks/{task['id']}/status", json={"status": "pending"})
    assert r.status_code == 409

    r = emp.post(f"/api/tasks/{task['id']}/status", json={"status": "in_progress"})
    assert r.status_code == 200
    assert r.json["completed_at"] is None


def test_progress_updates_are_assignee_only(people):
    mgr, emp, emp_id = people
    task = _task(mgr, emp_id)

    r = mgr.post(f"/api/tasks/{task['id']}/updates", json={"update_text": "Started", "progress_percentage": 10})
    assert r.status_code == 403

    r = emp.post(f"/api/tasks/{task['id']}/updates", json={"update_text": "Started", "progress_percentage": 150})
    assert r.status_code == 400

    r = emp.post(
        f"/api/tasks/{task['id']}/updates",
        json={"update_text": "Drafted section one", "progress_percentage": 40, "hours_worked": "2.5"},
    )
    assert r.status_code == 201

    detail = emp.get(f"/api/tasks/{task['id']}").json
    assert detail["status"] == "in_progress"
    assert detail["latest_progress"] == 40
    assert len(detail["updates"]) == 1


def test_tasks_are_hidden_from_other_employees(people, as_user):
    mgr, _emp, emp_id = people
    task = _task(mgr, emp_id)
    stranger = as_user("stranger@example.com", "employee")
    assert stranger.get(f"/api/tasks/{task['id']}").status_code == 404
    assert stranger.get("/api/tasks").json["items"] == []


def test_overdue_sweep_and_time_extension(people, mail):
    mgr, emp, emp_id = people
    past = (datetime.utcnow() - timedelta(days=1)).replace(microsecond=0).isoformat()
    task = _task(mgr, emp_id, due_date=past)
    mail.clear()

    r = mgr.post("/api/tasks/overdue-sweep")
    assert r.status_code == 200
    assert r.json["marked_overdue"] == [task["id"]]
    assert {m.to for m in mail} >= {"worker@example.com", "boss@example.com"}

    # already overdue, not flagged twice
    assert mgr.post("/api/tasks/overdue-sweep").json["marked_overdue"] == []

    r = emp.post(
        "/api/task-requests",
        json={"request_type": "time_extension", "subject": "More time", "description": "Waiting on data"},
    )
    assert r.status_code == 400

    r = emp.post(
        "/api/task-requests",
        json={
            "request_type": "time_extension",
            "task_id": task["id"],
            "requested_extension_days": 3,
            "subject": "More time",
            "description": "Waiting on data",
        },
    )
    assert r.status_code == 201
    req_id = r.json["id"]

    assert emp.post(f"/api/task-requests/{req_id}/respond", json={"decision": "approved"}).status_code == 403
    r = mgr.post(f"/api/task-requests/{req_id}/respond", json={"decision": "maybe"})
    assert r.status_code == 400

    r = mgr.post(f"/api/task-requests/{req_id}/respond", json={"decision": "approved", "response": "OK"})
    assert r.status_code == 200
    assert r.json["status"] == "approved"
    assert r.json["responded_by"]["email"] == "boss@example.com"

    detail = emp.get(f"/api/tasks/{task['id']}").json
    assert detail["status"] == "in_progress"
    # extended from today, not from the lapsed due date
    assert datetime.fromisoformat(detail["due_date"]) >= datetime.utcnow() + timedelta(days=3) - timedelta(minutes=5)

    r = mgr.post(f"/api/task-requests/{req_id}/respond", json={"decision": "rejected"})
    assert r.status_code == 409


def test_requests_on_someone_elses_task_are_refused(people, as_user):
    mgr, _emp, emp_id = people
    task = _task(mgr, emp_id)
    other = as_user("other@example.com", "employee")
    r = other.post(
        "/api/task-requests",
        json={"request_type": "help_request", "task_id": task["id"], "subject": "Help", "description": "Stuck"},
    )
    assert r.status_code == 403


def test_reassigned_task_reports_new_assignee(people, make_user, mail):
    mgr, _emp, emp_id = people
    task = _task(mgr, emp_id)
    other_id = make_user("other@example.com", "employee")
    mail.clear()

    r = mgr.patch(f"/api/tasks/{task['id']}", json={"assigned_to_user_id": other_id})
    assert r.status_code == 200, r.json
    assert r.json["assigned_to"]["email"] == "other@example.com"
    assert [m.to for m in mail] == ["other@example.com"]


def test_overdue_sweep_does_not_reflag_within_one_session(app, people):
    from app.hrms.db import session_scope
    from app.hrms.modules.tasks.service import mark_overdue_tasks

    mgr, _emp, emp_id = people
    past = (datetime.utcnow() - timedelta(days=1)).replace(microsecond=0).isoformat()
    task = _task(mgr, emp_id, due_date=past)

    with session_scope(app) as s:
        first = mark_overdue_tasks(s)
        assert [t.id for t, _ in first] == [task["id"]]
        assert mark_overdue_tasks(s) == []
