from datetime import date, datetime, timedelta

import pytest

from app.hrms.db import session_scope
from app.hrms.modules.projects.models import Project, ProjectTask
from app.hrms.modules.projects.service import mark_overdue_project_tasks, start_due_projects


@pytest.fixture()
def team(app, make_user, login):
    make_user("pm@example.com", "manager")
    dev_id = make_user("dev@example.com", "employee")
    pm = app.test_client()
    login(pm, "pm@example.com")
    dev = app.test_client()
    login(dev, "dev@example.com")
    return pm, dev, dev_id


def _project(pm, **extra):
    payload = {"name": "Office move", "priority": "high", "start_date": "2025-01-06", "end_date": "2025-03-31"}
    payload.update(extra)
    r = pm.post("/api/projects", json=payload)
    assert r.status_code == 201, r.json
    return r.json


def test_create_project_adds_manager_as_member(team):
    pm, _dev, _dev_id = team
    r = pm.post("/api/projects", json={"name": "", "end_date": "2024-12-31", "start_date": "2025-01-01"})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 2

    project = _project(pm)
    assert project["status"] == "planning"
    assert [m["role"] for m in project["members"]] == ["manager"]
    assert project["progress"] == 0


def test_members_and_task_assignment(team):
    pm, dev, dev_id = team
    project = _project(pm)

    # non-member cannot be assigned
    r = pm.post(f"/api/projects/{project['id']}/tasks", json={"title": "Pack IT", "assigned_to_user_id": dev_id})
    assert r.status_code == 400

    assert dev.get(f"/api/projects/{project['id']}").status_code == 404

    r = pm.post(f"/api/projects/{project['id']}/members", json={"user_id": dev_id, "role": "engineer"})
    assert r.status_code == 201
    assert pm.post(f"/api/projects/{project['id']}/members", json={"user_id": dev_id}).status_code == 409

    r = pm.post(f"/api/projects/{project['id']}/tasks", json={"title": "Pack IT", "assigned_to_user_id": dev_id})
    assert r.status_code == 201
    task = r.json

    assert [p["id"] for p in dev.get("/api/projects").json["items"]] == [project["id"]]

    # assignee updates their own task but cannot manage the project
    r = dev.patch(f"/api/projects/{project['id']}/tasks/{task['id']}", json={"status": "completed"})
    assert r.status_code == 200
    assert r.json["completed_at"] is not None
    assert dev.patch(f"/api/projects/{project['id']}", json={"name": "Mine now"}).status_code == 403

    assert pm.get(f"/api/projects/{project['id']}").json["progress"] == 100


def test_manager_cannot_be_removed(team):
    pm, _dev, dev_id = team
    project = _project(pm)
    manager_id = project["manager"]["id"]
    r = pm.delete(f"/api/projects/{project['id']}/members/{manager_id}")
    assert r.status_code == 409
    pm.post(f"/api/projects/{project['id']}/members", json={"user_id": dev_id})
    r = pm.delete(f"/api/projects/{project['id']}/members/{dev_id}")
    assert r.status_code == 200
    assert r.json["member_count"] == 1


def test_extend_task(team):
    pm, _dev, _dev_id = team
    project = _project(pm)
    task = pm.post(
        f"/api/projects/{project['id']}/tasks",
        json={"title": "Book movers", "due_date": "2025-02-01T17:00:00"},
    ).json
    assert pm.post(f"/api/projects/{project['id']}/tasks/{task['id']}/extend", json={}).status_code == 400
    r = pm.post(
        f"/api/projects/{project['id']}/tasks/{task['id']}/extend",
        json={"days": 5, "reason": "Quote pending"},
    )
    assert r.status_code == 200
    assert r.json["due_date"] == "2025-02-06T17:00:00"
    assert r.json["extension_days"] == 5


def test_sweeps_start_projects_and_flag_overdue_tasks(app, team):
    pm, _dev, _dev_id = team
    project = _project(pm, start_date="2025-01-06")
    pm.post(
        f"/api/projects/{project['id']}/tasks",
        json={"title": "Book movers", "due_date": "2025-01-10T09:00:00"},
    )

    with session_scope(app) as s:
        assert start_due_projects(s, today=date(2025, 1, 5)) == []
        started = start_due_projects(s, today=date(2025, 1, 6))
        assert [p.id for p in started] == [project["id"]]

        now = datetime(2025, 1, 11)
        flagged = mark_overdue_project_tasks(s, now=now)
        assert len(flagged) == 1
        # notified once only
        assert mark_overdue_project_tasks(s, now=now + timedelta(days=1)) == []

    with session_scope(app) as s:
        assert s.get(Project, project["id"]).status == "active"
        assert s.query(ProjectTask).one().status == "overdue"


def test_projects_need_the_project_management_feature(as_user):
    starter = as_user(
        "starter@example.com",
        "manager",
        organization_id="org-1",
        subscription_plan="starter",
        subscription_status="active",
    )
    r = starter.get("/api/projects")
    assert r.status_code == 403
    assert r.json["current_plan"] == "starter"
    assert r.json["required_plan"] == "professional"
