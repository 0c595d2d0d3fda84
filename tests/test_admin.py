def test_audit_trail_lists_events(as_user):
    hr = as_user("hr@example.com", "hr_admin")
    assert hr.post("/api/departments", json={"name": "Events", "code": "EVT"}).status_code == 201

    r = hr.get("/api/admin/audit?action=department")
    assert r.status_code == 200
    events = r.json["items"]
    assert events[0]["action"] == "department.create"
    assert events[0]["actor_user_email"] == "hr@example.com"

    assert hr.get("/api/admin/audit?date_from=yesterday").status_code == 400
    assert hr.get("/api/admin/audit?actor_email=nobody").json["items"] == []


def test_audit_trail_requires_admin_view(as_user):
    emp = as_user("emp@example.com", "employee")
    r = emp.get("/api/admin/audit")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "admin.view"


def test_role_assignment_and_deactivation(app, as_user, make_user):
    hr = as_user("hr@example.com", "hr_admin")
    user_id = make_user("promote@example.com", "employee")

    assert hr.put(f"/api/admin/users/{user_id}", json={"roles": ["manager", "wizard"]}).json["errors"] == ["wizard"]
    r = hr.put(f"/api/admin/users/{user_id}", json={"roles": ["manager"]})
    assert r.status_code == 200
    assert r.json["roles"] == ["manager"]
    assert "leave.approve" in r.json["permissions"]

    me_id = hr.get("/auth/me").json["user"]["id"]
    assert hr.put(f"/api/admin/users/{me_id}", json={"is_active": False}).status_code == 409

    assert hr.put(f"/api/admin/users/{user_id}", json={"is_active": False}).json["is_active"] is False
    c = app.test_client()
    assert c.post("/auth/login", json={"email": "promote@example.com", "password": "pw-secret-1"}).status_code == 401

    actions = [e["action"] for e in hr.get(f"/api/admin/audit?entity_type=User&entity_id={user_id}").json["items"]]
    assert actions == ["user.update", "user.update"]


def test_reset_password(app, as_user, make_user, login):
    hr = as_user("hr@example.com", "hr_admin")
    user_id = make_user("forgetful@example.com", "employee")
    url = f"/api/admin/users/{user_id}/reset-password"
    assert hr.post(url, json={"password": "short", "password_confirm": "short"}).status_code == 400
    assert hr.post(url, json={"password": "long-enough-1", "password_confirm": "long-enough-2"}).status_code == 400
    assert hr.post(url, json={"password": "long-enough-1", "password_confirm": "long-enough-1"}).status_code == 200

    login(app.test_client(), "forgetful@example.com", "long-enough-1")
