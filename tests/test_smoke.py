def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_is_plain_text(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_login_me_and_logout(client, make_user, login):
    make_user("admin@example.com", "admin")

    r = client.get("/auth/me")
    assert r.status_code == 401

    user = login(client, "admin@example.com")
    assert "admin" in user["roles"]
    assert "billing.manage" in user["permissions"]

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "admin@example.com"

    r = client.post("/auth/logout")
    assert r.status_code == 200
    assert client.get("/auth/me").status_code == 401


def test_bad_credentials_are_rejected_and_audited(client, make_user):
    make_user("admin@example.com", "admin")
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["message"] == "Invalid credentials."


def test_login_rate_limit(client, make_user):
    make_user("admin@example.com", "admin")
    for _ in range(5):
        client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"})
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw-secret-1"})
    assert r.status_code == 429


def test_mutations_require_csrf_token(client, make_user):
    make_user("admin@example.com", "admin")
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "pw-secret-1"})
    assert r.status_code == 200

    # no X-CSRF-Token header
    r = client.post("/api/departments", json={"name": "Operations", "code": "OPS"})
    assert r.status_code == 400
    assert "CSRF" in r.json["message"]

    client.environ_base["HTTP_X_CSRF_TOKEN"] = client.get("/auth/csrf").json["csrf_token"]
    r = client.post("/api/departments", json={"name": "Operations", "code": "OPS"})
    assert r.status_code == 201


def test_forbidden_reports_missing_permission(as_user):
    c = as_user("emp@example.com", "employee")
    r = c.get("/api/employees")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "employees.view"


def test_unknown_route_is_json_404(client):
    r = client.get("/api/does-not-exist")
    assert r.status_code == 404
    assert "message" in r.json


def test_change_password(client, make_user, login):
    make_user("admin@example.com", "admin")
    login(client, "admin@example.com")
    r = client.post("/auth/change-password", json={"current_password": "nope", "new_password": "another-pass"})
    assert r.status_code == 400
    r = client.post("/auth/change-password", json={"current_password": "pw-secret-1", "new_password": "short"})
    assert r.status_code == 400
    r = client.post("/auth/change-password", json={"current_password": "pw-secret-1", "new_password": "another-pass"})
    assert r.status_code == 200

    client.post("/auth/logout")
    login(client, "admin@example.com", "another-pass")
