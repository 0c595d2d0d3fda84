import pytest


@pytest.fixture()
def trio(app, make_user, login):
    make_user("mgr@example.com", "manager")
    nominee_id = make_user("star@example.com", "employee")
    make_user("peer@example.com", "employee")
    clients = {}
    for key, email in (("mgr", "mgr@example.com"), ("star", "star@example.com"), ("peer", "peer@example.com")):
        clients[key] = app.test_client()
        login(clients[key], email)
    return clients, nominee_id


def _nominate(client, nominee_id, **extra):
    payload = {
        "nominee_user_id": nominee_id,
        "title": "Saved the launch",
        "description": "Stayed late to fix the release pipeline.",
        "type": "achievement",
    }
    payload.update(extra)
    return client.post("/api/recognition", json=payload)


def test_nomination_validation(trio):
    clients, nominee_id = trio
    r = _nominate(clients["star"], nominee_id)
    assert r.status_code == 400
    assert "You cannot nominate yourself." in r.json["errors"]

    r = clients["peer"].post("/api/recognition", json={"nominee_user_id": 9999, "type": "trophy"})
    assert r.status_code == 400
    assert len(r.json["errors"]) == 4


def test_pending_nominations_are_hidden_until_approved(trio, mail):
    clients, nominee_id = trio
    rec = _nominate(clients["peer"], nominee_id).json
    assert rec["is_approved"] is False

    assert clients["star"].get("/api/recognition").json["items"] == []
    assert [r["id"] for r in clients["mgr"].get("/api/recognition").json["items"]] == [rec["id"]]

    assert clients["peer"].post(f"/api/recognition/{rec['id']}/approve").status_code == 403
    r = clients["mgr"].post(f"/api/recognition/{rec['id']}/approve")
    assert r.status_code == 200
    assert r.json["approved_by"]["email"] == "mgr@example.com"
    assert [m.to for m in mail] == ["star@example.com"]
    assert clients["mgr"].post(f"/api/recognition/{rec['id']}/approve").status_code == 409

    assert [r["id"] for r in clients["star"].get("/api/recognition").json["items"]] == [rec["id"]]


def test_nominator_withdraws_only_pending(trio):
    clients, nominee_id = trio
    rec = _nominate(clients["peer"], nominee_id).json
    assert clients["star"].delete(f"/api/recognition/{rec['id']}").status_code == 404
    assert clients["peer"].delete(f"/api/recognition/{rec['id']}").json == {"deleted": rec["id"]}

    rec = _nominate(clients["peer"], nominee_id).json
    clients["mgr"].post(f"/api/recognition/{rec['id']}/approve")
    assert clients["peer"].delete(f"/api/recognition/{rec['id']}").status_code == 404
    assert clients["mgr"].delete(f"/api/recognition/{rec['id']}").status_code == 200


def test_notifications_read_flow(trio):
    clients, nominee_id = trio
    for _ in range(2):
        rec = _nominate(clients["peer"], nominee_id).json
        clients["mgr"].post(f"/api/recognition/{rec['id']}/approve")

    star = clients["star"]
    body = star.get("/api/notifications").json
    assert body["unread"] == 2
    first = body["items"][0]
    assert first["type"] == "recognition"

    # someone else's notification is not found
    assert clients["peer"].post(f"/api/notifications/{first['id']}/read").status_code == 404

    r = star.post(f"/api/notifications/{first['id']}/read")
    assert r.status_code == 200
    assert r.json["is_read"] is True
    assert len(star.get("/api/notifications?unread=1").json["items"]) == 1

    assert star.post("/api/notifications/read-all").json == {"updated": 1}
    assert star.get("/api/notifications").json["unread"] == 0
