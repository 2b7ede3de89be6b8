import pytest
from starlette.websockets import WebSocketDisconnect


def register(client, name):
    response = client.post("/api/auth/register", json={
        "name": name,
        "email": f"{name.lower()}@acme.io",
        "password": "correct horse",
    })
    assert response.status_code == 201, response.text
    body = response.json()
    return body["user"]["id"], {"Authorization": f"Bearer {body['token']}"}


def swappable_event(client, headers, title, start, end):
    response = client.post("/api/events", headers=headers, json={"title": title, "start_time": start, "end_time": end})
    assert response.status_code == 201, response.text
    event_id = response.json()["event"]["id"]
    response = client.patch(f"/api/events/{event_id}/status", headers=headers, json={"status": "SWAPPABLE"})
    assert response.status_code == 200, response.text
    return event_id


def test_register_login_and_me(client):
    user_id, _ = register(client, "Alice")

    duplicate = client.post("/api/auth/register", json={
        "name": "Alice", "email": "alice@acme.io", "password": "another one",
    })
    assert duplicate.status_code == 400

    bad_login = client.post("/api/auth/login", json={"email": "alice@acme.io", "password": "wrong"})
    assert bad_login.status_code == 401

    login = client.post("/api/auth/login", json={"email": "alice@acme.io", "password": "correct horse"})
    assert login.status_code == 200
    token = login.json()["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["id"] == user_id


def test_endpoints_require_a_valid_token(client):
    assert client.get("/api/events").status_code == 401
    assert client.get("/api/events", headers={"Authorization": "Bearer nonsense"}).status_code == 401


def test_health_and_index(client):
    assert client.get("/health").json()["status"] == "ok"
    assert "events" in client.get("/api").json()["endpoints"]


def test_swap_flow_over_http(client):
    alice, alice_headers = register(client, "Alice")
    bob, bob_headers = register(client, "Bob")
    standup = swappable_event(client, alice_headers, "Standup", "2026-11-02T09:00:00Z", "2026-11-02T09:30:00Z")
    sync = swappable_event(client, bob_headers, "Sync", "2026-11-02T10:00:00Z", "2026-11-02T10:30:00Z")

    marketplace = client.get("/api/swappable-slots", headers=bob_headers).json()["slots"]
    assert [(slot["id"], slot["owner"]["name"]) for slot in marketplace] == [(standup, "Alice")]

    created = client.post("/api/swap-request", headers=bob_headers, json={"my_slot_id": sync, "their_slot_id": standup})
    assert created.status_code == 201, created.text
    request_id = created.json()["swapRequest"]["id"]

    incoming = client.get("/api/swap-requests", headers=alice_headers).json()["incoming"]
    assert [r["id"] for r in incoming] == [request_id]
    assert incoming[0]["status"] == "PENDING"

    accepted = client.post(f"/api/swap-response/{request_id}", headers=alice_headers, json={"accept": True})
    assert accepted.status_code == 200, accepted.text
    body = accepted.json()
    assert body["swapRequest"]["status"] == "ACCEPTED"
    assert {e["id"]: e["user_id"] for e in body["updatedEvents"]} == {standup: bob, sync: alice}

    alice_events = client.get("/api/events", headers=alice_headers).json()["events"]
    assert [(e["title"], e["status"]) for e in alice_events] == [("Sync", "BUSY")]

    again = client.post(f"/api/swap-response/{request_id}", headers=alice_headers, json={"accept": False})
    assert again.status_code == 409
    assert again.json()["detail"] == "This swap request has already been accepted"


def test_domain_errors_map_to_status_codes(client):
    _, alice_headers = register(client, "Alice")
    _, bob_headers = register(client, "Bob")
    standup = swappable_event(client, alice_headers, "Standup", "2026-11-02T09:00:00Z", "2026-11-02T09:30:00Z")
    sync = swappable_event(client, bob_headers, "Sync", "2026-11-02T10:00:00Z", "2026-11-02T10:30:00Z")

    inverted = client.post("/api/events", headers=alice_headers, json={
        "title": "Backwards", "start_time": "2026-11-02T12:00:00Z", "end_time": "2026-11-02T11:00:00Z",
    })
    assert inverted.status_code == 400

    assert client.put(f"/api/events/{standup}", headers=bob_headers, json={"title": "Mine"}).status_code == 403
    assert client.delete("/api/events/9999", headers=alice_headers).status_code == 404

    client.post("/api/swap-request", headers=bob_headers, json={"my_slot_id": sync, "their_slot_id": standup})
    pending = client.patch(f"/api/events/{standup}/status", headers=alice_headers, json={"status": "BUSY"})
    assert pending.status_code == 409
    assert pending.json()["detail"] == "Cannot change status while swap is pending"

    assert client.post("/api/swap-request", headers=bob_headers, json={"my_slot_id": 0, "their_slot_id": 1}).status_code == 422


def test_delete_event(client):
    _, alice_headers = register(client, "Alice")
    created = client.post("/api/events", headers=alice_headers, json={
        "title": "Standup", "start_time": "2026-11-02T09:00:00Z", "end_time": "2026-11-02T09:30:00Z",
    })
    event_id = created.json()["event"]["id"]

    assert client.delete(f"/api/events/{event_id}", headers=alice_headers).status_code == 200
    assert client.get("/api/events", headers=alice_headers).json()["events"] == []


def test_websocket_rejects_missing_or_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws"):
            pass
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws?token=nonsense"):
            pass


def test_recipient_is_notified_over_websocket(client):
    alice, alice_headers = register(client, "Alice")
    _, bob_headers = register(client, "Bob")
    standup = swappable_event(client, alice_headers, "Standup", "2026-11-02T09:00:00Z", "2026-11-02T09:30:00Z")
    sync = swappable_event(client, bob_headers, "Sync", "2026-11-02T10:00:00Z", "2026-11-02T10:30:00Z")
    token = alice_headers["Authorization"].split()[1]

    with client.websocket_connect(f"/ws?token={token}") as websocket:
        hello = websocket.receive_json()
        assert hello == {"type": "auth_success", "data": {"id": alice, "name": "Alice", "email": "alice@acme.io"}}

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}

        client.post("/api/swap-request", headers=bob_headers, json={"my_slot_id": sync, "their_slot_id": standup})

        received = websocket.receive_json()
        assert received["type"] == "swap:request:received"
        assert received["data"]["message"] == "Bob wants to swap slots with you"
        assert received["data"]["swapRequest"]["recipient_slot"]["id"] == standup

        onlooker_updates = [websocket.receive_json(), websocket.receive_json()]
        assert {m["data"]["event"]["id"] for m in onlooker_updates} == {standup, sync}
        assert {m["type"] for m in onlooker_updates} == {"event:updated"}
