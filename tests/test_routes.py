"""
HTTP surface: session create/status/scan/approve, SSE stream, cookie sync.
"""

import json

import pytest

from qrauth.core.config import settings
from qrauth.services.limiter import limiter
from qrauth.services.qr_service import QRService


def create(client, app_name="Tana", return_url="https://app.example/dashboard"):
    resp = client.post("/auth/session/create", json={"appName": app_name, "returnUrl": return_url})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_create_session_shape(client):
    data = create(client)

    assert set(data) == {"sessionId", "challenge", "qrData", "qrImage", "expiresIn", "expiresAt", "status"}
    assert data["status"] == "waiting"
    assert data["expiresIn"] == 300
    payload = QRService.parse_payload(data["qrData"])
    assert payload == {"session": data["sessionId"], "challenge": data["challenge"], "server": "http://testserver"}
    assert data["qrData"].startswith(f"{settings.QR_SCHEME}://auth?")
    assert data["qrImage"]


def test_create_session_uses_public_base_url(client, monkeypatch):
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "https://id.example/")
    data = create(client)
    assert QRService.parse_payload(data["qrData"])["server"] == "https://id.example"


@pytest.mark.parametrize("body", [{"appName": "", "returnUrl": "/"}, {"appName": "Tana"}, {}])
def test_create_session_validates_input(client, body):
    assert client.post("/auth/session/create", json=body).status_code == 422


def test_status_of_new_session(client):
    data = create(client)
    resp = client.get(f"/auth/session/{data['sessionId']}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "waiting"
    assert "sessionToken" not in body
    assert data["challenge"] not in resp.text


def test_status_unknown_session(client):
    assert client.get("/auth/session/does-not-exist").status_code == 404


def test_end_to_end_scan_and_approve(client, signed):
    data = create(client)
    s_id, challenge = data["sessionId"], data["challenge"]

    resp = client.post(f"/auth/session/{s_id}/scan", json={"signedChallenge": signed(challenge), "userId": "usr_1"})
    assert resp.status_code == 200
    assert client.get(f"/auth/session/{s_id}").json()["status"] == "scanned"

    resp = client.post(
        f"/auth/session/{s_id}/approve",
        json={"signedChallenge": signed(challenge), "decision": "approve", "userId": "usr_1", "username": "alice"},
    )
    assert resp.status_code == 200

    body = client.get(f"/auth/session/{s_id}").json()
    assert body["status"] == "approved"
    assert body["userId"] == "usr_1"
    assert body["username"] == "alice"
    assert body["approvedAt"]
    assert body["sessionToken"] and body["sessionToken"] != challenge


def test_repeated_approve_over_http(client, signed):
    data = create(client)
    approve = {
        "signedChallenge": signed(data["challenge"]),
        "decision": "approve",
        "userId": "usr_1",
        "username": "alice",
    }
    first = client.post(f"/auth/session/{data['sessionId']}/approve", json=approve)
    second = client.post(f"/auth/session/{data['sessionId']}/approve", json=approve)

    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()


def test_error_status_codes(client, clock, signed, attacker_key):
    from conftest import sign_challenge

    data = create(client)
    s_id, challenge = data["sessionId"], data["challenge"]
    body = {"signedChallenge": sign_challenge(attacker_key, challenge), "decision": "approve",
            "userId": "usr_1", "username": "alice"}

    assert client.post(f"/auth/session/{s_id}/approve", json=body).status_code == 401

    body["signedChallenge"] = signed(challenge)
    assert client.post(f"/auth/session/{s_id}/approve", json=body).status_code == 200

    body["decision"] = "reject"
    assert client.post(f"/auth/session/{s_id}/approve", json=body).status_code == 409

    assert client.post("/auth/session/nope/approve", json=body).status_code == 404

    late = create(client)
    clock.advance(301)
    body = {"signedChallenge": signed(late["challenge"]), "decision": "approve", "userId": "usr_1", "username": "alice"}
    assert client.post(f"/auth/session/{late['sessionId']}/approve", json=body).status_code == 410
    assert client.get(f"/auth/session/{late['sessionId']}").json()["status"] == "expired"


def test_unknown_decision_is_rejected(client, signed):
    data = create(client)
    body = {"signedChallenge": signed(data["challenge"]), "decision": "maybe", "userId": "usr_1", "username": "alice"}
    assert client.post(f"/auth/session/{data['sessionId']}/approve", json=body).status_code == 422


def test_closed_store_returns_503(client, store):
    store.close()
    resp = client.post("/auth/session/create", json={"appName": "Tana", "returnUrl": "/"})
    assert resp.status_code == 503


def _events(resp):
    return [json.loads(line[len("data: "):]) for line in resp.text.splitlines() if line.startswith("data: ")]


def test_events_stream_ends_on_approval(client, signed):
    data = create(client)
    client.post(
        f"/auth/session/{data['sessionId']}/approve",
        json={"signedChallenge": signed(data["challenge"]), "decision": "approve", "userId": "usr_1",
              "username": "alice"},
    )

    resp = client.get(f"/auth/session/{data['sessionId']}/events")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = _events(resp)
    assert len(events) == 1
    assert events[0]["type"] == "approved"
    assert events[0]["sessionToken"]
    assert events[0]["username"] == "alice"


def test_events_stream_reports_expiry(client, clock):
    data = create(client)
    clock.advance(301)

    events = _events(client.get(f"/auth/session/{data['sessionId']}/events"))
    assert [e["type"] for e in events] == ["expired"]
    assert "sessionToken" not in events[0]


def test_events_unknown_session(client):
    assert client.get("/auth/session/nope/events").status_code == 404


def test_cookie_sync_sets_http_only_cookie(client):
    resp = client.post("/api/auth/session", json={"sessionToken": "tok-123"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    cookie = resp.headers["set-cookie"]
    assert cookie.startswith(f"{settings.SESSION_COOKIE_NAME}=tok-123")
    assert "HttpOnly" in cookie
    assert "samesite=lax" in cookie.lower()
    assert "Max-Age=604800" in cookie
    assert "Secure" not in cookie


def test_cookie_sync_respects_expiry_and_production(client, monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    resp = client.post("/api/auth/session", json={"sessionToken": "tok", "expiresAt": "2030-01-01T00:00:00Z"})

    cookie = resp.headers["set-cookie"]
    assert "expires=" in cookie.lower()
    assert "2030" in cookie
    assert "Secure" in cookie


def test_cookie_sync_requires_token(client):
    assert client.post("/api/auth/session", json={}).status_code == 400


def test_cookie_delete(client):
    resp = client.delete("/api/auth/session")
    assert resp.status_code == 200
    cookie = resp.headers["set-cookie"]
    assert cookie.startswith(f'{settings.SESSION_COOKIE_NAME}=""') or "Max-Age=0" in cookie


def test_current_user_from_cookie(client, signed):
    data = create(client)
    approved = client.post(
        f"/auth/session/{data['sessionId']}/approve",
        json={"signedChallenge": signed(data["challenge"]), "decision": "approve", "userId": "usr_1",
              "username": "alice"},
    ).json()

    assert client.get("/api/auth/me").status_code == 401

    client.post("/api/auth/session", json={"sessionToken": approved["sessionToken"]})
    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["userId"] == "usr_1"
    assert me.json()["username"] == "alice"
    assert me.json()["sessionId"] == data["sessionId"]


def test_current_user_rejects_forged_cookie(client):
    client.post("/api/auth/session", json={"sessionToken": "not-a-jwt"})
    assert client.get("/api/auth/me").status_code == 401


def test_signout_clears_cookie(client):
    resp = client.get("/do/signout", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/"
    assert settings.SESSION_COOKIE_NAME in resp.headers["set-cookie"]


def test_login_page_renders_qr_and_poller(client, store):
    resp = client.get("/login", params={"return_url": "/dashboard"})
    assert resp.status_code == 200
    assert "data:image/png;base64," in resp.text
    assert "/auth/session/" in resp.text
    assert '"/dashboard"' in resp.text
    assert len(store) == 1


def test_rate_limit_on_create(client, monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ENABLED", True)
    monkeypatch.setattr(settings, "MAX_REQUESTS_PER_MINUTE", 2)
    limiter.reset()
    try:
        create(client)
        create(client)
        resp = client.post("/auth/session/create", json={"appName": "Tana", "returnUrl": "/"})
        assert resp.status_code == 429
    finally:
        limiter.reset()
