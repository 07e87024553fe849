from datetime import timedelta

from fastapi.testclient import TestClient

from app.main import create_app
from app.services.code_store import OneTimeCode


def _request_code(client, identity="user@example.com", path="/auth/request-code"):
    return client.post(path, json={"identity": identity})


def test_root_and_health(client):
    assert client.get("/").status_code == 200
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": True}


def test_request_code_success_does_not_echo_code(client, notifier):
    response = _request_code(client)

    assert response.status_code == 200
    body = response.json()
    assert body == {"message": "OTP sent", "expires_in_seconds": 300}
    assert notifier.last_code not in response.text


def test_request_code_missing_identity(client):
    assert client.post("/auth/request-code", json={}).status_code == 400
    assert client.post("/auth/request-code", json={"identity": ""}).status_code == 400


def test_malformed_body_is_bad_request(client):
    response = client.post("/auth/request-code", json={"identity": 123})
    assert response.status_code == 400


def test_request_code_forbidden(client, notifier):
    response = _request_code(client, "intruder@example.com")

    assert response.status_code == 403
    assert notifier.sent == []


def test_request_code_rate_limited(client):
    for _ in range(5):
        assert _request_code(client).status_code == 200

    response = _request_code(client)

    assert response.status_code == 429
    assert int(response.headers["retry-after"]) > 0


def test_request_code_delivery_failure(client, notifier):
    notifier.fail = True

    response = _request_code(client)

    assert response.status_code == 500
    assert response.json() == {
        "detail": "Failed to request OTP",
        "message": "Failed to request OTP",
    }


def test_login_flow_and_me(client, notifier):
    _request_code(client, "User@Example.COM ")

    response = client.post(
        "/auth/verify-code",
        json={"identity": "user@example.com", "code": notifier.last_code},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["user"] == {"identity": "user@example.com", "role": "admin"}
    assert body["token_type"] == "bearer"
    assert body["expires_in_seconds"] == 8 * 3600

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json() == {"identity": "user@example.com", "role": "admin"}

    replay = client.post(
        "/auth/verify-code",
        json={"identity": "user@example.com", "code": notifier.last_code},
    )
    assert replay.status_code == 401
    assert replay.json() == {"detail": "Invalid code", "message": "Invalid code"}


def test_verify_code_expired(client, notifier, clock):
    _request_code(client)
    clock.advance(minutes=6)

    response = client.post(
        "/auth/verify-code",
        json={"identity": "user@example.com", "code": notifier.last_code},
    )

    assert response.status_code == 401
    assert response.json() == {"detail": "Code expired", "message": "Code expired"}


def test_verify_code_missing_fields(client):
    response = client.post("/auth/verify-code", json={"identity": "user@example.com"})
    assert response.status_code == 400


def test_legacy_paths_accept_email_field(client, notifier):
    response = client.post("/api/auth/request-otp", json={"email": "admin@zenitech.in"})
    assert response.status_code == 200

    response = client.post(
        "/api/auth/verify-otp",
        json={"email": "admin@zenitech.in", "code": notifier.last_code},
    )
    assert response.status_code == 200
    assert response.json()["user"]["identity"] == "admin@zenitech.in"


def test_me_rejects_bad_tokens(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Token abc"}).status_code == 401
    response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_forwarded_for_is_used_for_ip_limits(client, notifier):
    for _ in range(5):
        client.post(
            "/auth/request-code",
            json={"identity": "intruder@example.com"},
            headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )

    blocked = client.post(
        "/auth/request-code",
        json={"identity": "user@example.com"},
        headers={"X-Forwarded-For": "203.0.113.9"},
    )
    assert blocked.status_code == 429

    other = client.post(
        "/auth/request-code",
        json={"identity": "user@example.com"},
        headers={"X-Forwarded-For": "198.51.100.7"},
    )
    assert other.status_code == 200


def test_forbidden_body_carries_message(client):
    response = _request_code(client, "intruder@example.com")

    assert response.json() == {
        "detail": "Email not authorized",
        "message": "Email not authorized",
    }


def test_numeric_code_is_accepted(client, notifier):
    _request_code(client)

    response = client.post(
        "/auth/verify-code",
        json={"identity": "user@example.com", "code": int(notifier.last_code)},
    )

    assert response.status_code == 200


def test_startup_purges_expired_codes(settings, engine, store, notifier, limiter, clock):
    store.insert(
        OneTimeCode(
            identity="stale@example.com",
            code_hash="stale",
            expires_at=clock.now - timedelta(minutes=1),
        )
    )
    store.insert(
        OneTimeCode(
            identity="user@example.com",
            code_hash="fresh",
            expires_at=clock.now + timedelta(minutes=5),
        )
    )
    app = create_app(
        settings=settings, engine=engine, notifier=notifier, limiter=limiter, clock=clock
    )

    with TestClient(app):
        assert store.count("stale@example.com") == 0
        assert store.count("user@example.com") == 1
