from datetime import timedelta

import pytest

from helpdesk.auth import create_access_token
from helpdesk.main import app


def test_rate_limit_on_login(client, create_user):
    limiter = getattr(app.state, "limiter", None)
    if limiter is None:
        pytest.skip("Rate limiter not configured")

    prev_enabled = limiter.enabled
    limiter.reset()
    try:
        limiter.enabled = True
        user = create_user(email="rl_user@example.com", password="pw1")

        last_resp = None
        # The test run configures RATE_LIMIT=20/minute, so 30 attempts must trip it
        for _ in range(30):
            r = client.post("/api/auth/login", json={"email": user.email, "password": "wrongpass"})
            last_resp = r
            if r.status_code == 429:
                break
            assert r.status_code == 401

        assert last_resp is not None and last_resp.status_code == 429
        assert last_resp.json()["error"]["code"] == "rate_limited"
    finally:
        limiter.enabled = prev_enabled
        limiter.reset()


def test_jwt_expiration_invalid_and_missing_token(client, create_user):
    user = create_user(email="tok_user@example.com", password="pw2")

    expired = create_access_token(user.id, expires_delta=timedelta(seconds=-1))
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401

    valid = create_access_token(user.id, expires_delta=timedelta(minutes=60))
    # Appending a character invalidates the signature
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {valid}a"})
    assert r.status_code == 401

    r = client.get("/api/auth/me")
    assert r.status_code == 401


def test_token_for_unknown_user_is_rejected(client):
    token = create_access_token(999999)
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
