import jwt
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from src.coauthor.api.main import app
from src.coauthor.security import rate_limit
from src.coauthor.security.auth import GUEST_USER_ID, JwtConfig, decode_token


client = TestClient(app)


def test_token_then_me():
    r = client.post("/auth/token", json={"email": "Ada.Lovelace@Example.com"})
    assert r.status_code == 200, r.text
    payload = r.json()
    assert payload["token_type"] == "bearer"
    assert payload["user"]["user_id"] == "ada.lovelace@example.com"
    assert payload["user"]["name"] == "ada.lovelace"

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {payload['access_token']}"})
    assert me.status_code == 200
    assert me.json()["user_id"] == "ada.lovelace@example.com"


def test_token_rejects_malformed_email():
    r = client.post("/api/auth/token", json={"email": "not-an-email"})
    assert r.status_code == 400
    assert r.json()["detail"].startswith("Validation failed: email")


def test_token_requests_are_rate_limited(monkeypatch):
    monkeypatch.setattr(rate_limit, "_rate_limiting_disabled", lambda: False)
    monkeypatch.setenv("COAUTHOR_TOKEN_REQUEST_LIMIT", "2")
    for _ in range(2):
        assert client.post("/auth/token", json={"email": "a@example.com"}).status_code == 200
    r = client.post("/auth/token", json={"email": "a@example.com"})
    assert r.status_code == 429
    assert "Retry-After" in r.headers
    # Budget is per email
    assert client.post("/auth/token", json={"email": "b@example.com"}).status_code == 200


def test_public_mode_allows_anonymous(monkeypatch):
    monkeypatch.setenv("COAUTHOR_PUBLIC_MODE", "true")
    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json()["user_id"] == GUEST_USER_ID
    assert client.get("/projects").status_code == 200


def test_non_public_mode_requires_token(monkeypatch):
    monkeypatch.setenv("COAUTHOR_PUBLIC_MODE", "false")
    assert client.get("/auth/me").status_code == 401


def test_invalid_token_is_rejected_even_in_public_mode(monkeypatch):
    monkeypatch.setenv("COAUTHOR_PUBLIC_MODE", "true")
    r = client.get("/projects", headers={"Authorization": "Bearer not-a-real-token"})
    assert r.status_code == 401


def test_decode_token_expired():
    cfg = JwtConfig(secret="unit-test-secret", expires_min=1)
    now = datetime.now(timezone.utc)
    payload = {
        "sub": "user@example.com",
        "name": "User",
        "iat": int((now - timedelta(minutes=10)).timestamp()),
        "exp": int((now - timedelta(minutes=5)).timestamp()),
    }
    token = jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)
    with pytest.raises(HTTPException) as exc:
        decode_token(token, cfg=cfg)
    assert exc.value.status_code == 401
    assert "expired" in exc.value.detail.lower()


def test_decode_token_without_subject():
    cfg = JwtConfig(secret="unit-test-secret")
    token = jwt.encode({"name": "Nobody"}, cfg.secret, algorithm=cfg.algorithm)
    with pytest.raises(HTTPException):
        decode_token(token, cfg=cfg)
