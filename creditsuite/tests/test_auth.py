"""Tests for session JWT verification and identity resolution."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from creditsuite.core.config import settings

SECRET = "test-jwt-secret"


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_JWT_SECRET", SECRET)
    return SECRET


def _token(sub="jwt-user", *, secret=SECRET, expires_in=300):
    payload = {"sub": sub, "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in)}
    return jwt.encode(payload, secret, algorithm="HS256")


def test_valid_bearer_token_identifies_user(api_client, jwt_secret):
    resp = api_client.get("/v1/entitlements/me", headers={"Authorization": f"Bearer {_token()}"})
    assert resp.status_code == 200
    assert resp.json()["user_id"] == "jwt-user"


def test_expired_token_rejected(api_client, jwt_secret):
    resp = api_client.get("/v1/entitlements/me", headers={"Authorization": f"Bearer {_token(expires_in=-60)}"})
    assert resp.status_code == 401
    assert resp.json()["error"]["message"] == "Token expired"


def test_wrong_signature_rejected(api_client, jwt_secret):
    token = _token(secret="another-secret-entirely")
    resp = api_client.get("/v1/entitlements/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_header_fallback_disabled_in_production(api_client, monkeypatch):
    monkeypatch.setattr(settings, "ENV", "production")
    resp = api_client.get("/v1/entitlements/me", headers={"X-User-Id": "spoofed"})
    assert resp.status_code == 200
    assert resp.json()["subject"] == "guest"


def test_legacy_admin_key_disabled_when_unset(api_client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_KEY", None)
    resp = api_client.get("/v1/admin/plans", headers={"X-Admin-Key": "anything"})
    assert resp.status_code == 403
