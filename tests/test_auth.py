"""
tests/test_auth.py — Unit tests for token signing/verification and password hashing
"""
from __future__ import annotations

import time

import jwt
import pytest

from storefront.config import Settings
from storefront.core.auth import hash_password, sign_jwt, verify_jwt, verify_password
from storefront.models import IdentityClaim, Role


@pytest.fixture
def auth_settings() -> Settings:
    return Settings(environment="testing", jwt_secret="unit-test-secret", token_ttl_seconds=60)


def test_sign_then_verify_returns_claim(auth_settings):
    claim = IdentityClaim(id=3, email="cliente@tienda.com", role=Role.CUSTOMER)
    token = sign_jwt(claim, auth_settings)
    assert verify_jwt(token, auth_settings) == claim


def test_verify_rejects_wrong_secret(auth_settings):
    token = sign_jwt(IdentityClaim(id=1, email="a@tienda.com", role=Role.ADMIN), auth_settings)
    other = auth_settings.model_copy(update={"jwt_secret": "another-secret"})
    assert verify_jwt(token, other) is None


def test_verify_rejects_expired_token(auth_settings):
    now = int(time.time())
    token = jwt.encode(
        {"id": 1, "email": "a@tienda.com", "role": "admin", "iat": now - 120, "exp": now - 60},
        auth_settings.jwt_secret,
        algorithm="HS256",
    )
    assert verify_jwt(token, auth_settings) is None


def test_verify_rejects_token_without_expiry(auth_settings):
    token = jwt.encode({"id": 1, "email": "a@tienda.com", "role": "admin"}, auth_settings.jwt_secret, algorithm="HS256")
    assert verify_jwt(token, auth_settings) is None


def test_verify_rejects_unknown_role(auth_settings):
    token = jwt.encode(
        {"id": 1, "email": "a@tienda.com", "role": "superuser", "exp": int(time.time()) + 60},
        auth_settings.jwt_secret,
        algorithm="HS256",
    )
    assert verify_jwt(token, auth_settings) is None


@pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
def test_verify_rejects_garbage(auth_settings, token):
    assert verify_jwt(token, auth_settings) is None


def test_password_hash_roundtrip():
    hashed = hash_password("secreto123")
    assert hashed != "secreto123"
    assert verify_password("secreto123", hashed)
    assert not verify_password("otra-clave", hashed)


def test_verify_password_handles_missing_or_foreign_hash():
    assert verify_password("x", None) is False
    assert verify_password("x", "plain-text-not-bcrypt") is False
