"""
storefront/core/auth.py — Authentication primitives
HS256 session tokens (PyJWT) carried in an httponly cookie, bcrypt password
hashing. Verification is pure: no database lookups, no network.
"""
from __future__ import annotations

import time
from typing import Optional

import bcrypt
import jwt
from fastapi import Request, Response
from pydantic import ValidationError

from storefront.config import Settings, get_settings
from storefront.models import IdentityClaim

BCRYPT_ROUNDS = 10
BCRYPT_MAX_BYTES = 72


# ──────────────────────────────────────────────────────────────────────────────
# Tokens
# ──────────────────────────────────────────────────────────────────────────────

def sign_jwt(claim: IdentityClaim, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    now = int(time.time())
    payload = {
        "id": claim.id,
        "email": claim.email,
        "role": claim.role.value,
        "iat": now,
        "exp": now + settings.token_ttl_seconds,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_jwt(token: Optional[str], settings: Optional[Settings] = None) -> Optional[IdentityClaim]:
    """Decode and check a session token. Any failure → None."""
    if not token:
        return None
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp"]},
        )
        return IdentityClaim.model_validate(payload)
    except (jwt.InvalidTokenError, ValidationError):
        return None


# ──────────────────────────────────────────────────────────────────────────────
# Cookie transport
# ──────────────────────────────────────────────────────────────────────────────

def get_token(request: Request, settings: Optional[Settings] = None) -> Optional[str]:
    settings = settings or get_settings()
    return request.cookies.get(settings.token_cookie_name) or None


def set_auth_cookie(response: Response, token: str, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    response.set_cookie(
        key=settings.token_cookie_name,
        value=token,
        max_age=settings.token_ttl_seconds,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def clear_auth_cookie(response: Response, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    response.delete_cookie(
        key=settings.token_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


# ──────────────────────────────────────────────────────────────────────────────
# Passwords
# ──────────────────────────────────────────────────────────────────────────────

def _password_bytes(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False
