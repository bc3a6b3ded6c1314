"""Password hashing and signed session tokens.

Token format: ``base64url(json payload) + "." + base64url(hmac_sha256)``.
The payload carries ``userId``, ``email``, ``subscriptionTier`` and ``exp``
(unix seconds).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Any

from aiohttp import web


AUTH_COOKIE_NAME = "auth_token"
PASSWORD_HASH_SCHEME = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 260_000
PASSWORD_SALT_BYTES = 16
MIN_PASSWORD_LENGTH = 8
SECONDS_PER_DAY = 86400


def hash_password(password: str, *, iterations: int = PASSWORD_HASH_ITERATIONS) -> str:
    salt = secrets.token_hex(PASSWORD_SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"{PASSWORD_HASH_SCHEME}${iterations}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        scheme, iterations_raw, salt, expected = str(encoded).split("$", 3)
        iterations = int(iterations_raw)
    except ValueError:
        return False
    if scheme != PASSWORD_HASH_SCHEME or iterations <= 0:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return hmac.compare_digest(digest.hex(), expected)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(secret_key: str, body: str) -> str:
    return _b64encode(hmac.new(secret_key.encode("utf-8"), body.encode("ascii"), hashlib.sha256).digest())


def issue_token(
    *,
    user_id: int,
    email: str,
    subscription_tier: str,
    secret_key: str,
    ttl_days: int = 7,
    now: float | None = None,
) -> str:
    issued_at = int(now if now is not None else time.time())
    payload = {
        "userId": int(user_id),
        "email": email,
        "subscriptionTier": subscription_tier,
        "iat": issued_at,
        "exp": issued_at + int(ttl_days) * SECONDS_PER_DAY,
    }
    body = _b64encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{body}.{_sign(secret_key, body)}"


def verify_token(token: str | None, secret_key: str, *, now: float | None = None) -> dict[str, Any] | None:
    """Payload dict for a valid, unexpired token; otherwise None."""
    if not token or token.count(".") != 1:
        return None
    body, signature = token.split(".", 1)
    try:
        expected = _sign(secret_key, body)
    except UnicodeEncodeError:
        return None
    if not hmac.compare_digest(expected, signature):
        return None
    try:
        payload = json.loads(_b64decode(body))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict) or "userId" not in payload:
        return None
    try:
        expires_at = int(payload.get("exp", 0))
    except (TypeError, ValueError):
        return None
    if expires_at <= int(now if now is not None else time.time()):
        return None
    return payload


def token_from_request(request: web.Request) -> str | None:
    """Bearer header first, then the auth cookie."""
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        if token:
            return token
    return request.cookies.get(AUTH_COOKIE_NAME) or None


def set_auth_cookie(response: web.StreamResponse, token: str, *, ttl_days: int, secure: bool) -> None:
    response.set_cookie(
        AUTH_COOKIE_NAME,
        token,
        max_age=int(ttl_days) * SECONDS_PER_DAY,
        path="/",
        httponly=True,
        secure=secure,
        samesite="Strict",
    )


def clear_auth_cookie(response: web.StreamResponse, *, secure: bool) -> None:
    response.set_cookie(
        AUTH_COOKIE_NAME,
        "",
        max_age=0,
        path="/",
        httponly=True,
        secure=secure,
        samesite="Strict",
    )
