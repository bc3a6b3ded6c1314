#!/usr/bin/env python3
"""
Password hashing + session token smoke-check.

Run:
  python3 scripts/smoke_auth_tokens.py
"""

from __future__ import annotations

import sys
import time
from pathlib import Path


def _setup_import_path() -> None:
    for candidate in (
        Path(__file__).resolve().parents[1] / "src",  # local repo root
        Path.cwd() / "src",
        Path("/app/src"),    # container path
    ):
        if candidate.exists():
            sys.path.insert(0, str(candidate))
            return


_setup_import_path()

from funnel.auth import SECONDS_PER_DAY, hash_password, issue_token, verify_password, verify_token  # noqa: E402


SECRET = "smoke-secret"


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def main() -> None:
    encoded = hash_password("password123", iterations=1000)
    _assert(encoded.startswith("pbkdf2_sha256$1000$"), f"unexpected hash format: {encoded[:24]}")
    _assert(verify_password("password123", encoded), "correct password must verify")
    _assert(not verify_password("password124", encoded), "wrong password must fail")
    _assert(hash_password("password123", iterations=1000) != encoded, "salt must make hashes differ")
    for garbage in ("", "plain", "md5$1$salt$abc", "pbkdf2_sha256$x$salt$abc"):
        _assert(not verify_password("password123", garbage), f"garbage hash {garbage!r} must fail")

    now = time.time()
    token = issue_token(user_id=7, email="a@example.com", subscription_tier="free", secret_key=SECRET, now=now)
    payload = verify_token(token, SECRET, now=now + 60)
    _assert(payload is not None, "fresh token must verify")
    _assert(payload["userId"] == 7 and payload["email"] == "a@example.com", "payload identity")
    _assert(payload["subscriptionTier"] == "free", "payload tier")
    _assert(payload["exp"] - payload["iat"] == 7 * SECONDS_PER_DAY, "default lifetime is 7 days")

    _assert(verify_token(token, SECRET, now=now + 8 * SECONDS_PER_DAY) is None, "expired token must fail")
    _assert(verify_token(token, "other-secret", now=now) is None, "wrong secret must fail")
    body, signature = token.split(".")
    tampered_sig = signature[:-1] + ("A" if signature[-1] != "A" else "B")
    _assert(verify_token(f"{body}.{tampered_sig}", SECRET, now=now) is None, "tampered signature must fail")
    forged = issue_token(user_id=8, email="a@example.com", subscription_tier="pro", secret_key=SECRET, now=now)
    _assert(verify_token(f"{forged.split('.')[0]}.{signature}", SECRET, now=now) is None, "swapped body must fail")
    for garbage in (None, "", "abc", "a.b.c", "é.é"):
        _assert(verify_token(garbage, SECRET, now=now) is None, f"garbage token {garbage!r} must fail")

    print("OK: auth tokens smoke passed.")


if __name__ == "__main__":
    main()
