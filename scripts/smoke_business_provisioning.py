#!/usr/bin/env python3
"""
Account + business provisioning smoke-check (temp SQLite DB).

What it validates:
- registration validation, case-insensitive duplicate emails, login
- business creation: required fields, slugify, -2/-3 collision suffixes, public URL
- free plan is capped at one business, pro is not
- flag validation for threshold/percentage/days
- slug race (UNIQUE violation) surfaces as a conflict

Run:
  python3 scripts/smoke_business_provisioning.py
"""

from __future__ import annotations

import asyncio
import shutil
import sys
import tempfile
from dataclasses import replace
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

from config import CFG  # noqa: E402
from database import init_db, open_db  # noqa: E402
from funnel.repository import FunnelRepository  # noqa: E402
from funnel.service import (  # noqa: E402
    AccessDeniedError,
    AccountService,
    AuthenticationError,
    ConflictError,
    ProvisioningService,
    ValidationError,
    account_from_row,
)


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


async def _expect(error_type: type[Exception], coro, message: str) -> Exception:
    try:
        await coro
    except error_type as exc:
        return exc
    raise AssertionError(message)


async def _set_tier(db_path: str, user_id: int, tier: str) -> None:
    async with open_db(db_path) as db:
        await db.execute("UPDATE users SET subscription_tier = ? WHERE id = ?", (tier, user_id))
        await db.commit()

async def _run_checks(db_path: Path) -> None:
    await init_db(str(db_path))
    config = replace(CFG, secret_key="smoke-secret", base_domain="blooreview.app")
    repository = FunnelRepository(str(db_path))
    accounts = AccountService(repository, config)
    provisioning = ProvisioningService(repository, config)

    # Accounts
    await _expect(ValidationError, accounts.register("", "password123"), "missing email must fail")
    await _expect(ValidationError, accounts.register("a@example.com", ""), "missing password must fail")
    await _expect(ValidationError, accounts.register("a@example.com", "short"), "short password must fail")
    await _expect(ValidationError, accounts.register("not-an-email", "password123"), "email needs @")

    free_owner, token = await accounts.register(" Owner@Example.com ", "password123", "Owner")
    _assert(free_owner.email == "owner@example.com", "email must be normalized")
    _assert(free_owner.subscription_tier == "free", "new accounts start on free plan")
    _assert(token, "registration must issue a token")
    verified = await accounts.verify(token)
    _assert(verified.id == free_owner.id, "issued token must verify")
    await _expect(
        ConflictError,
        accounts.register("OWNER@example.com", "password123"),
        "duplicate email (case-insensitive) must conflict",
    )
    await _expect(AuthenticationError, accounts.login("owner@example.com", "wrong-pass"), "bad password")
    await _expect(AuthenticationError, accounts.login("ghost@example.com", "password123"), "unknown user")
    logged_in, _ = await accounts.login("OWNER@example.com", "password123")
    _assert(logged_in.id == free_owner.id, "login must resolve the same account")
    await _expect(AuthenticationError, accounts.verify("garbage"), "garbage token must be rejected")

    # Business creation on the free plan
    await _expect(
        ValidationError,
        provisioning.create_business(free_owner, name="", place_id="P1"),
        "name is required",
    )
    await _expect(
        ValidationError,
        provisioning.create_business(free_owner, name="Joe's Café!!", place_id="  "),
        "place id is required",
    )
    await _expect(
        ValidationError,
        provisioning.create_business(free_owner, name="Joe's Café!!", place_id="P1", config={"review_threshold": 7}),
        "threshold outside 1..5 must be rejected",
    )
    await _expect(
        ValidationError,
        provisioning.create_business(free_owner, name="Joe's Café!!", place_id="P1", config={"discount_percentage": 0}),
        "non-positive percentage must be rejected",
    )
    await _expect(
        ValidationError,
        provisioning.create_business(free_owner, name="Joe's Café!!", place_id="P1", config=["not", "a", "dict"]),
        "config must be an object",
    )

    created = await provisioning.create_business(
        free_owner,
        name="Joe's Café!!",
        place_id="P1",
        category="Cafe",
        config={"review_threshold": 4, "discount_valid_days": "45", "custom_key": "kept"},
        host="app.blooreview.app",
    )
    business = created["business"]
    _assert(business["slug"] == "joes-caf", f"unexpected slug {business['slug']}")
    _assert(created["reviewUrl"] == "https://joes-caf.blooreview.app", f"unexpected url {created['reviewUrl']}")
    _assert(business["config"]["review_threshold"] == 4, "explicit threshold must be stored")
    _assert(business["config"]["discount_valid_days"] == 45, "numeric string days must be normalized")
    _assert(business["config"]["discount_percentage"] == 10, "missing flags get defaults")
    _assert(business["config"]["custom_key"] == "kept", "unknown flags are preserved")

    await _expect(
        AccessDeniedError,
        provisioning.create_business(free_owner, name="Second", place_id="P2"),
        "free plan must be capped at one business",
    )

    # Pro plan: unlimited, collision suffixes
    pro_row, _ = await accounts.register("pro@example.com", "password123", "Pro")
    await _set_tier(str(db_path), pro_row.id, "pro")
    pro_owner = account_from_row(await repository.get_user(pro_row.id))
    _assert(pro_owner.subscription_tier == "pro", "tier must be upgraded")

    slugs = []
    for _ in range(3):
        result = await provisioning.create_business(pro_owner, name="Starbucks", place_id="SB", host="127.0.0.1:8080")
        slugs.append(result["business"]["slug"])
    _assert(slugs == ["starbucks", "starbucks-2", "starbucks-3"], f"unexpected collision slugs: {slugs}")
    _assert(result["reviewUrl"] == "https://starbucks-3.blooreview.app", "IP host must use configured domain")

    unnamed = await provisioning.create_business(pro_owner, name="!!!", place_id="X1")
    _assert(unnamed["business"]["slug"] == "business", "empty slugify result falls back to 'business'")

    listed = await provisioning.list_businesses(pro_owner)
    _assert(len(listed) == 4, f"pro owner must see 4 businesses, got {len(listed)}")
    _assert(len(await provisioning.list_businesses(free_owner)) == 1, "free owner sees only own business")

    # Slug race: collision check sees nothing, UNIQUE constraint fires.
    original_lookup = repository.list_slugs_with_base

    async def _stale_lookup(base_slug: str) -> list[str]:
        return []

    repository.list_slugs_with_base = _stale_lookup
    try:
        await _expect(
            ConflictError,
            provisioning.create_business(pro_owner, name="Starbucks", place_id="SB"),
            "UNIQUE violation must map to conflict",
        )
    finally:
        repository.list_slugs_with_base = original_lookup


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="reviewfunnel-smoke-provisioning-"))
    try:
        asyncio.run(_run_checks(tmpdir / "state.db"))
        print("OK: business provisioning smoke passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
