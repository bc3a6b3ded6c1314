#!/usr/bin/env python3
"""
Tenant configuration store smoke-check (temp SQLite DB).

What it validates:
- database provider maps a business row + flag blob to TenantConfig
- corrupt flag values are clamped/defaulted on read
- unknown slug and provider failures resolve to the default config
- config script rendering (`window.REVIEW_TOOL_CONFIG = ...;`)
- exported configs load into StaticConfigProvider
- TENANT_CONFIG_FILE makes the app serve tenants from the export

Run:
  python3 scripts/smoke_tenant_config_store.py
"""

from __future__ import annotations

import asyncio
import json
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

from api_server import build_services  # noqa: E402
from config import CFG, DEFAULT_GOOGLE_REVIEW_BASE_URL  # noqa: E402
from database import init_db  # noqa: E402
from funnel.models import DEFAULT_BUSINESS_NAME, DEFAULT_SLUG  # noqa: E402
from funnel.providers import DatabaseConfigProvider, StaticConfigProvider  # noqa: E402
from funnel.repository import FunnelRepository  # noqa: E402
from funnel.service import ProvisioningService  # noqa: E402
from funnel.tenants import CONFIG_SCRIPT_PREFIX, EMPTY_CONFIG_SCRIPT, TenantConfigStore, render_config_script  # noqa: E402


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


class _BrokenProvider:
    provider_name = "broken"

    async def get(self, slug: str):
        raise RuntimeError(f"backend unavailable for {slug}")


def _script_payload(script: str) -> dict:
    _assert(script.startswith(CONFIG_SCRIPT_PREFIX), "script must assign window.REVIEW_TOOL_CONFIG")
    _assert(script.endswith(";"), "script must end with a semicolon")
    return json.loads(script[len(CONFIG_SCRIPT_PREFIX):-1])


async def _run_checks(db_path: Path, tmpdir: Path) -> None:
    await init_db(str(db_path))
    repository = FunnelRepository(str(db_path))
    owner = await repository.create_user(
        email="owner@example.com",
        password_hash="x",
        name="Owner",
        tier="pro",
        status="active",
    )
    await repository.create_business(
        user_id=owner["id"],
        slug="joes",
        place_id="ChIJ abc/123",
        name="Joe's Cafe",
        category="Cafe",
        google_maps_url="https://maps.google.com/?cid=1",
        hero_image="https://lh3.googleusercontent.com/hero.jpg",
        logo_url=None,
        config={
            "discount_enabled": "false",
            "discount_percentage": -5,
            "discount_valid_days": "14",
            "review_threshold": 9,
            "sheet_script_url": " https://script.google.com/macros/s/abc/exec ",
        },
    )
    await repository.create_business(
        user_id=owner["id"],
        slug="plain",
        place_id="PLAIN1",
        name="Plain Shop",
        category=None,
        google_maps_url=None,
        hero_image=None,
        logo_url=None,
        config={"review_threshold": "oops", "referral_enabled": 0},
    )

    store = TenantConfigStore(DatabaseConfigProvider(repository))

    joes = await store.resolve("joes")
    _assert(joes.name == "Joe's Cafe" and joes.category == "Cafe", "basic fields must map")
    _assert(joes.business_id is not None and joes.owner_id == owner["id"], "ids must map")
    _assert(joes.discount_enabled is False, "string 'false' must disable discounts")
    _assert(joes.discount_percentage == 10, "non-positive percentage must fall back to 10")
    _assert(joes.discount_valid_days == 14, "numeric string days must be parsed")
    _assert(joes.review_threshold == 5, "threshold above range must be clamped to 5")
    _assert(joes.feedback_sink_url == "https://script.google.com/macros/s/abc/exec", "sink url must be trimmed")
    _assert(
        joes.review_url == f"{DEFAULT_GOOGLE_REVIEW_BASE_URL}ChIJ%20abc%2F123",
        f"review url must url-encode the place id: {joes.review_url}",
    )

    plain = await store.resolve("plain")
    _assert(plain.review_threshold == 5, "garbage threshold must default to 5")
    _assert(plain.referral_enabled is False, "0 must disable referral")
    _assert(plain.discount_enabled is True, "missing discount flag defaults to enabled")

    missing = await store.resolve("nope")
    _assert(missing.slug == DEFAULT_SLUG and missing.name == DEFAULT_BUSINESS_NAME, "unknown slug -> default")
    _assert(missing.is_default, "default config must report is_default")
    _assert(await store.lookup("nope") is None, "lookup of unknown slug must return None")

    _assert(await store.hero_image("joes") == "https://lh3.googleusercontent.com/hero.jpg", "hero image lookup")
    _assert(await store.hero_image("plain") is None, "no hero image -> None")

    broken = TenantConfigStore(_BrokenProvider())
    fallback = await broken.resolve("joes")
    _assert(fallback.slug == DEFAULT_SLUG, "provider failure must degrade to default config")
    _assert(await broken.hero_image("joes") is None, "provider failure must degrade to no hero image")

    _assert(render_config_script(None) == EMPTY_CONFIG_SCRIPT, "no config -> empty script")
    _assert(EMPTY_CONFIG_SCRIPT == "window.REVIEW_TOOL_CONFIG = {};", "empty script literal mismatch")
    payload = _script_payload(render_config_script(joes))
    _assert(payload["businessName"] == "Joe's Cafe", "businessName key")
    _assert(payload["businessSlug"] == "joes", "businessSlug key for feedback posts")
    _assert(payload["reviewThreshold"] == 5, "reviewThreshold key")
    _assert(payload["discount"] == {"enabled": False, "percentage": 10, "validDays": 14}, "discount block")
    _assert(payload["referral"]["enabled"] is True, "referral block")
    _assert(payload["googleReviewUrl"] == joes.review_url, "googleReviewUrl key")
    _assert(payload["sheetScriptUrl"] == joes.feedback_sink_url, "sheetScriptUrl key")
    _assert(payload["heroImageUrl"] == joes.hero_image_url, "heroImageUrl key")

    exported = await ProvisioningService(repository).export_static_configs()
    _assert(sorted(exported) == ["joes", "plain"], f"export must cover all businesses: {sorted(exported)}")
    export_path = tmpdir / "tenants.json"
    export_path.write_text(json.dumps(exported, ensure_ascii=False), encoding="utf-8")

    static = StaticConfigProvider.from_json_file(export_path)
    _assert(static.slugs == ["joes", "plain"], "static provider must expose exported slugs")
    static_joes = await TenantConfigStore(static).resolve("JOES")
    _assert(static_joes.name == joes.name, "static provider lookup is case-insensitive")
    _assert(static_joes.review_url == joes.review_url, "exported review url must survive")
    _assert(static_joes.discount_valid_days == 14 and static_joes.discount_enabled is False, "flags survive")
    _assert((await TenantConfigStore(static).resolve("nope")).is_default, "static unknown slug -> default")

    # TENANT_CONFIG_FILE switches the app from the live database to the export.
    from_file = build_services(replace(CFG, tenant_config_file=str(export_path)), db_path=str(db_path))
    _assert(from_file.tenants.provider.provider_name == "static", "export file selects the static provider")
    _assert((await from_file.tenants.resolve("joes")).name == joes.name, "app resolves tenants from the export")
    live = build_services(replace(CFG, tenant_config_file=""), db_path=str(db_path))
    _assert(live.tenants.provider.provider_name == "database", "no export file -> database provider")


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="reviewfunnel-smoke-tenant-config-"))
    try:
        asyncio.run(_run_checks(tmpdir / "state.db", tmpdir))
        print("OK: tenant config store smoke passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
