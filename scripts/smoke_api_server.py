#!/usr/bin/env python3
"""
HTTP API smoke-check (aiohttp test client, temp SQLite DB).

What it validates:
- register/login/verify/logout with the httpOnly session cookie or Bearer token
- business creation (auth, slug, review URL, free-tier cap)
- tenant config script and landing page rendering
- review submission routing and owner review/analytics endpoints
- QR code and Places lookup input validation
- every error is {"status": "error", "message": ...} with the mapped status

Run:
  python3 scripts/smoke_api_server.py
"""

from __future__ import annotations

import asyncio
import base64
import json
import shutil
import sys
import tempfile
from dataclasses import replace
from io import BytesIO
from pathlib import Path

from aiohttp.test_utils import TestClient, TestServer
from PIL import Image


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

from api_server import build_services, create_api_app  # noqa: E402
from config import CFG  # noqa: E402
from database import init_db  # noqa: E402
from funnel.auth import AUTH_COOKIE_NAME  # noqa: E402
from funnel.tenants import CONFIG_SCRIPT_PREFIX  # noqa: E402


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _expect_error(resp, status: int, message: str | None = None) -> None:
    _assert(resp.status == status, f"{resp.method} {resp.url.path}: expected {status}, got {resp.status}")
    body = await resp.json()
    _assert(body.get("status") == "error" and body.get("message"), f"error envelope expected, got {body}")
    if message is not None:
        _assert(body["message"] == message, f"unexpected message {body['message']!r}")


def _config_from_script(text: str) -> dict:
    _assert(text.startswith(CONFIG_SCRIPT_PREFIX), f"unexpected script prefix: {text[:40]!r}")
    return json.loads(text[len(CONFIG_SCRIPT_PREFIX):].rstrip().rstrip(";"))


async def _check_accounts(client: TestClient) -> tuple[str, str]:
    resp = await client.get("/health")
    _assert(resp.status == 200 and (await resp.json())["status"] == "ok", "health")

    resp = await client.post("/auth/register", json={"email": " Owner@Example.com ", "password": "password123", "name": "Owner"})
    _assert(resp.status == 201, f"register status {resp.status}")
    body = await resp.json()
    _assert(body["user"]["email"] == "owner@example.com", "email normalized")
    _assert(body["user"]["subscriptionTier"] == "free", "new accounts are free tier")
    cookie_header = ";".join(resp.headers.getall("Set-Cookie", []))
    _assert(f"{AUTH_COOKIE_NAME}=" in cookie_header, "session cookie set")
    _assert("HttpOnly" in cookie_header and "SameSite=Strict" in cookie_header, f"cookie flags: {cookie_header}")
    owner_token = body["token"]
    client.session.cookie_jar.clear()

    await _expect_error(
        await client.post("/auth/register", json={"email": "owner@example.com", "password": "password123"}),
        409,
        "User with this email already exists",
    )
    await _expect_error(
        await client.post("/auth/register", json={"email": "x@example.com", "password": "short"}),
        400,
        "Password must be at least 8 characters",
    )
    await _expect_error(await client.post("/auth/register", json={"email": "", "password": ""}), 400)
    await _expect_error(
        await client.post("/auth/register", data="{not json", headers={"Content-Type": "application/json"}),
        400,
        "Invalid JSON",
    )

    await _expect_error(await client.get("/auth/verify"), 401, "Not authenticated")
    await _expect_error(await client.get("/auth/verify", headers=_bearer("garbage.token")), 401)
    resp = await client.get("/auth/verify", headers=_bearer(owner_token))
    _assert(resp.status == 200 and (await resp.json())["user"]["email"] == "owner@example.com", "bearer verify")
    resp = await client.get("/auth/verify", headers={"Cookie": f"{AUTH_COOKIE_NAME}={owner_token}"})
    _assert(resp.status == 200, "cookie verify")

    await _expect_error(
        await client.post("/auth/login", json={"email": "owner@example.com", "password": "wrong-password"}),
        401,
        "Invalid email or password",
    )
    await _expect_error(
        await client.post("/auth/login", json={"email": "nobody@example.com", "password": "password123"}),
        401,
        "Invalid email or password",
    )
    resp = await client.post("/auth/login", json={"email": "OWNER@example.com", "password": "password123"})
    _assert(resp.status == 200, f"login status {resp.status}")
    login_token = (await resp.json())["token"]
    client.session.cookie_jar.clear()

    resp = await client.post("/auth/register", json={"email": "stranger@example.com", "password": "password123"})
    stranger_token = (await resp.json())["token"]
    client.session.cookie_jar.clear()

    resp = await client.post("/auth/logout")
    _assert(resp.status == 200 and (await resp.json())["success"] is True, "logout")
    cleared = ";".join(resp.headers.getall("Set-Cookie", []))
    _assert(f"{AUTH_COOKIE_NAME}=" in cleared and "Max-Age=0" in cleared, f"logout must clear cookie: {cleared}")
    client.session.cookie_jar.clear()
    return login_token, stranger_token


async def _check_businesses(client: TestClient, owner_token: str) -> None:
    payload = {
        "name": "Joe's Café",
        "placeId": "PID-1",
        "category": "Cafe",
        "googleMapsUrl": "https://maps.google.com/?cid=1",
        "config": {"discount_percentage": 15, "referral_enabled": True},
    }
    await _expect_error(await client.post("/business/create", json=payload), 401)
    await _expect_error(
        await client.post("/business/create", json={"name": "No Place"}, headers=_bearer(owner_token)),
        400,
        "Business name and place ID are required",
    )

    resp = await client.post("/business/create", json=payload, headers=_bearer(owner_token))
    _assert(resp.status == 201, f"create status {resp.status}")
    body = await resp.json()
    _assert(body["business"]["slug"] == "joes-caf", f"unexpected slug {body['business']['slug']}")
    _assert(body["reviewUrl"] == f"https://joes-caf.{CFG.base_domain}", f"unexpected url {body['reviewUrl']}")
    _assert(body["business"]["config"]["discount_percentage"] == 15, "flags persisted")

    await _expect_error(
        await client.post("/business/create", json={**payload, "placeId": "PID-2"}, headers=_bearer(owner_token)),
        403,
    )

    resp = await client.get("/user/businesses", headers=_bearer(owner_token))
    businesses = (await resp.json())["businesses"]
    _assert([item["slug"] for item in businesses] == ["joes-caf"], f"unexpected listing {businesses}")
    await _expect_error(await client.get("/user/businesses"), 401)


async def _check_customer_flow(client: TestClient) -> None:
    resp = await client.get("/business/JOES-CAF/config")
    _assert(resp.status == 200, "config status")
    _assert(resp.headers["Content-Type"].startswith("text/javascript"), "config content type")
    _assert("max-age" in resp.headers.get("Cache-Control", ""), "config is cacheable")
    config = _config_from_script(await resp.text())
    _assert(config["businessName"] == "Joe's Café", "config business name")
    _assert(config["businessSlug"] == "joes-caf", "config carries the slug the page posts back")
    _assert(config["googleReviewUrl"].endswith("PID-1"), "config review URL")
    _assert(config["discount"]["percentage"] == 15 and config["referral"]["enabled"] is True, "config flags")
    _assert(config["reviewThreshold"] == 5, "default threshold")

    resp = await client.get("/business/unknown/config")
    _assert(resp.status == 200, "unknown slug config still 200")
    _assert(_config_from_script(await resp.text()) == {}, "unknown slug -> empty config")

    resp = await client.get("/", params={"biz": "joes-caf"})
    page = await resp.text()
    _assert(resp.status == 200 and resp.headers.get("Cache-Control") == "no-store", "landing page headers")
    _assert("Review Joe&#x27;s Café" in page, "landing page title is escaped")
    _assert("/business/joes-caf/config" in page, "landing page loads the tenant config script")
    _assert("__TITLE__" not in page and "__CONFIG_SCRIPT_URL__" not in page, "placeholders replaced")
    resp = await client.get("/")
    _assert("/business/default/config" in await resp.text(), "IP host falls back to the default tenant")
    resp = await client.get("/", params={"biz": "nope"})
    _assert("Review Tool" in await resp.text(), "unknown tenant renders the default name")
    resp = await client.get("/", params={"biz": "a/b?x\"></script>"})
    page = await resp.text()
    _assert("/business/a%2Fb%3Fx%22%3E%3C%2Fscript%3E/config" in page, "slug is path-encoded in the config script URL")
    _assert("</script>\"" not in page and "/business/a/b" not in page, "raw slug never reaches the script tag")
    _assert('src="/static/review.js"' in page, "landing page loads the review script")
    resp = await client.get("/static/review.js")
    script = await resp.text()
    _assert(resp.status == 200 and "REVIEW_TOOL_CONFIG" in script, "review script is served")
    _assert("/reviews/submit" in script and "discount" in script, "review script posts feedback and shows the issued code")

    resp = await client.post("/reviews/submit", json={"businessSlug": "joes-caf", "rating": 5})
    body = await resp.json()
    _assert(resp.status == 200 and body["reviewId"] is None and body["redirectUrl"].endswith("PID-1"), "redirect")

    resp = await client.post(
        "/reviews/submit",
        json={"businessSlug": "joes-caf", "rating": 3, "name": "Jane Doe", "comments": "Cold coffee"},
    )
    body = await resp.json()
    _assert(resp.status == 200 and isinstance(body["reviewId"], int), f"stored submission {body}")
    _assert(body["discount"]["percentage"] == 15 and body["discount"]["code"].startswith("JD"), "discount issued")
    await client.post("/reviews/submit", json={"businessSlug": "joes-caf", "rating": "1", "comments": "Rude"})

    await _expect_error(await client.post("/reviews/submit", json={"rating": 3}), 400)
    await _expect_error(
        await client.post("/reviews/submit", json={"businessSlug": "nope", "rating": 3, "comments": "x"}),
        404,
        "Business not found",
    )
    await _expect_error(
        await client.post("/reviews/submit", json={"businessSlug": "joes-caf", "rating": 3.5, "comments": "x"}),
        400,
        "Invalid rating",
    )
    await _expect_error(await client.post("/reviews/submit", json=[1, 2]), 400)
    for bad_id in (True, 1.9, "1.5"):
        await _expect_error(
            await client.post("/reviews/submit", json={"businessId": bad_id, "rating": 2, "comments": "x"}),
            404,
            "Business not found",
        )


async def _check_owner_views(client: TestClient, owner_token: str, stranger_token: str) -> None:
    await _expect_error(await client.get("/business/joes-caf/reviews"), 401)
    await _expect_error(await client.get("/business/joes-caf/reviews", headers=_bearer(stranger_token)), 403)
    await _expect_error(await client.get("/business/nope/reviews", headers=_bearer(owner_token)), 404)

    resp = await client.get("/business/joes-caf/reviews", headers=_bearer(owner_token))
    body = await resp.json()
    _assert(body["businessName"] == "Joe's Café", "reviews business name")
    _assert([item["rating"] for item in body["reviews"]] == [1, 3], f"newest first: {body['reviews']}")

    resp = await client.get("/business/joes-caf/reviews", params={"analytics": "true"}, headers=_bearer(owner_token))
    stats = (await resp.json())["analytics"]
    _assert(stats["totalReviews"] == 2 and stats["averageRating"] == 2, f"analytics totals {stats}")
    _assert(stats["ratingDistribution"]["counts"]["1"] == 1, "distribution counts")
    _assert(len(stats["timeSeries"]) == 30 and sum(p["count"] for p in stats["timeSeries"]) == 2, "series")


async def _check_tools(client: TestClient) -> None:
    resp = await client.get("/qrcode", params={"url": "https://joes-caf.blooreview.app"})
    body = await resp.json()
    _assert(resp.status == 200 and body["success"] is True, "qrcode status")
    _assert(body["url"] == "https://joes-caf.blooreview.app", "qrcode echoes url")
    raw = base64.b64decode(body["dataUrl"].split(",", 1)[1])
    with Image.open(BytesIO(raw)) as image:
        _assert(image.size == (256, 256), f"qr size {image.size}")
    await _expect_error(await client.get("/qrcode"), 400, "URL parameter is required")

    await _expect_error(await client.post("/admin/maps", json={"mapsUrl": ""}), 400)


async def _run_checks(db_path: str) -> None:
    await init_db(db_path)
    config = replace(CFG, secret_key="smoke-secret", cookie_secure=False, google_maps_api_key="")
    app = create_api_app(build_services(config, db_path=db_path))

    client = TestClient(TestServer(app))
    await client.start_server()
    try:
        owner_token, stranger_token = await _check_accounts(client)
        await _check_businesses(client, owner_token)
        await _check_customer_flow(client)
        await _check_owner_views(client, owner_token, stranger_token)
        await _check_tools(client)
    finally:
        await client.close()


def main() -> None:
    tmp_dir = tempfile.mkdtemp(prefix="reviewfunnel-api-")
    try:
        asyncio.run(_run_checks(str(Path(tmp_dir) / "state.db")))
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)
    print("OK: API server smoke passed.")


if __name__ == "__main__":
    main()
