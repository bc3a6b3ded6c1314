#!/usr/bin/env python3
"""
Feedback ingestion + analytics smoke-check (temp SQLite DB, local sink server).

What it validates:
- malformed business ids (bools, fractional floats) never match a tenant
- validation order: tenant reference -> tenant lookup -> rating -> threshold -> comments
- ratings at/above the threshold are never stored and return the review URL
- stored feedback returns a discount code and is mirrored to the tenant sink
- mirror failures never break submission
- the thank-you screen shows the code that was stored and mirrored
- owner review listing and analytics (half-up mean, distribution, 30-day zero-filled series)

Run:
  python3 scripts/smoke_feedback_ingestion.py
"""

from __future__ import annotations

import asyncio
import json
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import date
from pathlib import Path

from aiohttp import web
from aiohttp.test_utils import TestServer


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
from funnel.analytics import compute_analytics, mean_rating  # noqa: E402
from funnel.discounts import format_expiry_label, generate_discount_code  # noqa: E402
from funnel.flow import FlowState, MemoryFlowStorage, ReviewFlow  # noqa: E402
from funnel.mirror import MIRROR_CONTENT_TYPE, FeedbackMirror  # noqa: E402
from funnel.records import tenant_config_from_row  # noqa: E402
from funnel.repository import FunnelRepository  # noqa: E402
from funnel.service import (  # noqa: E402
    AccessDeniedError,
    FeedbackService,
    NotFoundError,
    ValidationError,
    account_from_row,
    parse_business_id,
)


TODAY = date(2026, 3, 15)


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


async def _expect(error_type: type[Exception], coro, message: str) -> Exception:
    try:
        await coro
    except error_type as exc:
        return exc
    raise AssertionError(message)


def _sink_app(received: list[dict]) -> web.Application:
    async def accept(request: web.Request) -> web.Response:
        received.append({
            "content_type": request.headers.get("Content-Type"),
            "body": json.loads(await request.text()),
        })
        return web.json_response({"result": "success"})

    async def reject(request: web.Request) -> web.Response:
        return web.Response(status=500, text="sheet error")

    app = web.Application()
    app.router.add_post("/sink", accept)
    app.router.add_post("/broken", reject)
    return app


async def _count_reviews(db_path: str, business_id: int) -> int:
    async with open_db(db_path) as db:
        async with db.execute("SELECT COUNT(*) FROM reviews WHERE business_id = ?", (business_id,)) as cur:
            return (await cur.fetchone())[0]


def _check_business_id_parsing() -> None:
    _assert(parse_business_id(7) == 7 and parse_business_id(" 7 ") == 7, "ints and digit strings")
    _assert(parse_business_id(7.0) == 7, "integral floats from JSON")
    for bad in (True, False, 1.9, float("nan"), float("inf"), "1.0", "7a", "", -3, 0, None, {"id": 1}):
        _assert(parse_business_id(bad) is None, f"business id {bad!r} must be rejected")


async def _check_submissions(repository: FunnelRepository, feedback: FeedbackService, sink_base: str, received: list) -> None:
    owner_row = await repository.create_user(
        email="owner@example.com", password_hash="x", name="Owner", tier="pro", status="active"
    )
    business = await repository.create_business(
        user_id=owner_row["id"],
        slug="joes",
        place_id="PID-1",
        name="Joe's Cafe",
        category="Cafe",
        google_maps_url="https://maps.google.com/?cid=1",
        hero_image=None,
        logo_url=None,
        config={"sheet_script_url": f"{sink_base}/sink", "discount_valid_days": 30},
    )

    # Validation order
    await _expect(ValidationError, feedback.submit(rating=3, comments="x"), "missing tenant ref -> 400")
    await _expect(NotFoundError, feedback.submit(business_slug="nope", rating=99), "unknown tenant before rating")
    await _expect(NotFoundError, feedback.submit(business_id="abc", rating=3, comments="x"), "non-numeric id")
    for bad_id in (True, business["id"] + 0.9, "1.5", "-1", 0, " ", [1]):
        await _expect(
            NotFoundError,
            feedback.submit(business_id=bad_id, rating=2, comments="x"),
            f"malformed business id {bad_id!r} must not match a tenant",
        )
    for bad in (0, 6, 3.5, True, "abc", None, float("nan"), "  "):
        await _expect(ValidationError, feedback.submit(business_slug="joes", rating=bad, comments="x"), f"rating {bad!r}")
    await _expect(ValidationError, feedback.submit(business_slug="joes", rating=2, comments="   "), "comments required")

    # High rating: not stored, redirect URL returned, comments not needed.
    high = await feedback.submit(business_slug="joes", rating=5)
    _assert(not high.stored and high.review_id is None, "rating at threshold must not be stored")
    _assert(high.redirect_url and high.redirect_url.endswith("PID-1"), f"unexpected redirect {high.redirect_url}")
    _assert(high.to_dict() == {"success": True, "reviewId": None, "redirectUrl": high.redirect_url}, "redirect shape")
    _assert(await _count_reviews(repository.db_path, business["id"]) == 0, "no row for high ratings")

    # Stored feedback + mirror
    outcome = await feedback.submit(
        business_slug="JOES", rating="3", name=" Jane Doe ", comments=" Coffee was cold ", today=TODAY
    )
    _assert(outcome.stored and isinstance(outcome.review_id, int), "low rating must be stored")
    _assert(outcome.discount_code == generate_discount_code("Jane Doe", 30, TODAY), "discount code mismatch")
    _assert(outcome.discount_code == "JD140426", f"unexpected code {outcome.discount_code}")
    payload = outcome.to_dict()
    _assert(payload["success"] is True and payload["reviewId"] == outcome.review_id, "response shape")
    _assert(payload["discount"]["expiresOn"] == "2026-04-14", "expiry date in response")
    _assert(payload["discount"]["expiresLabel"] == "April 14, 2026", "expiry label in response")

    await feedback.mirror.drain(timeout=5)
    _assert(len(received) == 1, f"exactly one mirror call expected, got {len(received)}")
    _assert(received[0]["content_type"] == MIRROR_CONTENT_TYPE, f"mirror content type {received[0]['content_type']}")
    body = received[0]["body"]
    _assert(body["business_slug"] == "joes" and body["business_name"] == "Joe's Cafe", "business fields mirrored")
    _assert(body["rating"] == 3 and body["name"] == "Jane Doe", "rating and name mirrored")
    _assert(body["comments"] == "Coffee was cold", "trimmed comments mirrored")
    _assert(body["discount_code"] == outcome.discount_code, "discount code mirrored")
    _assert(body["discount_expiry_date"] == "2026-04-14", "expiry mirrored")
    _assert(body["place_id"] == "PID-1" and body["map_url"], "place fields mirrored")
    _assert(body["submitted_at"], "submitted_at mirrored")

    by_id = await feedback.submit(business_id=str(business["id"]), rating=3.0, comments="Slow", today=TODAY)
    _assert(by_id.stored, "lookup by id with integral float rating must work")
    await feedback.mirror.drain(timeout=5)
    _assert(len(received) == 2, "second submission mirrored too")

    # Broken sink: submission still succeeds.
    await repository.create_business(
        user_id=owner_row["id"],
        slug="broken-sink",
        place_id="PID-2",
        name="Broken Sink",
        category=None,
        google_maps_url=None,
        hero_image=None,
        logo_url=None,
        config={"sheet_script_url": f"{sink_base}/broken", "discount_enabled": False},
    )
    broken = await feedback.submit(business_slug="broken-sink", rating=1, comments="Bad")
    _assert(broken.stored and broken.discount_code is None, "stored without discount when disabled")
    _assert("discount" not in broken.to_dict(), "no discount block when disabled")
    await feedback.mirror.drain(timeout=5)
    _assert(feedback.mirror.pending == 0, "mirror tasks must be drained")
    _assert(not await feedback.mirror.send(f"{sink_base}/broken", {"business_slug": "x"}), "5xx sink -> False")
    _assert(not await feedback.mirror.send("http://127.0.0.1:9/unreachable", {"business_slug": "x"}), "dead sink")


async def _check_thank_you_matches_mirror(repository: FunnelRepository, feedback: FeedbackService, received: list) -> None:
    row = await repository.get_business_by_slug("joes")
    flow = ReviewFlow(tenant_config_from_row(row), MemoryFlowStorage(), page_url="https://joes.example.com/")
    flow.select_rating(2)
    _assert(flow.confirm() is FlowState.FOLLOWUP_FEEDBACK, "low rating goes to feedback")

    # Anonymous feedback gets random initials, so a second local code would differ.
    outcome = await feedback.submit(business_slug="joes", rating=2, name=None, comments="Too loud")
    _assert(outcome.stored and outcome.discount_code, "anonymous feedback still earns a code")
    await feedback.mirror.drain(timeout=5)
    mirrored = received[-1]["body"]
    _assert(mirrored["comments"] == "Too loud", "last mirror call belongs to this submission")

    _assert(flow.submit_feedback("Too loud", None, outcome=outcome) is FlowState.THANK_YOU, "thank-you reached")
    shown = flow.thank_you
    _assert(shown.discount_code == outcome.discount_code == mirrored["discount_code"], "one code end to end")
    _assert(shown.discount_expiry == outcome.discount_expiry, "shown expiry is the stored one")
    _assert(shown.discount_expiry_label == format_expiry_label(outcome.discount_expiry), "expiry label")
    _assert(shown.discount_percentage == outcome.discount_percentage, "shown percentage is the stored one")

    plain_flow = ReviewFlow(
        tenant_config_from_row(await repository.get_business_by_slug("broken-sink")), MemoryFlowStorage()
    )
    plain_flow.select_rating(1)
    plain_flow.confirm()
    plain = await feedback.submit(business_slug="broken-sink", rating=1, comments="Bad again")
    plain_flow.submit_feedback("Bad again", "Jane Doe", outcome=plain)
    _assert(plain_flow.thank_you is not None and not plain_flow.thank_you.has_discount, "no code when none was issued")


async def _check_analytics(repository: FunnelRepository, feedback: FeedbackService) -> None:
    owner = account_from_row(await repository.get_user_by_email("owner@example.com"))
    stranger_row = await repository.create_user(
        email="stranger@example.com", password_hash="x", name=None, tier="free", status="active"
    )
    stranger = account_from_row(stranger_row)

    business = await repository.create_business(
        user_id=owner.id,
        slug="stats",
        place_id="PID-3",
        name="Stats Shop",
        category=None,
        google_maps_url=None,
        hero_image=None,
        logo_url=None,
        config={},
    )
    empty = await feedback.analytics(owner, "stats", today=TODAY)
    _assert(empty["analytics"]["totalReviews"] == 0 and empty["analytics"]["averageRating"] == 0, "empty stats")
    _assert(empty["analytics"]["ratingDistribution"]["percentages"]["1"] == 0, "empty percentages are 0")

    rows = [
        (1, "2026-03-15T09:00:00+00:00"),
        (2, "2026-03-15T18:30:00+00:00"),
        (2, "2026-03-10T12:00:00+00:00"),
        (4, "2026-02-14T00:00:00+00:00"),
        (3, "2026-01-01T12:00:00+00:00"),
        (5, "2026-03-14T12:00:00+00:00"),  # legacy 5-star row, excluded
    ]
    for rating, submitted_at in rows:
        await repository.create_review(
            business_id=business["id"],
            rating=rating,
            name=None,
            comments=f"rating {rating}",
            submitted_at=submitted_at,
        )

    result = await feedback.analytics(owner, "stats", today=TODAY)
    _assert(result["businessName"] == "Stats Shop", "business name in analytics")
    stats = result["analytics"]
    _assert(stats["totalReviews"] == 5, f"5-star rows excluded, got {stats['totalReviews']}")
    _assert(stats["averageRating"] == 2.4, f"mean must be rounded to one decimal, got {stats['averageRating']}")
    counts = stats["ratingDistribution"]["counts"]
    _assert(counts == {"1": 1, "2": 2, "3": 1, "4": 1, "5": 0}, f"unexpected counts {counts}")
    _assert(abs(stats["ratingDistribution"]["percentages"]["2"] - 40.0) < 1e-9, "percentage of 2-star ratings")

    series = stats["timeSeries"]
    _assert(len(series) == 30, "series must have 30 points")
    _assert(series[0]["date"] == "2026-02-14" and series[-1]["date"] == "2026-03-15", "series bounds")
    by_day = {point["date"]: point["count"] for point in series}
    _assert(by_day["2026-03-15"] == 2 and by_day["2026-03-10"] == 1, "daily counts")
    _assert(by_day["2026-02-14"] == 1, "first day of the window is included")
    _assert(by_day["2026-03-14"] == 0, "excluded ratings do not count")
    _assert(sum(by_day.values()) == 4, "reviews outside the window are not in the series")

    listed = await feedback.list_reviews(owner, "stats")
    ratings = [review["rating"] for review in listed["reviews"]]
    _assert(ratings == [2, 1, 2, 4, 3], f"reviews must be newest first, got {ratings}")

    await _expect(AccessDeniedError, feedback.list_reviews(stranger, "stats"), "other owners are denied")
    await _expect(AccessDeniedError, feedback.analytics(stranger, "stats"), "other owners are denied")
    await _expect(NotFoundError, feedback.list_reviews(owner, "missing"), "unknown slug -> 404")

    # Pure helper: offset timestamps are bucketed by UTC day.
    shifted = compute_analytics(
        [{"rating": 2, "submitted_at": "2026-03-15T01:00:00+03:00"}],
        today=TODAY,
    )
    _assert(shifted["timeSeries"][-2] == {"date": "2026-03-14", "count": 1}, "UTC bucketing")

    # Means are rounded half up: 1.25 -> 1.3, 2.25 -> 2.3.
    for ratings, expected in (((1, 1, 1, 2), 1.3), ((2, 2, 2, 3), 2.3), ((1, 2), 1.5), ((1, 1, 2), 1.3)):
        rows = [{"rating": value, "submitted_at": "2026-03-15T12:00:00+00:00"} for value in ratings]
        mean = compute_analytics(rows, today=TODAY)["averageRating"]
        _assert(mean == expected, f"mean of {ratings} must be {expected}, got {mean}")
    _assert(mean_rating(5, 4) == 1.3 and mean_rating(0, 0) == 0, "half-up helper")


async def _run_checks(db_path: Path) -> None:
    _check_business_id_parsing()
    await init_db(str(db_path))
    config = replace(CFG, mirror_timeout_sec=2)
    repository = FunnelRepository(str(db_path))
    feedback = FeedbackService(repository, config, FeedbackMirror(timeout_sec=2))

    received: list[dict] = []
    server = TestServer(_sink_app(received))
    await server.start_server()
    try:
        sink_base = f"http://{server.host}:{server.port}"
        await _check_submissions(repository, feedback, sink_base, received)
        await _check_thank_you_matches_mirror(repository, feedback, received)
        await _check_analytics(repository, feedback)
    finally:
        await feedback.mirror.drain(timeout=5)
        await server.close()


def main() -> None:
    tmpdir = Path(tempfile.mkdtemp(prefix="reviewfunnel-smoke-feedback-"))
    try:
        asyncio.run(_run_checks(tmpdir / "state.db"))
        print("OK: feedback ingestion smoke passed.")
    finally:
        shutil.rmtree(tmpdir, ignore_errors=True)


if __name__ == "__main__":
    main()
