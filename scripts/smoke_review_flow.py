#!/usr/bin/env python3
"""
Customer review flow state machine smoke-check.

What it validates:
- rating required before continuing; invalid ratings rejected inline
- rating >= threshold -> redirect with durable return flag; missing review link is an inline error
- rating < threshold -> follow-up feedback, comments required
- return detection: debounce, background cancel, page reload within/after the return window
- thank-you view with discount + referral links, or a plain message when discounts are off

Run:
  python3 scripts/smoke_review_flow.py
"""

from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
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
from funnel.discounts import generate_discount_code  # noqa: E402
from funnel.flow import (  # noqa: E402
    COMMENTS_REQUIRED_MESSAGE,
    INVALID_RATING_MESSAGE,
    RATING_REQUIRED_MESSAGE,
    REVIEW_LINK_MISSING_MESSAGE,
    ROUTE_EXTERNAL_REVIEW,
    ROUTE_PRIVATE_FEEDBACK,
    STORAGE_RATING_KEY,
    STORAGE_SINCE_KEY,
    STORAGE_WAITING_KEY,
    THANK_YOU_PLAIN_MESSAGE,
    FlowState,
    MemoryFlowStorage,
    ReviewFlow,
    route_for_rating,
)
from funnel.models import TenantConfig  # noqa: E402


NOW = datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
PAGE_URL = "https://joes-caf.blooreview.app"


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _config(**overrides) -> TenantConfig:
    values = {
        "slug": "joes-caf",
        "name": "Joe's Cafe",
        "google_place_id": "ChIJ-abc/123",
    }
    values.update(overrides)
    return TenantConfig(**values)


def _flow(config: TenantConfig | None = None, storage: MemoryFlowStorage | None = None) -> ReviewFlow:
    return ReviewFlow(
        config or _config(),
        storage if storage is not None else MemoryFlowStorage(),
        page_url=PAGE_URL,
        clock=lambda: NOW,
    )


def _check_routing() -> None:
    _assert(route_for_rating(5, 5) == ROUTE_EXTERNAL_REVIEW, "rating equal to threshold goes external")
    _assert(route_for_rating(4, 5) == ROUTE_PRIVATE_FEEDBACK, "rating below threshold stays private")
    _assert(route_for_rating(3, 3) == ROUTE_EXTERNAL_REVIEW, "custom threshold respected")


def _check_rating_step() -> None:
    flow = _flow()
    _assert(flow.confirm() is FlowState.RATING_SELECTION, "confirm without rating must not transition")
    _assert(flow.error == RATING_REQUIRED_MESSAGE, "missing rating must show inline error")

    for invalid in (0, 6, True):
        _assert(not flow.select_rating(invalid), f"rating {invalid!r} must be rejected")
        _assert(flow.error == INVALID_RATING_MESSAGE, "invalid rating must show inline error")
    _assert(flow.selected_rating is None, "invalid ratings must not be stored")

    _assert(flow.select_rating(4), "rating 4 must be accepted")
    _assert(flow.error == "", "valid rating clears inline error")


def _check_high_rating_redirect() -> None:
    storage = MemoryFlowStorage()
    flow = _flow(storage=storage)
    flow.select_rating(5)
    _assert(flow.confirm() is FlowState.HIGH_RATING_REDIRECT, "rating 5 must redirect")
    _assert(
        flow.redirect_url == "https://search.google.com/local/writereview?placeid=ChIJ-abc%2F123",
        f"unexpected redirect url: {flow.redirect_url}",
    )
    _assert(storage.get_item(STORAGE_WAITING_KEY) == "true", "pending return flag must be persisted")
    _assert(storage.get_item(STORAGE_RATING_KEY) == "5", "rating must be persisted")
    _assert(storage.get_item(STORAGE_SINCE_KEY) == NOW.isoformat(), "redirect timestamp must be persisted")

    # Quick tab switch: foreground then background before the debounce elapses.
    _assert(flow.on_foreground(NOW), "foreground while waiting must schedule confirmation")
    flow.on_background()
    _assert(not flow.tick(NOW + timedelta(seconds=2)), "cancelled confirmation must not fire")
    _assert(flow.state is FlowState.HIGH_RATING_REDIRECT, "state must stay in redirect after quick switch")

    flow.on_foreground(NOW + timedelta(seconds=10))
    _assert(not flow.tick(NOW + timedelta(seconds=10, milliseconds=200)), "must wait for the debounce")
    _assert(flow.tick(NOW + timedelta(seconds=10, milliseconds=600)), "confirmation must fire after debounce")
    _assert(flow.state is FlowState.THANK_YOU, "return must lead to thank-you")
    _assert(storage.get_item(STORAGE_WAITING_KEY) is None, "pending flag must be cleared")
    _assert(flow.thank_you is not None and flow.thank_you.has_discount, "discount expected by default")
    _assert(not flow.on_foreground(NOW), "no scheduling once thank-you is reached")


def _check_missing_review_link() -> None:
    storage = MemoryFlowStorage()
    flow = _flow(_config(google_place_id=""), storage)
    flow.select_rating(5)
    _assert(flow.confirm() is FlowState.RATING_SELECTION, "missing link must keep rating step")
    _assert(flow.error == REVIEW_LINK_MISSING_MESSAGE, "missing link must show configuration error")
    _assert(not storage.items, "nothing must be persisted without a review link")

    explicit = _flow(_config(google_place_id="", google_review_url="https://g.page/r/joes/review"))
    explicit.select_rating(5)
    explicit.confirm()
    _assert(explicit.redirect_url == "https://g.page/r/joes/review", "explicit review URL must be used")


def _check_followup_feedback() -> None:
    flow = _flow()
    _assert(flow.submit_feedback("too early") is FlowState.RATING_SELECTION, "feedback before rating ignored")
    flow.select_rating(3)
    _assert(flow.confirm() is FlowState.FOLLOWUP_FEEDBACK, "rating 3 must ask for feedback")
    _assert(flow.submit_feedback("   ", "Jane Doe") is FlowState.FOLLOWUP_FEEDBACK, "blank comments rejected")
    _assert(flow.error == COMMENTS_REQUIRED_MESSAGE, "blank comments must show inline error")

    _assert(flow.submit_feedback("Coffee was cold", "Jane Doe") is FlowState.THANK_YOU, "feedback accepted")
    view = flow.thank_you
    _assert(view is not None, "thank-you view must be built")
    expected_code = generate_discount_code("Jane Doe", 30, NOW.astimezone().date())
    _assert(view.discount_code == expected_code, f"unexpected code {view.discount_code} != {expected_code}")
    _assert(view.discount_percentage == 10, "default percentage is 10")
    _assert(view.discount_expiry_label, "expiry label must be rendered")
    _assert(view.share is not None, "referral links expected by default")
    _assert(view.share.whatsapp_url.startswith("https://wa.me/?text="), "whatsapp share link format")
    _assert(view.share.sms_url.startswith("sms:?&body="), "sms share link format")
    _assert(view.share.copy_link_url == PAGE_URL, "copy link must be the page URL")

    no_referral = _flow(_config(referral_enabled=False))
    no_referral.select_rating(2)
    no_referral.confirm()
    no_referral.submit_feedback("Slow service")
    _assert(no_referral.thank_you.has_discount, "discount still offered without referral")
    _assert(no_referral.thank_you.share is None, "no share links when referral is disabled")

    plain = _flow(_config(discount_enabled=False))
    plain.select_rating(1)
    plain.confirm()
    plain.submit_feedback("Bad")
    _assert(plain.thank_you.message == THANK_YOU_PLAIN_MESSAGE, "plain thank-you expected")
    _assert(not plain.thank_you.has_discount and plain.thank_you.share is None, "no code or sharing")


def _check_page_reload() -> None:
    fresh = MemoryFlowStorage({
        STORAGE_WAITING_KEY: "true",
        STORAGE_RATING_KEY: "5",
        STORAGE_SINCE_KEY: (NOW - timedelta(hours=1)).isoformat(),
    })
    flow = _flow(storage=fresh)
    _assert(flow.on_page_load(NOW), "recent pending flag must confirm on reload")
    _assert(flow.state is FlowState.THANK_YOU, "reload confirmation leads to thank-you")
    _assert(not fresh.items, "storage must be cleared after confirmation")

    stale = MemoryFlowStorage({
        STORAGE_WAITING_KEY: "true",
        STORAGE_RATING_KEY: "5",
        STORAGE_SINCE_KEY: (NOW - timedelta(hours=25)).isoformat(),
    })
    flow = _flow(storage=stale)
    _assert(not flow.on_page_load(NOW), "stale pending flag must be ignored")
    _assert(flow.state is FlowState.RATING_SELECTION, "stale flag keeps the rating step")
    _assert(not stale.items, "stale flag must be discarded")

    low = MemoryFlowStorage({STORAGE_WAITING_KEY: "true", STORAGE_RATING_KEY: "2"})
    flow = _flow(storage=low)
    _assert(not flow.on_page_load(NOW), "non-qualifying stored rating must not confirm")
    _assert(not low.items, "non-qualifying flag must be discarded")

    _assert(not _flow().on_page_load(NOW), "no flag means nothing to confirm")


def _check_settings_timing() -> None:
    settings = replace(CFG, return_debounce_ms=1500, return_window_hours=2)
    stale = MemoryFlowStorage({
        STORAGE_WAITING_KEY: "true",
        STORAGE_RATING_KEY: "5",
        STORAGE_SINCE_KEY: (NOW - timedelta(hours=3)).isoformat(),
    })
    flow = ReviewFlow.from_settings(_config(), stale, settings, page_url=PAGE_URL, clock=lambda: NOW)
    _assert(flow.debounce == timedelta(milliseconds=1500), "debounce from settings")
    _assert(not flow.on_page_load(NOW), "configured return window must drop a 3h old flag")

    flow.select_rating(5)
    flow.confirm()
    _assert(flow.on_foreground(NOW), "foreground after redirect schedules confirmation")
    _assert(not flow.tick(NOW + timedelta(seconds=1)), "configured debounce not elapsed yet")
    _assert(flow.tick(NOW + timedelta(seconds=2)), "configured debounce elapsed")
    _assert(flow.state is FlowState.THANK_YOU, "confirmation leads to thank-you")


def main() -> None:
    _check_routing()
    _check_rating_step()
    _check_high_rating_redirect()
    _check_missing_review_link()
    _check_followup_feedback()
    _check_page_reload()
    _check_settings_timing()
    print("OK: review flow smoke passed.")


if __name__ == "__main__":
    main()
