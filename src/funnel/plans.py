"""Shared plan matrix for owner accounts."""

from __future__ import annotations

from typing import Final


SUPPORTED_TIERS: Final[set[str]] = {"free", "pro"}
DEFAULT_TIER: Final[str] = "free"
DEFAULT_STATUS: Final[str] = "active"

# Max businesses per account; None means unlimited.
BUSINESS_LIMITS: Final[dict[str, int | None]] = {
    "free": 1,
    "pro": None,
}


def normalize_tier(tier: str | None) -> str:
    normalized = str(tier or "").strip().lower()
    return normalized if normalized in SUPPORTED_TIERS else DEFAULT_TIER


def business_limit_for(tier: str | None) -> int | None:
    return BUSINESS_LIMITS[normalize_tier(tier)]
