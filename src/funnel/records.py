"""Conversion between stored business rows, exported dicts and TenantConfig.

Stored flag blobs come from owners and older releases, so every value is
coerced on read: a corrupt blob degrades to defaults instead of breaking the
customer page.
"""

from __future__ import annotations

import math
from typing import Any, Mapping

from config import DEFAULT_GOOGLE_REVIEW_BASE_URL
from funnel.models import (
    DEFAULT_DISCOUNT_PERCENTAGE,
    DEFAULT_DISCOUNT_VALID_DAYS,
    DEFAULT_REFERRAL_MESSAGE,
    DEFAULT_REVIEW_THRESHOLD,
    MAX_RATING,
    MIN_RATING,
    TenantConfig,
)


MAX_DISCOUNT_PERCENTAGE = 100

# Keys of the JSON flag blob in businesses.config
FLAG_DISCOUNT_ENABLED = "discount_enabled"
FLAG_DISCOUNT_PERCENTAGE = "discount_percentage"
FLAG_DISCOUNT_VALID_DAYS = "discount_valid_days"
FLAG_REFERRAL_ENABLED = "referral_enabled"
FLAG_REFERRAL_MESSAGE = "referral_message"
FLAG_REVIEW_THRESHOLD = "review_threshold"
FLAG_SINK_URL = "sheet_script_url"
FLAG_REVIEW_URL = "google_review_url"


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return number


def coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


def coerce_threshold(value: Any, default: int = DEFAULT_REVIEW_THRESHOLD) -> int:
    """Integer threshold clamped into [1, 5]."""
    number = _as_number(value)
    if number is None:
        return default
    return max(MIN_RATING, min(MAX_RATING, int(number)))


def coerce_positive_int(value: Any, default: int, *, maximum: int | None = None) -> int:
    number = _as_number(value)
    if number is None or int(number) <= 0:
        return default
    result = int(number)
    if maximum is not None:
        result = min(result, maximum)
    return result


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_flags(raw: Mapping[str, Any] | None) -> dict[str, Any]:
    """Full flag blob with defaults filled in and values coerced.

    Unknown keys are preserved so owners can stash extra settings.
    """
    source = dict(raw or {})
    flags = dict(source)
    flags[FLAG_DISCOUNT_ENABLED] = coerce_bool(source.get(FLAG_DISCOUNT_ENABLED), True)
    flags[FLAG_DISCOUNT_PERCENTAGE] = coerce_positive_int(
        source.get(FLAG_DISCOUNT_PERCENTAGE),
        DEFAULT_DISCOUNT_PERCENTAGE,
        maximum=MAX_DISCOUNT_PERCENTAGE,
    )
    flags[FLAG_DISCOUNT_VALID_DAYS] = coerce_positive_int(
        source.get(FLAG_DISCOUNT_VALID_DAYS),
        DEFAULT_DISCOUNT_VALID_DAYS,
    )
    flags[FLAG_REFERRAL_ENABLED] = coerce_bool(source.get(FLAG_REFERRAL_ENABLED), True)
    flags[FLAG_REFERRAL_MESSAGE] = _text(source.get(FLAG_REFERRAL_MESSAGE)) or DEFAULT_REFERRAL_MESSAGE
    flags[FLAG_REVIEW_THRESHOLD] = coerce_threshold(source.get(FLAG_REVIEW_THRESHOLD))
    flags[FLAG_SINK_URL] = _text(source.get(FLAG_SINK_URL))
    return flags


def tenant_config_from_row(
    row: Mapping[str, Any],
    google_review_base_url: str = DEFAULT_GOOGLE_REVIEW_BASE_URL,
) -> TenantConfig:
    """Build a TenantConfig from a `businesses` row (config already decoded)."""
    raw_flags = row.get("config")
    flags = normalize_flags(raw_flags if isinstance(raw_flags, Mapping) else None)
    return TenantConfig(
        slug=str(row["slug"]),
        name=_text(row.get("name")),
        category=_text(row.get("category")),
        google_maps_url=_text(row.get("google_maps_url")),
        google_place_id=_text(row.get("place_id")),
        hero_image_url=_text(row.get("hero_image")),
        logo_url=_text(row.get("logo_url")),
        google_review_url=_text(flags.get(FLAG_REVIEW_URL)),
        google_review_base_url=google_review_base_url,
        discount_enabled=flags[FLAG_DISCOUNT_ENABLED],
        discount_percentage=flags[FLAG_DISCOUNT_PERCENTAGE],
        discount_valid_days=flags[FLAG_DISCOUNT_VALID_DAYS],
        referral_enabled=flags[FLAG_REFERRAL_ENABLED],
        referral_message=flags[FLAG_REFERRAL_MESSAGE],
        review_threshold=flags[FLAG_REVIEW_THRESHOLD],
        feedback_sink_url=flags[FLAG_SINK_URL],
        business_id=int(row["id"]) if row.get("id") is not None else None,
        owner_id=int(row["user_id"]) if row.get("user_id") is not None else None,
    )


def tenant_config_to_dict(config: TenantConfig) -> dict[str, Any]:
    """Exported (static file) form of a tenant config."""
    return {
        "slug": config.slug,
        "name": config.name,
        "category": config.category,
        "google_maps_url": config.google_maps_url,
        "place_id": config.google_place_id,
        "hero_image": config.hero_image_url,
        "logo_url": config.logo_url,
        "google_review_url": config.review_url,
        "config": {
            FLAG_DISCOUNT_ENABLED: config.discount_enabled,
            FLAG_DISCOUNT_PERCENTAGE: config.discount_percentage,
            FLAG_DISCOUNT_VALID_DAYS: config.discount_valid_days,
            FLAG_REFERRAL_ENABLED: config.referral_enabled,
            FLAG_REFERRAL_MESSAGE: config.referral_message,
            FLAG_REVIEW_THRESHOLD: config.review_threshold,
            FLAG_SINK_URL: config.feedback_sink_url,
        },
    }


def tenant_config_from_dict(
    slug: str,
    data: Mapping[str, Any],
    google_review_base_url: str = DEFAULT_GOOGLE_REVIEW_BASE_URL,
) -> TenantConfig:
    """Inverse of tenant_config_to_dict; tolerant of missing keys."""
    flags = dict(data.get("config") or {}) if isinstance(data.get("config"), Mapping) else {}
    if data.get("google_review_url") and not flags.get(FLAG_REVIEW_URL):
        flags[FLAG_REVIEW_URL] = data["google_review_url"]
    row = {
        "id": None,
        "user_id": None,
        "slug": str(data.get("slug") or slug),
        "name": data.get("name"),
        "category": data.get("category"),
        "google_maps_url": data.get("google_maps_url"),
        "place_id": data.get("place_id"),
        "hero_image": data.get("hero_image"),
        "logo_url": data.get("logo_url"),
        "config": flags,
    }
    return tenant_config_from_row(row, google_review_base_url)
