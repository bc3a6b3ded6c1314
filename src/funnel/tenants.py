"""Tenant configuration lookup with graceful degradation."""

from __future__ import annotations

import json
import logging
from typing import Any

from config import DEFAULT_GOOGLE_REVIEW_BASE_URL
from funnel.models import TenantConfig, default_tenant_config
from funnel.providers.base import TenantConfigProvider


logger = logging.getLogger(__name__)

CONFIG_SCRIPT_PREFIX = "window.REVIEW_TOOL_CONFIG = "
EMPTY_CONFIG_SCRIPT = f"{CONFIG_SCRIPT_PREFIX}{{}};"


class TenantConfigStore:
    """Resolves a slug to a config; never raises to the page."""

    def __init__(
        self,
        provider: TenantConfigProvider,
        *,
        google_review_base_url: str = DEFAULT_GOOGLE_REVIEW_BASE_URL,
    ) -> None:
        self.provider = provider
        self.google_review_base_url = google_review_base_url

    async def lookup(self, slug: str) -> TenantConfig | None:
        """Provider result, or None when unknown or the provider failed."""
        if not slug:
            return None
        try:
            return await self.provider.get(slug)
        except Exception:
            logger.exception(
                "Tenant config lookup failed (provider=%s slug=%s)",
                getattr(self.provider, "provider_name", type(self.provider).__name__),
                slug,
            )
            return None

    async def resolve(self, slug: str) -> TenantConfig:
        config = await self.lookup(slug)
        if config is None:
            return default_tenant_config(self.google_review_base_url)
        return config

    async def hero_image(self, slug: str) -> str | None:
        config = await self.lookup(slug)
        if config is None or not config.hero_image_url:
            return None
        return config.hero_image_url


def config_payload(config: TenantConfig) -> dict[str, Any]:
    """camelCase object consumed by the landing page script."""
    return {
        "businessSlug": config.slug,
        "businessName": config.name,
        "businessCategory": config.category,
        "googleMapsUrl": config.google_maps_url,
        "googlePlaceId": config.google_place_id,
        "googleReviewBaseUrl": config.google_review_base_url,
        "googleReviewUrl": config.review_url,
        "sheetScriptUrl": config.feedback_sink_url,
        "reviewThreshold": config.review_threshold,
        "discount": {
            "enabled": config.discount_enabled,
            "percentage": config.discount_percentage,
            "validDays": config.discount_valid_days,
        },
        "referral": {
            "enabled": config.referral_enabled,
            "message": config.referral_message,
        },
        "logoUrl": config.logo_url,
        "heroImageUrl": config.hero_image_url,
    }


def render_config_script(config: TenantConfig | None) -> str:
    if config is None:
        return EMPTY_CONFIG_SCRIPT
    body = json.dumps(config_payload(config), ensure_ascii=False, indent=2)
    # Keep the payload from closing an inline <script> element.
    body = body.replace("</", "<\\/")
    return f"{CONFIG_SCRIPT_PREFIX}{body};"
