"""Authoritative provider backed by the `businesses` table."""

from __future__ import annotations

from config import DEFAULT_GOOGLE_REVIEW_BASE_URL
from funnel.models import TenantConfig
from funnel.records import tenant_config_from_row
from funnel.repository import FunnelRepository


class DatabaseConfigProvider:
    provider_name = "database"

    def __init__(
        self,
        repository: FunnelRepository,
        *,
        google_review_base_url: str = DEFAULT_GOOGLE_REVIEW_BASE_URL,
    ) -> None:
        self.repository = repository
        self.google_review_base_url = google_review_base_url

    async def get(self, slug: str) -> TenantConfig | None:
        business = await self.repository.get_business_by_slug(slug)
        if business is None:
            return None
        return tenant_config_from_row(business, self.google_review_base_url)
