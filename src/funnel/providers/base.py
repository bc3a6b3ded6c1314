"""Base contract for tenant configuration providers."""

from __future__ import annotations

from typing import Protocol

from funnel.models import TenantConfig


class TenantConfigProvider(Protocol):
    """Source of tenant configs keyed by slug."""

    provider_name: str

    async def get(self, slug: str) -> TenantConfig | None:
        """Return the tenant config, or None when the slug is unknown."""
