"""In-memory provider for exported (generated) tenant configs."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

from config import DEFAULT_GOOGLE_REVIEW_BASE_URL
from funnel.models import TenantConfig
from funnel.records import tenant_config_from_dict


class StaticConfigProvider:
    provider_name = "static"

    def __init__(self, configs: Mapping[str, TenantConfig] | None = None) -> None:
        self._configs: dict[str, TenantConfig] = {
            str(slug).lower(): config for slug, config in (configs or {}).items()
        }

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        google_review_base_url: str = DEFAULT_GOOGLE_REVIEW_BASE_URL,
    ) -> "StaticConfigProvider":
        configs: dict[str, TenantConfig] = {}
        for slug, entry in data.items():
            if not isinstance(entry, Mapping):
                raise ValueError(f"Config entry for {slug!r} must be an object")
            configs[str(slug)] = tenant_config_from_dict(str(slug), entry, google_review_base_url)
        return cls(configs)

    @classmethod
    def from_json_file(
        cls,
        path: str | Path,
        *,
        google_review_base_url: str = DEFAULT_GOOGLE_REVIEW_BASE_URL,
    ) -> "StaticConfigProvider":
        """Load a file produced by ProvisioningService.export_static_configs()."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a JSON object keyed by slug")
        return cls.from_mapping(data, google_review_base_url=google_review_base_url)

    @property
    def slugs(self) -> list[str]:
        return sorted(self._configs)

    async def get(self, slug: str) -> TenantConfig | None:
        return self._configs.get(str(slug or "").lower())
