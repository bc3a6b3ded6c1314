"""Tenant configuration providers."""

from .base import TenantConfigProvider
from .database import DatabaseConfigProvider
from .static import StaticConfigProvider

__all__ = [
    "TenantConfigProvider",
    "DatabaseConfigProvider",
    "StaticConfigProvider",
]
