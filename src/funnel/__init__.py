"""Review funnel domain: tenants, review flow, feedback and provisioning."""

from funnel.models import TenantConfig, default_tenant_config
from funnel.service import (
    AccessDeniedError,
    AccountService,
    AuthenticationError,
    ConflictError,
    FeedbackService,
    FunnelError,
    NotFoundError,
    ProvisioningService,
    UpstreamError,
    ValidationError,
)
from funnel.tenants import TenantConfigStore, render_config_script

__all__ = [
    "TenantConfig",
    "default_tenant_config",
    "TenantConfigStore",
    "render_config_script",
    "AccountService",
    "ProvisioningService",
    "FeedbackService",
    "FunnelError",
    "ValidationError",
    "AuthenticationError",
    "AccessDeniedError",
    "NotFoundError",
    "ConflictError",
    "UpstreamError",
]
