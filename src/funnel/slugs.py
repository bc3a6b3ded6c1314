"""Tenant slug helpers: request resolution, slugify and collision handling."""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Collection

from funnel.models import DEFAULT_SLUG


# Hosting platforms put an auto-generated deployment hash in the first label,
# e.g. `reviewtool-abc123def456-team1234567.vercel.app`. This is the only rule
# used to ignore such subdomains.
DEPLOYMENT_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]{10,}-[a-z0-9]{10,}")
_DIGIT_RE = re.compile(r"\d")

_NON_WORD_RE = re.compile(r"[^\w\s-]", re.ASCII)
_WHITESPACE_RE = re.compile(r"\s+", re.ASCII)
_HYPHENS_RE = re.compile(r"-+")

FALLBACK_SLUG = "business"


def _host_without_port(host: str | None) -> str:
    value = str(host or "").strip().lower()
    if value.startswith("["):
        # [::1]:8080
        return value[1:].split("]", 1)[0]
    if value.count(":") == 1:
        value = value.split(":", 1)[0]
    return value.rstrip(".")


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def is_deployment_subdomain(label: str) -> bool:
    """True when a host label looks like a platform-generated deployment id."""
    candidate = str(label or "").lower()
    return bool(DEPLOYMENT_SUBDOMAIN_RE.match(candidate) and _DIGIT_RE.search(candidate))


def resolve_slug(override: str | None, host: str | None) -> str:
    """Derive the tenant slug for a request.

    An explicit override (the `biz` query parameter) always wins. Otherwise the
    first label of a host with more than two labels is used, unless it is a
    deployment subdomain. Falls back to the `default` sentinel.
    """
    explicit = str(override or "").strip()
    if explicit:
        return explicit.lower()

    hostname = _host_without_port(host)
    if not hostname or _is_ip_address(hostname):
        return DEFAULT_SLUG

    parts = hostname.split(".")
    if len(parts) > 2:
        candidate = parts[0]
        if candidate and not is_deployment_subdomain(candidate):
            return candidate
    return DEFAULT_SLUG


def slugify(name: str) -> str:
    """Lower-case, ASCII-word-only, hyphen-separated slug.

    Non-ASCII letters are stripped: "Joe's Café!!" -> "joes-caf".
    """
    value = str(name or "").lower().strip()
    value = _NON_WORD_RE.sub("", value)
    value = _WHITESPACE_RE.sub("-", value)
    value = _HYPHENS_RE.sub("-", value)
    return value.strip("-")


def get_unique_slug(base_slug: str, existing: Collection[str]) -> str:
    """Return base_slug, or base_slug-N with the lowest free N >= 2."""
    taken = set(existing)
    if base_slug not in taken:
        return base_slug
    counter = 2
    while f"{base_slug}-{counter}" in taken:
        counter += 1
    return f"{base_slug}-{counter}"


def base_domain(host: str | None, fallback: str) -> str:
    """Deployment base domain derived from the request host.

    `app.blooreview.app` -> `blooreview.app`. Two-label hosts are used as-is;
    IP addresses and dot-less hosts (localhost) use the configured fallback.
    """
    hostname = _host_without_port(host)
    if not hostname or "." not in hostname or _is_ip_address(hostname):
        return fallback
    parts = hostname.split(".")
    if len(parts) > 2:
        return ".".join(parts[1:])
    return hostname


def public_review_url(slug: str, host: str | None, fallback_domain: str) -> str:
    return f"https://{slug}.{base_domain(host, fallback_domain)}"
