#!/usr/bin/env python3
"""
Tenant slug policy smoke-check.

What it validates:
- `biz` override wins over the host and is lower-cased
- first host label is the slug only for hosts with more than two labels
- platform deployment subdomains fall back to `default`, regular hyphenated slugs do not
- slugify keeps ASCII word characters only
- collision suffixes start at -2 and use the lowest free number
- base domain / public review URL derivation

Run:
  python3 scripts/smoke_slug_policy.py
"""

from __future__ import annotations

import sys
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

from funnel.slugs import (  # noqa: E402
    FALLBACK_SLUG,
    base_domain,
    get_unique_slug,
    is_deployment_subdomain,
    public_review_url,
    resolve_slug,
    slugify,
)


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _check_resolve() -> None:
    cases = [
        (("Joes-Cafe", "other.blooreview.app"), "joes-cafe"),
        (("  ", "joes.blooreview.app"), "joes"),
        ((None, "joes-pizza-2.blooreview.app"), "joes-pizza-2"),
        ((None, "JOES.BlooReview.app:8443"), "joes"),
        ((None, "blooreview.app"), "default"),
        ((None, "localhost:8080"), "default"),
        ((None, "127.0.0.1:8080"), "default"),
        ((None, "[::1]:8080"), "default"),
        ((None, ""), "default"),
        ((None, None), "default"),
        ((None, "reviewtool-abc123def456-team1234567.vercel.app"), "default"),
        ((None, "reviewtoolx-abcdefghijkl.vercel.app"), "reviewtoolx-abcdefghijkl"),
    ]
    for (override, host), expected in cases:
        actual = resolve_slug(override, host)
        _assert(actual == expected, f"resolve_slug({override!r}, {host!r}) = {actual!r}, expected {expected!r}")


def _check_deployment_rule() -> None:
    _assert(is_deployment_subdomain("reviewtool-abc123def456"), "hash-like label must be a deployment subdomain")
    _assert(not is_deployment_subdomain("joes-pizza-2"), "short segments are a regular slug")
    _assert(not is_deployment_subdomain("abcdefghijkl-mnopqrstuvw"), "labels without digits are regular slugs")
    _assert(not is_deployment_subdomain(""), "empty label is not a deployment subdomain")


def _check_slugify() -> None:
    cases = {
        "Joe's Café!!": "joes-caf",
        "Starbucks": "starbucks",
        "  The   Corner -- Shop ": "the-corner-shop",
        "snake_case name": "snake_case-name",
        "---": "",
        "Кав'ярня": "",
    }
    for name, expected in cases.items():
        actual = slugify(name)
        _assert(actual == expected, f"slugify({name!r}) = {actual!r}, expected {expected!r}")
    _assert(FALLBACK_SLUG == "business", "fallback slug for empty names must be 'business'")


def _check_unique_slug() -> None:
    _assert(get_unique_slug("starbucks", []) == "starbucks", "free base slug must be used as-is")
    _assert(get_unique_slug("starbucks", ["starbucks"]) == "starbucks-2", "first collision must get -2")
    _assert(
        get_unique_slug("starbucks", ["starbucks", "starbucks-2", "starbucks-4"]) == "starbucks-3",
        "lowest free suffix must be used",
    )
    _assert(get_unique_slug("starbucks", ["starbucks-2"]) == "starbucks", "suffixed slugs alone do not block base")


def _check_base_domain() -> None:
    fallback = "fallback.example"
    cases = [
        ("app.blooreview.app", "blooreview.app"),
        ("a.b.blooreview.app:443", "b.blooreview.app"),
        ("blooreview.app", "blooreview.app"),
        ("localhost:8080", fallback),
        ("127.0.0.1:8080", fallback),
        ("", fallback),
    ]
    for host, expected in cases:
        actual = base_domain(host, fallback)
        _assert(actual == expected, f"base_domain({host!r}) = {actual!r}, expected {expected!r}")

    _assert(
        public_review_url("joes-caf", "app.blooreview.app", fallback) == "https://joes-caf.blooreview.app",
        "public URL must use the request base domain",
    )
    _assert(
        public_review_url("joes-caf", "127.0.0.1:8080", fallback) == "https://joes-caf.fallback.example",
        "public URL must use the configured domain for IP hosts",
    )


def main() -> None:
    _check_resolve()
    _check_deployment_rule()
    _check_slugify()
    _check_unique_slug()
    _check_base_domain()
    print("OK: slug policy smoke passed.")


if __name__ == "__main__":
    main()
