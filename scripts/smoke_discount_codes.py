#!/usr/bin/env python3
"""
Discount code format smoke-check.

Format: name component + DDMMYY of the expiry date.
- "Jane Doe" -> first letters of first and last word
- single word -> first two letters (or one for one-letter names)
- empty name -> two random characters from [0-9A-Z]

Run:
  python3 scripts/smoke_discount_codes.py
"""

from __future__ import annotations

import re
import sys
from datetime import date
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

from funnel.discounts import (  # noqa: E402
    discount_expiry,
    format_date_code,
    format_expiry_label,
    generate_discount_code,
    name_component,
)


TODAY = date(2025, 11, 25)


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def main() -> None:
    _assert(discount_expiry(30, TODAY) == date(2025, 12, 25), "expiry must be today + valid days")
    _assert(format_date_code(date(2025, 12, 25)) == "251225", "date code must be DDMMYY")
    _assert(format_date_code(date(2030, 1, 5)) == "050130", "date code parts must be zero padded")
    _assert(format_expiry_label(date(2025, 12, 25)) == "December 25, 2025", "expiry label format mismatch")

    _assert(generate_discount_code("Jane Doe", 30, TODAY) == "JD251225", "two-word name code mismatch")
    _assert(generate_discount_code("jane quincy public", 30, TODAY) == "JP251225", "first+last initials expected")
    _assert(generate_discount_code("Madonna", 30, TODAY) == "MA251225", "single word uses two letters")
    _assert(generate_discount_code("X", 30, TODAY) == "X251225", "one-letter name keeps one letter")
    _assert(generate_discount_code("  Jane   Doe  ", 30, TODAY) == "JD251225", "surrounding whitespace ignored")
    _assert(generate_discount_code("Jane Doe", 7, date(2024, 2, 25)) == "JD030324", "leap year expiry mismatch")

    for blank in (None, "", "   "):
        code = generate_discount_code(blank, 30, TODAY)
        _assert(re.fullmatch(r"[0-9A-Z]{2}251225", code) is not None, f"random name code has wrong shape: {code}")
        _assert(len(name_component(blank)) == 2, "random name component must be 2 chars")

    # Same initials + same day collide; this is accepted.
    _assert(
        generate_discount_code("John Dean", 30, TODAY) == generate_discount_code("Jane Doe", 30, TODAY),
        "codes are deterministic for the same initials and expiry",
    )
    print("OK: discount codes smoke passed.")


if __name__ == "__main__":
    main()
