"""Discount code synthesis.

Codes are human-memorable, not unique: two customers with the same initials
and the same expiry date get the same code. Legacy codes already handed out
follow exactly this format, so it must not change.
"""

from __future__ import annotations

import secrets
import string
from datetime import date, timedelta


RANDOM_NAME_ALPHABET = string.digits + string.ascii_uppercase
RANDOM_NAME_LENGTH = 2


def discount_expiry(valid_days: int, today: date | None = None) -> date:
    return (today or date.today()) + timedelta(days=int(valid_days))


def format_date_code(expiry: date) -> str:
    """DDMMYY, zero-padded."""
    return f"{expiry.day:02d}{expiry.month:02d}{expiry.year % 100:02d}"


def format_expiry_label(expiry: date) -> str:
    """e.g. "December 25, 2025"."""
    return f"{expiry:%B} {expiry.day}, {expiry.year}"


def name_component(customer_name: str | None) -> str:
    parts = str(customer_name or "").split()
    if not parts:
        return "".join(secrets.choice(RANDOM_NAME_ALPHABET) for _ in range(RANDOM_NAME_LENGTH))
    if len(parts) == 1:
        return parts[0][:2].upper()
    return (parts[0][:1] + parts[-1][:1]).upper()


def generate_discount_code(
    customer_name: str | None,
    valid_days: int,
    today: date | None = None,
) -> str:
    """Name component + DDMMYY of the expiry date ("Jane Doe" -> "JD251225")."""
    return name_component(customer_name) + format_date_code(discount_expiry(valid_days, today))
