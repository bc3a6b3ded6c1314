"""Feedback analytics computed on demand from stored reviews."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from funnel.models import MAX_RATING, MIN_RATING


SERIES_DAYS = 30


def _submitted_day(value: Any) -> date | None:
    if isinstance(value, datetime):
        moment = value
    else:
        try:
            moment = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def mean_rating(rating_sum: int, total: int) -> float:
    """Mean rounded to one decimal, halves up (1.25 -> 1.3); 0 without reviews."""
    if not total:
        return 0
    mean = Decimal(rating_sum) / Decimal(total)
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def compute_analytics(
    reviews: Iterable[Mapping[str, Any]],
    *,
    today: date | None = None,
    days: int = SERIES_DAYS,
) -> dict[str, Any]:
    """Totals, mean, rating distribution and a zero-filled daily series.

    `reviews` are mappings with `rating` and `submitted_at`. The series covers
    the last `days` UTC days ending today, oldest first.
    """
    end = today or datetime.now(timezone.utc).date()
    start = end - timedelta(days=days - 1)

    counts = {rating: 0 for rating in range(MIN_RATING, MAX_RATING + 1)}
    per_day = {start + timedelta(days=offset): 0 for offset in range(days)}
    total = 0
    rating_sum = 0

    for review in reviews:
        rating = int(review["rating"])
        total += 1
        rating_sum += rating
        if rating in counts:
            counts[rating] += 1
        day = _submitted_day(review.get("submitted_at"))
        if day is not None and day in per_day:
            per_day[day] += 1

    average = mean_rating(rating_sum, total)
    return {
        "totalReviews": total,
        "averageRating": average,
        "ratingDistribution": {
            "counts": {str(rating): count for rating, count in counts.items()},
            "percentages": {
                str(rating): (count / total * 100) if total else 0
                for rating, count in counts.items()
            },
        },
        "timeSeries": [
            {"date": day.isoformat(), "count": count}
            for day, count in sorted(per_day.items())
        ],
    }
