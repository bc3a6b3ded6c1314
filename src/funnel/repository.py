"""Persistence helpers for accounts, businesses and reviews."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

from database import open_db, utc_now_iso, with_sqlite_retry

WRITE_RETRY_ATTEMPTS = 3
WRITE_RETRY_BASE_DELAY_SEC = 0.05

_BUSINESS_COLUMNS = """
    id, user_id, slug, place_id, name, category, google_maps_url,
    hero_image, logo_url, config, created_at, updated_at
"""


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _business_row_to_dict(row: aiosqlite.Row) -> dict[str, Any]:
    data = dict(row)
    try:
        config = json.loads(data.get("config") or "{}")
    except (TypeError, ValueError):
        config = {}
    data["config"] = config if isinstance(config, dict) else {}
    return data


async def execute_write_with_retry(
    db: aiosqlite.Connection,
    query: str,
    params: Sequence[Any] = (),
) -> aiosqlite.Cursor:
    """Execute write query with lightweight retry on lock contention."""

    async def _write() -> aiosqlite.Cursor:
        cursor = await db.execute(query, params)
        await db.commit()
        return cursor

    return await with_sqlite_retry(
        _write,
        retries=WRITE_RETRY_ATTEMPTS - 1,
        base_delay=WRITE_RETRY_BASE_DELAY_SEC,
    )


class FunnelRepository:
    """Accounts, businesses and reviews in SQLite."""

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path

    @asynccontextmanager
    async def _open(self) -> AsyncIterator[aiosqlite.Connection]:
        async with open_db(self.db_path) as db:
            yield db

    # -- users --------------------------------------------------------------

    async def create_user(
        self,
        *,
        email: str,
        password_hash: str,
        name: str | None,
        tier: str,
        status: str,
    ) -> dict[str, Any]:
        """Insert a user; sqlite3.IntegrityError on a duplicate email."""
        created_at = utc_now_iso()
        async with self._open() as db:
            cursor = await execute_write_with_retry(
                db,
                """INSERT INTO users(email, password_hash, name, subscription_tier, subscription_status, created_at)
                   VALUES(?, ?, ?, ?, ?, ?)""",
                (email, password_hash, name, tier, status, created_at),
            )
            user_id = int(cursor.lastrowid)
        return {
            "id": user_id,
            "email": email,
            "name": name,
            "subscription_tier": tier,
            "subscription_status": status,
            "created_at": created_at,
        }

    async def get_user_by_email(self, email: str) -> dict[str, Any] | None:
        async with self._open() as db:
            async with db.execute(
                """
                SELECT id, email, password_hash, name, subscription_tier, subscription_status, created_at
                  FROM users
                 WHERE email = ?
                """,
                (email,),
            ) as cur:
                row = await cur.fetchone()
                return dict(row) if row else None

    async def get_user(self, user_id: int) -> dict[str, Any] | None:
        async with self._open() as db:
            async with db.execute(
                """
                SELECT id, email, name, subscription_tier, subscription_status, created_at
                  FROM users
                 WHERE id = ?
                """,
                (int(user_id),),
            ) as cur:
                row = await cur.fetchone()
                return dict(row) if row else None

    # -- businesses ---------------------------------------------------------

    async def count_businesses_for_user(self, user_id: int) -> int:
        async with self._open() as db:
            async with db.execute(
                "SELECT COUNT(*) FROM businesses WHERE user_id = ?",
                (int(user_id),),
            ) as cur:
                row = await cur.fetchone()
                return int(row[0] if row else 0)

    async def list_slugs_with_base(self, base_slug: str) -> list[str]:
        """Slugs equal to base_slug or starting with `base_slug-`."""
        async with self._open() as db:
            async with db.execute(
                "SELECT slug FROM businesses WHERE slug = ? OR slug LIKE ? ESCAPE '\\'",
                (base_slug, f"{_escape_like(base_slug)}-%"),
            ) as cur:
                rows = await cur.fetchall()
                return [str(row[0]) for row in rows]

    async def create_business(
        self,
        *,
        user_id: int,
        slug: str,
        place_id: str,
        name: str,
        category: str | None,
        google_maps_url: str | None,
        hero_image: str | None,
        logo_url: str | None,
        config: dict[str, Any],
    ) -> dict[str, Any]:
        """Insert a business; sqlite3.IntegrityError when the slug is taken."""
        now = utc_now_iso()
        async with self._open() as db:
            cursor = await execute_write_with_retry(
                db,
                """INSERT INTO businesses(
                       user_id, slug, place_id, name, category, google_maps_url,
                       hero_image, logo_url, config, created_at, updated_at
                   ) VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    int(user_id),
                    slug,
                    place_id,
                    name,
                    category,
                    google_maps_url,
                    hero_image,
                    logo_url,
                    json.dumps(config, ensure_ascii=False, separators=(",", ":")),
                    now,
                    now,
                ),
            )
            business_id = int(cursor.lastrowid)
        business = await self.get_business_by_id(business_id)
        if business is None:
            raise RuntimeError(f"Business {business_id} vanished right after insert")
        return business

    async def get_business_by_slug(self, slug: str) -> dict[str, Any] | None:
        async with self._open() as db:
            async with db.execute(
                f"SELECT {_BUSINESS_COLUMNS} FROM businesses WHERE slug = ?",
                (slug,),
            ) as cur:
                row = await cur.fetchone()
                return _business_row_to_dict(row) if row else None

    async def get_business_by_id(self, business_id: int) -> dict[str, Any] | None:
        async with self._open() as db:
            async with db.execute(
                f"SELECT {_BUSINESS_COLUMNS} FROM businesses WHERE id = ?",
                (int(business_id),),
            ) as cur:
                row = await cur.fetchone()
                return _business_row_to_dict(row) if row else None

    async def list_businesses_for_user(self, user_id: int) -> list[dict[str, Any]]:
        async with self._open() as db:
            async with db.execute(
                f"""
                SELECT {_BUSINESS_COLUMNS}
                  FROM businesses
                 WHERE user_id = ?
                 ORDER BY created_at DESC, id DESC
                """,
                (int(user_id),),
            ) as cur:
                rows = await cur.fetchall()
                return [_business_row_to_dict(row) for row in rows]

    async def list_all_businesses(self) -> list[dict[str, Any]]:
        async with self._open() as db:
            async with db.execute(
                f"SELECT {_BUSINESS_COLUMNS} FROM businesses ORDER BY slug"
            ) as cur:
                rows = await cur.fetchall()
                return [_business_row_to_dict(row) for row in rows]

    # -- reviews ------------------------------------------------------------

    async def create_review(
        self,
        *,
        business_id: int,
        rating: int,
        name: str | None,
        comments: str,
        submitted_at: str | None = None,
    ) -> dict[str, Any]:
        submitted = submitted_at or utc_now_iso()
        async with self._open() as db:
            cursor = await execute_write_with_retry(
                db,
                """INSERT INTO reviews(business_id, rating, name, comments, submitted_at)
                   VALUES(?, ?, ?, ?, ?)""",
                (int(business_id), int(rating), name, comments, submitted),
            )
            review_id = int(cursor.lastrowid)
        return {
            "id": review_id,
            "business_id": int(business_id),
            "rating": int(rating),
            "name": name,
            "comments": comments,
            "submitted_at": submitted,
        }

    async def list_reviews(self, business_id: int, *, below_rating: int) -> list[dict[str, Any]]:
        """Reviews under the redirect threshold, newest first."""
        async with self._open() as db:
            async with db.execute(
                """
                SELECT id, business_id, rating, name, comments, submitted_at
                  FROM reviews
                 WHERE business_id = ?
                   AND rating < ?
                 ORDER BY submitted_at DESC, id DESC
                """,
                (int(business_id), int(below_rating)),
            ) as cur:
                rows = await cur.fetchall()
                return [dict(row) for row in rows]

    async def list_review_ratings(self, business_id: int, *, below_rating: int) -> list[dict[str, Any]]:
        """(rating, submitted_at) pairs for analytics, oldest first."""
        async with self._open() as db:
            async with db.execute(
                """
                SELECT rating, submitted_at
                  FROM reviews
                 WHERE business_id = ?
                   AND rating < ?
                 ORDER BY submitted_at ASC
                """,
                (int(business_id), int(below_rating)),
            ) as cur:
                rows = await cur.fetchall()
                return [dict(row) for row in rows]
