import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import aiosqlite

from config import DB_PATH


logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_MS = 5000

SCHEMA_STATEMENTS = (
    """CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        name TEXT DEFAULT NULL,
        subscription_tier TEXT NOT NULL DEFAULT 'free',
        subscription_status TEXT NOT NULL DEFAULT 'active',
        created_at TEXT NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS businesses (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        slug TEXT NOT NULL UNIQUE,
        place_id TEXT DEFAULT NULL,
        name TEXT NOT NULL,
        category TEXT DEFAULT NULL,
        google_maps_url TEXT DEFAULT NULL,
        hero_image TEXT DEFAULT NULL,
        logo_url TEXT DEFAULT NULL,
        config TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_businesses_user ON businesses (user_id)",
    """CREATE TABLE IF NOT EXISTS reviews (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        business_id INTEGER NOT NULL REFERENCES businesses(id) ON DELETE CASCADE,
        rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
        name TEXT DEFAULT NULL,
        comments TEXT NOT NULL,
        submitted_at TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_reviews_business_submitted ON reviews (business_id, submitted_at)",
)


def utc_now_iso() -> str:
    """Current UTC timestamp in ISO-8601."""
    return datetime.now(timezone.utc).isoformat()


async def apply_sqlite_pragmas(db: aiosqlite.Connection) -> None:
    """Apply SQLite settings for concurrent request handlers."""
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")
    await db.execute("PRAGMA foreign_keys=ON;")


@asynccontextmanager
async def open_db(db_path: str | None = None) -> AsyncIterator[aiosqlite.Connection]:
    async with aiosqlite.connect(db_path or DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        await apply_sqlite_pragmas(db)
        yield db


async def init_db(db_path: str | None = None) -> None:
    """Create tables and indexes (idempotent)."""
    async with open_db(db_path) as db:
        for statement in SCHEMA_STATEMENTS:
            await db.execute(statement)
        await db.commit()
    logger.info("Database ready: %s", db_path or DB_PATH)


def is_sqlite_locked_error(exc: BaseException) -> bool:
    if not isinstance(exc, (sqlite3.OperationalError, aiosqlite.OperationalError)):
        return False
    msg = str(exc).lower()
    return "database is locked" in msg or "database table is locked" in msg


async def with_sqlite_retry(fn, *, retries: int = 3, base_delay: float = 0.05):
    """Run an async DB operation, retrying with backoff while SQLite is locked."""
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as exc:
            if not is_sqlite_locked_error(exc) or attempt >= retries:
                raise
            delay = base_delay * (2**attempt)
            logger.warning("SQLite locked; retry %s/%s in %.2fs", attempt + 1, retries, delay)
            await asyncio.sleep(delay)
            attempt += 1
