#!/usr/bin/env python3
"""
Env parsing + SQLite bootstrap smoke-check.

What it validates:
- tolerant env parsing (quotes, whitespace, garbage -> defaults)
- load_config() reads the process environment
- init_db is idempotent and applies WAL + foreign keys
- with_sqlite_retry retries only "database is locked" errors

Run:
  python3 scripts/smoke_config_and_storage.py
"""

from __future__ import annotations

import asyncio
import os
import shutil
import sqlite3
import sys
import tempfile
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

from config import (  # noqa: E402
    DEFAULT_BASE_DOMAIN,
    DEFAULT_SECRET_KEY,
    clean_env_value,
    is_default_secret_key,
    is_places_lookup_enabled,
    load_config,
    parse_bool,
    parse_int,
)
from database import init_db, open_db, with_sqlite_retry  # noqa: E402


ENV_KEYS = ("API_PORT", "SECRET_KEY", "COOKIE_SECURE", "BASE_DOMAIN", "SESSION_TTL_DAYS", "GOOGLE_MAPS_API_KEY")


def _assert(cond: bool, message: str) -> None:
    if not cond:
        raise AssertionError(message)


def _check_env_parsing() -> None:
    _assert(clean_env_value(' "abc" ') == "abc", "quotes stripped")
    _assert(clean_env_value(None, "x") == "x", "missing -> default")
    _assert(parse_bool("'yes'") is True and parse_bool("off") is False, "bool words")
    _assert(parse_bool("maybe", True) is True, "garbage bool -> default")
    _assert(parse_int(" 42 ") == 42 and parse_int("4x2", 7) == 7 and parse_int("", 3) == 3, "int parsing")

    saved = {key: os.environ.get(key) for key in ENV_KEYS}
    try:
        os.environ.update({
            "API_PORT": '"9090"',
            "SECRET_KEY": "",
            "COOKIE_SECURE": "false",
            "BASE_DOMAIN": " Example.COM ",
            "SESSION_TTL_DAYS": "0",
            "GOOGLE_MAPS_API_KEY": "",
        })
        cfg = load_config()
        _assert(cfg.api_port == 9090, f"api port {cfg.api_port}")
        _assert(cfg.secret_key == DEFAULT_SECRET_KEY and is_default_secret_key(cfg), "empty secret -> dev key")
        _assert(cfg.cookie_secure is False, "cookie secure flag")
        _assert(cfg.base_domain == "example.com", f"base domain {cfg.base_domain}")
        _assert(cfg.session_ttl_days == 1, "ttl clamped to at least one day")
        _assert(not is_places_lookup_enabled(cfg), "places disabled without key")

        os.environ["BASE_DOMAIN"] = ""
        os.environ["GOOGLE_MAPS_API_KEY"] = "k"
        cfg = load_config()
        _assert(cfg.base_domain == DEFAULT_BASE_DOMAIN and is_places_lookup_enabled(cfg), "defaults")
    finally:
        for key, value in saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


async def _check_storage(db_path: str) -> None:
    await init_db(db_path)
    await init_db(db_path)
    async with open_db(db_path) as db:
        async with db.execute("PRAGMA journal_mode") as cur:
            _assert(str((await cur.fetchone())[0]).lower() == "wal", "WAL journal mode")
        async with db.execute("PRAGMA foreign_keys") as cur:
            _assert((await cur.fetchone())[0] == 1, "foreign keys on")
        async with db.execute("SELECT name FROM sqlite_master WHERE type='table'") as cur:
            tables = {row[0] for row in await cur.fetchall()}
        _assert({"users", "businesses", "reviews"} <= tables, f"tables missing: {tables}")

    calls = {"n": 0}

    async def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise sqlite3.OperationalError("database is locked")
        return "done"

    _assert(await with_sqlite_retry(flaky, retries=3, base_delay=0) == "done", "locked errors retried")
    _assert(calls["n"] == 3, f"expected 3 attempts, got {calls['n']}")

    async def always_locked():
        raise sqlite3.OperationalError("database is locked")

    try:
        await with_sqlite_retry(always_locked, retries=1, base_delay=0)
    except sqlite3.OperationalError:
        pass
    else:
        raise AssertionError("retries must be bounded")

    other = {"n": 0}

    async def broken():
        other["n"] += 1
        raise sqlite3.OperationalError("no such table: nope")

    try:
        await with_sqlite_retry(broken, retries=3, base_delay=0)
    except sqlite3.OperationalError:
        pass
    _assert(other["n"] == 1, "non-lock errors are not retried")


def main() -> None:
    _check_env_parsing()
    tmp_dir = tempfile.mkdtemp(prefix="reviewfunnel-db-")
    try:
        asyncio.run(_check_storage(str(Path(tmp_dir) / "state.db")))
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)
    print("OK: config + storage smoke passed.")


if __name__ == "__main__":
    main()
