"""
MEL Guard - Database Connection Manager
Version: 1.0.0

Changelog:
v1.0.0 (2026-09-28): Initial database connection manager with async helpers

Provides centralized async SQLite connection management for the rule and
alert stores. Uses aiosqlite with WAL journal mode and foreign key enforcement.
"""

import os
import aiosqlite
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from melguard.config import settings

# Seconds a writer waits on a locked database before raising
BUSY_TIMEOUT_S = 10.0


def get_db_path() -> str:
    """Resolve database path, create data directory if needed"""
    db_path = os.environ.get("MELGUARD_DB", settings.SQLITE_DB_PATH)
    os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    return db_path


@asynccontextmanager
async def get_db(db_path: str | None = None):
    """Async context manager yielding an aiosqlite connection with WAL + FK"""
    db = await aiosqlite.connect(db_path or get_db_path(), timeout=BUSY_TIMEOUT_S)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    try:
        yield db
    finally:
        await db.close()


async def execute_one(db, sql: str, params=()) -> dict | None:
    """Execute query and return first row as dict, or None"""
    cursor = await db.execute(sql, params)
    row = await cursor.fetchone()
    return dict(row) if row else None


async def execute_all(db, sql: str, params=()) -> list[dict]:
    """Execute query and return all rows as list of dicts"""
    cursor = await db.execute(sql, params)
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]


async def execute_insert(db, sql: str, params=()) -> int:
    """Execute INSERT, commit, and return lastrowid"""
    cursor = await db.execute(sql, params)
    await db.commit()
    return cursor.lastrowid


async def execute_update(db, sql: str, params=()) -> int:
    """Execute UPDATE/DELETE, commit, and return rowcount"""
    cursor = await db.execute(sql, params)
    await db.commit()
    return cursor.rowcount


def utcnow_iso() -> str:
    """Timestamp format stored in every TEXT datetime column"""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")

