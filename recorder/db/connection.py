"""Database connection factory.

Provides a singleton async connection to the SQLite store with WAL mode, so
reporting commands can read while the daemon writes.
"""
from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from recorder import config

logger = logging.getLogger("recorder.db")

_connection: aiosqlite.Connection | None = None


async def open_connection(db_path: Path | str, busy_timeout_ms: int | None = None) -> aiosqlite.Connection:
    """Open a configured connection without touching the module singleton."""
    timeout_ms = config.BUSY_TIMEOUT_MS if busy_timeout_ms is None else busy_timeout_ms
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(db_path), timeout=max(timeout_ms, 0) / 1000)
    conn.row_factory = aiosqlite.Row
    # WAL lets readers proceed while a write is in progress and recovers
    # automatically after an unclean shutdown.
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA synchronous=NORMAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute(f"PRAGMA busy_timeout={int(timeout_ms)}")
    return conn


async def get_connection() -> aiosqlite.Connection:
    """Return the singleton database connection, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection

    _connection = await open_connection(config.DB_PATH)
    logger.info(f"Database connection established: {config.DB_PATH}")
    return _connection


async def close_connection() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        await _connection.close()
        _connection = None
        logger.info("Database connection closed")
