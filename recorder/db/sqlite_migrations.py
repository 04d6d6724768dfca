"""SQLite schema for the recorder store.

Every statement is guarded with IF NOT EXISTS, so running the script twice
is harmless.
"""
from __future__ import annotations

import logging
import sqlite3

import aiosqlite

logger = logging.getLogger("recorder.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Sessions ────────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS sessions (
    id               TEXT PRIMARY KEY,
    slug             TEXT NOT NULL DEFAULT '',
    project_path     TEXT NOT NULL DEFAULT '',
    working_dir      TEXT NOT NULL DEFAULT '',
    start_time       TEXT NOT NULL,
    end_time         TEXT,
    message_count    INTEGER NOT NULL DEFAULT 0,
    version          TEXT DEFAULT '',
    transcript_path  TEXT DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_time DESC);

-- ── 2. Messages ────────────────────────────────────────────────────
-- session_id is indexed but not a foreign key: a transcript may carry
-- entries for a session row that has not been created yet.
CREATE TABLE IF NOT EXISTS messages (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid             TEXT NOT NULL UNIQUE,
    session_id       TEXT NOT NULL,
    timestamp        TEXT NOT NULL,
    role             TEXT NOT NULL,
    text_content     TEXT NOT NULL DEFAULT '',
    thinking_content TEXT,
    model            TEXT,
    cwd              TEXT
);

CREATE INDEX IF NOT EXISTS idx_messages_session   ON messages(session_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp);

-- ── 3. Tool calls ──────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS tool_calls (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    tool_id          TEXT NOT NULL,
    message_uuid     TEXT NOT NULL REFERENCES messages(uuid) ON DELETE CASCADE,
    session_id       TEXT NOT NULL,
    name             TEXT NOT NULL,
    input            TEXT NOT NULL DEFAULT '',
    output           TEXT,
    UNIQUE (message_uuid, tool_id)
);

CREATE INDEX IF NOT EXISTS idx_tool_calls_session ON tool_calls(session_id);
CREATE INDEX IF NOT EXISTS idx_tool_calls_name    ON tool_calls(name);

-- ── 4. Full-text search over message text ──────────────────────────
CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
    text_content,
    content='messages',
    content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS messages_ai AFTER INSERT ON messages BEGIN
    INSERT INTO messages_fts(rowid, text_content) VALUES (new.id, new.text_content);
END;

CREATE TRIGGER IF NOT EXISTS messages_ad AFTER DELETE ON messages BEGIN
    INSERT INTO messages_fts(messages_fts, rowid, text_content) VALUES ('delete', old.id, old.text_content);
END;

CREATE TRIGGER IF NOT EXISTS messages_au AFTER UPDATE ON messages BEGIN
    INSERT INTO messages_fts(messages_fts, rowid, text_content) VALUES ('delete', old.id, old.text_content);
    INSERT INTO messages_fts(rowid, text_content) VALUES (new.id, new.text_content);
END;

-- ── 5. Incremental read offsets ────────────────────────────────────
CREATE TABLE IF NOT EXISTS file_positions (
    transcript_path  TEXT PRIMARY KEY,
    byte_position    INTEGER NOT NULL,
    last_updated     TEXT NOT NULL
);
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables, indexes and FTS triggers. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except sqlite3.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.debug(f"Schema already at version {current_version}")
        return

    logger.info(f"Creating schema version {SCHEMA_VERSION} (found {current_version})")

    await db.executescript(_TABLES)

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info(f"Schema ready at version {SCHEMA_VERSION}")
