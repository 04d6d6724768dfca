"""Repository factory used by the read API."""
from __future__ import annotations

import aiosqlite

from recorder.db.repositories import (
    SqliteAnalyticsRepository,
    SqliteMessageRepository,
    SqliteSessionRepository,
)


def get_session_repository(db: aiosqlite.Connection):
    return SqliteSessionRepository(db)


def get_message_repository(db: aiosqlite.Connection):
    return SqliteMessageRepository(db)


def get_analytics_repository(db: aiosqlite.Connection):
    return SqliteAnalyticsRepository(db)
