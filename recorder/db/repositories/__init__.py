"""Repository package for database access."""

from .sessions import SqliteSessionRepository
from .messages import SqliteMessageRepository
from .file_positions import SqliteFilePositionRepository
from .analytics import SqliteAnalyticsRepository

__all__ = [
    "SqliteSessionRepository",
    "SqliteMessageRepository",
    "SqliteFilePositionRepository",
    "SqliteAnalyticsRepository",
]
