"""SQLite implementation of AnalyticsRepository."""
from __future__ import annotations

import aiosqlite


class SqliteAnalyticsRepository:
    """Aggregate usage counts over the whole store."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def _scalar(self, query: str) -> int:
        async with self.db.execute(query) as cur:
            row = await cur.fetchone()
        return int(row[0]) if row and row[0] is not None else 0

    async def get_tool_usage(self, limit: int = 20) -> list[dict]:
        async with self.db.execute(
            """SELECT name, COUNT(*) AS count
               FROM tool_calls
               GROUP BY name
               ORDER BY count DESC, name ASC
               LIMIT ?""",
            (limit,),
        ) as cur:
            return [{"name": row[0], "count": row[1]} for row in await cur.fetchall()]

    async def get_stats(self, tool_limit: int = 20) -> dict:
        return {
            "totalSessions": await self._scalar("SELECT COUNT(*) FROM sessions"),
            "totalMessages": await self._scalar("SELECT COUNT(*) FROM messages"),
            "totalToolCalls": await self._scalar("SELECT COUNT(*) FROM tool_calls"),
            "toolUsage": await self.get_tool_usage(tool_limit),
        }
