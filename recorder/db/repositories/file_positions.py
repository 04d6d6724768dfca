"""SQLite implementation of the per-transcript read offset store."""
from __future__ import annotations

import aiosqlite

from recorder.date_utils import utc_now_iso


class SqliteFilePositionRepository:
    """Track the last fully processed byte offset of each transcript."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, transcript_path: str) -> int:
        async with self.db.execute(
            "SELECT byte_position FROM file_positions WHERE transcript_path = ?",
            (transcript_path,),
        ) as cur:
            row = await cur.fetchone()
        return int(row[0]) if row else 0

    async def set(self, transcript_path: str, position: int) -> None:
        # Offsets never move backwards for a given path.
        await self.db.execute(
            """INSERT INTO file_positions (transcript_path, byte_position, last_updated)
               VALUES (?, ?, ?)
               ON CONFLICT(transcript_path) DO UPDATE SET
                 byte_position=MAX(file_positions.byte_position, excluded.byte_position),
                 last_updated=excluded.last_updated""",
            (transcript_path, int(position), utc_now_iso()),
        )
        await self.db.commit()

    async def delete(self, transcript_path: str) -> None:
        await self.db.execute(
            "DELETE FROM file_positions WHERE transcript_path = ?", (transcript_path,)
        )
        await self.db.commit()

    async def list_all(self) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM file_positions ORDER BY last_updated DESC"
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]
