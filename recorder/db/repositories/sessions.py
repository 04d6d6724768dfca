"""Session rows: upsert, end time, listings and explicit wipe."""
from __future__ import annotations

import aiosqlite

from recorder.date_utils import normalize_timestamp, utc_now_iso


class SqliteSessionRepository:
    """Session rows plus the denormalized per-session message count."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert(self, session_data: dict) -> None:
        """Insert or refresh a session.

        The update path leaves start_time, end_time and message_count alone.
        """
        start_time = normalize_timestamp(session_data.get("startTime")) or utc_now_iso()
        await self.db.execute(
            """INSERT INTO sessions (
                id, slug, project_path, working_dir, start_time, version, transcript_path
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                slug=excluded.slug,
                project_path=excluded.project_path,
                working_dir=excluded.working_dir,
                version=excluded.version,
                transcript_path=excluded.transcript_path
            """,
            (
                session_data["id"],
                session_data.get("slug", ""),
                session_data.get("projectPath", ""),
                session_data.get("workingDir", ""),
                start_time,
                session_data.get("version", ""),
                session_data.get("transcriptPath", ""),
            ),
        )
        await self.db.commit()

    async def end_session(self, session_id: str, end_time: str) -> None:
        """Record the session end. Safe to repeat; no check against start_time."""
        await self.db.execute(
            "UPDATE sessions SET end_time = ? WHERE id = ?",
            (normalize_timestamp(end_time) or utc_now_iso(), session_id),
        )
        await self.db.commit()

    async def get_by_id(self, session_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM sessions WHERE id = ?", (session_id,)
        ) as cur:
            row = await cur.fetchone()
            if not row:
                return None
            return self._row_to_dict(row)

    async def list_recent(self, limit: int = 20) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM sessions ORDER BY start_time DESC LIMIT ?", (limit,)
        ) as cur:
            return [self._row_to_dict(r) for r in await cur.fetchall()]

    async def list_recently_active(self, limit: int = 10) -> list[dict]:
        query = """
            SELECT s.*, MAX(m.timestamp) AS last_activity
            FROM sessions s
            LEFT JOIN messages m ON m.session_id = s.id
            GROUP BY s.id
            ORDER BY last_activity DESC
            LIMIT ?
        """
        async with self.db.execute(query, (limit,)) as cur:
            return [self._row_to_dict(r) for r in await cur.fetchall()]

    async def count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM sessions") as cur:
            row = await cur.fetchone()
        return row[0] if row else 0

    async def delete(self, session_id: str) -> bool:
        """Wipe a session with its messages, tool calls and read offset."""
        session = await self.get_by_id(session_id)
        try:
            await self.db.execute("DELETE FROM tool_calls WHERE session_id = ?", (session_id,))
            await self.db.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            if session and session.get("transcript_path"):
                await self.db.execute(
                    "DELETE FROM file_positions WHERE transcript_path = ?",
                    (session["transcript_path"],),
                )
            cur = await self.db.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            deleted = cur.rowcount > 0
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return deleted

    def _row_to_dict(self, row) -> dict:
        return dict(row)
