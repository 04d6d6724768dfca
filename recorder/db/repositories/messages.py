"""SQLite implementation of MessageRepository (messages, tool calls, search)."""
from __future__ import annotations

import logging
import sqlite3

import aiosqlite

from recorder.models import ParsedMessage

logger = logging.getLogger("recorder.db")

_MESSAGE_COLUMNS = "m.id, m.uuid, m.session_id, m.timestamp, m.role, m.text_content, m.thinking_content, m.model, m.cwd"


def _quote_fts_query(query: str) -> str:
    """Turn free text into a conjunction of FTS5 string literals."""
    terms = [term.replace('"', '""') for term in query.split() if term.strip()]
    return " ".join(f'"{term}"' for term in terms)


class SqliteMessageRepository:
    """Idempotent message storage keyed by the transcript entry uuid."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def insert(self, message: ParsedMessage) -> bool:
        """Insert a message unless its uuid is already stored.

        Returns True only when a new row was written. A duplicate uuid is
        not an error: the first-seen content is kept untouched.
        """
        try:
            cur = await self.db.execute(
                """INSERT OR IGNORE INTO messages
                    (uuid, session_id, timestamp, role, text_content, thinking_content, model, cwd)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.uuid,
                    message.sessionId,
                    message.timestamp,
                    message.role,
                    message.textContent,
                    message.thinkingContent,
                    message.model,
                    message.cwd,
                ),
            )
            inserted = cur.rowcount == 1
            if inserted:
                for tool in message.toolCalls:
                    await self.db.execute(
                        """INSERT OR IGNORE INTO tool_calls
                            (tool_id, message_uuid, session_id, name, input, output)
                           VALUES (?, ?, ?, ?, ?, ?)""",
                        (tool.id, message.uuid, message.sessionId, tool.name, tool.input, tool.output),
                    )
                await self.db.execute(
                    """UPDATE sessions
                       SET message_count = (SELECT COUNT(*) FROM messages WHERE session_id = ?)
                       WHERE id = ?""",
                    (message.sessionId, message.sessionId),
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return inserted

    async def count(self, session_id: str | None = None) -> int:
        if session_id:
            async with self.db.execute(
                "SELECT COUNT(*) FROM messages WHERE session_id = ?", (session_id,)
            ) as cur:
                row = await cur.fetchone()
        else:
            async with self.db.execute("SELECT COUNT(*) FROM messages") as cur:
                row = await cur.fetchone()
        return row[0] if row else 0

    async def get_by_uuid(self, uuid: str) -> dict | None:
        async with self.db.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages m WHERE m.uuid = ?", (uuid,)
        ) as cur:
            row = await cur.fetchone()
        if not row:
            return None
        message = dict(row)
        message["tool_calls"] = await self.get_tool_calls(uuid)
        return message

    async def get_tool_calls(self, message_uuid: str) -> list[dict]:
        async with self.db.execute(
            "SELECT tool_id, name, input, output FROM tool_calls WHERE message_uuid = ? ORDER BY id",
            (message_uuid,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def get_for_session(self, session_id: str) -> list[dict]:
        """All messages of a session, oldest first, each with its tool calls."""
        async with self.db.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages m WHERE m.session_id = ? ORDER BY m.timestamp ASC, m.id ASC",
            (session_id,),
        ) as cur:
            messages = [dict(r) for r in await cur.fetchall()]

        tools_by_message: dict[str, list[dict]] = {}
        async with self.db.execute(
            "SELECT tool_id, message_uuid, name, input, output FROM tool_calls WHERE session_id = ? ORDER BY id",
            (session_id,),
        ) as cur:
            for row in await cur.fetchall():
                tool = dict(row)
                tools_by_message.setdefault(tool.pop("message_uuid"), []).append(tool)

        for message in messages:
            message["tool_calls"] = tools_by_message.get(message["uuid"], [])
        return messages

    async def search(self, query: str, limit: int = 50) -> list[dict]:
        """Full-text search over message text, best matches first."""
        if not query.strip():
            return []
        sql = f"""
            SELECT {_MESSAGE_COLUMNS},
                   snippet(messages_fts, 0, '>>>', '<<<', '...', 64) AS snippet
            FROM messages_fts
            JOIN messages m ON messages_fts.rowid = m.id
            WHERE messages_fts MATCH ?
            ORDER BY rank
            LIMIT ?
        """
        try:
            async with self.db.execute(sql, (query, limit)) as cur:
                return [dict(r) for r in await cur.fetchall()]
        except sqlite3.OperationalError as exc:
            quoted = _quote_fts_query(query)
            if not quoted or quoted == query:
                raise
            logger.debug(f"FTS query {query!r} rejected ({exc}); retrying as literal terms")
            async with self.db.execute(sql, (quoted, limit)) as cur:
                return [dict(r) for r in await cur.fetchall()]
