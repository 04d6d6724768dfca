"""Incremental transcript → DB ingestion.

Reads only the bytes appended to a transcript since the last stored offset,
parses them, and writes the resulting messages through the repositories.
Offsets are byte offsets into the raw file and always land on a line
boundary, so a multi-byte character is never split and a line the writer is
still appending is re-read in full on the next pass.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite

from recorder.db.repositories import (
    SqliteFilePositionRepository,
    SqliteMessageRepository,
    SqliteSessionRepository,
)
from recorder.models import SessionMetadata
from recorder.observability import (
    record_ingestion,
    record_parser_failure,
    record_tool_calls,
    start_span,
)
from recorder.parsers.transcript import extract_session_metadata, parse_transcript_lines

logger = logging.getLogger("recorder.ingest")

# How many leading lines to inspect when looking for session metadata.
_METADATA_SCAN_LINES = 200


@dataclass
class IngestResult:
    transcript_path: str
    start_offset: int = 0
    end_offset: int = 0
    messages_parsed: int = 0
    messages_inserted: int = 0
    malformed_lines: int = 0
    last_timestamp: str = ""

    @property
    def advanced(self) -> bool:
        return self.end_offset > self.start_offset


def consumable_length(data: bytes, final: bool = False) -> int:
    """Bytes of `data` that form complete lines (everything when `final`)."""
    if final:
        return len(data)
    return data.rfind(b"\n") + 1


class IngestionEngine:
    """Byte-offset based incremental ingestion of transcript files."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        self.session_repo = SqliteSessionRepository(db)
        self.message_repo = SqliteMessageRepository(db)
        self.position_repo = SqliteFilePositionRepository(db)

    def read_session_metadata(self, transcript_path: Path) -> SessionMetadata | None:
        """Session identity from the first message entry, or None if none yet."""
        try:
            with transcript_path.open("rb") as fh:
                for index, raw in enumerate(fh):
                    if index >= _METADATA_SCAN_LINES:
                        break
                    metadata = extract_session_metadata(
                        raw.decode("utf-8", errors="replace"), transcript_path
                    )
                    if metadata is not None:
                        return metadata
        except OSError as exc:
            logger.debug(f"Transcript not readable yet: {transcript_path} ({exc})")
        return None

    async def ensure_session(self, transcript_path: Path) -> SessionMetadata | None:
        """Upsert the session row for a transcript once metadata is available."""
        metadata = self.read_session_metadata(transcript_path)
        if metadata is None:
            return None
        session_data: dict[str, Any] = metadata.model_dump()
        session_data["id"] = metadata.sessionId
        session_data["transcriptPath"] = str(transcript_path)
        await self.session_repo.upsert(session_data)
        return metadata

    async def process_transcript(self, transcript_path: Path, final: bool = False) -> IngestResult:
        """Ingest whatever was appended to `transcript_path` since the last pass.

        A missing or unreadable file is "no new content". With `final`, a
        trailing line without a newline is consumed too.
        """
        path_key = str(transcript_path)
        position = await self.position_repo.get(path_key)
        result = IngestResult(transcript_path=path_key, start_offset=position, end_offset=position)

        try:
            size = transcript_path.stat().st_size
        except OSError:
            logger.debug(f"Transcript file not found: {transcript_path}")
            return result

        if size <= position:
            return result

        t0 = time.monotonic()
        try:
            with transcript_path.open("rb") as fh:
                fh.seek(position)
                data = fh.read()
        except OSError as exc:
            logger.warning(f"Could not read transcript {transcript_path}: {exc}")
            return result

        consumed = consumable_length(data, final=final)
        if consumed == 0:
            return result

        chunk = data[:consumed].decode("utf-8", errors="replace")
        with start_span("recorder.ingest.transcript", {"transcript_path": path_key, "bytes": consumed}):
            messages, malformed = parse_transcript_lines(chunk)
            result.messages_parsed = len(messages)
            result.malformed_lines = malformed
            if malformed:
                record_parser_failure("transcript", count=malformed)

            try:
                for message in messages:
                    if await self.message_repo.insert(message):
                        result.messages_inserted += 1
                        for tool in message.toolCalls:
                            record_tool_calls(tool.name)
                    if message.timestamp:
                        result.last_timestamp = max(result.last_timestamp, message.timestamp)

                # Messages are committed before the offset moves, so a crash
                # in between only causes a deduplicated re-read.
                result.end_offset = position + consumed
                await self.position_repo.set(path_key, result.end_offset)
            except Exception:
                record_ingestion("transcript", "error", (time.monotonic() - t0) * 1000)
                raise

        record_ingestion("transcript", "success", (time.monotonic() - t0) * 1000)
        if result.messages_parsed or result.malformed_lines:
            logger.info(
                f"Processed {result.messages_parsed} message(s) "
                f"({result.messages_inserted} new, {result.malformed_lines} malformed) "
                f"from {transcript_path} at offset {position}"
            )
        return result

    async def import_transcript(self, transcript_path: Path, mark_ended: bool = True) -> tuple[SessionMetadata | None, IngestResult]:
        """Ingest a whole (usually finished) transcript in one pass."""
        metadata = await self.ensure_session(transcript_path)
        result = await self.process_transcript(transcript_path, final=True)
        if metadata is not None and mark_ended:
            session = await self.session_repo.get_by_id(metadata.sessionId)
            if session and not session.get("end_time"):
                end_time = result.last_timestamp or await self._last_message_timestamp(metadata.sessionId)
                if end_time:
                    await self.session_repo.end_session(metadata.sessionId, end_time)
        return metadata, result

    async def _last_message_timestamp(self, session_id: str) -> str:
        async with self.db.execute(
            "SELECT MAX(timestamp) FROM messages WHERE session_id = ?", (session_id,)
        ) as cur:
            row = await cur.fetchone()
        return row[0] if row and row[0] else ""
