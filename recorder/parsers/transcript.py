"""Parse host CLI transcript JSONL content into normalized messages.

Pure functions only: nothing here touches the database, and nothing here
raises on malformed input. A line that fails to decode, or an entry that is
missing its message body or uuid, is skipped and parsing carries on with the
next line.
"""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from recorder.date_utils import normalize_timestamp
from recorder.models import ParsedMessage, ParsedToolCall, SessionMetadata

logger = logging.getLogger("recorder.parser")

_MESSAGE_ENTRY_TYPES = {"user", "assistant"}
_ENCODED_HOME_PREFIX = re.compile(r"^-(?:Users|home)-[^-]+-")


def _split_lines(content: str) -> list[str]:
    return [line for line in content.split("\n") if line.strip()]


def _decode_entry(line: str) -> dict[str, Any] | None:
    try:
        entry = json.loads(line)
    except (ValueError, RecursionError):
        # RecursionError: pathologically nested arrays or objects.
        return None
    return entry if isinstance(entry, dict) else None


def _result_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False)


def _collect_tool_results(entries: list[dict[str, Any]]) -> dict[str, str]:
    """First pass: map tool invocation id -> resolved output text."""
    results: dict[str, str] = {}
    for entry in entries:
        if entry.get("type") not in _MESSAGE_ENTRY_TYPES:
            continue
        message = entry.get("message")
        if not isinstance(message, dict):
            continue
        content = message.get("content")
        if not isinstance(content, list):
            continue
        for block in content:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue
            tool_use_id = block.get("tool_use_id")
            if isinstance(tool_use_id, str) and tool_use_id:
                results[tool_use_id] = _result_text(block.get("content"))
    return results


def _parse_entry(entry: dict[str, Any], tool_results: dict[str, str]) -> ParsedMessage | None:
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    uuid = entry.get("uuid")
    if not isinstance(uuid, str) or not uuid:
        return None

    role = message.get("role")
    if role not in _MESSAGE_ENTRY_TYPES:
        role = entry.get("type")

    text_parts: list[str] = []
    thinking: str | None = None
    tool_calls: list[ParsedToolCall] = []

    content = message.get("content")
    if isinstance(content, str):
        text_parts.append(content)
    elif isinstance(content, list):
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text":
                text = block.get("text")
                if isinstance(text, str):
                    text_parts.append(text)
            elif block_type == "thinking":
                value = block.get("thinking")
                if isinstance(value, str):
                    thinking = value
            elif block_type == "tool_use":
                tool_id = str(block.get("id") or "")
                if not tool_id:
                    continue
                tool_calls.append(
                    ParsedToolCall(
                        id=tool_id,
                        name=str(block.get("name") or ""),
                        input=json.dumps(block.get("input"), indent=2, ensure_ascii=False),
                        output=tool_results.get(tool_id),
                    )
                )

    model = message.get("model") if role == "assistant" else None

    return ParsedMessage(
        uuid=uuid,
        sessionId=str(entry.get("sessionId") or ""),
        timestamp=normalize_timestamp(entry.get("timestamp")),
        role=role,
        textContent="\n".join(text_parts),
        thinkingContent=thinking if role == "assistant" else None,
        toolCalls=tool_calls,
        model=model if isinstance(model, str) and model else None,
        cwd=str(entry.get("cwd") or ""),
    )


def parse_transcript_lines(content: str) -> tuple[list[ParsedMessage], int]:
    """Parse transcript text, returning messages and the number of undecodable lines.

    Tool results are resolved only against invocations in the same `content`;
    a result that shows up in a later batch never reaches an already-stored
    tool call.
    """
    entries: list[dict[str, Any]] = []
    malformed = 0
    for line in _split_lines(content):
        entry = _decode_entry(line)
        if entry is None:
            malformed += 1
            continue
        entries.append(entry)

    tool_results = _collect_tool_results(entries)

    messages: list[ParsedMessage] = []
    for entry in entries:
        if entry.get("type") not in _MESSAGE_ENTRY_TYPES:
            continue
        try:
            parsed = _parse_entry(entry, tool_results)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Skipping transcript entry %s: %s", entry.get("uuid"), exc)
            malformed += 1
            continue
        if parsed is not None:
            messages.append(parsed)

    return messages, malformed


def parse_transcript_content(content: str) -> list[ParsedMessage]:
    messages, _ = parse_transcript_lines(content)
    return messages


def parse_transcript_file(path: Path) -> list[ParsedMessage]:
    """Parse a whole transcript file. Unreadable files yield no messages."""
    try:
        content = path.read_bytes().decode("utf-8", errors="replace")
    except OSError:
        return []
    return parse_transcript_content(content)


def slug_from_project_dir(name: str) -> str:
    """Turn an encoded project directory (`-Users-me-src-app`) into `src/app`."""
    stripped = _ENCODED_HOME_PREFIX.sub("", name or "")
    return stripped.strip("-").replace("-", "/")


def extract_session_metadata(content: str, transcript_path: Path) -> SessionMetadata | None:
    """Read session identity from the first valid user/assistant entry."""
    for line in _split_lines(content):
        entry = _decode_entry(line)
        if entry is None or entry.get("type") not in _MESSAGE_ENTRY_TYPES:
            continue
        session_id = entry.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            continue
        project_dir = transcript_path.parent
        slug = entry.get("slug")
        if not isinstance(slug, str) or not slug:
            slug = slug_from_project_dir(project_dir.name)
        return SessionMetadata(
            sessionId=session_id,
            slug=slug,
            projectPath=str(project_dir),
            workingDir=str(entry.get("cwd") or ""),
            version=str(entry.get("version") or ""),
            startTime=normalize_timestamp(entry.get("timestamp")),
        )
    return None
