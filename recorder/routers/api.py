"""Read-only API routers for sessions, search and usage stats."""
from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, HTTPException, Query

from recorder.db import connection
from recorder.db.factory import (
    get_analytics_repository,
    get_message_repository,
    get_session_repository,
)
from recorder.models import (
    ParsedMessage,
    ParsedToolCall,
    SearchResult,
    Session,
    SessionDetail,
    ToolUsage,
    UsageStats,
)


def _session_from_row(row: dict) -> Session:
    return Session(
        id=row["id"],
        slug=row.get("slug") or "",
        projectPath=row.get("project_path") or "",
        workingDir=row.get("working_dir") or "",
        startTime=row.get("start_time") or "",
        endTime=row.get("end_time"),
        messageCount=row.get("message_count") or 0,
        version=row.get("version") or "",
        transcriptPath=row.get("transcript_path") or "",
        lastActivity=row.get("last_activity"),
    )


def _message_from_row(row: dict) -> ParsedMessage:
    return ParsedMessage(
        uuid=row["uuid"],
        sessionId=row.get("session_id") or "",
        timestamp=row.get("timestamp") or "",
        role=row.get("role") or "user",
        textContent=row.get("text_content") or "",
        thinkingContent=row.get("thinking_content"),
        model=row.get("model"),
        cwd=row.get("cwd") or "",
        toolCalls=[
            ParsedToolCall(
                id=tool["tool_id"],
                name=tool.get("name") or "",
                input=tool.get("input") or "",
                output=tool.get("output"),
            )
            for tool in row.get("tool_calls") or []
        ],
    )


# ── Sessions router ─────────────────────────────────────────────────

sessions_router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@sessions_router.get("", response_model=list[Session])
async def list_sessions(
    limit: int = Query(20, ge=1, le=500),
    sort: Literal["started", "activity"] = Query("started", description="Order by start time or latest message"),
):
    """Most recent sessions first."""
    db = await connection.get_connection()
    repo = get_session_repository(db)
    if sort == "activity":
        rows = await repo.list_recently_active(limit)
    else:
        rows = await repo.list_recent(limit)
    return [_session_from_row(row) for row in rows]


@sessions_router.get("/{session_id}", response_model=SessionDetail)
async def get_session(session_id: str):
    db = await connection.get_connection()
    row = await get_session_repository(db).get_by_id(session_id)
    if not row:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    messages = await get_message_repository(db).get_for_session(session_id)
    session = _session_from_row(row)
    return SessionDetail(
        **session.model_dump(),
        messages=[_message_from_row(message) for message in messages],
    )


# ── Search router ───────────────────────────────────────────────────

search_router = APIRouter(prefix="/api/search", tags=["search"])


@search_router.get("", response_model=list[SearchResult])
async def search_messages(
    q: str = Query(..., min_length=1, description="FTS5 query over message text"),
    limit: int = Query(50, ge=1, le=500),
):
    db = await connection.get_connection()
    rows = await get_message_repository(db).search(q, limit)
    return [
        SearchResult(
            sessionId=row.get("session_id") or "",
            message=_message_from_row(row),
            snippet=row.get("snippet") or "",
        )
        for row in rows
    ]


# ── Analytics router ────────────────────────────────────────────────

analytics_router = APIRouter(prefix="/api/stats", tags=["analytics"])


@analytics_router.get("", response_model=UsageStats)
async def get_stats(tool_limit: int = Query(20, ge=1, le=200)):
    db = await connection.get_connection()
    stats = await get_analytics_repository(db).get_stats(tool_limit)
    return UsageStats(
        totalSessions=stats["totalSessions"],
        totalMessages=stats["totalMessages"],
        totalToolCalls=stats["totalToolCalls"],
        toolUsage=[ToolUsage(**item) for item in stats["toolUsage"]],
    )
