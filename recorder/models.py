"""Pydantic models for transcripts, stored sessions and API payloads."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal, Optional

# ── Parsed transcript models ────────────────────────────────────────

class ParsedToolCall(BaseModel):
    id: str
    name: str = ""
    input: str = ""
    output: Optional[str] = None


class ParsedMessage(BaseModel):
    uuid: str
    sessionId: str = ""
    timestamp: str = ""
    role: Literal["user", "assistant"]
    textContent: str = ""
    thinkingContent: Optional[str] = None
    toolCalls: list[ParsedToolCall] = Field(default_factory=list)
    model: Optional[str] = None
    cwd: str = ""


class SessionMetadata(BaseModel):
    """Session identity read from the first message entry of a transcript."""
    sessionId: str
    slug: str = ""
    projectPath: str = ""
    workingDir: str = ""
    version: str = ""
    startTime: str = ""


# ── Stored session models ───────────────────────────────────────────

class Session(BaseModel):
    id: str
    slug: str = ""
    projectPath: str = ""
    workingDir: str = ""
    startTime: str = ""
    endTime: Optional[str] = None
    messageCount: int = 0
    version: str = ""
    transcriptPath: str = ""
    lastActivity: Optional[str] = None


class SessionDetail(Session):
    messages: list[ParsedMessage] = Field(default_factory=list)


class SearchResult(BaseModel):
    sessionId: str
    message: ParsedMessage
    snippet: str = ""


class ToolUsage(BaseModel):
    name: str
    count: int = 0


class UsageStats(BaseModel):
    totalSessions: int = 0
    totalMessages: int = 0
    totalToolCalls: int = 0
    toolUsage: list[ToolUsage] = Field(default_factory=list)


# ── Lifecycle signal payloads ───────────────────────────────────────

class HookInput(BaseModel):
    session_id: str = ""
    transcript_path: str = ""
    cwd: Optional[str] = None
    source: Optional[str] = None
    reason: Optional[str] = None


class DaemonStatus(BaseModel):
    running: bool = False
    pid: Optional[int] = None
    registeredSessions: list[str] = Field(default_factory=list)
