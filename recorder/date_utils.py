"""Shared timestamp normalization helpers."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def format_timestamp(value: datetime) -> str:
    """Render a datetime as UTC ISO-8601 with millisecond precision and a `Z` suffix."""
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(token: Any) -> datetime | None:
    if not isinstance(token, str):
        return None
    cleaned = token.strip()
    if not cleaned:
        return None
    try:
        parsed = datetime.fromisoformat(cleaned.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_timestamp(value: Any) -> str:
    """Normalize transcript timestamps so lexical order matches time order.

    Unparseable strings are returned unchanged; non-strings become "".
    """
    if isinstance(value, datetime):
        return format_timestamp(value)
    parsed = parse_timestamp(value)
    if parsed is not None:
        return format_timestamp(parsed)
    return value.strip() if isinstance(value, str) else ""


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))
