"""Durable registry of live sessions and the daemon liveness file.

The marker files under ``<run_dir>/sessions`` are the source of truth for
which transcripts the daemon should watch. The daemon rebuilds its in-memory
state from them on every tick, so a restarted daemon picks up where the last
one stopped without any replay of lifecycle signals.
"""
from __future__ import annotations

import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional

from recorder.date_utils import utc_now_iso
from recorder.process_probe import process_exists

logger = logging.getLogger("recorder.registry")

MARKER_SUFFIX = ".json"
DAEMON_PID_FILENAME = "daemon.pid"


class SessionRegistry:
    """Live-session markers plus the daemon pid file."""

    def __init__(self, run_dir: Path):
        self.run_dir = Path(run_dir)
        self.sessions_dir = self.run_dir / "sessions"
        self.pid_path = self.run_dir / DAEMON_PID_FILENAME

    def _marker_path(self, session_id: str) -> Path:
        cleaned = (session_id or "").strip()
        if not cleaned or cleaned in {".", ".."} or "/" in cleaned or "\\" in cleaned or "\x00" in cleaned:
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.sessions_dir / f"{cleaned}{MARKER_SUFFIX}"

    # ── Session markers ─────────────────────────────────────────────

    def register(self, session_id: str, transcript_path: str) -> Path:
        """Write (or rewrite) the marker for a live session."""
        marker = self._marker_path(session_id)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        payload = {
            "sessionId": session_id,
            "transcriptPath": str(transcript_path),
            "registeredAt": utc_now_iso(),
        }
        tmp = marker.with_name(f".{marker.name}.{os.getpid()}.tmp")
        tmp.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp, marker)
        logger.debug(f"Registered session {session_id} -> {transcript_path}")
        return marker

    def unregister(self, session_id: str) -> bool:
        marker = self._marker_path(session_id)
        try:
            marker.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Unregistered session {session_id}")
        return True

    def is_registered(self, session_id: str) -> bool:
        try:
            return self._marker_path(session_id).exists()
        except ValueError:
            return False

    def list_registered(self) -> list[str]:
        if not self.sessions_dir.exists():
            return []
        return sorted(
            path.name[: -len(MARKER_SUFFIX)]
            for path in self.sessions_dir.iterdir()
            if path.name.endswith(MARKER_SUFFIX) and not path.name.startswith(".")
        )

    def read_marker(self, session_id: str) -> dict | None:
        try:
            content = self._marker_path(session_id).read_text(encoding="utf-8")
        except (FileNotFoundError, ValueError):
            return None
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.warning(f"Unreadable marker for session {session_id}")
            return None
        return data if isinstance(data, dict) else None

    def get_transcript_path(self, session_id: str) -> Optional[str]:
        marker = self.read_marker(session_id)
        if not marker:
            return None
        path = marker.get("transcriptPath")
        return path if isinstance(path, str) and path else None

    def prune_orphans(self, max_idle_seconds: float) -> list[str]:
        """Drop markers whose transcript has been silent for too long.

        Idle time counts from the newer of the marker and transcript mtimes,
        so a session whose transcript does not exist yet is kept for the
        full window.
        """
        removed: list[str] = []
        now = time.time()
        for session_id in self.list_registered():
            marker = self._marker_path(session_id)
            try:
                last_seen = marker.stat().st_mtime
            except FileNotFoundError:
                continue
            transcript = self.get_transcript_path(session_id)
            if transcript:
                try:
                    last_seen = max(last_seen, Path(transcript).stat().st_mtime)
                except OSError:
                    pass
            if now - last_seen > max_idle_seconds and self.unregister(session_id):
                removed.append(session_id)
        if removed:
            logger.info(f"Pruned {len(removed)} orphaned session marker(s)")
        return removed

    # ── Daemon liveness ─────────────────────────────────────────────

    def daemon_pid(self) -> Optional[int]:
        """Pid of the running daemon, removing a stale pid file on the way."""
        try:
            raw = self.pid_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            pid = int(raw)
        except ValueError:
            pid = 0
        if pid > 0 and process_exists(pid):
            return pid
        self._discard_stale_pid_file(raw)
        return None

    def _discard_stale_pid_file(self, stale: str) -> None:
        """Remove the pid file only if it still holds `stale`.

        The file is moved aside and checked there, so a file claimed by
        another daemon after `stale` was read is put back untouched.
        """
        aside = self.run_dir / f".{DAEMON_PID_FILENAME}.{uuid.uuid4().hex}.stale"
        try:
            os.rename(self.pid_path, aside)
        except FileNotFoundError:
            return
        try:
            current = aside.read_text(encoding="utf-8").strip()
            if current != stale:
                try:
                    os.link(aside, self.pid_path)
                except FileExistsError:
                    logger.warning(f"Daemon pid file claimed again while restoring pid {current}")
                return
            logger.info(f"Removing stale daemon pid file ({stale or 'empty'})")
        finally:
            aside.unlink(missing_ok=True)

    def is_daemon_alive(self) -> bool:
        return self.daemon_pid() is not None

    def acquire_daemon_lock(self, pid: int) -> bool:
        """Claim the pid file for `pid`. False if another live daemon holds it."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        tmp = self.run_dir / f".{DAEMON_PID_FILENAME}.{pid}.tmp"
        tmp.write_text(str(pid), encoding="utf-8")
        try:
            for _ in range(2):
                try:
                    # link() fails if the target exists, so the pid file
                    # only ever appears with its content in place.
                    os.link(tmp, self.pid_path)
                    return True
                except FileExistsError:
                    holder = self.daemon_pid()
                    if holder is not None:
                        return holder == pid
            return False
        finally:
            tmp.unlink(missing_ok=True)

    def release_daemon_lock(self, pid: int) -> None:
        try:
            raw = self.pid_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return
        if raw == str(pid):
            self.pid_path.unlink(missing_ok=True)
