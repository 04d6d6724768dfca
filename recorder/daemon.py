"""The ingestion daemon: one process that tails every live session.

In-memory state is a map of session id -> `TrackedSession`, rebuilt against
the registry markers on every tick. A session moves through
DISCOVERED -> ACTIVE -> FINALIZING -> CLOSED; a CLOSED session is dropped
from the map.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import aiosqlite

from recorder import config, observability
from recorder.date_utils import utc_now_iso
from recorder.db.connection import open_connection
from recorder.db.file_watcher import FileWatcher
from recorder.db.ingestion import IngestionEngine
from recorder.db.sqlite_migrations import run_migrations
from recorder.registry import SessionRegistry

logger = logging.getLogger("recorder.daemon")


class SessionState(str, Enum):
    DISCOVERED = "discovered"
    ACTIVE = "active"
    FINALIZING = "finalizing"
    CLOSED = "closed"


@dataclass
class TrackedSession:
    session_id: str
    transcript_path: Path
    state: SessionState = SessionState.DISCOVERED
    offset: int = 0
    messages_inserted: int = 0
    errors: int = 0
    discovered_at: str = field(default_factory=utc_now_iso)


@dataclass
class TickSummary:
    discovered: list[str] = field(default_factory=list)
    activated: list[str] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    messages_inserted: int = 0


class RecorderDaemon:
    def __init__(
        self,
        db: aiosqlite.Connection,
        registry: SessionRegistry,
        poll_interval: float | None = None,
        watch: bool | None = None,
    ):
        self.db = db
        self.registry = registry
        self.engine = IngestionEngine(db)
        self.poll_interval = config.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.watch = config.WATCH_ENABLED if watch is None else watch
        self.sessions: dict[str, TrackedSession] = {}
        self.wake = asyncio.Event()
        self.watcher: Optional[FileWatcher] = None
        self._stopping = False

    @property
    def stopping(self) -> bool:
        return self._stopping

    # ── Tick ────────────────────────────────────────────────────────

    async def tick(self) -> TickSummary:
        """Reconcile against the registry, finalize ended sessions, tail the rest."""
        summary = TickSummary()
        registered = set(self.registry.list_registered())

        for session_id in sorted(registered - set(self.sessions)):
            transcript = self.registry.get_transcript_path(session_id)
            if not transcript:
                continue
            self.sessions[session_id] = TrackedSession(session_id, Path(transcript))
            summary.discovered.append(session_id)
            logger.info(f"Discovered session {session_id} ({transcript})")

        for session_id in registered & set(self.sessions):
            tracked = self.sessions[session_id]
            if tracked.state == SessionState.FINALIZING:
                # Re-registered after a failed finalization.
                tracked.state = SessionState.DISCOVERED

        for session_id in [sid for sid in self.sessions if sid not in registered]:
            if await self._finalize(self.sessions[session_id]):
                summary.closed.append(session_id)
            else:
                summary.failed.append(session_id)

        for tracked in list(self.sessions.values()):
            if tracked.state == SessionState.FINALIZING:
                continue
            try:
                if tracked.state == SessionState.DISCOVERED:
                    if not await self._activate(tracked):
                        continue
                    summary.activated.append(tracked.session_id)
                summary.messages_inserted += await self._process(tracked)
            except Exception:
                tracked.errors += 1
                summary.failed.append(tracked.session_id)
                logger.exception(f"Failed to process session {tracked.session_id}")

        return summary

    async def _activate(self, tracked: TrackedSession) -> bool:
        metadata = await self.engine.ensure_session(tracked.transcript_path)
        if metadata is None:
            return False
        tracked.state = SessionState.ACTIVE
        logger.info(f"Session {tracked.session_id} active (slug={metadata.slug or '-'})")
        return True

    async def _process(self, tracked: TrackedSession, final: bool = False) -> int:
        result = await self.engine.process_transcript(tracked.transcript_path, final=final)
        tracked.offset = result.end_offset
        tracked.messages_inserted += result.messages_inserted
        return result.messages_inserted

    async def _finalize(self, tracked: TrackedSession) -> bool:
        """Last read plus end time. The session stays tracked if this fails."""
        try:
            if tracked.state == SessionState.DISCOVERED:
                await self.engine.ensure_session(tracked.transcript_path)
            tracked.state = SessionState.FINALIZING
            await self._process(tracked, final=True)
            await self.engine.session_repo.end_session(tracked.session_id, utc_now_iso())
        except Exception:
            tracked.errors += 1
            logger.exception(f"Failed to finalize session {tracked.session_id}; will retry")
            return False
        tracked.state = SessionState.CLOSED
        self.sessions.pop(tracked.session_id, None)
        logger.info(
            f"Closed session {tracked.session_id} "
            f"({tracked.messages_inserted} message(s) recorded this run)"
        )
        return True

    # ── Main loop ───────────────────────────────────────────────────

    def request_shutdown(self, signame: str = "") -> None:
        if signame:
            logger.info(f"Received {signame}, shutting down")
        self._stopping = True
        self.wake.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT, signal.SIGHUP):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError):
                pass

    def watch_paths(self) -> set[Path]:
        paths = {self.registry.sessions_dir}
        paths.update(tracked.transcript_path.parent for tracked in self.sessions.values())
        return paths

    async def wait_for_wake(self) -> None:
        try:
            await asyncio.wait_for(self.wake.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
        self.wake.clear()

    async def run(self) -> int:
        """Hold the daemon lock and tick until a termination signal arrives."""
        pid = os.getpid()
        if not self.registry.acquire_daemon_lock(pid):
            logger.info(f"Another daemon is already running (pid {self.registry.daemon_pid()})")
            return 1

        self.registry.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.install_signal_handlers()
        if self.watch:
            self.watcher = FileWatcher(self.wake)
        logger.info(f"Daemon started (pid {pid}, poll every {self.poll_interval}s)")

        try:
            while not self._stopping:
                try:
                    await self.tick()
                except Exception:
                    logger.exception("Daemon tick failed")
                if self.watcher is not None and not self._stopping:
                    await self.watcher.update_paths(self.watch_paths())
                if not self._stopping:
                    await self.wait_for_wake()
        finally:
            await self.shutdown()
            self.registry.release_daemon_lock(pid)
            logger.info("Daemon stopped")
        return 0

    async def shutdown(self) -> None:
        """Finalize every tracked session; markers stay for the next daemon."""
        if self.watcher is not None:
            await self.watcher.stop()
        for tracked in list(self.sessions.values()):
            await self._finalize(tracked)
        if self.sessions:
            logger.warning(f"{len(self.sessions)} session(s) could not be finalized")


async def run_daemon() -> int:
    registry = SessionRegistry(config.RUN_DIR)
    observability.initialize()
    db = await open_connection(config.DB_PATH)
    try:
        await run_migrations(db)
        return await RecorderDaemon(db, registry).run()
    finally:
        await db.close()
        observability.shutdown()
