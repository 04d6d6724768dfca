"""File watcher service using watchfiles.

Watches the live-session marker directory and the directories holding
tracked transcripts, and wakes the daemon loop when anything relevant
changes. The daemon keeps polling on its own interval, so a watcher that
fails only costs latency.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, awatch

logger = logging.getLogger("recorder.watcher")

_RELEVANT_SUFFIXES = (".jsonl", ".json")


class FileWatcher:
    """Background watcher that sets `wake` on transcript or marker changes."""

    def __init__(self, wake: asyncio.Event):
        self.wake = wake
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._paths: frozenset[Path] = frozenset()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def paths(self) -> frozenset[Path]:
        return self._paths

    async def update_paths(self, paths: Iterable[Path]) -> None:
        """Watch exactly `paths` (existing directories only), restarting if the set changed."""
        wanted = frozenset(Path(p) for p in paths if Path(p).is_dir())
        if wanted == self._paths and self._running:
            return
        await self.stop()
        self._paths = wanted
        if not wanted:
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(wanted, self._stop_event))
        logger.debug(f"Watching {len(wanted)} directories: {sorted(str(p) for p in wanted)}")

    async def stop(self) -> None:
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._stop_event = None
        self._paths = frozenset()

    async def _watch_loop(self, paths: frozenset[Path], stop_event: asyncio.Event) -> None:
        try:
            async for changes in awatch(*paths, stop_event=stop_event):
                if self.is_relevant(changes):
                    self.wake.set()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"File watcher error: {e}")
        finally:
            self._running = False

    @staticmethod
    def is_relevant(changes: set[tuple[Change, str]]) -> bool:
        """Only transcript appends and marker writes/removals matter."""
        for change_type, path_str in changes:
            if Path(path_str).suffix not in _RELEVANT_SUFFIXES:
                continue
            if change_type in (Change.added, Change.modified, Change.deleted):
                return True
        return False
