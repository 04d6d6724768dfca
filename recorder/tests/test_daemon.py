import asyncio
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

import aiosqlite

from recorder.daemon import RecorderDaemon, SessionState
from recorder.db.sqlite_migrations import run_migrations
from recorder.registry import SessionRegistry


def _line(uuid: str, session_id: str, text: str = "hello") -> str:
    return json.dumps(
        {
            "type": "user",
            "uuid": uuid,
            "sessionId": session_id,
            "timestamp": "2026-02-16T10:00:00Z",
            "cwd": "/src/app",
            "message": {"role": "user", "content": text},
        }
    ) + "\n"


class RecorderDaemonTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.projects = self.root / "projects" / "-Users-me-src-app"
        self.projects.mkdir(parents=True)
        self.registry = SessionRegistry(self.root / "run")
        self.daemon = RecorderDaemon(self.db, self.registry, poll_interval=0.01, watch=False)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    def _transcript(self, session_id: str, *lines: str) -> Path:
        path = self.projects / f"{session_id}.jsonl"
        with path.open("a", encoding="utf-8") as fh:
            fh.write("".join(lines))
        return path

    async def test_registered_session_becomes_active_and_is_tailed(self) -> None:
        path = self._transcript("abc", _line("u1", "abc"))
        self.registry.register("abc", str(path))

        summary = await self.daemon.tick()

        self.assertEqual(summary.discovered, ["abc"])
        self.assertEqual(summary.activated, ["abc"])
        self.assertEqual(self.daemon.sessions["abc"].state, SessionState.ACTIVE)
        self.assertEqual(await self.daemon.engine.message_repo.count("abc"), 1)

        self._transcript("abc", _line("u2", "abc"))
        summary = await self.daemon.tick()

        self.assertEqual(summary.messages_inserted, 1)
        row = await self.daemon.engine.session_repo.get_by_id("abc")
        assert row is not None
        self.assertEqual(row["message_count"], 2)
        self.assertIsNone(row["end_time"])

    async def test_unregistered_session_is_finalized_exactly_once(self) -> None:
        path = self._transcript("abc", _line("u1", "abc"))
        self.registry.register("abc", str(path))
        await self.daemon.tick()

        # Written after the last tick and never terminated with a newline.
        with path.open("a", encoding="utf-8") as fh:
            fh.write(_line("u2", "abc").rstrip("\n"))
        self.registry.unregister("abc")

        repo = self.daemon.engine.session_repo
        with patch.object(repo, "end_session", AsyncMock(wraps=repo.end_session)) as end_session:
            summary = await self.daemon.tick()
            await self.daemon.tick()

        self.assertEqual(summary.closed, ["abc"])
        self.assertNotIn("abc", self.daemon.sessions)
        end_session.assert_awaited_once()
        self.assertEqual(end_session.await_args.args[0], "abc")
        row = await repo.get_by_id("abc")
        assert row is not None
        self.assertIsNotNone(row["end_time"])
        self.assertEqual(row["message_count"], 2)

    async def test_discovered_session_is_finalized_when_marker_vanishes(self) -> None:
        path = self.projects / "abc.jsonl"
        self.registry.register("abc", str(path))
        await self.daemon.tick()
        self.assertEqual(self.daemon.sessions["abc"].state, SessionState.DISCOVERED)

        self._transcript("abc", _line("u1", "abc"))
        self.registry.unregister("abc")
        repo = self.daemon.engine.session_repo
        with patch.object(repo, "end_session", AsyncMock(wraps=repo.end_session)) as end_session:
            summary = await self.daemon.tick()

        self.assertEqual(summary.closed, ["abc"])
        end_session.assert_awaited_once()
        row = await repo.get_by_id("abc")
        assert row is not None
        self.assertIsNotNone(row["end_time"])
        self.assertEqual(await self.daemon.engine.message_repo.count("abc"), 1)

    async def test_failing_session_does_not_block_others(self) -> None:
        good = self._transcript("good", _line("g1", "good"))
        bad = self._transcript("bad", _line("b1", "bad"))
        self.registry.register("good", str(good))
        self.registry.register("bad", str(bad))

        original = self.daemon.engine.process_transcript

        async def flaky(path, final=False):
            if Path(path) == bad:
                raise RuntimeError("database is locked")
            return await original(path, final=final)

        with patch.object(self.daemon.engine, "process_transcript", side_effect=flaky):
            with self.assertLogs("recorder.daemon", level="ERROR"):
                summary = await self.daemon.tick()

        self.assertEqual(summary.failed, ["bad"])
        self.assertEqual(await self.daemon.engine.message_repo.count("good"), 1)
        self.assertEqual(self.daemon.sessions["bad"].errors, 1)

        summary = await self.daemon.tick()
        self.assertEqual(summary.failed, [])
        self.assertEqual(await self.daemon.engine.message_repo.count("bad"), 1)

    async def test_failed_finalization_is_retried_next_tick(self) -> None:
        path = self._transcript("abc", _line("u1", "abc"))
        self.registry.register("abc", str(path))
        await self.daemon.tick()
        self.registry.unregister("abc")

        repo = self.daemon.engine.session_repo
        end_session = AsyncMock(side_effect=[RuntimeError("locked"), None])
        with patch.object(repo, "end_session", end_session):
            with self.assertLogs("recorder.daemon", level="ERROR"):
                first = await self.daemon.tick()
            self.assertEqual(first.failed, ["abc"])
            self.assertIn("abc", self.daemon.sessions)

            second = await self.daemon.tick()

        self.assertEqual(second.closed, ["abc"])
        self.assertNotIn("abc", self.daemon.sessions)
        self.assertEqual(end_session.await_count, 2)

    async def test_restarted_daemon_resumes_from_registry(self) -> None:
        path = self._transcript("abc", _line("u1", "abc"))
        self.registry.register("abc", str(path))
        await self.daemon.tick()

        self._transcript("abc", _line("u2", "abc"))
        restarted = RecorderDaemon(self.db, self.registry, poll_interval=0.01, watch=False)
        summary = await restarted.tick()

        self.assertEqual(summary.discovered, ["abc"])
        self.assertEqual(summary.messages_inserted, 1)
        self.assertEqual(await restarted.engine.message_repo.count("abc"), 2)

    async def test_shutdown_finalizes_tracked_sessions_and_keeps_markers(self) -> None:
        path = self._transcript("abc", _line("u1", "abc"))
        self.registry.register("abc", str(path))
        await self.daemon.tick()

        await self.daemon.shutdown()

        self.assertEqual(self.daemon.sessions, {})
        self.assertEqual(self.registry.list_registered(), ["abc"])
        row = await self.daemon.engine.session_repo.get_by_id("abc")
        assert row is not None
        self.assertIsNotNone(row["end_time"])

    async def test_run_refuses_when_another_daemon_holds_lock(self) -> None:
        self.assertTrue(self.registry.acquire_daemon_lock(os.getppid()))
        self.assertEqual(await self.daemon.run(), 1)
        self.assertEqual(self.registry.daemon_pid(), os.getppid())

    async def test_run_loop_ingests_until_shutdown_requested(self) -> None:
        path = self._transcript("abc", _line("u1", "abc"))
        self.registry.register("abc", str(path))

        with patch.object(self.daemon, "install_signal_handlers"):
            task = asyncio.create_task(self.daemon.run())
            for _ in range(200):
                if await self.daemon.engine.message_repo.count("abc"):
                    break
                await asyncio.sleep(0.01)
            self.assertEqual(self.registry.daemon_pid(), os.getpid())

            self.daemon.request_shutdown("SIGTERM")
            exit_code = await asyncio.wait_for(task, timeout=5)

        self.assertEqual(exit_code, 0)
        self.assertFalse(self.registry.pid_path.exists())
        row = await self.daemon.engine.session_repo.get_by_id("abc")
        assert row is not None
        self.assertEqual(row["message_count"], 1)
        self.assertIsNotNone(row["end_time"])


if __name__ == "__main__":
    unittest.main()
