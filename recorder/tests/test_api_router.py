import unittest
from unittest.mock import patch

from fastapi import HTTPException

from recorder.routers import api as api_router


_SESSION_ROW = {
    "id": "S-main",
    "slug": "src/app",
    "project_path": "/projects/-Users-me-src-app",
    "working_dir": "/src/app",
    "start_time": "2026-02-16T10:00:00.000Z",
    "end_time": None,
    "message_count": 2,
    "version": "2.0.0",
    "transcript_path": "/projects/-Users-me-src-app/S-main.jsonl",
}


class _FakeSessionRepo:
    def __init__(self) -> None:
        self.calls: list[tuple[str, int]] = []

    async def list_recent(self, limit):
        self.calls.append(("recent", limit))
        return [dict(_SESSION_ROW)]

    async def list_recently_active(self, limit):
        self.calls.append(("active", limit))
        return [dict(_SESSION_ROW, last_activity="2026-02-16T10:05:00.000Z")]

    async def get_by_id(self, session_id):
        if session_id == "S-main":
            return dict(_SESSION_ROW)
        return None


class _FakeMessageRepo:
    async def get_for_session(self, session_id):
        return [
            {
                "id": 1,
                "uuid": "u1",
                "session_id": session_id,
                "timestamp": "2026-02-16T10:00:00.000Z",
                "role": "user",
                "text_content": "run the tests",
                "thinking_content": None,
                "model": None,
                "cwd": "/src/app",
                "tool_calls": [],
            },
            {
                "id": 2,
                "uuid": "a1",
                "session_id": session_id,
                "timestamp": "2026-02-16T10:00:02.000Z",
                "role": "assistant",
                "text_content": "",
                "thinking_content": "plan",
                "model": "claude-sonnet",
                "cwd": "/src/app",
                "tool_calls": [{"tool_id": "t1", "name": "Bash", "input": "{}", "output": "ok"}],
            },
        ]

    async def search(self, query, limit):
        self.last_search = (query, limit)
        return [
            {
                "id": 1,
                "uuid": "u1",
                "session_id": "S-main",
                "timestamp": "2026-02-16T10:00:00.000Z",
                "role": "user",
                "text_content": "run the tests",
                "thinking_content": None,
                "model": None,
                "cwd": "/src/app",
                "snippet": "run the >>>tests<<<",
            }
        ]


class _FakeAnalyticsRepo:
    async def get_stats(self, tool_limit):
        return {
            "totalSessions": 3,
            "totalMessages": 40,
            "totalToolCalls": 7,
            "toolUsage": [{"name": "Bash", "count": 5}, {"name": "Read", "count": 2}],
        }


class ApiRouterTests(unittest.IsolatedAsyncioTestCase):
    async def test_list_sessions_sorts_by_start_or_activity(self) -> None:
        repo = _FakeSessionRepo()
        with patch.object(api_router.connection, "get_connection", return_value=object()), patch.object(api_router, "get_session_repository", return_value=repo):
            started = await api_router.list_sessions(limit=5, sort="started")
            active = await api_router.list_sessions(limit=7, sort="activity")

        self.assertEqual(repo.calls, [("recent", 5), ("active", 7)])
        self.assertEqual(started[0].projectPath, "/projects/-Users-me-src-app")
        self.assertIsNone(started[0].lastActivity)
        self.assertEqual(active[0].lastActivity, "2026-02-16T10:05:00.000Z")

    async def test_get_session_includes_messages_and_tool_calls(self) -> None:
        with patch.object(api_router.connection, "get_connection", return_value=object()), patch.object(api_router, "get_session_repository", return_value=_FakeSessionRepo()), patch.object(api_router, "get_message_repository", return_value=_FakeMessageRepo()):
            detail = await api_router.get_session("S-main")

        self.assertEqual(detail.id, "S-main")
        self.assertEqual(detail.messageCount, 2)
        self.assertEqual([m.uuid for m in detail.messages], ["u1", "a1"])
        self.assertEqual(detail.messages[1].thinkingContent, "plan")
        self.assertEqual(detail.messages[1].toolCalls[0].output, "ok")

    async def test_get_session_404_when_missing(self) -> None:
        with patch.object(api_router.connection, "get_connection", return_value=object()), patch.object(api_router, "get_session_repository", return_value=_FakeSessionRepo()):
            with self.assertRaises(HTTPException) as ctx:
                await api_router.get_session("S-missing")

        self.assertEqual(ctx.exception.status_code, 404)

    async def test_search_wraps_rows_with_snippets(self) -> None:
        repo = _FakeMessageRepo()
        with patch.object(api_router.connection, "get_connection", return_value=object()), patch.object(api_router, "get_message_repository", return_value=repo):
            results = await api_router.search_messages(q="tests", limit=10)

        self.assertEqual(repo.last_search, ("tests", 10))
        self.assertEqual(results[0].sessionId, "S-main")
        self.assertEqual(results[0].snippet, "run the >>>tests<<<")
        self.assertEqual(results[0].message.toolCalls, [])

    async def test_stats(self) -> None:
        with patch.object(api_router.connection, "get_connection", return_value=object()), patch.object(api_router, "get_analytics_repository", return_value=_FakeAnalyticsRepo()):
            stats = await api_router.get_stats(tool_limit=20)

        self.assertEqual(stats.totalSessions, 3)
        self.assertEqual(stats.toolUsage[0].name, "Bash")
        self.assertEqual(stats.toolUsage[0].count, 5)


if __name__ == "__main__":
    unittest.main()
