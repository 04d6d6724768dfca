import json
import tempfile
import unittest
from pathlib import Path

from recorder.parsers.transcript import (
    extract_session_metadata,
    parse_transcript_content,
    parse_transcript_file,
    parse_transcript_lines,
    slug_from_project_dir,
)


def _entry(uuid: str, entry_type: str, content, **extra) -> dict:
    message = {"role": entry_type, "content": content}
    if "model" in extra:
        message["model"] = extra.pop("model")
    entry = {
        "type": entry_type,
        "uuid": uuid,
        "sessionId": "sess-1",
        "timestamp": "2026-02-16T10:00:00Z",
        "cwd": "/work/app",
        "message": message,
    }
    entry.update(extra)
    return entry


def _jsonl(*entries) -> str:
    return "\n".join(e if isinstance(e, str) else json.dumps(e) for e in entries) + "\n"


class TranscriptParserTests(unittest.TestCase):
    def test_user_text_then_assistant_with_thinking(self) -> None:
        content = _jsonl(
            _entry("u1", "user", "Hi"),
            _entry(
                "a1",
                "assistant",
                [
                    {"type": "thinking", "thinking": "t1"},
                    {"type": "text", "text": "Hello!"},
                ],
                model="claude-sonnet",
            ),
        )

        messages = parse_transcript_content(content)

        self.assertEqual(len(messages), 2)
        self.assertEqual(messages[0].role, "user")
        self.assertEqual(messages[0].textContent, "Hi")
        self.assertIsNone(messages[0].model)
        self.assertEqual(messages[1].thinkingContent, "t1")
        self.assertEqual(messages[1].textContent, "Hello!")
        self.assertEqual(messages[1].model, "claude-sonnet")
        self.assertEqual(messages[1].sessionId, "sess-1")
        self.assertEqual(messages[1].cwd, "/work/app")

    def test_text_segments_join_with_newline_and_last_thinking_wins(self) -> None:
        content = _jsonl(
            _entry(
                "a1",
                "assistant",
                [
                    {"type": "thinking", "thinking": "first"},
                    {"type": "text", "text": "one"},
                    {"type": "image", "source": {"data": "..."}},
                    {"type": "thinking", "thinking": "second"},
                    {"type": "text", "text": "two"},
                ],
            )
        )

        [message] = parse_transcript_content(content)
        self.assertEqual(message.textContent, "one\ntwo")
        self.assertEqual(message.thinkingContent, "second")

    def test_tool_use_output_resolved_from_same_batch(self) -> None:
        content = _jsonl(
            _entry(
                "a1",
                "assistant",
                [{"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {"file_path": "/tmp/x"}}],
            ),
            _entry("u1", "user", [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "file body"}]),
        )

        messages = parse_transcript_content(content)

        self.assertEqual(len(messages), 2)
        [tool] = messages[0].toolCalls
        self.assertEqual(tool.id, "toolu_1")
        self.assertEqual(tool.name, "Read")
        self.assertEqual(tool.input, json.dumps({"file_path": "/tmp/x"}, indent=2))
        self.assertEqual(tool.output, "file body")

    def test_structured_tool_result_is_serialized(self) -> None:
        payload = [{"type": "text", "text": "line"}]
        content = _jsonl(
            _entry("a1", "assistant", [{"type": "tool_use", "id": "t1", "name": "Bash", "input": {}}]),
            _entry("u1", "user", [{"type": "tool_result", "tool_use_id": "t1", "content": payload}]),
        )

        messages = parse_transcript_content(content)
        self.assertEqual(json.loads(messages[0].toolCalls[0].output), payload)

    def test_unresolved_tool_call_has_null_output(self) -> None:
        content = _jsonl(
            _entry("a1", "assistant", [{"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "ls"}}]),
        )

        [message] = parse_transcript_content(content)
        self.assertIsNone(message.toolCalls[0].output)

    def test_result_in_later_batch_is_not_linked(self) -> None:
        first = _jsonl(_entry("a1", "assistant", [{"type": "tool_use", "id": "t1", "name": "Bash", "input": {}}]))
        second = _jsonl(_entry("u1", "user", [{"type": "tool_result", "tool_use_id": "t1", "content": "late"}]))

        [call_message] = parse_transcript_content(first)
        [result_message] = parse_transcript_content(second)

        self.assertIsNone(call_message.toolCalls[0].output)
        self.assertEqual(result_message.toolCalls, [])

    def test_malformed_line_is_skipped_and_counted(self) -> None:
        content = _jsonl(
            _entry("u1", "user", "first"),
            '{"type": "user", "uuid": broken',
            _entry("u2", "user", "second"),
        )

        messages, malformed = parse_transcript_lines(content)

        self.assertEqual([m.uuid for m in messages], ["u1", "u2"])
        self.assertEqual(malformed, 1)

    def test_deeply_nested_line_is_skipped_as_malformed(self) -> None:
        content = _jsonl(
            _entry("u1", "user", "first"),
            "[" * 200000,
            _entry("u2", "user", "second"),
        )

        messages, malformed = parse_transcript_lines(content)

        self.assertEqual([m.uuid for m in messages], ["u1", "u2"])
        self.assertEqual(malformed, 1)

    def test_non_message_entries_are_ignored(self) -> None:
        no_body = _entry("u2", "user", "x")
        del no_body["message"]
        no_uuid = _entry("", "user", "y")
        content = _jsonl(
            {"type": "file-history-snapshot", "uuid": "s1", "snapshot": {}},
            {"type": "summary", "summary": "Session summary"},
            no_body,
            no_uuid,
            _entry("u3", "user", "kept"),
            "",
        )

        messages, malformed = parse_transcript_lines(content)

        self.assertEqual([m.uuid for m in messages], ["u3"])
        self.assertEqual(malformed, 0)

    def test_timestamps_are_normalized_to_utc_millis(self) -> None:
        entry = _entry("u1", "user", "Hi", timestamp="2026-02-16T12:00:00.500+02:00")
        [message] = parse_transcript_content(_jsonl(entry))
        self.assertEqual(message.timestamp, "2026-02-16T10:00:00.500Z")

    def test_thinking_ignored_for_user_entries(self) -> None:
        entry = _entry("u1", "user", [{"type": "thinking", "thinking": "x"}, {"type": "text", "text": "y"}])
        [message] = parse_transcript_content(_jsonl(entry))
        self.assertIsNone(message.thinkingContent)
        self.assertEqual(message.textContent, "y")

    def test_parse_transcript_file_missing_returns_empty(self) -> None:
        self.assertEqual(parse_transcript_file(Path("/nonexistent/transcript.jsonl")), [])

    def test_parse_transcript_file_reads_utf8(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "s.jsonl"
        path.write_text(_jsonl(_entry("u1", "user", "café \U0001F600")), encoding="utf-8")

        [message] = parse_transcript_file(path)
        self.assertEqual(message.textContent, "café \U0001F600")


class SessionMetadataTests(unittest.TestCase):
    def test_slug_from_project_dir(self) -> None:
        self.assertEqual(slug_from_project_dir("-Users-me-src-app"), "src/app")
        self.assertEqual(slug_from_project_dir("-home-dev-work-tool"), "work/tool")

    def test_metadata_from_first_message_entry(self) -> None:
        path = Path("/data/projects/-Users-me-src-app/sess-1.jsonl")
        content = _jsonl(
            {"type": "summary", "summary": "ignored"},
            _entry("u1", "user", "Hi", slug="brave-otter", version="2.0.1"),
        )

        metadata = extract_session_metadata(content, path)

        assert metadata is not None
        self.assertEqual(metadata.sessionId, "sess-1")
        self.assertEqual(metadata.slug, "brave-otter")
        self.assertEqual(metadata.projectPath, "/data/projects/-Users-me-src-app")
        self.assertEqual(metadata.workingDir, "/work/app")
        self.assertEqual(metadata.version, "2.0.1")
        self.assertEqual(metadata.startTime, "2026-02-16T10:00:00.000Z")

    def test_metadata_slug_falls_back_to_project_dir(self) -> None:
        path = Path("/data/projects/-Users-me-src-app/sess-1.jsonl")
        metadata = extract_session_metadata(_jsonl(_entry("u1", "user", "Hi")), path)
        assert metadata is not None
        self.assertEqual(metadata.slug, "src/app")

    def test_metadata_absent_without_message_entries(self) -> None:
        path = Path("/tmp/p/s.jsonl")
        self.assertIsNone(extract_session_metadata('{"type": "summary"}\nnot json\n', path))

    def test_metadata_skips_deeply_nested_line(self) -> None:
        path = Path("/data/projects/-Users-me-src-app/sess-1.jsonl")
        content = "[" * 200000 + "\n" + _jsonl(_entry("u1", "user", "Hi"))

        metadata = extract_session_metadata(content, path)

        assert metadata is not None
        self.assertEqual(metadata.sessionId, "sess-1")


if __name__ == "__main__":
    unittest.main()
