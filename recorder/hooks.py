"""Lifecycle hooks run by the host CLI on session start and session end.

Both read one JSON object from stdin. They only touch the registry (and, on
start, spawn the daemon), log to ``logs/hooks.log`` and always exit 0: a
failed recording must never block the host session.
"""
from __future__ import annotations

import json
import logging
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from recorder import config
from recorder.logging_setup import get_hook_logger
from recorder.models import HookInput
from recorder.registry import SessionRegistry

SESSION_START = "session-start"
SESSION_END = "session-end"


def _log(logger: logging.Logger, hook: str, message: str, *args, exc_info: bool = False) -> None:
    logger.info(message, *args, extra={"hook": hook}, exc_info=exc_info)


def parse_hook_input(raw: str) -> HookInput:
    data = json.loads(raw or "")
    if not isinstance(data, dict):
        raise ValueError("hook input is not a JSON object")
    return HookInput.model_validate(data)


def spawn_daemon() -> Optional[int]:
    """Start `python -m recorder daemon` detached from the hook's process group."""
    proc = subprocess.Popen(
        [sys.executable, "-m", "recorder", "daemon"],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )
    return proc.pid


def _wait_for_daemon(registry: SessionRegistry, timeout: float) -> bool:
    deadline = time.monotonic() + max(0.0, timeout)
    while True:
        if registry.is_daemon_alive():
            return True
        if time.monotonic() >= deadline:
            return False
        time.sleep(0.1)


def handle_session_start(
    raw: str,
    registry: SessionRegistry | None = None,
    spawn: Callable[[], Optional[int]] = spawn_daemon,
    log_path: Path | None = None,
    spawn_timeout: float | None = None,
) -> int:
    try:
        logger = get_hook_logger(log_path)
    except Exception:
        return 0
    try:
        registry = registry or SessionRegistry(config.RUN_DIR)
        try:
            hook_input = parse_hook_input(raw)
        except (ValueError, ValidationError) as exc:
            _log(logger, SESSION_START, "Failed to parse stdin: %s", exc)
            return 0

        if not hook_input.session_id or not hook_input.transcript_path:
            _log(logger, SESSION_START, "Missing session_id or transcript_path")
            return 0

        registry.register(hook_input.session_id, hook_input.transcript_path)
        _log(logger, SESSION_START, "Registered session %s", hook_input.session_id)
        _log(logger, SESSION_START, "Transcript: %s", hook_input.transcript_path)

        pid = registry.daemon_pid()
        if pid is not None:
            _log(logger, SESSION_START, "Daemon already running (pid %s)", pid)
            return 0

        child_pid = spawn()
        _log(logger, SESSION_START, "Daemon spawned with pid %s", child_pid)
        timeout = config.HOOK_SPAWN_TIMEOUT_SECONDS if spawn_timeout is None else spawn_timeout
        if timeout > 0 and not _wait_for_daemon(registry, timeout):
            _log(logger, SESSION_START, "Daemon did not report liveness within %ss", timeout)
    except Exception:
        _log(logger, SESSION_START, "error", exc_info=True)
    return 0


def handle_session_end(
    raw: str,
    registry: SessionRegistry | None = None,
    log_path: Path | None = None,
) -> int:
    try:
        logger = get_hook_logger(log_path)
    except Exception:
        return 0
    try:
        registry = registry or SessionRegistry(config.RUN_DIR)
        try:
            hook_input = parse_hook_input(raw)
        except (ValueError, ValidationError) as exc:
            _log(logger, SESSION_END, "Failed to parse stdin: %s", exc)
            return 0

        if not hook_input.session_id:
            _log(logger, SESSION_END, "Missing session_id")
            return 0

        if registry.unregister(hook_input.session_id):
            _log(
                logger,
                SESSION_END,
                "Unregistered session %s (reason: %s)",
                hook_input.session_id,
                hook_input.reason or "unknown",
            )
        else:
            _log(logger, SESSION_END, "No marker found for session %s", hook_input.session_id)
    except Exception:
        _log(logger, SESSION_END, "error", exc_info=True)
    return 0


def run_hook(name: str, raw: str | None = None) -> int:
    """Entry point for `recorder hook <name>`; reads stdin when `raw` is None."""
    try:
        if raw is None:
            raw = sys.stdin.read()
    except Exception:
        raw = ""
    if name == SESSION_START:
        return handle_session_start(raw)
    if name == SESSION_END:
        return handle_session_end(raw)
    return 0
