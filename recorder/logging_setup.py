"""Logging configuration for the daemon, the hooks and the CLI."""
from __future__ import annotations

import logging
import os
from pathlib import Path

from recorder import config
from recorder.date_utils import utc_now_iso

DAEMON_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


class HookLogFormatter(logging.Formatter):
    """`[2024-01-01T00:00:00.000Z] session-start: message`"""

    def format(self, record: logging.LogRecord) -> str:
        hook = getattr(record, "hook", "hook")
        line = f"[{utc_now_iso()}] {hook}: {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_daemon_logging(log_path: Path | None = None, level: str | None = None) -> None:
    """daemon.log plus stderr."""
    path = Path(log_path or config.DAEMON_LOG_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level or config.LOG_LEVEL,
        format=DAEMON_FORMAT,
        handlers=[logging.FileHandler(path, encoding="utf-8"), logging.StreamHandler()],
        force=True,
    )


def configure_cli_logging(level: str | None = None) -> None:
    logging.basicConfig(level=level or config.LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")


def get_hook_logger(log_path: Path | None = None) -> logging.Logger:
    """File-only logger for lifecycle hooks; nothing reaches the host's stdout or stderr."""
    logger = logging.getLogger("recorder.hooks")
    logger.propagate = False
    logger.setLevel(logging.INFO)
    path = Path(log_path or config.HOOK_LOG_PATH)
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == os.path.abspath(path):
            return logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(HookLogFormatter())
    logger.addHandler(handler)
    return logger
