"""Session Recorder configuration."""
import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Data layout (everything lives under one per-user directory)
DATA_DIR = Path(os.getenv("RECORDER_HOME", str(Path.home() / ".claude-recorder"))).expanduser()
RUN_DIR = DATA_DIR / "run"
LOG_DIR = DATA_DIR / "logs"
HOOK_LOG_PATH = LOG_DIR / "hooks.log"
DAEMON_LOG_PATH = LOG_DIR / "daemon.log"

# Host CLI transcripts (used by bulk import)
CLAUDE_PROJECTS_DIR = Path(
    os.getenv("RECORDER_CLAUDE_PROJECTS_DIR", str(Path.home() / ".claude" / "projects"))
).expanduser()

# Database
DB_PATH = Path(os.getenv("RECORDER_DB_PATH", str(DATA_DIR / "recorder.db"))).expanduser()
BUSY_TIMEOUT_MS = _env_int("RECORDER_BUSY_TIMEOUT_MS", 5000)

# Daemon tuning
POLL_INTERVAL_SECONDS = _env_float("RECORDER_POLL_INTERVAL_SECONDS", 5.0)
WATCH_ENABLED = _env_bool("RECORDER_WATCH_ENABLED", True)
ORPHAN_MARKER_HOURS = _env_int("RECORDER_ORPHAN_MARKER_HOURS", 24)
HOOK_SPAWN_TIMEOUT_SECONDS = _env_float("RECORDER_HOOK_SPAWN_TIMEOUT_SECONDS", 2.0)

LOG_LEVEL = os.getenv("RECORDER_LOG_LEVEL", "INFO").upper()

# Observability
OTEL_ENABLED = _env_bool("RECORDER_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("RECORDER_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("RECORDER_OTEL_SERVICE_NAME", "session-recorder")
PROM_PORT = _env_int("RECORDER_PROM_PORT", 0)

# Read-only API server
HOST = os.getenv("RECORDER_HOST", "127.0.0.1")
PORT = _env_int("RECORDER_PORT", 8765)
