"""Command line entry point: daemon control, lifecycle hooks, import and serve."""
from __future__ import annotations

import argparse
import asyncio
import json
import time
from pathlib import Path

from recorder import config
from recorder.db.connection import open_connection
from recorder.db.ingestion import IngestionEngine
from recorder.db.sqlite_migrations import run_migrations
from recorder.hooks import SESSION_END, SESSION_START, run_hook, spawn_daemon
from recorder.importer import discover_transcripts, import_transcripts
from recorder.logging_setup import configure_cli_logging, configure_daemon_logging
from recorder.models import DaemonStatus
from recorder.process_probe import process_exists, terminate
from recorder.registry import SessionRegistry


def _registry() -> SessionRegistry:
    return SessionRegistry(config.RUN_DIR)


def _wait_until(predicate, timeout: float, interval: float = 0.1) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def cmd_daemon(args: argparse.Namespace) -> int:
    configure_daemon_logging()
    from recorder.daemon import run_daemon

    return asyncio.run(run_daemon())


def cmd_start(args: argparse.Namespace) -> int:
    registry = _registry()
    pid = registry.daemon_pid()
    if pid is not None:
        print(f"Daemon already running (PID {pid})")
        return 0
    spawn_daemon()
    if _wait_until(registry.is_daemon_alive, args.timeout):
        print(f"Daemon started (PID {registry.daemon_pid()})")
        return 0
    print(f"Daemon did not start within {args.timeout}s; see {config.DAEMON_LOG_PATH}")
    return 1


def cmd_stop(args: argparse.Namespace) -> int:
    registry = _registry()
    pid = registry.daemon_pid()
    if pid is None:
        print("Daemon not running")
        return 0
    if not terminate(pid):
        registry.daemon_pid()
        print("Daemon not running")
        return 0
    if _wait_until(lambda: not process_exists(pid), args.timeout):
        print(f"Daemon stopped (PID {pid})")
        return 0
    print(f"Daemon (PID {pid}) did not exit within {args.timeout}s")
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    registry = _registry()
    pid = registry.daemon_pid()
    status = DaemonStatus(
        running=pid is not None,
        pid=pid,
        registeredSessions=registry.list_registered(),
    )
    if args.json:
        print(json.dumps(status.model_dump(), indent=2))
        return 0
    print(f"Daemon: {'running (PID %s)' % pid if status.running else 'stopped'}")
    print(f"Database: {config.DB_PATH}")
    if status.registeredSessions:
        print(f"Live sessions ({len(status.registeredSessions)}):")
        for session_id in status.registeredSessions:
            print(f"  {session_id}  {registry.get_transcript_path(session_id) or '-'}")
    else:
        print("Live sessions: none")
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    registry = _registry()
    pid = registry.daemon_pid()
    removed = registry.prune_orphans(args.max_age_hours * 3600)
    for session_id in removed:
        print(f"  removed orphaned marker {session_id}")
    print(f"Cleaned up {len(removed)} orphaned session marker(s).")
    print(f"Daemon: {'running (PID %s)' % pid if pid else 'stopped'}")
    return 0


def cmd_hook(args: argparse.Namespace) -> int:
    return run_hook(args.name)


async def _run_import(paths: list[Path], force: bool) -> int:
    db = await open_connection(config.DB_PATH)
    try:
        await run_migrations(db)
        summary = await import_transcripts(IngestionEngine(db), paths, force=force)
    finally:
        await db.close()
    print(f"Imported: {summary.imported_sessions} sessions, {summary.imported_messages} messages")
    print(f"Skipped: {len(summary.skipped)} (already imported or empty)")
    if summary.failed:
        print(f"Failed: {len(summary.failed)}")
        return 1
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    configure_cli_logging()
    if args.paths:
        paths: list[Path] = []
        for raw in args.paths:
            path = Path(raw).expanduser()
            paths.extend(discover_transcripts(path) if path.is_dir() else [path])
    else:
        paths = discover_transcripts(config.CLAUDE_PROJECTS_DIR)
    return asyncio.run(_run_import(paths, args.force))


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("recorder.main:app", host=args.host, port=args.port, log_level=config.LOG_LEVEL.lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="recorder", description="Record host CLI sessions into SQLite")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("daemon", help="Run the ingestion daemon in the foreground").set_defaults(func=cmd_daemon)

    start = sub.add_parser("start", help="Start the daemon in the background")
    start.add_argument("--timeout", type=float, default=5.0)
    start.set_defaults(func=cmd_start)

    stop = sub.add_parser("stop", help="Stop the running daemon")
    stop.add_argument("--timeout", type=float, default=10.0)
    stop.set_defaults(func=cmd_stop)

    status = sub.add_parser("status", help="Show daemon and live session state")
    status.add_argument("--json", action="store_true", help="Print machine-readable status")
    status.set_defaults(func=cmd_status)

    cleanup = sub.add_parser("cleanup", help="Remove stale pid files and orphaned session markers")
    cleanup.add_argument(
        "--max-age-hours",
        type=float,
        default=float(config.ORPHAN_MARKER_HOURS),
        help="Drop markers whose transcript has been idle this long",
    )
    cleanup.set_defaults(func=cmd_cleanup)

    hook = sub.add_parser("hook", help="Lifecycle hook entry point (reads JSON on stdin)")
    hook.add_argument("name", choices=[SESSION_START, SESSION_END])
    hook.set_defaults(func=cmd_hook)

    imp = sub.add_parser("import", help="Import existing transcripts")
    imp.add_argument("paths", nargs="*", help="Transcript files or project directories (default: all host projects)")
    imp.add_argument("--force", action="store_true", help="Re-read sessions that are already stored")
    imp.set_defaults(func=cmd_import)

    serve = sub.add_parser("serve", help="Serve the read-only HTTP API")
    serve.add_argument("--host", default=config.HOST)
    serve.add_argument("--port", type=int, default=config.PORT)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
