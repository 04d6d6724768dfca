"""Bulk import of transcripts that were written while no daemon was running."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from recorder.db.ingestion import IngestionEngine

logger = logging.getLogger("recorder.import")


@dataclass
class ImportSummary:
    imported_sessions: int = 0
    imported_messages: int = 0
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def discover_transcripts(projects_dir: Path) -> list[Path]:
    """Main-session transcripts under `projects_dir/<project>/`, sub-agent files excluded."""
    if not projects_dir.is_dir():
        return []
    found: list[Path] = []
    for project in sorted(projects_dir.iterdir()):
        if not project.is_dir():
            continue
        for path in sorted(project.glob("*.jsonl")):
            if path.name.startswith("agent-"):
                continue
            found.append(path)
    return found


async def import_transcripts(
    engine: IngestionEngine,
    paths: Iterable[Path],
    force: bool = False,
) -> ImportSummary:
    """Import each transcript in full; sessions already stored are skipped unless `force`."""
    summary = ImportSummary()
    for path in paths:
        path = Path(path)
        metadata = engine.read_session_metadata(path)
        if metadata is None:
            summary.skipped.append(str(path))
            continue
        if not force and await engine.session_repo.get_by_id(metadata.sessionId):
            summary.skipped.append(str(path))
            continue
        try:
            _, result = await engine.import_transcript(path)
        except Exception:
            logger.exception(f"Error importing {path}")
            summary.failed.append(str(path))
            continue
        summary.imported_sessions += 1
        summary.imported_messages += result.messages_inserted
        logger.info(f"Imported {path} ({result.messages_inserted} messages)")
    return summary
