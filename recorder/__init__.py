"""Session Recorder: incremental ingestion of host CLI transcripts into SQLite."""

__version__ = "0.1.0"
