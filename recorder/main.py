"""Session Recorder read-only FastAPI application."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from recorder import config
from recorder.db import connection, sqlite_migrations
from recorder.observability import initialize as initialize_observability, shutdown as shutdown_observability
from recorder.registry import SessionRegistry
from recorder.routers.api import analytics_router, search_router, sessions_router

logger = logging.getLogger("recorder")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Session Recorder API starting up")
    initialize_observability(app)

    db = await connection.get_connection()
    await sqlite_migrations.run_migrations(db)

    yield

    logger.info("Session Recorder API shutting down")
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="Session Recorder API",
    description="Read-only API over recorded host CLI sessions",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(sessions_router)
app.include_router(search_router)
app.include_router(analytics_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    registry = SessionRegistry(config.RUN_DIR)
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "daemon": "running" if registry.is_daemon_alive() else "stopped",
        "liveSessions": len(registry.list_registered()),
    }
