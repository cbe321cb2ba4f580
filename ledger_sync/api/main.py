"""
FastAPI application for the notioneringsledger sync service.

Provides REST API for:
- Starting bulk seed / number repair / selection / flashcard sync jobs
- Polling job progress
- Checking which users' Notion workspaces are configured
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from config import get_settings
from ledger_sync.api.routers import sync_router
from ledger_sync.db.database import check_database, init_db
from ledger_sync.jobs.controller import SyncJobController
from ledger_sync.jobs.store import JobStore
from ledger_sync.jobs.worker import SyncWorker
from ledger_sync.logging_config import configure_logging

settings = get_settings()


def create_app(
    job_store: JobStore | None = None,
    controller: SyncJobController | None = None,
    worker: SyncWorker | None = None,
    start_worker: bool | None = None,
    init_database: bool = True,
) -> FastAPI:
    """
    Build the application.

    Args:
        job_store: Job store (defaults to the configured database)
        controller: Job controller (defaults to one over job_store)
        worker: Worker executing queued jobs
        start_worker: Run the worker thread in-process (default: settings.sync_worker_enabled)
        init_database: Create tables on startup
    """
    store = job_store or JobStore()
    run_worker = settings.sync_worker_enabled if start_worker is None else start_worker

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler for startup/shutdown events."""
        if init_database:
            configure_logging(settings)
            init_db()
        logger.info("Starting notioneringsledger sync service...")

        app.state.job_store = store
        app.state.controller = controller or SyncJobController(store)
        app.state.worker = worker or SyncWorker(store)
        if run_worker:
            app.state.worker.start()

        yield

        logger.info("Shutting down notioneringsledger sync service...")
        if run_worker:
            app.state.worker.stop()

    app = FastAPI(
        title="Notioneringsledger Sync",
        description="""
        Keeps the shared lecture roster in step with each user's Notion lecture database.

        ## Flow

        ```
        POST /sync/jobs        -> {job_id}   (job queued)
        worker                 -> runs users x lectures, appends progress
        GET  /sync/jobs/{id}   -> poll until completed | failed
        ```
        """,
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sync_router.router, prefix="/sync", tags=["Sync"])

    @app.get("/", tags=["Health"])
    def root() -> dict[str, str]:
        """Root endpoint returning service info."""
        return {
            "service": "notioneringsledger-sync",
            "version": "0.1.0",
            "status": "ok",
        }

    @app.get("/health", tags=["Health"])
    def health_check() -> dict[str, Any]:
        """Health check with database connectivity and Notion configuration."""
        db_status, db_error = check_database() if init_database else ("ok", None)
        configured = settings.get_configured_users()

        result: dict[str, Any] = {
            "status": "healthy" if db_status == "ok" else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "components": {
                "database": db_status,
                "notion": f"{len(configured)}/3 users configured",
                "worker": "running" if app.state.worker.is_running else "stopped",
            },
            "config": {
                "dry_run": settings.dry_run,
                "configured_users": configured,
            },
        }
        if db_error:
            result["errors"] = {"database": db_error}
        return result

    return app


app = create_app()
