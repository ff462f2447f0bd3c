"""Application lifecycle management for startup and shutdown tasks."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI

from groupcharts.application.workers.chart_generation_worker import (
    create_chart_generation_worker,
)
from groupcharts.config import Settings
from groupcharts.infrastructure.observability.logging import configure_logging
from groupcharts.infrastructure.persistence.database import Database

logger = logging.getLogger(__name__)


# Listen future me, everything before `yield` runs at STARTUP, everything after at SHUTDOWN.
# A Database handed to create_app() (tests) is used as-is and NOT closed here - whoever made
# it owns it. Otherwise we build one from settings and dispose it on the way out.
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging, open the database, start the chart worker."""
    settings: Settings = app.state.settings

    configure_logging(
        log_level=settings.observability.log_level,
        json_format=settings.observability.log_json_format,
        app_name=settings.app_name,
    )
    logger.info("Starting application: %s", settings.app_name)

    owns_db = getattr(app.state, "db", None) is None
    db: Database = Database(settings) if owns_db else app.state.db
    app.state.db = db

    worker = None
    worker_task: asyncio.Task[None] | None = None
    try:
        await db.create_tables()
        logger.info("Database initialized: %s", settings.database.url)

        if settings.worker.enabled:
            worker = create_chart_generation_worker(db.session_factory, settings)
            worker_task = asyncio.create_task(worker.start())
            app.state.chart_worker = worker
            logger.info("Chart generation worker started")

        yield
    finally:
        logger.info("Shutting down application")
        if worker is not None:
            worker.stop()
        if worker_task is not None:
            worker_task.cancel()
            with suppress(asyncio.CancelledError):
                await worker_task
        if owns_db:
            await db.close()
        logger.info("Application shutdown complete")
