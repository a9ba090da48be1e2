"""FastAPI application factory with lifespan and routers."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from newsdesk import __version__
from newsdesk.config import get_settings

logger = logging.getLogger(__name__)

_start_time: float = 0.0


def get_uptime() -> float:
    return time.time() - _start_time if _start_time else 0.0


@asynccontextmanager
async def _lifespan(app: FastAPI):
    global _start_time
    _start_time = time.time()

    owned = None
    if app.state.worker is None:
        settings = get_settings()
        try:
            from newsdesk.db.database import init_db
            await init_db()
        except Exception as exc:
            logger.warning("Database init failed (running in degraded mode): %s", exc)

        from newsdesk.workers.news_analysis_worker import build_worker
        owned = build_worker(mock=settings.mock_mode)
        app.state.worker = owned

    logger.info("Newsdesk API v%s starting", __version__)
    yield
    if owned is not None:
        await owned.close()
    logger.info("Newsdesk API shutting down")


def create_app(worker: Any = None) -> FastAPI:
    """Build the FastAPI application. Pass *worker* to skip building one from settings."""
    app = FastAPI(
        title="Newsdesk",
        description="Market-news ingestion and AI analysis pipeline",
        version=__version__,
        lifespan=_lifespan,
    )
    app.state.worker = worker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from newsdesk.api.routes import cron, system
    app.include_router(cron.router, prefix="/api")
    app.include_router(system.router, prefix="/api")

    return app
