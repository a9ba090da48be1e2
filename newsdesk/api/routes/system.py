"""System endpoints: health and stats."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from newsdesk import __version__
from newsdesk.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


@router.get("/health")
async def health():
    from newsdesk.api.app import get_uptime
    settings = get_settings()

    db_ok = False
    redis_ok = False

    try:
        from newsdesk.db.database import get_session
        from sqlalchemy import text
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        db_ok = True
    except Exception:
        logger.debug("[health] db check failed", exc_info=True)

    if settings.mock_mode:
        redis_ok = True
    else:
        try:
            import redis.asyncio as aioredis
            r = aioredis.from_url(settings.redis_url)
            await r.ping()
            await r.aclose()
            redis_ok = True
        except Exception:
            logger.debug("[health] redis check failed", exc_info=True)

    return {
        "status": "ok" if db_ok and redis_ok else "degraded",
        "version": __version__,
        "uptime_seconds": round(get_uptime(), 1),
        "mock_mode": settings.mock_mode,
        "analysis_enabled": settings.news_analysis_enabled,
        "components": {"db": db_ok, "redis": redis_ok},
    }


@router.get("/stats")
async def stats(request: Request):
    worker = request.app.state.worker
    if worker is None:
        return {"worker": None}
    return {"worker": worker.get_stats()}
