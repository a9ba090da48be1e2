"""Schedule trigger: runs one analysis tick per authorized call."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from newsdesk.config import get_settings
from newsdesk.errors import FatalDriverError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron"])


def _authorized(request: Request, secret: str) -> bool:
    header = request.headers.get("authorization", "")
    return hmac.compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


@router.api_route("/cron/analyze-news", methods=["GET", "POST"])
async def analyze_news(request: Request):
    settings = get_settings()

    if not settings.cron_secret:
        if settings.require_cron_secret:
            logger.error("[cron] CRON_SECRET required but not configured")
            return JSONResponse(status_code=500, content={"error": "CRON_SECRET not configured"})
    elif not _authorized(request, settings.cron_secret):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    if not settings.news_analysis_enabled:
        return {"success": False, "disabled": True, "message": "News analysis is disabled"}

    worker = request.app.state.worker
    if worker is None:
        return JSONResponse(status_code=503, content={"success": False, "error": "worker not ready"})

    try:
        summary = await worker.run_once()
    except FatalDriverError as exc:
        logger.error("[cron] tick aborted: %s", exc)
        return JSONResponse(status_code=502, content={"success": False, "error": str(exc)})

    return {"success": True, **summary.as_dict()}
