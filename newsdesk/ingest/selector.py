"""Candidate selection: which fetched items still need an analysis."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.db.models import AnalysisRecord
from newsdesk.ingest.feed import NewsItem

logger = logging.getLogger(__name__)

NEW = "NEW"
NEEDS_ANALYSIS = "NEEDS_ANALYSIS"
DONE = "DONE"


@dataclass(frozen=True)
class Candidate:
    item: NewsItem
    status: str  # NEW / NEEDS_ANALYSIS


async def classify_items(session: AsyncSession, items: list[NewsItem]) -> dict[str, str]:
    """Map news id → NEW / NEEDS_ANALYSIS / DONE from what is already stored."""
    ids = list({i.news_id for i in items})
    if not ids:
        return {}
    rows = (
        await session.execute(
            select(AnalysisRecord.news_id, AnalysisRecord.ai_analysis).where(AnalysisRecord.news_id.in_(ids))
        )
    ).all()
    stored = {news_id: payload for news_id, payload in rows}
    status: dict[str, str] = {}
    for news_id in ids:
        if news_id not in stored:
            status[news_id] = NEW
        elif not stored[news_id]:
            status[news_id] = NEEDS_ANALYSIS
        else:
            status[news_id] = DONE
    return status


async def select_candidates(
    session: AsyncSession,
    items: list[NewsItem],
    now: float | None = None,
    max_age_minutes: int = 60,
) -> list[Candidate]:
    """Items without a complete analysis, newest first, no older than *max_age_minutes*."""
    now = now if now is not None else time.time()
    cutoff = now - max_age_minutes * 60
    fresh = [i for i in items if i.published_at >= cutoff]
    status = await classify_items(session, fresh)

    seen: set[str] = set()
    candidates: list[Candidate] = []
    for item in sorted(fresh, key=lambda i: i.published_at, reverse=True):
        if item.news_id in seen:
            continue
        seen.add(item.news_id)
        s = status.get(item.news_id, NEW)
        if s != DONE:
            candidates.append(Candidate(item, s))

    logger.info(
        "[selector] %d items, %d within %d min, %d candidates",
        len(items), len(fresh), max_age_minutes, len(candidates),
    )
    return candidates
