"""News analysis worker.

One tick: fetch the feed, select items without a complete analysis, lease up
to ``batch_size`` of them, analyze and persist the leased items concurrently,
then trim retention. Several workers can run the same tick at once; the lease
table keeps them off each other's items.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Any

from newsdesk.brain.orchestrator import AnalysisOrchestrator
from newsdesk.config import get_settings
from newsdesk.db.database import SessionScope, get_session
from newsdesk.errors import FatalDriverError
from newsdesk.ingest.feed import NewsFeedClient, NewsItem
from newsdesk.ingest.selector import select_candidates
from newsdesk.pipeline.locks import LOCKED, LockManager
from newsdesk.pipeline.writer import INSERTED, SKIPPED, UPDATED, AnalysisWriter, WriteResult

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:6]}"


@dataclass
class RunSummary:
    analyzed: int = 0
    inserted: int = 0
    updated: int = 0
    errors: int = 0
    skipped: int = 0
    fetched: int = 0
    candidates: int = 0
    locked: int = 0
    trimmed: int = 0
    duration_ms: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class NewsAnalysisWorker:
    """Drives one or more analysis ticks."""

    def __init__(
        self,
        feed: NewsFeedClient,
        orchestrator: AnalysisOrchestrator,
        locks: LockManager,
        writer: AnalysisWriter,
        session_factory: SessionScope = get_session,
        *,
        worker_id: str | None = None,
        batch_size: int | None = None,
        max_news_age_minutes: int | None = None,
        retention_max_records: int | None = None,
        interval_seconds: int | None = None,
    ) -> None:
        settings = get_settings()
        self._feed = feed
        self._orchestrator = orchestrator
        self._locks = locks
        self._writer = writer
        self._session = session_factory
        self.worker_id = worker_id or default_worker_id()
        self._batch_size = batch_size or settings.analysis_batch_size
        self._max_age = max_news_age_minutes or settings.max_news_age_minutes
        self._retention = retention_max_records or settings.retention_max_records
        self._interval = interval_seconds or settings.analysis_interval_seconds

        self.runs = 0
        self.failed_runs = 0
        self.last_summary: RunSummary | None = None

    async def _process(self, item: NewsItem, sem: asyncio.Semaphore) -> WriteResult:
        async with sem:
            outcome = await self._orchestrator.analyze(item)
            return await self._writer.persist(item, outcome, self.worker_id)

    async def _lease(self, candidates: list, summary: RunSummary) -> list[NewsItem]:
        held: list[NewsItem] = []
        for cand in candidates:
            if len(held) >= self._batch_size:
                break
            result = await self._locks.acquire(cand.item.news_id, self.worker_id)
            if result.acquired:
                held.append(cand.item)
            elif result.status == LOCKED:
                summary.locked += 1
            else:
                summary.errors += 1
        return held

    async def run_once(self) -> RunSummary:
        """Run a single tick. Only ``FatalDriverError`` escapes."""
        started = time.monotonic()
        summary = RunSummary()

        items = await self._feed.fetch()
        summary.fetched = len(items)

        try:
            async with self._session() as session:
                candidates = await select_candidates(session, items, max_age_minutes=self._max_age)
        except Exception as exc:
            raise FatalDriverError(f"candidate selection failed: {exc}") from exc
        summary.candidates = len(candidates)

        held = await self._lease(candidates, summary)
        if held:
            sem = asyncio.Semaphore(self._batch_size)
            results = await asyncio.gather(
                *(self._process(item, sem) for item in held), return_exceptions=True
            )
            for item, res in zip(held, results):
                if isinstance(res, BaseException):
                    # Lease stays in place and expires on its own.
                    summary.errors += 1
                    logger.warning("[worker] %s failed: %s", item.news_id, res)
                    continue
                summary.analyzed += 1
                if res.status == INSERTED:
                    summary.inserted += 1
                elif res.status == UPDATED:
                    summary.updated += 1
                elif res.status == SKIPPED:
                    summary.skipped += 1

        try:
            summary.trimmed = await self._writer.trim(self._retention)
        except Exception:
            logger.warning("[worker] retention trim failed", exc_info=True)

        summary.duration_ms = int((time.monotonic() - started) * 1000)
        self.runs += 1
        self.last_summary = summary
        logger.info("[worker] tick done %s", summary.as_dict())
        return summary

    async def run(self) -> None:
        logger.info("[worker] %s started (interval=%ds, batch=%d)", self.worker_id, self._interval, self._batch_size)
        while True:
            if not get_settings().news_analysis_enabled:
                logger.info("[worker] news analysis disabled, skipping tick")
            else:
                try:
                    await self.run_once()
                except FatalDriverError as exc:
                    self.failed_runs += 1
                    logger.error("[worker] tick aborted: %s", exc)
                except Exception:
                    self.failed_runs += 1
                    logger.warning("[worker] tick crashed", exc_info=True)
            await asyncio.sleep(self._interval)

    async def close(self) -> None:
        await self._feed.close()
        await self._orchestrator.close()
        await self._writer.close()

    def get_stats(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "runs": self.runs,
            "failed_runs": self.failed_runs,
            "last_summary": self.last_summary.as_dict() if self.last_summary else None,
            "locks": self._locks.get_stats(),
            "writer": self._writer.get_stats(),
            "orchestrator": self._orchestrator.get_stats(),
        }


def build_worker(
    *,
    mock: bool = False,
    session_factory: SessionScope = get_session,
    channel: Any = None,
) -> NewsAnalysisWorker:
    """Wire a worker from settings. ``mock`` swaps every external call for canned data."""
    from newsdesk.marketdata.cache import MarketDataCache
    from newsdesk.marketdata.gateway import MarketDataGateway
    from newsdesk.notifications.dispatcher import NotificationDispatcher

    cache = MarketDataCache(session_factory)
    if mock:
        from newsdesk.brain.mock import MockLLMClient
        from newsdesk.ingest.mock import MockNewsFeed
        from newsdesk.marketdata.mock import MockMarketDataProviders
        from newsdesk.notifications.channel import LogEventChannel

        feed: Any = MockNewsFeed()
        classifier: Any = MockLLMClient(model="mock-classifier")
        decider: Any = MockLLMClient(model="mock-decider")
        providers: Any = MockMarketDataProviders()
        channel = channel or LogEventChannel()
    else:
        from newsdesk.llm_client import get_classifier_client, get_decider_client
        from newsdesk.marketdata.providers import MarketDataProviders
        from newsdesk.notifications.channel import RedisEventChannel

        feed = NewsFeedClient()
        classifier = get_classifier_client()
        decider = get_decider_client()
        providers = MarketDataProviders()
        channel = channel or RedisEventChannel()

    gateway = MarketDataGateway(providers, cache)
    orchestrator = AnalysisOrchestrator(classifier, decider, gateway, session_factory)
    locks = LockManager(session_factory)
    writer = AnalysisWriter(locks, NotificationDispatcher(channel), session_factory, gateway)
    return NewsAnalysisWorker(feed, orchestrator, locks, writer, session_factory)
