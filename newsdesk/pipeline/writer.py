"""Persistence writer: one ``news_analyses`` row per news id.

``upsert_record`` is a plain merge: insert if absent, overwrite if present.
``AnalysisWriter`` is stricter. It inserts with ``ON CONFLICT DO NOTHING`` and
only fills in a row whose payload is still NULL; if neither statement touched a
row, another worker already stored the analysis and the write is a
``PersistenceConflict``. The outcome always comes from the statements
themselves, never from an earlier read.

A finished write releases the item's lease. A newly inserted row is handed to
the notification dispatcher, and a tradable signal gets its entry price
recorded in ``signal_performance``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.brain.orchestrator import AnalysisOutcome
from newsdesk.db.database import SessionScope, dialect_insert, get_session
from newsdesk.db.models import AnalysisRecord, SignalPerformance
from newsdesk.errors import PersistenceConflict
from newsdesk.ingest.feed import NewsItem
from newsdesk.marketdata.gateway import DataRequest, MarketDataGateway
from newsdesk.notifications.dispatcher import NotificationDispatcher
from newsdesk.pipeline.locks import LockManager
from newsdesk.signals.generator import (
    NO_TRADE,
    SignalContext,
    build_trading_pairs,
    finalize_signal,
    horizon_from_trade_type,
    is_breaking,
    source_credibility,
)
from newsdesk.utils import from_epoch, utc_now

logger = logging.getLogger(__name__)

INSERTED = "INSERTED"
UPDATED = "UPDATED"
SKIPPED = "SKIPPED"

_IMMUTABLE_COLUMNS = ("id", "news_id")


@dataclass(frozen=True)
class WriteResult:
    status: str
    news_id: str
    notified: int = 0
    entry_price: float | None = None


def build_record_values(item: NewsItem, outcome: AnalysisOutcome, now: datetime | None = None) -> dict[str, Any]:
    """Flatten an analysis into ``news_analyses`` column values."""
    now = now or utc_now()
    decision = outcome.decision
    positions = decision.positions
    score = decision.importance_score

    pairs = build_trading_pairs([p.asset for p in positions] + outcome.plan.affected_assets)
    if positions:
        sentiment = "bullish" if positions[0].direction == "BUY" else "bearish"
    else:
        sentiment = decision.sentiment or "neutral"
    horizon = horizon_from_trade_type(positions[0].trade_type if positions else None)

    ctx = SignalContext(
        sentiment=sentiment,
        score=score,
        would_trade=decision.would_trade,
        time_horizon=horizon,
        risk_mode=decision.risk_mode,
    )
    sig = finalize_signal(ctx, pairs)
    cred = source_credibility(item.source)
    breaking = score >= 8 or is_breaking(score, cred, item.published_at, now.timestamp())

    return {
        "news_id": item.news_id,
        "title": outcome.plan.title or item.title,
        "content": item.body,
        "source": item.source,
        "url": item.url,
        "category": outcome.plan.category or item.category or "general",
        "sentiment": sentiment,
        "score": score,
        "signal": sig.signal,
        "signal_blocked": sig.blocked,
        "block_reason": sig.reason,
        "trading_pairs": pairs,
        "time_horizon": horizon,
        "risk_mode": decision.risk_mode,
        "would_trade": decision.would_trade,
        "ai_analysis": outcome.payload(feed_assets=list(item.tickers)),
        "is_breaking": breaking,
        "source_credibility_tier": cred.tier,
        "source_credibility_score": cred.score,
        "source_credibility_label": cred.label,
        "published_at": from_epoch(item.published_at),
        "analyzed_at": now,
    }


async def _insert_if_absent(session: AsyncSession, values: dict[str, Any]) -> bool:
    stmt = (
        dialect_insert(session, AnalysisRecord)
        .values(**values)
        .on_conflict_do_nothing(index_elements=["news_id"])
        .returning(AnalysisRecord.__table__.c.id)
    )
    return (await session.execute(stmt)).first() is not None


def _mutable(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if k not in _IMMUTABLE_COLUMNS}


async def upsert_record(session: AsyncSession, values: dict[str, Any]) -> bool:
    """Insert the row for ``values["news_id"]`` or overwrite it. Returns True if newly inserted."""
    if await _insert_if_absent(session, values):
        return True
    await session.execute(
        update(AnalysisRecord).where(AnalysisRecord.news_id == values["news_id"]).values(**_mutable(values))
    )
    return False


class AnalysisWriter:
    def __init__(
        self,
        locks: LockManager,
        dispatcher: NotificationDispatcher,
        session_factory: SessionScope = get_session,
        gateway: MarketDataGateway | None = None,
    ) -> None:
        self._locks = locks
        self._dispatcher = dispatcher
        self._session = session_factory
        self._gateway = gateway
        self.inserted = 0
        self.updated = 0
        self.skipped = 0
        self.entry_prices = 0

    async def _write(self, values: dict[str, Any]) -> bool:
        """Store *values* once. True on insert, False on fill-in of a NULL payload."""
        async with self._session() as session:
            if await _insert_if_absent(session, values):
                return True
            result = await session.execute(
                update(AnalysisRecord)
                .where(AnalysisRecord.news_id == values["news_id"], AnalysisRecord.ai_analysis.is_(None))
                .values(**_mutable(values))
            )
            if not result.rowcount:
                raise PersistenceConflict(values["news_id"])
            return False

    async def _capture_entry_price(self, outcome: AnalysisOutcome, values: dict[str, Any]) -> float | None:
        """Record the entry price of a new tradable signal. Best effort."""
        if self._gateway is None or values["signal"] == NO_TRADE or not values["trading_pairs"]:
            return None
        positions = outcome.decision.positions
        asset = (positions[0].asset if positions else "") or values["trading_pairs"][0]
        try:
            point = await self._gateway.fetch(DataRequest("quote", asset))
            price = (point.value or {}).get("price")
            if not isinstance(price, (int, float)) or price <= 0:
                logger.info("[writer] no entry price for %s (%s)", asset, point.provenance)
                return None

            now = utc_now()
            row = {
                "news_id": values["news_id"],
                "signal": values["signal"],
                "primary_asset": asset,
                "entry_price": float(price),
                "price_provenance": point.provenance,
                "price_source": (point.value or {}).get("source"),
                "created_at": now,
                "updated_at": now,
            }
            async with self._session() as session:
                stmt = dialect_insert(session, SignalPerformance).values(**row)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["news_id"],
                    set_={k: stmt.excluded[k] for k in row if k not in ("news_id", "created_at")},
                )
                await session.execute(stmt)
        except Exception:
            logger.warning("[writer] entry price capture failed for %s", values["news_id"], exc_info=True)
            return None

        self.entry_prices += 1
        return float(price)

    async def persist(self, item: NewsItem, outcome: AnalysisOutcome, worker_id: str) -> WriteResult:
        values = build_record_values(item, outcome)
        try:
            inserted = await self._write(values)
        except PersistenceConflict as exc:
            self.skipped += 1
            logger.info("[writer] %s", exc)
            await self._locks.release(item.news_id, worker_id)
            return WriteResult(SKIPPED, item.news_id)

        await self._locks.release(item.news_id, worker_id)
        if not inserted:
            self.updated += 1
            logger.info("[writer] filled missing analysis for %s", item.news_id)
            return WriteResult(UPDATED, item.news_id)

        self.inserted += 1
        notified = await self._dispatcher.dispatch(values)
        entry_price = await self._capture_entry_price(outcome, values)
        logger.info(
            "[writer] inserted %s signal=%s score=%d pairs=%s",
            item.news_id, values["signal"], values["score"], values["trading_pairs"],
        )
        return WriteResult(INSERTED, item.news_id, notified, entry_price)

    async def trim(self, max_records: int) -> int:
        """Keep the newest *max_records* rows by ``analyzed_at``; return rows deleted."""
        if max_records < 1:
            raise ValueError(f"max_records must be at least 1, got {max_records}")
        async with self._session() as session:
            cutoff = (
                await session.execute(
                    select(AnalysisRecord.analyzed_at)
                    .order_by(AnalysisRecord.analyzed_at.desc())
                    .offset(max_records - 1)
                    .limit(1)
                )
            ).scalar_one_or_none()
            if cutoff is None:
                return 0
            result = await session.execute(delete(AnalysisRecord).where(AnalysisRecord.analyzed_at < cutoff))
            deleted = result.rowcount or 0
        if deleted:
            logger.info("[writer] retention trimmed %d rows older than %s", deleted, cutoff)
        return deleted

    async def close(self) -> None:
        await self._dispatcher.close()

    def get_stats(self) -> dict[str, int]:
        return {
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "entry_prices": self.entry_prices,
        }
