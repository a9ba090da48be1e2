from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

from newsdesk.brain.enrichment import EnrichedData
from newsdesk.brain.orchestrator import AnalysisOutcome
from newsdesk.brain.schemas import ClassificationPlan, TradeDecision
from newsdesk.config import Settings
from newsdesk.db.models import AnalysisLock, AnalysisRecord, SignalPerformance
from newsdesk.notifications.dispatcher import NotificationDispatcher
from newsdesk.pipeline.locks import LockManager
from newsdesk.pipeline.writer import INSERTED, SKIPPED, UPDATED, AnalysisWriter, build_record_values, upsert_record
from newsdesk.signals.generator import NO_TRADE, REASON_NO_INSTRUMENT, STRONG_BUY
from newsdesk.utils import from_epoch, utc_now
from tests.fakes import NO_TRADE_DECISION, PLAN, TRADE, FakeChannel, FakeGateway


def _outcome(decision: dict = TRADE, plan: dict = PLAN) -> AnalysisOutcome:
    return AnalysisOutcome(
        plan=ClassificationPlan.model_validate(plan),
        enriched=EnrichedData(),
        decision=TradeDecision.model_validate(decision),
        timings_ms={"classify": 10, "enrich": 5, "decide": 20},
    )


def test_build_record_values_derives_signal_and_metadata(make_item) -> None:
    item = make_item("https://n/1", source="Reuters")
    values = build_record_values(item, _outcome())

    assert values["signal"] == STRONG_BUY
    assert values["signal_blocked"] is False
    assert values["sentiment"] == "bullish"
    assert values["trading_pairs"] == ["BTC/USDT"]
    assert values["time_horizon"] == "short"
    assert values["is_breaking"] is True
    assert values["source_credibility_tier"] == 1
    assert values["title"] == PLAN["title"]
    meta = values["ai_analysis"]["meta"]
    assert meta["include_in_position_history"] is True
    assert meta["feed_assets"] == ["BTCUSD"]
    assert meta["duration_ms"] == 35


def test_build_record_values_without_instrument(make_item) -> None:
    plan = {**PLAN, "affected_assets": []}
    decision = {**TRADE, "positions": [{**TRADE["positions"][0], "asset": ""}]}
    values = build_record_values(make_item("https://n/2"), _outcome(decision, plan))
    assert values["trading_pairs"] == []
    assert values["signal"] == NO_TRADE
    assert values["signal_blocked"] is True
    assert values["block_reason"] == REASON_NO_INSTRUMENT


@pytest.mark.asyncio
async def test_upsert_record_merges_into_one_row(session_factory, make_item) -> None:
    item = make_item("https://n/3")
    first = build_record_values(item, _outcome())
    latest = build_record_values(item, _outcome(NO_TRADE_DECISION))

    async with session_factory() as session:
        assert await upsert_record(session, first) is True
    async with session_factory() as session:
        assert await upsert_record(session, latest) is False

    async with session_factory() as session:
        count = (await session.execute(select(func.count()).select_from(AnalysisRecord))).scalar_one()
        row = (await session.execute(select(AnalysisRecord))).scalar_one()
    assert count == 1
    assert row.signal == NO_TRADE
    assert row.score == latest["score"]
    assert row.ai_analysis["decision"]["trade_decision"] == "NO TRADE"


def _writer(session_factory, channel=None, gateway=None):  # noqa: ANN001
    locks = LockManager(session_factory, ttl_seconds=600)
    dispatcher = NotificationDispatcher(channel or FakeChannel())
    return AnalysisWriter(locks, dispatcher, session_factory, gateway), locks, dispatcher


def _racing(session_factory, rival):  # noqa: ANN001
    """Sessions that let *rival* finish its write before the first one opens."""
    pending = [rival]

    @asynccontextmanager
    async def _scope():
        if pending:
            await pending.pop()()
        async with session_factory() as session:
            yield session

    return _scope


async def _lock_count(session_factory) -> int:  # noqa: ANN001
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(AnalysisLock))).scalar_one()


@pytest.mark.asyncio
async def test_persist_inserts_notifies_and_releases(session_factory, make_item) -> None:
    channel = FakeChannel()
    writer, locks, _ = _writer(session_factory, channel)
    item = make_item("https://n/4")
    await locks.acquire(item.news_id, "w1")

    result = await writer.persist(item, _outcome(), "w1")

    assert result.status == INSERTED
    assert result.notified == 2
    assert [e["type"] for e in channel.events] == ["news", "signal"]
    assert all(e["news_id"] == item.news_id for e in channel.events)
    assert await _lock_count(session_factory) == 0


@pytest.mark.asyncio
async def test_persist_conflict_is_skipped_and_releases(session_factory, make_item) -> None:
    channel = FakeChannel()
    writer, locks, _ = _writer(session_factory, channel)
    item = make_item("https://n/5")
    await writer.persist(item, _outcome(), "w1")
    channel.events.clear()

    await locks.acquire(item.news_id, "w2")
    result = await writer.persist(item, _outcome(NO_TRADE_DECISION), "w2")

    assert result.status == SKIPPED
    assert channel.events == []
    assert await _lock_count(session_factory) == 0
    async with session_factory() as session:
        row = (await session.execute(select(AnalysisRecord))).scalar_one()
    assert row.signal == STRONG_BUY


@pytest.mark.asyncio
async def test_persist_fills_missing_payload_without_notifying(session_factory, make_item) -> None:
    channel = FakeChannel()
    writer, _, _ = _writer(session_factory, channel)
    item = make_item("https://n/6")
    async with session_factory() as session:
        session.add(AnalysisRecord(news_id=item.news_id, ai_analysis=None, published_at=from_epoch(item.published_at)))

    result = await writer.persist(item, _outcome(), "w1")

    assert result.status == UPDATED
    assert channel.events == []
    async with session_factory() as session:
        row = (await session.execute(select(AnalysisRecord))).scalar_one()
    assert row.ai_analysis["meta"]["include_in_position_history"] is True
    assert row.signal == STRONG_BUY


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_persist(session_factory, make_item) -> None:
    writer, _, dispatcher = _writer(session_factory, FakeChannel(fail=True))
    result = await writer.persist(make_item("https://n/7"), _outcome(), "w1")
    assert result.status == INSERTED
    assert result.notified == 0
    assert dispatcher.failed == 2


@pytest.mark.asyncio
async def test_trim_keeps_newest_records(session_factory) -> None:
    now = utc_now()
    async with session_factory() as session:
        for i in range(5):
            session.add(
                AnalysisRecord(
                    news_id=f"fa-0000000{i}",
                    ai_analysis={"meta": {}},
                    published_at=now,
                    analyzed_at=now - timedelta(minutes=i),
                )
            )

    writer, _, _ = _writer(session_factory)
    assert await writer.trim(3) == 2
    assert await writer.trim(3) == 0

    async with session_factory() as session:
        ids = sorted((await session.execute(select(AnalysisRecord.news_id))).scalars().all())
    assert ids == ["fa-00000000", "fa-00000001", "fa-00000002"]


@pytest.mark.asyncio
async def test_trim_rejects_non_positive_limit(session_factory) -> None:
    writer, _, _ = _writer(session_factory)
    with pytest.raises(ValueError):
        await writer.trim(0)
    with pytest.raises(ValidationError):
        Settings(retention_max_records=0)


@pytest.mark.asyncio
async def test_persist_loses_race_to_rival_insert(session_factory, make_item) -> None:
    item = make_item("https://n/8")
    rival_channel = FakeChannel()
    rival, _, _ = _writer(session_factory, rival_channel)

    channel = FakeChannel()
    locks = LockManager(session_factory, ttl_seconds=600)
    writer = AnalysisWriter(
        locks,
        NotificationDispatcher(channel),
        _racing(session_factory, lambda: rival.persist(item, _outcome(), "w2")),
    )
    await locks.acquire(item.news_id, "w1")

    result = await writer.persist(item, _outcome(NO_TRADE_DECISION), "w1")

    assert result.status == SKIPPED
    assert channel.events == []
    assert len(rival_channel.events) == 2
    assert await _lock_count(session_factory) == 0
    async with session_factory() as session:
        rows = (await session.execute(select(AnalysisRecord))).scalars().all()
    assert len(rows) == 1
    assert rows[0].signal == STRONG_BUY


@pytest.mark.asyncio
async def test_persist_loses_race_to_rival_fill_in(session_factory, make_item) -> None:
    item = make_item("https://n/9")
    async with session_factory() as session:
        session.add(AnalysisRecord(news_id=item.news_id, ai_analysis=None, published_at=from_epoch(item.published_at)))

    rival, _, _ = _writer(session_factory)
    rival_result: list = []

    async def _rival_write() -> None:
        rival_result.append(await rival.persist(item, _outcome(), "w2"))

    writer = AnalysisWriter(
        LockManager(session_factory, ttl_seconds=600),
        NotificationDispatcher(FakeChannel()),
        _racing(session_factory, _rival_write),
    )
    result = await writer.persist(item, _outcome(NO_TRADE_DECISION), "w1")

    assert rival_result[0].status == UPDATED
    assert result.status == SKIPPED
    async with session_factory() as session:
        row = (await session.execute(select(AnalysisRecord))).scalar_one()
    assert row.signal == STRONG_BUY


async def _entry_prices(session_factory) -> list[SignalPerformance]:  # noqa: ANN001
    async with session_factory() as session:
        return list((await session.execute(select(SignalPerformance))).scalars().all())


@pytest.mark.asyncio
async def test_new_trade_records_entry_price(session_factory, make_item) -> None:
    gateway = FakeGateway(price=64_250.5, provenance="cache")
    writer, _, _ = _writer(session_factory, gateway=gateway)
    item = make_item("https://n/10")

    result = await writer.persist(item, _outcome(), "w1")

    assert result.entry_price == 64_250.5
    assert [(r.kind, r.key) for r in gateway.requests] == [("quote", "BTC")]
    rows = await _entry_prices(session_factory)
    assert len(rows) == 1
    assert rows[0].news_id == item.news_id
    assert rows[0].signal == STRONG_BUY
    assert rows[0].primary_asset == "BTC"
    assert rows[0].price_provenance == "cache"
    assert rows[0].price_source == "fake"
    assert writer.get_stats()["entry_prices"] == 1


@pytest.mark.asyncio
async def test_no_entry_price_for_no_trade_or_missing_quote(session_factory, make_item) -> None:
    gateway = FakeGateway()
    writer, _, _ = _writer(session_factory, gateway=gateway)
    result = await writer.persist(make_item("https://n/11"), _outcome(NO_TRADE_DECISION), "w1")
    assert result.entry_price is None
    assert gateway.requests == []

    writer, _, _ = _writer(session_factory, gateway=FakeGateway(price=None))
    result = await writer.persist(make_item("https://n/12"), _outcome(), "w1")
    assert result.status == INSERTED
    assert result.entry_price is None
    assert await _entry_prices(session_factory) == []


@pytest.mark.asyncio
async def test_entry_price_failure_does_not_fail_persist(session_factory, make_item) -> None:
    channel = FakeChannel()
    writer, _, _ = _writer(session_factory, channel, FakeGateway(fail=True))

    result = await writer.persist(make_item("https://n/13"), _outcome(), "w1")

    assert result.status == INSERTED
    assert result.notified == 2
    assert result.entry_price is None
    assert await _entry_prices(session_factory) == []
