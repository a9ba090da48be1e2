from __future__ import annotations

import json

import pytest

from newsdesk.notifications.channel import NOTIFICATION_LIST_KEY, RedisEventChannel
from newsdesk.notifications.dispatcher import NotificationDispatcher, news_event, signal_event
from newsdesk.signals.generator import BUY, NO_TRADE
from tests.fakes import FakeChannel


def _record(**overrides) -> dict:  # noqa: ANN003
    record = {
        "news_id": "fa-12345678",
        "title": "raw headline",
        "category": "crypto",
        "is_breaking": False,
        "score": 6,
        "sentiment": "bullish",
        "signal": BUY,
        "trading_pairs": ["BTC/USDT", "ETH/USDT"],
        "ai_analysis": {"classification": {"title": "Bitcoin ETF inflows accelerate"}},
    }
    record.update(overrides)
    return record


def test_news_event_prefers_classified_title() -> None:
    event = news_event(_record())
    assert event["type"] == "news"
    assert event["title"] == "Bitcoin ETF inflows accelerate"
    assert event["news_id"] == "fa-12345678"
    assert event["impact"] == "medium"


def test_signal_event_uses_first_pair() -> None:
    event = signal_event(_record(), "t")
    assert event["trading_pair"] == "BTC/USDT"
    assert event["signal"] == BUY


def test_no_signal_event_without_trade_or_pairs() -> None:
    assert signal_event(_record(signal=NO_TRADE), "t") is None
    assert signal_event(_record(trading_pairs=[]), "t") is None


@pytest.mark.asyncio
async def test_dispatch_publishes_news_then_signal() -> None:
    channel = FakeChannel()
    dispatcher = NotificationDispatcher(channel)
    assert await dispatcher.dispatch(_record()) == 2
    assert [e["type"] for e in channel.events] == ["news", "signal"]
    assert dispatcher.get_stats() == {"sent": 2, "failed": 0}


@pytest.mark.asyncio
async def test_dispatch_no_trade_sends_news_only() -> None:
    channel = FakeChannel()
    assert await NotificationDispatcher(channel).dispatch(_record(signal=NO_TRADE)) == 1
    assert [e["type"] for e in channel.events] == ["news"]


@pytest.mark.asyncio
async def test_dispatch_counts_failures_and_never_raises() -> None:
    dispatcher = NotificationDispatcher(FakeChannel(fail=True))
    assert await dispatcher.dispatch(_record()) == 0
    assert dispatcher.get_stats() == {"sent": 0, "failed": 2}


class _FakeRedis:
    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.closed = False

    async def lpush(self, key: str, value: str) -> None:
        self.lists.setdefault(key, []).insert(0, value)

    async def ltrim(self, key: str, start: int, end: int) -> None:
        self.lists[key] = self.lists[key][start:end + 1]

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_redis_channel_pushes_bounded_list() -> None:
    redis = _FakeRedis()
    channel = RedisEventChannel(redis, max_len=2)
    for i in range(3):
        await channel.publish({"type": "news", "news_id": f"fa-{i}"})
    await channel.close()

    stored = [json.loads(v)["news_id"] for v in redis.lists[NOTIFICATION_LIST_KEY]]
    assert stored == ["fa-2", "fa-1"]
    assert redis.closed is True
