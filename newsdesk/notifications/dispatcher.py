"""Notification dispatcher: turns newly inserted analyses into outbound events.

Delivery is at-least-once. Every event carries ``news_id`` so downstream
consumers can drop duplicates.
"""

from __future__ import annotations

import logging
from typing import Any

from newsdesk.notifications.channel import EventChannel
from newsdesk.signals.generator import NO_TRADE, impact_label
from newsdesk.utils import utc_now

logger = logging.getLogger(__name__)


def news_event(record: dict[str, Any]) -> dict[str, Any]:
    payload = record.get("ai_analysis") or {}
    title = (payload.get("classification") or {}).get("title") or record.get("title") or "New analysis"
    return {
        "type": "news",
        "news_id": record["news_id"],
        "title": title,
        "category": record.get("category", "general"),
        "is_breaking": bool(record.get("is_breaking")),
        "impact": impact_label(int(record.get("score", 0))),
        "sentiment": record.get("sentiment", "neutral"),
        "trading_pairs": list(record.get("trading_pairs") or []),
        "signal": record.get("signal", NO_TRADE),
        "created_at": utc_now().isoformat(),
    }


def signal_event(record: dict[str, Any], title: str) -> dict[str, Any] | None:
    signal = record.get("signal") or NO_TRADE
    pairs = record.get("trading_pairs") or []
    if signal == NO_TRADE or not pairs:
        return None
    return {
        "type": "signal",
        "news_id": record["news_id"],
        "signal": signal,
        "trading_pair": pairs[0],
        "title": title,
        "created_at": utc_now().isoformat(),
    }


class NotificationDispatcher:
    def __init__(self, channel: EventChannel) -> None:
        self._channel = channel
        self.sent = 0
        self.failed = 0

    async def dispatch(self, record: dict[str, Any]) -> int:
        """Publish events for *record*; return how many went out. Never raises."""
        events = [news_event(record)]
        sig = signal_event(record, events[0]["title"])
        if sig is not None:
            events.append(sig)

        published = 0
        for event in events:
            try:
                await self._channel.publish(event)
                published += 1
            except Exception:
                self.failed += 1
                logger.warning(
                    "[notify] %s event for %s failed", event["type"], record.get("news_id"), exc_info=True
                )
        self.sent += published
        return published

    async def close(self) -> None:
        await self._channel.close()

    def get_stats(self) -> dict[str, int]:
        return {"sent": self.sent, "failed": self.failed}
