"""Outbound event channels for notifications."""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis

from newsdesk.config import get_settings

logger = logging.getLogger(__name__)

NOTIFICATION_LIST_KEY = "newsdesk:notifications"


class EventChannel:
    """Anything that can take a JSON-serialisable event."""

    async def publish(self, event: dict[str, Any]) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class RedisEventChannel(EventChannel):
    """Pushes events onto a Redis list for the delivery service to drain."""

    def __init__(self, redis_client: Any = None, key: str = NOTIFICATION_LIST_KEY, max_len: int = 10_000) -> None:
        self._redis = redis_client or aioredis.from_url(get_settings().redis_url, decode_responses=True)
        self._key = key
        self._max_len = max_len

    async def publish(self, event: dict[str, Any]) -> None:
        await self._redis.lpush(self._key, json.dumps(event, default=str))
        await self._redis.ltrim(self._key, 0, self._max_len - 1)

    async def close(self) -> None:
        await self._redis.aclose()


class LogEventChannel(EventChannel):
    """Mock-mode channel: events only go to the log."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def publish(self, event: dict[str, Any]) -> None:
        self.events.append(event)
        logger.info("[notify] %s event for %s", event.get("type"), event.get("news_id"))
