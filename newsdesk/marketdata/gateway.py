"""Market data gateway: live provider call with cache refresh and cache fallback.

All enrichment fetches go through ``MarketDataGateway.fetch``:

1. call the live provider,
2. on success refresh the shared cache with a TTL sized to the data's
   natural volatility,
3. on rate-limit, provider error or an empty answer, serve the most recent
   cached value for that key regardless of its staleness.

An empty live answer never overwrites a cached snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from newsdesk.errors import TransientUpstreamError, UpstreamError
from newsdesk.marketdata.cache import MarketDataCache
from newsdesk.marketdata.providers import MarketDataProviders

logger = logging.getLogger(__name__)

# Seconds a fresh snapshot is considered current, per data kind.
CACHE_TTL_SECONDS: dict[str, int] = {
    "quote": 60,
    "funding_rate": 60,
    "open_interest": 60,
    "candles": 300,
    "macro": 300,
    "treasury_yield": 3600,
    "fundamentals": 3600,
    "positioning": 7 * 24 * 3600,
}

# Weekly reports: serve a fresh cache hit without calling upstream.
_CACHE_FIRST_KINDS = {"positioning"}


@dataclass(frozen=True)
class DataRequest:
    kind: str
    key: str
    params: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass
class DataPoint:
    kind: str
    key: str
    value: dict[str, Any] | None
    provenance: str  # live / cache / missing
    error: str | None = None
    fetched_at: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "key": self.key,
            "value": self.value,
            "provenance": self.provenance,
            "error": self.error,
            "fetched_at": self.fetched_at,
        }


class MarketDataGateway:
    """Single entrypoint for enrichment data."""

    def __init__(
        self,
        providers: MarketDataProviders | None = None,
        cache: MarketDataCache | None = None,
    ) -> None:
        self._providers = providers or MarketDataProviders()
        self._cache = cache or MarketDataCache()
        self.live_hits = 0
        self.cache_fallbacks = 0
        self.misses = 0

    async def close(self) -> None:
        await self._providers.close()

    async def _live(self, req: DataRequest) -> dict[str, Any] | None:
        p = self._providers
        if req.kind == "quote":
            return await p.spot_quote(req.key)
        if req.kind == "funding_rate":
            return await p.funding_rate(req.key)
        if req.kind == "open_interest":
            return await p.open_interest(req.key)
        if req.kind == "candles":
            return await p.candles(req.key, req.params.get("interval", "1h"), int(req.params.get("limit", 24)))
        if req.kind == "macro":
            return await p.macro_index(req.key)
        if req.kind == "treasury_yield":
            return await p.treasury_yield(req.key)
        if req.kind == "positioning":
            return await p.positioning(req.key)
        if req.kind == "fundamentals":
            return await p.fundamentals(req.key)
        raise ValueError(f"unknown data kind {req.kind!r}")

    async def fetch(self, req: DataRequest) -> DataPoint:
        """Fetch one data point. Never raises for upstream trouble."""
        if req.kind in _CACHE_FIRST_KINDS:
            fresh = await self._cache_read(req, fresh_only=True)
            if fresh is not None:
                return fresh

        try:
            value = await self._live(req)
        except TransientUpstreamError as exc:
            logger.warning("[gateway] %s:%s rate-limited/unavailable (%s), using cache", req.kind, req.key, exc)
            return await self._fallback(req, str(exc))
        except UpstreamError as exc:
            logger.warning("[gateway] %s:%s provider error (%s), using cache", req.kind, req.key, exc)
            return await self._fallback(req, str(exc))
        except Exception as exc:
            logger.warning("[gateway] %s:%s unexpected error, using cache", req.kind, req.key, exc_info=True)
            return await self._fallback(req, f"{type(exc).__name__}: {exc}")

        if not value:
            return await self._fallback(req, "empty response")

        try:
            await self._cache.put(
                req.kind,
                req.key,
                value,
                source=str(value.get("source") or "unknown"),
                ttl_seconds=CACHE_TTL_SECONDS.get(req.kind, 60),
                price=_first_number(value, ("price", "value", "yield", "funding_rate", "open_interest")),
                change=_first_number(value, ("change",)),
                change_percent=_first_number(value, ("change_percent",)),
            )
        except Exception:
            logger.warning("[gateway] cache refresh failed for %s:%s", req.kind, req.key, exc_info=True)

        self.live_hits += 1
        return DataPoint(req.kind, req.key, value, "live")

    async def fetch_many(self, requests: list[DataRequest]) -> list[DataPoint]:
        """Fetch independently; one failure never aborts the others."""
        unique = list(dict.fromkeys(requests))
        results = await asyncio.gather(*(self.fetch(r) for r in unique), return_exceptions=True)
        points: list[DataPoint] = []
        for req, res in zip(unique, results):
            if isinstance(res, BaseException):
                logger.warning("[gateway] fetch crashed for %s:%s: %s", req.kind, req.key, res)
                self.misses += 1
                points.append(DataPoint(req.kind, req.key, None, "missing", error=str(res)))
            else:
                points.append(res)
        return points

    # ── fallback ──────────────────────────────────────────────────────

    async def _cache_read(self, req: DataRequest, *, fresh_only: bool = False) -> DataPoint | None:
        try:
            if fresh_only:
                cached = await self._cache.get_fresh(req.kind, req.key)
            else:
                cached = await self._cache.get(req.kind, req.key)
        except Exception:
            logger.warning("[gateway] cache read failed for %s:%s", req.kind, req.key, exc_info=True)
            return None
        if cached is None:
            return None
        value = dict(cached.payload)
        value["source"] = f"{cached.source}_cached"
        return DataPoint(req.kind, req.key, value, "cache", fetched_at=cached.fetched_at.isoformat())

    async def _fallback(self, req: DataRequest, reason: str) -> DataPoint:
        point = await self._cache_read(req)
        if point is None:
            self.misses += 1
            return DataPoint(req.kind, req.key, None, "missing", error=reason)
        point.error = reason
        self.cache_fallbacks += 1
        return point

    def get_stats(self) -> dict[str, int]:
        return {
            "live_hits": self.live_hits,
            "cache_fallbacks": self.cache_fallbacks,
            "misses": self.misses,
        }


def _first_number(value: dict[str, Any], keys: tuple[str, ...]) -> float | None:
    for k in keys:
        v = value.get(k)
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return float(v)
    return None
