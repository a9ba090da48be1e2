"""MockMarketDataProviders: deterministic synthetic market data."""

from __future__ import annotations

import hashlib
from typing import Any


def _level(key: str, lo: float, hi: float) -> float:
    h = int(hashlib.md5(key.encode("utf-8")).hexdigest()[:8], 16)
    return round(lo + (h % 10_000) / 10_000 * (hi - lo), 4)


class MockMarketDataProviders:
    """Same coroutine surface as MarketDataProviders."""

    async def close(self) -> None:
        return None

    async def spot_quote(self, symbol: str) -> dict[str, Any] | None:
        price = _level(symbol, 10, 500)
        pct = _level(symbol + ":pct", -3, 3)
        return {
            "symbol": symbol,
            "price": price,
            "change": round(price * pct / 100, 4),
            "change_percent": pct,
            "volume": _level(symbol + ":vol", 1e5, 1e7),
            "source": "mock",
        }

    async def funding_rate(self, symbol: str) -> dict[str, Any] | None:
        return {"symbol": symbol, "funding_rate": _level(symbol + ":fr", -0.0005, 0.0005), "source": "mock"}

    async def open_interest(self, symbol: str) -> dict[str, Any] | None:
        return {"symbol": symbol, "open_interest": _level(symbol + ":oi", 1e4, 1e6), "source": "mock"}

    async def candles(self, symbol: str, interval: str = "1h", limit: int = 24) -> dict[str, Any] | None:
        base = _level(symbol, 10, 500)
        rows = []
        for i in range(limit):
            close = round(base * (1 + _level(f"{symbol}:{i}", -0.01, 0.01)), 4)
            rows.append({"t": i, "open": base, "high": max(base, close), "low": min(base, close), "close": close})
            base = close
        return {"symbol": symbol, "interval": interval, "candles": rows, "source": "mock"}

    async def macro_index(self, indicator: str) -> dict[str, Any] | None:
        return {"indicator": indicator.upper(), "value": _level(indicator, 10, 80), "source": "mock"}

    async def treasury_yield(self, tenor: str) -> dict[str, Any] | None:
        return {"tenor": tenor.upper(), "yield": _level(tenor, 3.5, 5.0), "source": "mock"}

    async def positioning(self, market: str) -> dict[str, Any] | None:
        return {
            "market": market,
            "non_commercial_long": int(_level(market + ":l", 1e4, 1e5)),
            "non_commercial_short": int(_level(market + ":s", 1e4, 1e5)),
            "source": "mock",
        }

    async def fundamentals(self, symbol: str) -> dict[str, Any] | None:
        return {"symbol": symbol, "pe_ratio": _level(symbol + ":pe", 8, 60), "source": "mock"}
