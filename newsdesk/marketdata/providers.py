"""Upstream market-data providers (Binance, Yahoo, alternative.me, CFTC, Finnhub).

Every method returns a plain dict snapshot or ``None`` when the provider
answered but had nothing for the symbol. Rate limits (HTTP 429), 5xx and
transport errors raise ``TransientUpstreamError``; other bad responses raise
``UpstreamError``. Callers route both into the cache fallback.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import httpx

from newsdesk.config import get_settings
from newsdesk.errors import TransientUpstreamError, UpstreamError

logger = logging.getLogger(__name__)

_BINANCE_SPOT = "https://api.binance.com/api/v3"
_BINANCE_FUTURES = "https://fapi.binance.com/fapi/v1"
_YAHOO_CHART = "https://query1.finance.yahoo.com/v8/finance/chart"
_FEAR_GREED_URL = "https://api.alternative.me/fng/"
_CFTC_COT_URL = "https://publicreporting.cftc.gov/resource/jun7-fc8e.json"
_FINNHUB_BASE = "https://finnhub.io/api/v1"

_CRYPTO_MARKERS = ("USDT", "BTC", "ETH")
CRYPTO_MAJORS = {"BTC", "ETH", "SOL", "XRP", "BNB", "DOGE", "ADA", "AVAX", "LINK"}
_INDEX_SYMBOLS = {"VIX", "DXY", "SPX", "NDX", "DJI"}
_COMMODITY_SYMBOLS = {"GOLD", "SILVER", "OIL", "WTI", "NATGAS"}

_YAHOO_ALIASES = {
    "VIX": "^VIX",
    "DXY": "DX-Y.NYB",
    "SPX": "^GSPC",
    "NDX": "^NDX",
    "DJI": "^DJI",
    "GOLD": "GC=F",
    "SILVER": "SI=F",
    "OIL": "CL=F",
    "WTI": "CL=F",
    "NATGAS": "NG=F",
}

TREASURY_TENORS = {
    "2Y": "^IRX",
    "10Y": "^TNX",
    "30Y": "^TYX",
}

_VENUE_PREFIX = re.compile(r"^[A-Z_]+:")


def asset_type(symbol: str) -> str:
    """Coarse asset class used to pick a provider: crypto / forex / index / commodity / equity."""
    upper = symbol.upper()
    bare = _VENUE_PREFIX.sub("", upper)
    if any(m in upper for m in _CRYPTO_MARKERS) or bare in CRYPTO_MAJORS:
        return "crypto"
    if "USD" in bare and len(bare) == 6:
        return "forex"
    if bare in _INDEX_SYMBOLS:
        return "index"
    if bare in _COMMODITY_SYMBOLS:
        return "commodity"
    return "equity"


def binance_symbol(symbol: str) -> str:
    """``BINANCE:BTC/USDT`` → ``BTCUSDT``; bare ``BTC`` → ``BTCUSDT``."""
    clean = _VENUE_PREFIX.sub("", symbol.upper()).replace("/", "").replace("-", "")
    if not clean.endswith(("USDT", "USDC", "BUSD")):
        clean = clean.removesuffix("USD") + "USDT"
    return clean


def yahoo_symbol(symbol: str) -> str:
    bare = _VENUE_PREFIX.sub("", symbol.upper())
    if bare in _YAHOO_ALIASES:
        return _YAHOO_ALIASES[bare]
    if asset_type(bare) == "forex":
        return f"{bare}=X"
    return bare.replace("/", "")


def _f(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


_INTERVAL_HOURS = {"1h": 1, "4h": 4, "1d": 24}


def _yahoo_range(interval: str, limit: int) -> str:
    """Smallest chart range that holds *limit* bars (markets trade ~7h a day)."""
    days = limit if interval == "1d" else -(-limit // 7)
    days = days * 7 // 5 + 1  # weekends
    for range_, span in (("7d", 7), ("1mo", 31), ("3mo", 92), ("6mo", 183), ("1y", 366)):
        if days <= span:
            return range_
    return "2y"


class MarketDataProviders:
    """Thin async clients over each upstream, sharing one ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        finnhub_api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._timeout = timeout or settings.http_timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = client is None
        self._finnhub_key = (finnhub_api_key if finnhub_api_key is not None else settings.finnhub_api_key).strip()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── transport ─────────────────────────────────────────────────────

    async def _get_json(self, provider: str, url: str, params: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self._client.get(url, params=params, timeout=self._timeout)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientUpstreamError(provider, f"transport error: {exc}") from exc

        if resp.status_code == 429:
            raise TransientUpstreamError(provider, "rate limited", status_code=429)
        if resp.status_code >= 500:
            raise TransientUpstreamError(provider, f"HTTP {resp.status_code}", status_code=resp.status_code)
        if resp.status_code != 200:
            raise UpstreamError(provider, f"HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(provider, "invalid JSON body") from exc

    async def _yahoo_meta(self, symbol: str, interval: str = "1d", range_: str = "1d") -> dict[str, Any]:
        data = await self._get_json(
            "yahoo", f"{_YAHOO_CHART}/{symbol}", {"interval": interval, "range": range_}
        )
        result = ((data or {}).get("chart") or {}).get("result") or []
        return result[0] if result else {}

    # ── spot quote ────────────────────────────────────────────────────

    async def spot_quote(self, symbol: str) -> dict[str, Any] | None:
        if asset_type(symbol) == "crypto":
            data = await self._get_json("binance", f"{_BINANCE_SPOT}/ticker/24hr", {"symbol": binance_symbol(symbol)})
            price = _f(data.get("lastPrice"))
            if not price:
                return None
            return {
                "symbol": symbol,
                "price": price,
                "change": _f(data.get("priceChange")),
                "change_percent": _f(data.get("priceChangePercent")),
                "volume": _f(data.get("volume")),
                "source": "binance",
            }

        meta = (await self._yahoo_meta(yahoo_symbol(symbol))).get("meta") or {}
        price = _f(meta.get("regularMarketPrice"))
        if not price:
            return None
        prev = _f(meta.get("previousClose") or meta.get("chartPreviousClose")) or 0.0
        change = price - prev if prev else None
        return {
            "symbol": symbol,
            "price": price,
            "change": round(change, 6) if change is not None else None,
            "change_percent": round(change / prev * 100.0, 4) if change is not None else None,
            "volume": _f(meta.get("regularMarketVolume")),
            "source": "yahoo",
        }

    # ── derivatives ───────────────────────────────────────────────────

    async def funding_rate(self, symbol: str) -> dict[str, Any] | None:
        data = await self._get_json(
            "binance_futures", f"{_BINANCE_FUTURES}/fundingRate", {"symbol": binance_symbol(symbol), "limit": 1}
        )
        if not data:
            return None
        rate = _f(data[0].get("fundingRate"))
        if rate is None:
            return None
        return {"symbol": symbol, "funding_rate": rate, "funding_time": data[0].get("fundingTime"), "source": "binance"}

    async def open_interest(self, symbol: str) -> dict[str, Any] | None:
        data = await self._get_json(
            "binance_futures", f"{_BINANCE_FUTURES}/openInterest", {"symbol": binance_symbol(symbol)}
        )
        oi = _f((data or {}).get("openInterest"))
        if oi is None:
            return None
        return {"symbol": symbol, "open_interest": oi, "source": "binance"}

    # ── candles ───────────────────────────────────────────────────────

    async def candles(self, symbol: str, interval: str = "1h", limit: int = 24) -> dict[str, Any] | None:
        rows: list[dict[str, float]] = []
        if asset_type(symbol) == "crypto":
            data = await self._get_json(
                "binance",
                f"{_BINANCE_SPOT}/klines",
                {"symbol": binance_symbol(symbol), "interval": interval, "limit": limit},
            )
            for k in data or []:
                rows.append({
                    "open_time": int(k[0]),
                    "open": float(k[1]),
                    "high": float(k[2]),
                    "low": float(k[3]),
                    "close": float(k[4]),
                    "volume": float(k[5]),
                })
            source = "binance"
        else:
            # Yahoo has no 4h bars; fetch four hourly bars per requested bar
            if interval != "1d":
                limit = limit * _INTERVAL_HOURS.get(interval, 1)
                interval = "1h"
            result = await self._yahoo_meta(yahoo_symbol(symbol), interval=interval, range_=_yahoo_range(interval, limit))
            stamps = result.get("timestamp") or []
            quote = (((result.get("indicators") or {}).get("quote")) or [{}])[0]

            def _at(field: str, i: int) -> float | None:
                series = quote.get(field) or []
                return _f(series[i]) if i < len(series) else None

            for i in range(max(len(stamps) - limit, 0), len(stamps)):
                close = _at("close", i)
                if close is None:
                    continue
                rows.append({
                    "open_time": int(stamps[i]) * 1000,
                    "open": _at("open", i) or close,
                    "high": _at("high", i) or close,
                    "low": _at("low", i) or close,
                    "close": close,
                    "volume": _at("volume", i) or 0.0,
                })
            source = "yahoo"
        if not rows:
            return None
        return {"symbol": symbol, "interval": interval, "candles": rows, "source": source}

    # ── macro ─────────────────────────────────────────────────────────

    async def macro_index(self, indicator: str) -> dict[str, Any] | None:
        name = indicator.upper()
        if name == "FEAR_GREED":
            data = await self._get_json("alternative_me", _FEAR_GREED_URL, {"limit": 1})
            entries = (data or {}).get("data") or []
            value = _f(entries[0].get("value")) if entries else None
            if value is None:
                return None
            return {
                "indicator": name,
                "value": value,
                "classification": entries[0].get("value_classification"),
                "source": "alternative_me",
            }

        meta = (await self._yahoo_meta(yahoo_symbol(name))).get("meta") or {}
        value = _f(meta.get("regularMarketPrice"))
        if not value:
            return None
        return {"indicator": name, "value": value, "source": "yahoo"}

    async def treasury_yield(self, tenor: str) -> dict[str, Any] | None:
        symbol = TREASURY_TENORS.get(tenor.upper())
        if symbol is None:
            raise UpstreamError("yahoo", f"unknown treasury tenor {tenor!r}")
        meta = (await self._yahoo_meta(symbol)).get("meta") or {}
        value = _f(meta.get("regularMarketPrice"))
        if not value:
            return None
        return {"tenor": tenor.upper(), "yield": value, "source": "yahoo"}

    # ── positioning ───────────────────────────────────────────────────

    async def positioning(self, market: str) -> dict[str, Any] | None:
        params = {
            "$where": f"market_and_exchange_names like '%{market}%'",
            "$order": "report_date_as_yyyy_mm_dd DESC",
            "$limit": 1,
        }
        data = await self._get_json("cftc", _CFTC_COT_URL, params)
        if not data:
            return None
        row = data[0]

        def _i(field: str) -> int:
            try:
                return int(row.get(field) or 0)
            except (TypeError, ValueError):
                return 0

        return {
            "market": row.get("market_and_exchange_names") or market,
            "commercial_long": _i("comm_positions_long_all"),
            "commercial_short": _i("comm_positions_short_all"),
            "non_commercial_long": _i("noncomm_positions_long_all"),
            "non_commercial_short": _i("noncomm_positions_short_all"),
            "report_date": row.get("report_date_as_yyyy_mm_dd"),
            "source": "cftc",
        }

    # ── fundamentals ──────────────────────────────────────────────────

    async def fundamentals(self, symbol: str) -> dict[str, Any] | None:
        if not self._finnhub_key:
            raise UpstreamError("finnhub", "FINNHUB_API_KEY not configured")
        bare = _VENUE_PREFIX.sub("", symbol.upper())
        params = {"symbol": bare, "token": self._finnhub_key}
        profile, metrics, recs = await asyncio.gather(
            self._get_json("finnhub", f"{_FINNHUB_BASE}/stock/profile2", params),
            self._get_json("finnhub", f"{_FINNHUB_BASE}/stock/metric", {**params, "metric": "all"}),
            self._get_json("finnhub", f"{_FINNHUB_BASE}/stock/recommendation", params),
        )
        m = (metrics or {}).get("metric") or {}
        latest = (recs or [{}])[0] if isinstance(recs, list) and recs else {}
        if not profile and not m:
            return None
        return {
            "symbol": bare,
            "name": (profile or {}).get("name", ""),
            "market_cap": _f((profile or {}).get("marketCapitalization")),
            "pe_ratio": _f(m.get("peBasicExclExtraTTM")),
            "eps": _f(m.get("epsBasicExclExtraItemsTTM")),
            "roe": _f(m.get("roeTTM")),
            "recommendations": {
                "buy": int(latest.get("strongBuy", 0)) + int(latest.get("buy", 0)),
                "hold": int(latest.get("hold", 0)),
                "sell": int(latest.get("sell", 0)) + int(latest.get("strongSell", 0)),
            },
            "source": "finnhub",
        }
