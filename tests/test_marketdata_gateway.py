from __future__ import annotations

import httpx
import pytest

from newsdesk.marketdata.cache import MarketDataCache
from newsdesk.marketdata.gateway import CACHE_TTL_SECONDS, DataRequest, MarketDataGateway
from newsdesk.marketdata.providers import MarketDataProviders, asset_type, binance_symbol, yahoo_symbol


def _yahoo(price: float | None, prev: float = 100.0) -> dict:
    meta = {"previousClose": prev}
    if price is not None:
        meta["regularMarketPrice"] = price
    return {"chart": {"result": [{"meta": meta}]}}


def _gateway(session_factory, handler):  # noqa: ANN001
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    providers = MarketDataProviders(client, finnhub_api_key="", timeout=2.0)
    cache = MarketDataCache(session_factory)
    return MarketDataGateway(providers, cache), cache


async def _seed_quote(cache: MarketDataCache, price: float) -> None:
    await cache.put(
        "quote", "AAPL",
        {"symbol": "AAPL", "price": price, "source": "yahoo"},
        source="yahoo", ttl_seconds=60, price=price,
    )


def test_symbol_helpers() -> None:
    assert asset_type("BTC") == "crypto"
    assert asset_type("BINANCE:ETHUSDT") == "crypto"
    assert asset_type("EURUSD") == "forex"
    assert asset_type("VIX") == "index"
    assert asset_type("AAPL") == "equity"
    assert binance_symbol("BTC/USDT") == "BTCUSDT"
    assert binance_symbol("SOL") == "SOLUSDT"
    assert yahoo_symbol("EURUSD") == "EURUSD=X"
    assert yahoo_symbol("DXY") == "DX-Y.NYB"


@pytest.mark.asyncio
async def test_live_success_refreshes_cache(session_factory) -> None:
    gw, cache = _gateway(session_factory, lambda request: httpx.Response(200, json=_yahoo(123.0, prev=120.0)))

    point = await gw.fetch(DataRequest("quote", "AAPL"))

    assert point.provenance == "live"
    assert point.value["price"] == 123.0
    assert point.value["change"] == pytest.approx(3.0)
    cached = await cache.get("quote", "AAPL")
    assert cached is not None and cached.payload["price"] == 123.0
    assert (cached.expires_at - cached.fetched_at).total_seconds() == CACHE_TTL_SECONDS["quote"]


@pytest.mark.asyncio
async def test_rate_limit_falls_back_to_cache_without_overwriting(session_factory) -> None:
    gw, cache = _gateway(session_factory, lambda request: httpx.Response(429, json={"error": "slow down"}))
    await _seed_quote(cache, 100.0)
    before = await cache.get("quote", "AAPL")

    point = await gw.fetch(DataRequest("quote", "AAPL"))

    assert point.provenance == "cache"
    assert point.value["price"] == 100.0
    assert point.value["source"] == "yahoo_cached"
    assert "rate limited" in point.error
    after = await cache.get("quote", "AAPL")
    assert after.payload == before.payload
    assert after.fetched_at == before.fetched_at
    assert gw.get_stats()["cache_fallbacks"] == 1


@pytest.mark.asyncio
async def test_stale_cache_still_serves_on_failure(session_factory) -> None:
    gw, cache = _gateway(session_factory, lambda request: httpx.Response(503))
    await cache.put("quote", "AAPL", {"price": 99.0, "source": "yahoo"}, source="yahoo", ttl_seconds=-60)

    point = await gw.fetch(DataRequest("quote", "AAPL"))
    assert point.provenance == "cache"
    assert point.value["price"] == 99.0


@pytest.mark.asyncio
async def test_empty_live_answer_never_overwrites_cache(session_factory) -> None:
    gw, cache = _gateway(session_factory, lambda request: httpx.Response(200, json=_yahoo(None)))
    await _seed_quote(cache, 100.0)

    point = await gw.fetch(DataRequest("quote", "AAPL"))

    assert point.provenance == "cache"
    assert (await cache.get("quote", "AAPL")).payload["price"] == 100.0


@pytest.mark.asyncio
async def test_missing_when_no_cache(session_factory) -> None:
    gw, _ = _gateway(session_factory, lambda request: httpx.Response(429))
    point = await gw.fetch(DataRequest("quote", "AAPL"))
    assert point.provenance == "missing"
    assert point.value is None
    assert gw.get_stats()["misses"] == 1


@pytest.mark.asyncio
async def test_positioning_served_from_fresh_cache_without_upstream_call(session_factory) -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(500)

    gw, cache = _gateway(session_factory, handler)
    await cache.put(
        "positioning", "GOLD", {"market": "GOLD", "non_commercial_long": 1, "source": "cftc"},
        source="cftc", ttl_seconds=CACHE_TTL_SECONDS["positioning"],
    )

    point = await gw.fetch(DataRequest("positioning", "GOLD"))
    assert point.provenance == "cache"
    assert calls == []


@pytest.mark.asyncio
async def test_fetch_many_isolates_failures(session_factory) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "binance" in request.url.host:
            return httpx.Response(429)
        return httpx.Response(200, json=_yahoo(50.0))

    gw, _ = _gateway(session_factory, handler)
    points = await gw.fetch_many([
        DataRequest("quote", "AAPL"),
        DataRequest("quote", "BTC"),
        DataRequest("quote", "AAPL"),
    ])
    assert len(points) == 2
    assert {p.key: p.provenance for p in points} == {"AAPL": "live", "BTC": "missing"}


@pytest.mark.asyncio
async def test_cache_refuses_empty_payload(session_factory) -> None:
    cache = MarketDataCache(session_factory)
    assert await cache.put("quote", "X", {}, source="yahoo", ttl_seconds=60) is False
    assert await cache.put("quote", "X", {"price": None}, source="yahoo", ttl_seconds=60) is False
    assert await cache.get("quote", "X") is None


@pytest.mark.asyncio
async def test_yahoo_candles_range_follows_requested_window() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        body = {"chart": {"result": [{
            "timestamp": [1_700_000_000 + i * 3600 for i in range(3)],
            "indicators": {"quote": [{"close": [1.0, 2.0, 3.0]}]},
        }]}}
        return httpx.Response(200, json=body)

    providers = MarketDataProviders(httpx.AsyncClient(transport=httpx.MockTransport(handler)), finnhub_api_key="")
    default = await providers.candles("AAPL")
    await providers.candles("AAPL", "4h", 42)
    await providers.candles("AAPL", "1d", 30)

    assert [(p["interval"], p["range"]) for p in seen] == [("1h", "7d"), ("1h", "3mo"), ("1d", "3mo")]
    assert [c["close"] for c in default["candles"]] == [1.0, 2.0, 3.0]
