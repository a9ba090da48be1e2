"""Turn a classification plan into market-data requests and collect the answers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from newsdesk.brain.schemas import ClassificationPlan
from newsdesk.marketdata.gateway import DataPoint, DataRequest
from newsdesk.marketdata.providers import TREASURY_TENORS, asset_type

MAX_SYMBOLS = 6

# Keyword → macro indicator.
_MACRO_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("vix", "volatility index"), "VIX"),
    (("fear", "greed"), "FEAR_GREED"),
    (("dxy", "dollar"), "DXY"),
)
_YIELD_KEYWORDS = ("treasury", "yield", "bond")

# Keyword → CFTC market name fragment.
_COT_MARKETS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("btc", "bitcoin"), "BITCOIN"),
    (("gold", "xau"), "GOLD"),
    (("oil", "crude", "wti"), "CRUDE OIL"),
    (("euro", "eur"), "EURO FX"),
)

# "24h", "3 days", "90min", "2 weeks", "1mo" → hours
_PERIOD_RE = re.compile(r"(\d+)\s*(mo|months?|m|mins?|minutes?|h|hrs?|hours?|d|days?|w|weeks?)\b")
_UNIT_HOURS = {"h": 1, "d": 24, "w": 24 * 7, "mo": 24 * 30}


def _symbols(plan: ClassificationPlan) -> list[str]:
    seen: list[str] = []
    for sym in [p.symbol for p in plan.required_data.market_prices] + plan.affected_assets:
        s = sym.strip().upper()
        if s and s not in seen:
            seen.append(s)
    return seen[:MAX_SYMBOLS]


def _cot_markets(texts: list[str]) -> list[str]:
    found: list[str] = []
    for text in texts:
        lowered = text.lower()
        for keywords, market in _COT_MARKETS:
            if any(k in lowered for k in keywords) and market not in found:
                found.append(market)
    return found


def _window_hours(period: str) -> int | None:
    match = _PERIOD_RE.search(period.lower())
    if not match:
        return None
    n = int(match.group(1))
    unit = match.group(2)
    if unit.startswith("m") and not unit.startswith("mo"):
        return max(1, -(-n // 60))
    return n * _UNIT_HOURS[unit[:2] if unit.startswith("mo") else unit[0]]


def candle_window(plan: ClassificationPlan) -> tuple[str, int]:
    """Candle interval and count covering the longest requested time window."""
    hours = [h for h in (_window_hours(w.period) for w in plan.required_data.time_windows) if h]
    if not hours:
        return "1h", 24
    span = max(hours)
    if span <= 48:
        return "1h", max(span, 24)
    if span <= 14 * 24:
        return "4h", -(-span // 4)
    return "1d", min(-(-span // 24), 365)


def plan_requests(plan: ClassificationPlan) -> list[DataRequest]:
    """Every data point worth fetching for *plan*, without duplicates."""
    requests: list[DataRequest] = []
    symbols = _symbols(plan)
    interval, limit = candle_window(plan)

    for sym in symbols:
        kind = asset_type(sym)
        requests.append(DataRequest("quote", sym))
        requests.append(DataRequest("candles", sym, {"interval": interval, "limit": limit}))
        if kind == "crypto":
            requests.append(DataRequest("funding_rate", sym))
            requests.append(DataRequest("open_interest", sym))
        elif kind == "equity":
            requests.append(DataRequest("fundamentals", sym))

    macro_text = " ".join(plan.required_data.macro_inputs).lower()
    for keywords, indicator in _MACRO_KEYWORDS:
        if any(k in macro_text for k in keywords):
            requests.append(DataRequest("macro", indicator))
    if any(k in macro_text for k in _YIELD_KEYWORDS):
        for tenor in TREASURY_TENORS:
            requests.append(DataRequest("treasury_yield", tenor))

    for market in _cot_markets(plan.required_data.positioning_proxies):
        requests.append(DataRequest("positioning", market))

    return list(dict.fromkeys(requests))


@dataclass
class EnrichedData:
    points: dict[str, DataPoint] = field(default_factory=dict)

    @classmethod
    def from_points(cls, points: list[DataPoint]) -> "EnrichedData":
        return cls({f"{p.kind}:{p.key}": p for p in points})

    def provenance(self) -> dict[str, str]:
        return {k: p.provenance for k, p in self.points.items()}

    def supplied(self) -> list[DataPoint]:
        return [p for p in self.points.values() if p.provenance != "missing"]

    def for_prompt(self) -> dict[str, Any]:
        return {
            k: {"provenance": p.provenance, "value": p.value}
            for k, p in self.points.items()
        }

    def as_dict(self) -> dict[str, Any]:
        return {k: p.as_dict() for k, p in self.points.items()}
