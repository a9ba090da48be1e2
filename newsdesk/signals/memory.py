"""Position memory: recent signal history per asset, read from stored analyses.

Used as context for the decision stage so the model can see whether it has
been flip-flopping on an asset. Nothing here writes to the store.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from newsdesk.db.models import AnalysisRecord
from newsdesk.signals.generator import NO_TRADE
from newsdesk.utils import as_utc, clamp_text, utc_now

logger = logging.getLogger(__name__)

MAX_ROWS = 600
TREND_LENGTH = 5
MAX_RECENT_ANALYSES = 3
SNIPPET_MAX_CHARS = 600

_VENUE_PREFIX = re.compile(
    r"^(BINANCE|COINBASE|KRAKEN|BYBIT|OKX|NASDAQ|NYSE|AMEX|FX|FX_IDC|FOREX|FOREXCOM"
    r"|OANDA|TVC|CBOE|SP|DJ|INDEX|XETR|COMEX|NYMEX):"
)


@dataclass
class PositionMemoryEntry:
    asset: str
    last_signal: str | None = None
    last_direction: str | None = None
    minutes_ago: int | None = None
    trend_last5: list[str] = field(default_factory=list)  # newest first
    flip_risk: str = "LOW"
    recent_analyses: list[dict[str, Any]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "asset": self.asset,
            "last_signal": self.last_signal,
            "last_direction": self.last_direction,
            "minutes_ago": self.minutes_ago,
            "trend_last5": list(self.trend_last5),
            "flip_risk": self.flip_risk,
            "recent_analyses": list(self.recent_analyses),
        }


def normalize_asset_key(asset: str) -> str:
    """``"BINANCE:BTCUSDT"`` → ``"BTCUSDT"``, ``"btc/usdt"`` → ``"BTCUSDT"``."""
    s = (asset or "").strip().upper()
    s = _VENUE_PREFIX.sub("", s)
    return re.sub(r"[^A-Z0-9]", "", s)


def direction_of(signal: str | None) -> str:
    s = (signal or "").upper()
    if "BUY" in s:
        return "BUY"
    if "SELL" in s:
        return "SELL"
    return "HOLD"


def flip_risk(directions: list[str]) -> str:
    """Directions newest first. Two newest disagreeing is HIGH."""
    if len(directions) >= 2:
        return "HIGH" if directions[0] != directions[1] else "LOW"
    if len(directions) == 1:
        return "MEDIUM"
    return "LOW"


def _record_assets(record: AnalysisRecord) -> set[str]:
    payload = record.ai_analysis or {}
    meta = payload.get("meta") or {}
    classification = payload.get("classification") or {}
    raw: list[str] = []
    raw.extend(meta.get("feed_assets") or [])
    raw.extend(classification.get("affected_assets") or [])
    raw.extend(record.trading_pairs or [])
    return {normalize_asset_key(a) for a in raw if isinstance(a, str) and a}


def _display_text(record: AnalysisRecord) -> str:
    decision = (record.ai_analysis or {}).get("decision") or {}
    text = decision.get("overall_assessment")
    if not text:
        positions = decision.get("positions") or []
        text = positions[0].get("reasoning") if positions else ""
    return clamp_text(text or record.title, SNIPPET_MAX_CHARS)


async def build_position_memory(
    session: AsyncSession,
    assets: Iterable[str],
    now: datetime | None = None,
    lookback_days: int = 28,
) -> dict[str, PositionMemoryEntry]:
    """Summarise recent stored signals for *assets*, keyed by the caller's asset string."""
    now = now or utc_now()
    wanted: dict[str, str] = {}
    for asset in assets:
        key = normalize_asset_key(asset)
        if key and asset not in wanted:
            wanted[asset] = key
    if not wanted:
        return {}

    since = now - timedelta(days=lookback_days)
    rows = (
        await session.execute(
            select(AnalysisRecord)
            .where(AnalysisRecord.published_at >= since)
            .order_by(AnalysisRecord.published_at.desc())
            .limit(MAX_ROWS)
        )
    ).scalars().all()

    history = [
        r for r in rows
        if ((r.ai_analysis or {}).get("meta") or {}).get("include_in_position_history") is True
    ]

    memory: dict[str, PositionMemoryEntry] = {}
    for asset, key in wanted.items():
        entry = PositionMemoryEntry(asset=asset)
        directions: list[str] = []
        for record in history:
            if key not in _record_assets(record):
                continue
            if len(directions) < TREND_LENGTH:
                directions.append(direction_of(record.signal))
            if entry.last_signal is None and record.signal != NO_TRADE:
                entry.last_signal = record.signal
                entry.last_direction = direction_of(record.signal)
                entry.minutes_ago = int((now - as_utc(record.published_at)).total_seconds() // 60)
            if len(entry.recent_analyses) < MAX_RECENT_ANALYSES:
                entry.recent_analyses.append({
                    "news_id": record.news_id,
                    "signal": record.signal,
                    "score": record.score,
                    "published_at": as_utc(record.published_at).isoformat(),
                    "display_text": _display_text(record),
                })
        entry.trend_last5 = directions
        entry.flip_risk = flip_risk(directions)
        memory[asset] = entry

    logger.debug("[position-memory] %d assets, %d history rows", len(memory), len(history))
    return memory
