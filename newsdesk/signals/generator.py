"""Signal generation and risk filtering. Pure functions, no I/O."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Iterable

STRONG_BUY = "STRONG_BUY"
BUY = "BUY"
SELL = "SELL"
STRONG_SELL = "STRONG_SELL"
NO_TRADE = "NO_TRADE"

SIGNALS = (STRONG_BUY, BUY, SELL, STRONG_SELL, NO_TRADE)

# Machine-readable suppression reasons.
REASON_RISK_OFF_SHORT = "risk_off_short_low_score"
REASON_MACRO_FLOOR = "macro_score_floor"
REASON_NO_INSTRUMENT = "no_instrument"

MACRO_SCORE_FLOOR = 7
RISK_OFF_SHORT_FLOOR = 6


@dataclass(frozen=True)
class SignalContext:
    sentiment: str  # bullish / bearish / neutral
    score: int
    would_trade: bool
    time_horizon: str = "short"  # short / swing / macro
    risk_mode: str = "neutral"  # risk-on / risk-off / neutral


@dataclass(frozen=True)
class RiskFilterResult:
    blocked: bool
    reason: str | None = None


@dataclass(frozen=True)
class SignalDecision:
    signal: str
    raw_signal: str
    blocked: bool
    reason: str | None


def generate_signal(sentiment: str, score: int, would_trade: bool) -> str:
    """Map a decision to a trade signal; thresholds are inclusive."""
    if not would_trade:
        return NO_TRADE
    sentiment = (sentiment or "").lower()
    if sentiment not in ("bullish", "bearish"):
        return NO_TRADE
    if score >= 8:
        return STRONG_BUY if sentiment == "bullish" else STRONG_SELL
    if score >= 6:
        return BUY if sentiment == "bullish" else SELL
    return NO_TRADE


def apply_risk_filters(ctx: SignalContext) -> RiskFilterResult:
    if ctx.risk_mode == "risk-off" and ctx.time_horizon == "short" and ctx.score < RISK_OFF_SHORT_FLOOR:
        return RiskFilterResult(True, REASON_RISK_OFF_SHORT)
    if ctx.time_horizon == "macro" and ctx.score < MACRO_SCORE_FLOOR:
        return RiskFilterResult(True, REASON_MACRO_FLOOR)
    return RiskFilterResult(False)


def finalize_signal(ctx: SignalContext, trading_pairs: list[str]) -> SignalDecision:
    """Generate, risk-filter, then enforce "no instrument, no trade"."""
    raw = generate_signal(ctx.sentiment, ctx.score, ctx.would_trade)
    risk = apply_risk_filters(ctx)
    if not trading_pairs and raw != NO_TRADE:
        return SignalDecision(NO_TRADE, raw, True, REASON_NO_INSTRUMENT)
    if risk.blocked:
        return SignalDecision(NO_TRADE, raw, True, risk.reason)
    return SignalDecision(raw, raw, False, None)


# ── Source credibility ────────────────────────────────────────────────

@dataclass(frozen=True)
class SourceCredibility:
    tier: int
    score: int
    label: str


DEFAULT_CREDIBILITY = SourceCredibility(tier=3, score=50, label="Unknown")

# Keyed by normalized source identity (see ``normalize_source``).
SOURCE_CREDIBILITY: dict[str, SourceCredibility] = {
    "bloomberg": SourceCredibility(1, 98, "Elite"),
    "reuters": SourceCredibility(1, 97, "Elite"),
    "wsj": SourceCredibility(1, 96, "Elite"),
    "wallstreetjournal": SourceCredibility(1, 96, "Elite"),
    "cnbc": SourceCredibility(1, 92, "Elite"),
    "coindesk": SourceCredibility(2, 88, "Trusted"),
    "fxstreet": SourceCredibility(2, 80, "Trusted"),
    "fxempire": SourceCredibility(2, 78, "Trusted"),
    "investing": SourceCredibility(2, 76, "Trusted"),
}

_SOURCE_SUFFIXES = ("com", "net", "org", "co", "io")


def normalize_source(source: str) -> str:
    """``"Investing.com"`` → ``"investing"``, ``"www.Reuters.com"`` → ``"reuters"``."""
    s = (source or "").strip().lower()
    s = re.sub(r"^https?://", "", s)
    s = s.split("/")[0]
    parts = [p for p in re.split(r"[.\s]+", s) if p and p != "www"]
    while len(parts) > 1 and parts[-1] in _SOURCE_SUFFIXES:
        parts.pop()
    return re.sub(r"[^a-z0-9]", "", "".join(parts))


def source_credibility(source: str) -> SourceCredibility:
    return SOURCE_CREDIBILITY.get(normalize_source(source), DEFAULT_CREDIBILITY)


# ── Misc helpers shared by the writer ─────────────────────────────────

_CRYPTO_PAIRS = {"BTC", "ETH", "SOL", "XRP", "BNB", "DOGE", "ADA", "AVAX", "LINK"}


def clamp_score(score: object, fallback: int) -> int:
    if isinstance(score, bool) or not isinstance(score, (int, float)) or score != score:
        return fallback
    return int(min(10, max(0, round(score))))


def build_trading_pairs(assets: Iterable[str]) -> list[str]:
    """Resolve raw asset names into tradable pairs, keeping venue-qualified symbols as-is."""
    pairs: list[str] = []
    for asset in assets:
        if not asset:
            continue
        if ":" in asset:
            pair = asset
        else:
            upper = asset.strip().upper()
            pair = f"{upper}/USDT" if upper in _CRYPTO_PAIRS else upper
        if pair and pair not in pairs:
            pairs.append(pair)
    return pairs


def is_breaking(score: int, credibility: SourceCredibility, published_at: float, now: float | None = None) -> bool:
    age_minutes = ((now if now is not None else time.time()) - published_at) / 60
    return score >= 8 and credibility.tier <= 2 and age_minutes < 60


def horizon_from_trade_type(trade_type: str | None) -> str:
    if trade_type == "swing_trading":
        return "swing"
    if trade_type == "position_trading":
        return "macro"
    return "short"


def impact_label(score: int) -> str:
    if score >= 8:
        return "high"
    if score >= 6:
        return "medium"
    return "low"
