from __future__ import annotations

import pytest

from newsdesk.signals.generator import (
    BUY,
    NO_TRADE,
    REASON_MACRO_FLOOR,
    REASON_NO_INSTRUMENT,
    REASON_RISK_OFF_SHORT,
    SELL,
    STRONG_BUY,
    STRONG_SELL,
    SignalContext,
    apply_risk_filters,
    build_trading_pairs,
    clamp_score,
    finalize_signal,
    generate_signal,
    horizon_from_trade_type,
    impact_label,
    is_breaking,
    normalize_source,
    source_credibility,
)


@pytest.mark.parametrize(
    "sentiment,score,expected",
    [
        ("bullish", 8, STRONG_BUY),
        ("bullish", 10, STRONG_BUY),
        ("bullish", 7, BUY),
        ("bullish", 6, BUY),
        ("bullish", 5, NO_TRADE),
        ("bearish", 8, STRONG_SELL),
        ("bearish", 6, SELL),
        ("bearish", 5, NO_TRADE),
        ("neutral", 9, NO_TRADE),
    ],
)
def test_generate_signal_thresholds_are_inclusive(sentiment: str, score: int, expected: str) -> None:
    assert generate_signal(sentiment, score, would_trade=True) == expected


def test_generate_signal_respects_would_trade() -> None:
    assert generate_signal("bullish", 10, would_trade=False) == NO_TRADE


def test_generate_signal_is_deterministic() -> None:
    results = {generate_signal("bearish", 7, True) for _ in range(50)}
    assert results == {SELL}


def test_macro_floor_blocks_six_but_not_seven() -> None:
    six = apply_risk_filters(SignalContext("bullish", 6, True, time_horizon="macro"))
    seven = apply_risk_filters(SignalContext("bullish", 7, True, time_horizon="macro"))
    assert six.blocked is True and six.reason == REASON_MACRO_FLOOR
    assert seven.blocked is False and seven.reason is None


def test_risk_off_short_horizon_floor() -> None:
    low = apply_risk_filters(SignalContext("bearish", 5, True, time_horizon="short", risk_mode="risk-off"))
    ok = apply_risk_filters(SignalContext("bearish", 6, True, time_horizon="short", risk_mode="risk-off"))
    swing = apply_risk_filters(SignalContext("bearish", 5, True, time_horizon="swing", risk_mode="risk-off"))
    assert low.blocked and low.reason == REASON_RISK_OFF_SHORT
    assert not ok.blocked
    assert not swing.blocked


def test_finalize_signal_passes_clean_trade() -> None:
    decision = finalize_signal(SignalContext("bullish", 8, True), ["BTC/USDT"])
    assert decision.signal == STRONG_BUY
    assert decision.raw_signal == STRONG_BUY
    assert decision.blocked is False
    assert decision.reason is None


def test_finalize_signal_macro_suppression_keeps_raw_signal() -> None:
    decision = finalize_signal(SignalContext("bullish", 6, True, time_horizon="macro"), ["EURUSD"])
    assert decision.signal == NO_TRADE
    assert decision.raw_signal == BUY
    assert decision.blocked is True
    assert decision.reason == REASON_MACRO_FLOOR


def test_no_instrument_forces_no_trade_regardless_of_score() -> None:
    decision = finalize_signal(SignalContext("bullish", 10, True), [])
    assert decision.signal == NO_TRADE
    assert decision.raw_signal == STRONG_BUY
    assert decision.blocked is True
    assert decision.reason == REASON_NO_INSTRUMENT


def test_no_instrument_without_raw_signal_is_not_a_block() -> None:
    decision = finalize_signal(SignalContext("neutral", 3, False), [])
    assert decision.signal == NO_TRADE
    assert decision.blocked is False


@pytest.mark.parametrize(
    "source,tier,score,label",
    [
        ("Reuters", 1, 97, "Elite"),
        ("www.bloomberg.com", 1, 98, "Elite"),
        ("Investing.com", 2, 76, "Trusted"),
        ("https://www.fxstreet.com/news", 2, 80, "Trusted"),
        ("CoinDesk", 2, 88, "Trusted"),
        ("Some Blog", 3, 50, "Unknown"),
        ("", 3, 50, "Unknown"),
    ],
)
def test_source_credibility_lookup(source: str, tier: int, score: int, label: str) -> None:
    cred = source_credibility(source)
    assert (cred.tier, cred.score, cred.label) == (tier, score, label)


def test_normalize_source_strips_scheme_www_and_suffix() -> None:
    assert normalize_source("https://www.Reuters.com/markets") == "reuters"
    assert normalize_source("Investing.com") == "investing"


@pytest.mark.parametrize(
    "raw,expected",
    [(7.4, 7), (7.6, 8), (-3, 0), (42, 10), (None, 5), ("8", 5), (float("nan"), 5), (True, 5)],
)
def test_clamp_score(raw, expected) -> None:  # noqa: ANN001
    assert clamp_score(raw, 5) == expected


def test_build_trading_pairs_maps_crypto_majors_and_keeps_venue_symbols() -> None:
    pairs = build_trading_pairs(["btc", "ETH", "BINANCE:SOLUSDT", "AAPL", "BTC", ""])
    assert pairs == ["BTC/USDT", "ETH/USDT", "BINANCE:SOLUSDT", "AAPL"]


def test_is_breaking_requires_score_tier_and_freshness() -> None:
    now = 1_700_000_000.0
    elite = source_credibility("Reuters")
    unknown = source_credibility("random")
    assert is_breaking(8, elite, now - 30 * 60, now) is True
    assert is_breaking(7, elite, now - 30 * 60, now) is False
    assert is_breaking(9, unknown, now - 30 * 60, now) is False
    assert is_breaking(9, elite, now - 61 * 60, now) is False


@pytest.mark.parametrize(
    "trade_type,horizon",
    [("scalping", "short"), ("day_trading", "short"), ("swing_trading", "swing"), ("position_trading", "macro"), (None, "short")],
)
def test_horizon_from_trade_type(trade_type, horizon) -> None:  # noqa: ANN001
    assert horizon_from_trade_type(trade_type) == horizon


def test_impact_label() -> None:
    assert [impact_label(s) for s in (9, 8, 7, 6, 5)] == ["high", "high", "medium", "medium", "low"]
