from newsdesk.signals.generator import (
    NO_TRADE,
    RiskFilterResult,
    SignalContext,
    SignalDecision,
    SourceCredibility,
    apply_risk_filters,
    build_trading_pairs,
    clamp_score,
    finalize_signal,
    generate_signal,
    horizon_from_trade_type,
    is_breaking,
    source_credibility,
)
from newsdesk.signals.memory import (
    PositionMemoryEntry,
    build_position_memory,
    flip_risk,
    normalize_asset_key,
)

__all__ = [
    "NO_TRADE",
    "PositionMemoryEntry",
    "RiskFilterResult",
    "SignalContext",
    "SignalDecision",
    "SourceCredibility",
    "apply_risk_filters",
    "build_position_memory",
    "build_trading_pairs",
    "clamp_score",
    "finalize_signal",
    "flip_risk",
    "generate_signal",
    "horizon_from_trade_type",
    "is_breaking",
    "normalize_asset_key",
    "source_credibility",
]
