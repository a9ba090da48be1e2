"""Structured output schemas for the classification and decision stages.

Model output is validated here instead of trusted: anything that fails
validation surfaces as ``StageParseError`` in the orchestrator.
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from newsdesk.errors import StageParseError
from newsdesk.signals.generator import clamp_score


# ── Stage A: classification plan ──────────────────────────────────────

class MarketPriceRequest(BaseModel):
    symbol: str
    type: str = "equity"
    reason: str = ""


class TimeWindow(BaseModel):
    period: str
    reason: str = ""


class HistoricalComparable(BaseModel):
    event: str
    date: str = ""
    relevance: str = ""


class RequiredData(BaseModel):
    market_prices: list[MarketPriceRequest] = Field(default_factory=list)
    macro_inputs: list[str] = Field(default_factory=list)
    time_windows: list[TimeWindow] = Field(default_factory=list)
    positioning_proxies: list[str] = Field(default_factory=list)
    historical_comparables: list[HistoricalComparable] = Field(default_factory=list)


class ClassificationPlan(BaseModel):
    title: str = ""
    category: str = "general"
    should_move_markets: bool = True
    reasoning: str = ""
    affected_assets: list[str] = Field(default_factory=list)
    required_data: RequiredData = Field(default_factory=RequiredData)

    @field_validator("category", mode="before")
    @classmethod
    def _lower_category(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) and v.strip() else "general"

    @field_validator("affected_assets", mode="before")
    @classmethod
    def _clean_assets(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        return [a.strip() for a in v if isinstance(a, str) and a.strip()]


# ── Stage C: trade decision ───────────────────────────────────────────

class Position(BaseModel):
    asset: str
    direction: Literal["BUY", "SELL"]
    confidence: float = Field(0.0, ge=0, le=100)
    trade_type: str = "day_trading"
    reasoning: str = ""

    @field_validator("direction", mode="before")
    @classmethod
    def _upper_direction(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v


class TradeDecision(BaseModel):
    trade_decision: Literal["TRADE", "NO TRADE"]
    conviction: int = 0
    importance_score: int = 5
    sentiment: Literal["bullish", "bearish", "neutral"] | None = None
    category: str | None = None
    market_regime: str = "neutral"
    risk_mode: Literal["risk-on", "risk-off", "neutral"] = "neutral"
    positions: list[Position] = Field(default_factory=list)
    main_risks: list[str] = Field(default_factory=list)
    overall_assessment: str = ""
    data_gaps: list[str] = Field(default_factory=list)

    @field_validator("trade_decision", mode="before")
    @classmethod
    def _normalize_decision(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper().replace("_", " ")
        return v

    @field_validator("conviction", mode="before")
    @classmethod
    def _clamp_conviction(cls, v: Any) -> int:
        return clamp_score(v, 0)

    @field_validator("importance_score", mode="before")
    @classmethod
    def _clamp_importance(cls, v: Any) -> int:
        return clamp_score(v, 5)

    @field_validator("risk_mode", mode="before")
    @classmethod
    def _normalize_risk_mode(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return "neutral"
        s = v.strip().lower().replace("_", "-").replace(" ", "-")
        return s if s in ("risk-on", "risk-off") else "neutral"

    @field_validator("sentiment", mode="before")
    @classmethod
    def _lower_sentiment(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _derive_sentiment(self) -> "TradeDecision":
        # Direction of the lead position wins when the model omitted sentiment.
        if self.sentiment is None:
            if self.positions:
                self.sentiment = "bullish" if self.positions[0].direction == "BUY" else "bearish"
            else:
                self.sentiment = "neutral"
        return self

    @property
    def would_trade(self) -> bool:
        return self.trade_decision == "TRADE"


# ── decoding ──────────────────────────────────────────────────────────

def _extract_object(raw: str) -> dict[str, Any] | None:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", raw, re.DOTALL)
        if not match:
            return None
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


def parse_model_output(stage: str, raw: str, schema: type[BaseModel]) -> Any:
    """Decode a JSON-mode response into *schema* or raise ``StageParseError``."""
    data = _extract_object(raw or "")
    if data is None:
        raise StageParseError(stage, "response is not a JSON object")
    try:
        return schema.model_validate(data)
    except ValidationError as exc:
        raise StageParseError(stage, f"schema validation failed: {exc.error_count()} errors") from exc
