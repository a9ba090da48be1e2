"""MockLLMClient: canned classification and decision JSON, no API calls.

Responses are derived from the prompt text with a seeded RNG, so the same news
item always gets the same plan and the same decision.
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
from typing import Any

from newsdesk.brain.prompts import CLASSIFIER_PROMPT, DECIDER_PROMPT
from newsdesk.llm_client import LLMResponse

logger = logging.getLogger(__name__)

# keyword → (asset, asset type, category)
_ASSET_HINTS: list[tuple[tuple[str, ...], str, str, str]] = [
    (("bitcoin", "btc"), "BTCUSDT", "crypto", "crypto"),
    (("ethereum", "ether", "eth "), "ETHUSDT", "crypto", "crypto"),
    (("solana",), "SOLUSDT", "crypto", "crypto"),
    (("euro", "ecb", "eur"), "EURUSD", "forex", "forex"),
    (("yen", "boj", "jpy"), "USDJPY", "forex", "forex"),
    (("gold",), "GOLD", "commodity", "commodity"),
    (("oil", "crude", "opec"), "OIL", "commodity", "commodity"),
    (("fed", "inflation", "cpi", "treasury"), "SPX", "index", "macro"),
    (("apple",), "AAPL", "equity", "company"),
    (("nvidia",), "NVDA", "equity", "company"),
    (("tesla",), "TSLA", "equity", "company"),
]

_TRADE_TYPES = ["scalping", "day_trading", "swing_trading", "position_trading"]

_RISKS = [
    "Headline already priced in",
    "Liquidity thin outside main session",
    "Central bank commentary could reverse the move",
    "Positioning crowded on the same side",
    "Macro data later this week may dominate",
]


def _rng(text: str) -> random.Random:
    return random.Random(int(hashlib.sha256(text.encode("utf-8")).hexdigest()[:12], 16))


def _match_assets(text: str) -> list[tuple[str, str, str]]:
    lowered = text.lower()
    found = [(asset, kind, cat) for keys, asset, kind, cat in _ASSET_HINTS if any(k in lowered for k in keys)]
    return found or [("SPX", "index", "macro")]


class MockLLMClient:
    """Drop-in replacement for LLMClient."""

    def __init__(self, provider: str = "mock", model: str = "mock") -> None:
        self.provider = provider
        self.model = model
        self.calls = 0

    async def complete(self, system_prompt: str, user_prompt: str, json_mode: bool = False) -> LLMResponse:
        self.calls += 1
        if system_prompt == CLASSIFIER_PROMPT:
            text = json.dumps(self._classification(user_prompt))
        elif system_prompt == DECIDER_PROMPT:
            text = json.dumps(self._decision(user_prompt))
        else:
            logger.debug("[mock-llm] unknown prompt, returning empty object")
            text = "{}"
        # rough 4-chars-per-token estimate; mock calls are free
        return LLMResponse(text, self.model, len(system_prompt + user_prompt) // 4, len(text) // 4)

    async def close(self) -> None:
        return None

    def get_stats(self) -> dict[str, Any]:
        return {"model": self.model, "calls": self.calls, "failures": 0, "spent_usd": 0.0}

    def _classification(self, text: str) -> dict[str, Any]:
        rng = _rng(text)
        assets = _match_assets(text)
        headline = text.splitlines()[0].replace("Headline:", "").strip()
        macro_inputs = ["VIX", "DXY"] if assets[0][2] in ("macro", "forex") else ["fear & greed"]
        if assets[0][2] == "macro":
            macro_inputs.append("10Y treasury yield")
        return {
            "title": headline[:120] or "Market update",
            "category": assets[0][2],
            "should_move_markets": rng.random() > 0.3,
            "reasoning": f"News flow touches {', '.join(a for a, _, _ in assets)} directly.",
            "affected_assets": [a for a, _, _ in assets],
            "required_data": {
                "market_prices": [{"symbol": a, "type": k, "reason": "direct exposure"} for a, k, _ in assets],
                "macro_inputs": macro_inputs,
                "time_windows": [{"period": "24h", "reason": "reaction window"}],
                "positioning_proxies": ["bitcoin COT"] if assets[0][1] == "crypto" else [],
                "historical_comparables": [],
            },
        }

    def _decision(self, text: str) -> dict[str, Any]:
        rng = _rng(text)
        try:
            plan = json.loads(text).get("plan") or {}
        except (json.JSONDecodeError, AttributeError):
            plan = {}
        assets = plan.get("affected_assets") or ["SPX"]
        importance = rng.randint(3, 9)
        trade = importance >= 6 and rng.random() > 0.25
        direction = rng.choice(["BUY", "SELL"])
        positions = []
        if trade:
            positions.append({
                "asset": assets[0],
                "direction": direction,
                "confidence": rng.randint(55, 85),
                "trade_type": rng.choice(_TRADE_TYPES),
                "reasoning": f"{direction.title()} bias on {assets[0]} while the story is fresh.",
            })
        return {
            "trade_decision": "TRADE" if trade else "NO TRADE",
            "conviction": importance - 1 if trade else rng.randint(1, 4),
            "importance_score": importance,
            "sentiment": ("bullish" if direction == "BUY" else "bearish") if trade else "neutral",
            "category": plan.get("category") or "general",
            "market_regime": rng.choice(["trending", "ranging", "volatile"]),
            "risk_mode": rng.choice(["risk-on", "risk-off", "neutral"]),
            "positions": positions,
            "main_risks": rng.sample(_RISKS, 2),
            "overall_assessment": "Mock assessment generated without a model.",
            "data_gaps": [],
        }
