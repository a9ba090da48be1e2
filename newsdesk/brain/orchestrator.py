"""AnalysisOrchestrator: classification → enrichment → decision for one news item.

Stages run strictly in order, and an item the classifier marks as not
market-moving stops after the first one. Each LLM stage is bounded by
``stage_timeout_seconds``; any ``StageError`` aborts only the current item and
propagates to the worker, which counts it and leaves the item's lock to expire.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from newsdesk.brain.enrichment import EnrichedData, plan_requests
from newsdesk.brain.prompts import CLASSIFIER_PROMPT, DECIDER_PROMPT
from newsdesk.brain.schemas import ClassificationPlan, TradeDecision, parse_model_output
from newsdesk.config import get_settings
from newsdesk.db.database import SessionScope, get_session
from newsdesk.errors import StageError, StageTimeoutError
from newsdesk.llm_client import LLMClient, summarize_costs
from newsdesk.marketdata.gateway import MarketDataGateway
from newsdesk.signals.memory import PositionMemoryEntry, build_position_memory, normalize_asset_key

if TYPE_CHECKING:
    from newsdesk.ingest.feed import NewsItem

logger = logging.getLogger(__name__)

PIPELINE_VERSION = "3-stage-v1"

# Words in a claimed data gap that pin it to a particular data kind.
_GAP_KIND_HINTS: dict[str, tuple[str, ...]] = {
    "funding_rate": ("funding",),
    "open_interest": ("open interest",),
    "candles": ("candle", "ohlc", "price history", "intraday"),
    "treasury_yield": ("yield", "treasury"),
    "positioning": ("cot", "positioning", "commitment"),
    "fundamentals": ("fundamental", "earnings", "valuation", "p/e"),
    "quote": ("price", "quote"),
}


@dataclass
class AnalysisOutcome:
    plan: ClassificationPlan
    enriched: EnrichedData
    decision: TradeDecision
    memory: dict[str, PositionMemoryEntry] = field(default_factory=dict)
    consistency_flags: list[dict[str, Any]] = field(default_factory=list)
    timings_ms: dict[str, int] = field(default_factory=dict)
    costs: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def short_circuited(self) -> bool:
        return not self.plan.should_move_markets

    def payload(self, feed_assets: list[str] | None = None) -> dict[str, Any]:
        """Nested analysis payload stored on the record."""
        return {
            "meta": {
                "pipeline": PIPELINE_VERSION,
                "include_in_position_history": True,
                "feed_assets": list(feed_assets or []),
                "duration_ms": sum(self.timings_ms.values()),
                "short_circuited": self.short_circuited,
            },
            "classification": self.plan.model_dump(),
            "enrichment": self.enriched.as_dict(),
            "provenance": self.enriched.provenance(),
            "decision": self.decision.model_dump(),
            "position_memory": {k: v.as_dict() for k, v in self.memory.items()},
            "consistency_flags": list(self.consistency_flags),
            "timings_ms": dict(self.timings_ms),
            "costs": summarize_costs(self.costs),
        }


def _gap_matches(gap: str, kind: str, key: str) -> bool:
    lowered = gap.strip().lower()
    if lowered == f"{kind}:{key}".lower():
        return True
    gap_key = normalize_asset_key(gap)
    key_norm = normalize_asset_key(key)
    candidates = {key_norm}
    if key_norm.endswith("USDT") and len(key_norm) > 4:
        candidates.add(key_norm[:-4])
    if not any(len(c) >= 2 and c in gap_key for c in candidates):
        return False
    hinted = {k for k, words in _GAP_KIND_HINTS.items() if any(w in lowered for w in words)}
    return not hinted or kind in hinted


def grade_consistency(
    decision: TradeDecision, enriched: EnrichedData
) -> tuple[TradeDecision, list[dict[str, Any]]]:
    """Drop false data-gap claims and downgrade a TRADE that names no position."""
    flags: list[dict[str, Any]] = []
    supplied = enriched.supplied()
    kept_gaps: list[str] = []
    for gap in decision.data_gaps:
        hit = next((p for p in supplied if _gap_matches(gap, p.kind, p.key)), None)
        if hit is None:
            kept_gaps.append(gap)
        else:
            flags.append({"type": "false_data_gap", "gap": gap, "supplied": f"{hit.kind}:{hit.key}"})

    update: dict[str, Any] = {"data_gaps": kept_gaps}
    if decision.trade_decision == "TRADE" and not decision.positions:
        update["trade_decision"] = "NO TRADE"
        flags.append({"type": "trade_without_positions"})
    return decision.model_copy(update=update), flags


def not_market_moving(plan: ClassificationPlan) -> TradeDecision:
    """Decision recorded when the classifier says the item will not move markets."""
    return TradeDecision(
        trade_decision="NO TRADE",
        conviction=0,
        importance_score=1,
        sentiment="neutral",
        category=plan.category,
        main_risks=["News not expected to move markets"],
        overall_assessment=plan.reasoning or "Classified as not market-moving.",
    )


class AnalysisOrchestrator:
    """Runs the three analysis stages for a single news item."""

    def __init__(
        self,
        classifier: LLMClient,
        decider: LLMClient,
        gateway: MarketDataGateway,
        session_factory: SessionScope = get_session,
        *,
        stage_timeout: float | None = None,
        memory_days: int | None = None,
    ) -> None:
        settings = get_settings()
        self._classifier = classifier
        self._decider = decider
        self._gateway = gateway
        self._session = session_factory
        self._stage_timeout = stage_timeout or settings.stage_timeout_seconds
        self._memory_days = memory_days or settings.position_memory_days

        self.items_analyzed = 0
        self.stage_failures: dict[str, int] = {"classify": 0, "enrich": 0, "decide": 0}
        self.consistency_flags_raised = 0
        self.short_circuits = 0
        self.spent_usd = 0.0

    async def _call_llm(
        self,
        stage: str,
        client: Any,
        system_prompt: str,
        user_prompt: str,
        usage: dict[str, dict[str, Any]] | None = None,
    ) -> str:
        try:
            response = await asyncio.wait_for(
                client.complete(system_prompt, user_prompt, json_mode=True),
                timeout=self._stage_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StageTimeoutError(stage, f"no response within {self._stage_timeout:.0f}s") from exc
        except StageError:
            raise
        except Exception as exc:
            raise StageError(stage, f"llm call failed: {exc}") from exc

        self.spent_usd += response.cost_usd
        if usage is not None:
            usage[stage] = response.usage()
        return response.text

    # ── Stage A ───────────────────────────────────────────────────────

    async def classify(self, item: NewsItem, usage: dict[str, dict[str, Any]] | None = None) -> ClassificationPlan:
        user_prompt = f"Headline: {item.title}\n\n{item.body}"
        raw = await self._call_llm("classify", self._classifier, CLASSIFIER_PROMPT, user_prompt, usage)
        return parse_model_output("classify", raw, ClassificationPlan)

    # ── Stage B ───────────────────────────────────────────────────────

    async def enrich(self, plan: ClassificationPlan) -> EnrichedData:
        requests = plan_requests(plan)
        if not requests:
            return EnrichedData()
        points = await self._gateway.fetch_many(requests)
        enriched = EnrichedData.from_points(points)
        logger.debug("[orchestrator] enrichment %s", enriched.provenance())
        return enriched

    async def load_memory(self, assets: list[str]) -> dict[str, PositionMemoryEntry]:
        if not assets:
            return {}
        try:
            async with self._session() as session:
                return await build_position_memory(session, assets, lookback_days=self._memory_days)
        except Exception:
            logger.warning("[orchestrator] position memory unavailable", exc_info=True)
            return {}

    # ── Stage C ───────────────────────────────────────────────────────

    async def decide(
        self,
        item: NewsItem,
        plan: ClassificationPlan,
        enriched: EnrichedData,
        memory: dict[str, PositionMemoryEntry] | None = None,
        usage: dict[str, dict[str, Any]] | None = None,
    ) -> tuple[TradeDecision, list[dict[str, Any]]]:
        context = {
            "news": {"title": item.title, "body": item.body, "source": item.source},
            "plan": plan.model_dump(),
            "market_data": enriched.for_prompt(),
            "position_memory": {k: v.as_dict() for k, v in (memory or {}).items()},
        }
        user_prompt = json.dumps(context, indent=2, default=str)
        raw = await self._call_llm("decide", self._decider, DECIDER_PROMPT, user_prompt, usage)
        decision = parse_model_output("decide", raw, TradeDecision)
        return grade_consistency(decision, enriched)

    # ── full run ──────────────────────────────────────────────────────

    async def analyze(self, item: NewsItem) -> AnalysisOutcome:
        timings: dict[str, int] = {}
        usage: dict[str, dict[str, Any]] = {}
        stage = "classify"
        try:
            t0 = time.monotonic()
            plan = await self.classify(item, usage)
            timings["classify"] = int((time.monotonic() - t0) * 1000)

            if not plan.should_move_markets:
                self.items_analyzed += 1
                self.short_circuits += 1
                logger.info("[orchestrator] %s not market-moving, skipping enrichment and decision", item.news_id)
                return AnalysisOutcome(plan, EnrichedData(), not_market_moving(plan), timings_ms=timings, costs=usage)

            stage = "enrich"
            t0 = time.monotonic()
            enriched = await self.enrich(plan)
            memory = await self.load_memory(list(dict.fromkeys(plan.affected_assets + list(item.tickers))))
            timings["enrich"] = int((time.monotonic() - t0) * 1000)

            stage = "decide"
            t0 = time.monotonic()
            decision, flags = await self.decide(item, plan, enriched, memory, usage)
            timings["decide"] = int((time.monotonic() - t0) * 1000)
        except StageError:
            self.stage_failures[stage] += 1
            raise

        self.items_analyzed += 1
        self.consistency_flags_raised += len(flags)
        if flags:
            logger.info("[orchestrator] %s consistency flags: %s", item.news_id, flags)
        return AnalysisOutcome(plan, enriched, decision, memory, flags, timings, usage)

    async def close(self) -> None:
        await self._gateway.close()

    def get_stats(self) -> dict[str, Any]:
        return {
            "items_analyzed": self.items_analyzed,
            "stage_failures": dict(self.stage_failures),
            "consistency_flags": self.consistency_flags_raised,
            "short_circuits": self.short_circuits,
            "spent_usd": round(self.spent_usd, 4),
            "gateway": self._gateway.get_stats(),
        }
