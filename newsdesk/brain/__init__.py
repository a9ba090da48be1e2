from newsdesk.brain.enrichment import EnrichedData, plan_requests
from newsdesk.brain.orchestrator import AnalysisOrchestrator, AnalysisOutcome, grade_consistency
from newsdesk.brain.schemas import ClassificationPlan, TradeDecision

__all__ = [
    "AnalysisOrchestrator",
    "AnalysisOutcome",
    "ClassificationPlan",
    "EnrichedData",
    "TradeDecision",
    "grade_consistency",
    "plan_requests",
]
