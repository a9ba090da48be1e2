"""Storage layer: analysis records, leases, entry prices and the market-data cache."""

from newsdesk.db.database import get_session, init_db, session_scope
from newsdesk.db.models import (
    AnalysisLock,
    AnalysisRecord,
    Base,
    MarketDataCacheEntry,
    SignalPerformance,
)

__all__ = [
    "AnalysisLock",
    "AnalysisRecord",
    "Base",
    "MarketDataCacheEntry",
    "SignalPerformance",
    "get_session",
    "init_db",
    "session_scope",
]
