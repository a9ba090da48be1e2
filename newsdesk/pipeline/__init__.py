from newsdesk.pipeline.locks import ACQUIRED, DB_ERROR, LOCKED, LockManager, LockResult
from newsdesk.pipeline.writer import INSERTED, SKIPPED, UPDATED, AnalysisWriter, WriteResult, upsert_record

__all__ = [
    "ACQUIRED",
    "DB_ERROR",
    "INSERTED",
    "LOCKED",
    "SKIPPED",
    "UPDATED",
    "AnalysisWriter",
    "LockManager",
    "LockResult",
    "WriteResult",
    "upsert_record",
]
