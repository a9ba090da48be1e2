"""Per-item analysis leases stored in ``news_analysis_locks``.

Mutual exclusion comes entirely from the unique constraint on ``news_id``:
the first insert wins, every concurrent insert for the same id fails with an
integrity error and reports ``LOCKED``. Expired leases are reclaimed by the
next acquirer. Locks of failed items are deliberately left to expire.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from newsdesk.config import get_settings
from newsdesk.db.database import SessionScope, get_session
from newsdesk.db.models import AnalysisLock
from newsdesk.utils import utc_now

logger = logging.getLogger(__name__)

ACQUIRED = "ACQUIRED"
LOCKED = "LOCKED"
DB_ERROR = "DB_ERROR"


@dataclass(frozen=True)
class LockResult:
    status: str
    news_id: str
    holder_id: str | None = None
    expires_at: datetime | None = None
    error: str | None = None

    @property
    def acquired(self) -> bool:
        return self.status == ACQUIRED


class LockManager:
    """Acquire and release TTL leases keyed by news id."""

    def __init__(self, session_factory: SessionScope = get_session, ttl_seconds: int | None = None) -> None:
        self._session = session_factory
        self._ttl = ttl_seconds or get_settings().lock_ttl_seconds
        self.acquired = 0
        self.contended = 0
        self.reclaimed = 0
        self.db_errors = 0

    async def _reclaim_expired(self, news_id: str, now: datetime) -> int:
        """Delete an expired lease for *news_id*; return its attempt count (0 if none)."""
        try:
            async with self._session() as session:
                stale = (
                    await session.execute(
                        select(AnalysisLock.id, AnalysisLock.attempts).where(
                            AnalysisLock.news_id == news_id,
                            AnalysisLock.expires_at < now,
                        )
                    )
                ).first()
                if stale is None:
                    return 0
                await session.execute(
                    delete(AnalysisLock).where(AnalysisLock.id == stale.id, AnalysisLock.expires_at < now)
                )
            self.reclaimed += 1
            logger.info("[locks] reclaimed expired lease for %s (attempt %d)", news_id, stale.attempts)
            return stale.attempts
        except Exception:
            logger.warning("[locks] expired-lease cleanup failed for %s", news_id, exc_info=True)
            return 0

    async def acquire(self, news_id: str, worker_id: str) -> LockResult:
        now = utc_now()
        previous_attempts = await self._reclaim_expired(news_id, now)
        expires_at = now + timedelta(seconds=self._ttl)
        try:
            async with self._session() as session:
                session.add(
                    AnalysisLock(
                        news_id=news_id,
                        holder_id=worker_id,
                        acquired_at=now,
                        expires_at=expires_at,
                        attempts=previous_attempts + 1,
                    )
                )
        except IntegrityError:
            self.contended += 1
            logger.debug("[locks] %s already held", news_id)
            return LockResult(LOCKED, news_id)
        except Exception as exc:
            self.db_errors += 1
            logger.error("[locks] acquire failed for %s: %s", news_id, exc)
            return LockResult(DB_ERROR, news_id, error=str(exc))

        self.acquired += 1
        return LockResult(ACQUIRED, news_id, holder_id=worker_id, expires_at=expires_at)

    async def release(self, news_id: str, worker_id: str) -> bool:
        """Remove the lease only if *worker_id* still holds it."""
        try:
            async with self._session() as session:
                result = await session.execute(
                    delete(AnalysisLock).where(
                        AnalysisLock.news_id == news_id,
                        AnalysisLock.holder_id == worker_id,
                    )
                )
                removed = (result.rowcount or 0) > 0
        except Exception:
            logger.warning("[locks] release failed for %s", news_id, exc_info=True)
            return False
        if not removed:
            logger.debug("[locks] %s not held by %s, nothing released", news_id, worker_id)
        return removed

    def get_stats(self) -> dict[str, int]:
        return {
            "acquired": self.acquired,
            "contended": self.contended,
            "reclaimed": self.reclaimed,
            "db_errors": self.db_errors,
        }
