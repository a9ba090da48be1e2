"""Shared market-data cache backed by the ``market_data_cache`` table.

Rows are keyed by ``(kind, key)`` and written last-writer-wins through a
storage-level upsert, so any number of worker processes can refresh and read
the same entries. Reads ignore ``expires_at`` unless the caller asks for a
fresh value: a stale snapshot is still the best fallback when a provider is
rate-limiting us.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select

from newsdesk.db.database import SessionScope, dialect_insert, get_session
from newsdesk.db.models import MarketDataCacheEntry
from newsdesk.utils import as_utc, utc_now

logger = logging.getLogger(__name__)


@dataclass
class CachedValue:
    kind: str
    key: str
    payload: dict[str, Any]
    source: str
    fetched_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at


def _is_empty(payload: dict[str, Any] | None) -> bool:
    if not payload:
        return True
    return all(v in (None, "", [], {}) for v in payload.values())


class MarketDataCache:
    """Read/write access to cached market snapshots."""

    def __init__(self, session_factory: SessionScope = get_session) -> None:
        self._session = session_factory

    async def get(self, kind: str, key: str) -> CachedValue | None:
        """Latest cached value for ``(kind, key)`` regardless of staleness."""
        async with self._session() as session:
            row = (
                await session.execute(
                    select(MarketDataCacheEntry).where(
                        MarketDataCacheEntry.kind == kind,
                        MarketDataCacheEntry.key == key,
                    )
                )
            ).scalar_one_or_none()
        if row is None:
            return None
        payload = dict(row.payload or {})
        return CachedValue(
            kind=row.kind,
            key=row.key,
            payload=payload,
            source=row.source,
            fetched_at=as_utc(row.fetched_at),
            expires_at=as_utc(row.expires_at),
        )

    async def get_fresh(self, kind: str, key: str) -> CachedValue | None:
        cached = await self.get(kind, key)
        if cached is None or cached.is_expired():
            return None
        return cached

    async def put(
        self,
        kind: str,
        key: str,
        payload: dict[str, Any],
        *,
        source: str,
        ttl_seconds: int,
        price: float | None = None,
        change: float | None = None,
        change_percent: float | None = None,
    ) -> bool:
        """Upsert a snapshot. Empty payloads are refused and never overwrite an entry."""
        if _is_empty(payload):
            logger.debug("[md-cache] refusing empty payload for %s:%s", kind, key)
            return False

        now = utc_now()
        values = {
            "kind": kind,
            "key": key,
            "price": price,
            "change": change,
            "change_percent": change_percent,
            "payload": payload,
            "source": source,
            "fetched_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
        }
        async with self._session() as session:
            stmt = dialect_insert(session, MarketDataCacheEntry).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["kind", "key"],
                set_={k: stmt.excluded[k] for k in values if k not in ("kind", "key")},
            )
            await session.execute(stmt)
        return True
