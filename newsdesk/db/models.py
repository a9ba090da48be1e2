"""SQLAlchemy 2.0 async-compatible ORM models for Newsdesk."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on Postgres, plain JSON anywhere else (SQLite in tests). Python None
# is stored as SQL NULL so "payload missing" is queryable with IS NULL.
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


class Base(DeclarativeBase):
    """Shared declarative base for all Newsdesk models."""


# ── Concurrency: per-item analysis lease ──────────────────────────────

class AnalysisLock(Base):
    __tablename__ = "news_analysis_locks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid)
    news_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    holder_id: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_news_analysis_locks_expires", "expires_at"),
    )


# ── Analysis output ───────────────────────────────────────────────────

class AnalysisRecord(Base):
    __tablename__ = "news_analyses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid)
    news_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="general")

    sentiment: Mapped[str] = mapped_column(String(16), nullable=False, default="neutral")  # bullish / bearish / neutral
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    signal: Mapped[str] = mapped_column(String(16), nullable=False, default="NO_TRADE")
    signal_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    block_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    trading_pairs: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    time_horizon: Mapped[str] = mapped_column(String(16), nullable=False, default="short")  # short / swing / macro
    risk_mode: Mapped[str] = mapped_column(String(16), nullable=False, default="neutral")
    would_trade: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ai_analysis: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    is_breaking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_credibility_tier: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    source_credibility_score: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    source_credibility_label: Mapped[str] = mapped_column(String(32), nullable=False, default="Unknown")

    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    analyzed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_news_analyses_published", "published_at"),
        Index("ix_news_analyses_analyzed", "analyzed_at"),
    )


class SignalPerformance(Base):
    """Entry price captured when a tradable signal is first stored."""

    __tablename__ = "signal_performance"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid)
    news_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    signal: Mapped[str] = mapped_column(String(16), nullable=False)
    primary_asset: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_price: Mapped[float] = mapped_column(Float, nullable=False)
    price_provenance: Mapped[str] = mapped_column(String(16), nullable=False, default="live")  # live / cache
    price_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ── Market data cache ─────────────────────────────────────────────────

class MarketDataCacheEntry(Base):
    __tablename__ = "market_data_cache"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=_uuid)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)  # quote / funding_rate / open_interest / candles / macro / treasury_yield / positioning / fundamentals
    key: Mapped[str] = mapped_column(String(128), nullable=False)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    change: Mapped[float | None] = mapped_column(Float, nullable=True)
    change_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("kind", "key", name="uq_market_data_cache_kind_key"),
    )
