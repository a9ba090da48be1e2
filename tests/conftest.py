from __future__ import annotations

import time

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from newsdesk.db.database import init_db, session_scope
from newsdesk.ingest.feed import NewsItem, canonical_id, external_id_for_url


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """A real SQL store: file-backed SQLite so concurrent sessions see each other."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'newsdesk.db'}", poolclass=NullPool)
    await init_db(engine)
    yield session_scope(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


@pytest.fixture
def make_item():
    def _make(
        url: str,
        title: str = "Bitcoin rallies on ETF inflows",
        *,
        age_minutes: float = 5,
        source: str = "Reuters",
        tickers: tuple[str, ...] = ("BTCUSD",),
    ) -> NewsItem:
        ext = external_id_for_url(url)
        return NewsItem(
            external_id=ext,
            news_id=canonical_id(ext),
            title=title,
            body=f"{title}. More detail.",
            source=source,
            url=url,
            published_at=time.time() - age_minutes * 60,
            category="crypto",
            tickers=tickers,
        )

    return _make
