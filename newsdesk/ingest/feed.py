"""News feed client: pulls market news from FMP and maps it to ``NewsItem``."""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from newsdesk.config import get_settings
from newsdesk.errors import FatalDriverError, TransientUpstreamError, UpstreamError
from newsdesk.utils import parse_iso, retry

logger = logging.getLogger(__name__)

# (path, category) pairs polled on every run.
FEED_ENDPOINTS: tuple[tuple[str, str], ...] = (
    ("forex", "forex"),
    ("crypto", "crypto"),
    ("stock", "stocks"),
)


@dataclass(frozen=True)
class NewsItem:
    external_id: str
    news_id: str
    title: str
    body: str
    source: str
    url: str
    published_at: float  # epoch seconds
    category: str = "general"
    tickers: tuple[str, ...] = field(default_factory=tuple)


def external_id_for_url(url: str) -> str:
    return "fmp-" + hashlib.md5(url.encode("utf-8")).hexdigest()[:12]


def canonical_id(external_id: str) -> str:
    """Stable storage id for an upstream item.

    Deterministic across processes and restarts. Only 10**8 distinct values
    exist, so two unrelated items can collide.
    """
    digest = hashlib.sha256(external_id.encode("utf-8")).hexdigest()
    return f"fa-{int(digest[:8], 16) % 100_000_000:08d}"


def _to_item(raw: dict[str, Any], category: str) -> NewsItem | None:
    url = (raw.get("url") or "").strip()
    title = (raw.get("title") or "").strip()
    published = raw.get("publishedDate")
    if not url or not title or not published:
        return None
    try:
        published_at = parse_iso(str(published)).timestamp()
    except ValueError:
        logger.debug("[feed] unparseable publishedDate %r", published)
        return None
    ext = external_id_for_url(url)
    symbol = (raw.get("symbol") or "").strip().upper()
    return NewsItem(
        external_id=ext,
        news_id=canonical_id(ext),
        title=title,
        body=(raw.get("text") or "").strip() or title,
        source=raw.get("publisher") or raw.get("site") or "FMP News",
        url=url,
        published_at=published_at,
        category=category,
        tickers=(symbol,) if symbol else (),
    )


class NewsFeedClient:
    """Fetches the forex, crypto and stock news streams."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        limit: int | None = None,
        lookback_hours: int | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.fmp_api_key
        self._base_url = (base_url or settings.fmp_news_base_url).rstrip("/")
        self._limit = limit or settings.fmp_news_limit
        self._lookback_hours = lookback_hours or settings.feed_lookback_hours
        self._client = client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        self._owns_client = client is None

        self.fetch_count = 0
        self.endpoint_errors = 0

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @retry(max_attempts=3, base_delay=0.5, exceptions=(TransientUpstreamError,))
    async def _fetch_endpoint(self, path: str) -> list[dict[str, Any]]:
        try:
            resp = await self._client.get(
                f"{self._base_url}/{path}",
                params={"limit": self._limit, "apikey": self._api_key},
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientUpstreamError("fmp", f"transport error: {exc}") from exc
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientUpstreamError("fmp", f"HTTP {resp.status_code}", status_code=resp.status_code)
        if resp.status_code != 200:
            raise UpstreamError("fmp", f"HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError("fmp", "invalid JSON body") from exc
        return data if isinstance(data, list) else []

    async def fetch(self, now: float | None = None) -> list[NewsItem]:
        """Fetch, dedupe by external id, and drop items outside the lookback window.

        Raises ``FatalDriverError`` only when no endpoint answered at all.
        """
        if not self._api_key:
            raise FatalDriverError("FMP_API_KEY not configured")

        raw_items: list[NewsItem] = []
        answered = 0
        for path, category in FEED_ENDPOINTS:
            try:
                rows = await self._fetch_endpoint(path)
            except UpstreamError as exc:
                self.endpoint_errors += 1
                logger.warning("[feed] %s endpoint failed: %s", path, exc)
                continue
            answered += 1
            for row in rows:
                item = _to_item(row, category)
                if item is not None:
                    raw_items.append(item)
            logger.debug("[feed] %s: %d articles", path, len(rows))

        if answered == 0:
            raise FatalDriverError("every news feed endpoint failed")

        cutoff = (now if now is not None else time.time()) - self._lookback_hours * 3600
        seen: set[str] = set()
        items: list[NewsItem] = []
        for item in raw_items:
            if item.external_id in seen or item.published_at < cutoff:
                continue
            seen.add(item.external_id)
            items.append(item)

        self.fetch_count += 1
        logger.info("[feed] fetched %d raw, %d unique within %dh", len(raw_items), len(items), self._lookback_hours)
        return items

    def get_stats(self) -> dict[str, int]:
        return {"fetch_count": self.fetch_count, "endpoint_errors": self.endpoint_errors}
