"""MockNewsFeed: a fixed set of fresh headlines for running without FMP."""

from __future__ import annotations

import time

from newsdesk.ingest.feed import NewsItem, canonical_id, external_id_for_url

_HEADLINES = [
    ("Bitcoin climbs as spot ETF inflows hit monthly high", "CoinDesk", "crypto", "BTCUSD"),
    ("ECB signals pause, euro slips against the dollar", "Reuters", "forex", "EURUSD"),
    ("Oil jumps after OPEC+ extends output cuts", "Bloomberg", "stocks", ""),
    ("Nvidia guides above consensus on data-centre demand", "CNBC", "stocks", "NVDA"),
    ("Gold steady ahead of US inflation print", "FXStreet", "forex", "XAUUSD"),
    ("Solana network upgrade goes live without downtime", "Unknown Blog", "crypto", "SOLUSD"),
]


class MockNewsFeed:
    """Same interface as NewsFeedClient."""

    def __init__(self) -> None:
        self.fetch_count = 0

    async def fetch(self, now: float | None = None) -> list[NewsItem]:
        now = now if now is not None else time.time()
        items = []
        for i, (title, source, category, ticker) in enumerate(_HEADLINES):
            url = f"https://mock.newsdesk.local/{i}"
            ext = external_id_for_url(url)
            items.append(
                NewsItem(
                    external_id=ext,
                    news_id=canonical_id(ext),
                    title=title,
                    body=f"{title}. Desk commentary follows.",
                    source=source,
                    url=url,
                    published_at=now - (i + 1) * 240,
                    category=category,
                    tickers=(ticker,) if ticker else (),
                )
            )
        self.fetch_count += 1
        return items

    async def close(self) -> None:
        return None

    def get_stats(self) -> dict[str, int]:
        return {"fetch_count": self.fetch_count, "endpoint_errors": 0}
