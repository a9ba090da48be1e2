from newsdesk.ingest.feed import NewsFeedClient, NewsItem, canonical_id, external_id_for_url
from newsdesk.ingest.selector import Candidate, select_candidates

__all__ = [
    "Candidate",
    "NewsFeedClient",
    "NewsItem",
    "canonical_id",
    "external_id_for_url",
    "select_candidates",
]
