"""Market data interfaces for Newsdesk."""

from .cache import CachedValue, MarketDataCache
from .gateway import CACHE_TTL_SECONDS, DataPoint, DataRequest, MarketDataGateway
from .providers import MarketDataProviders

__all__ = [
    "CACHE_TTL_SECONDS",
    "CachedValue",
    "DataPoint",
    "DataRequest",
    "MarketDataCache",
    "MarketDataGateway",
    "MarketDataProviders",
]
