"""Core business logic modules for news relay.

The run coordinator lives in news_relay.core.coordinator and is built by
news_relay.core.factories; both depend on the delivery package, so they are
not re-exported here.
"""

# Result types (allowed for type hints and return values)
from news_relay.core.deduplicator import DedupResult
from news_relay.core.fetcher import FetchResult, FetchStats, RawFeedDocument
from news_relay.core.selector import FixedWindow, SelectionResult, WatermarkBoundary

__all__ = [
    "DedupResult",
    "FetchResult",
    "FetchStats",
    "FixedWindow",
    "RawFeedDocument",
    "SelectionResult",
    "WatermarkBoundary",
]
