"""Feed synchronization engine — paging, merging, caching and search."""

from nippo_feed.engine.cache import MISS, CacheEntry, FeedCache, feed_key
from nippo_feed.engine.feed import FeedRuntime, FeedSession, FeedView, build_runtime
from nippo_feed.engine.loader import FeedPage, PaginatedLoader, PaginationCursor
from nippo_feed.engine.merge import merge
from nippo_feed.engine.names import DisplayNameResolver
from nippo_feed.engine.poller import HighWaterMark, PollOutcome, StalenessPoller
from nippo_feed.engine.search import FeedFilter, apply_filters, parse_keywords, rank, score
from nippo_feed.engine.signals import NewContentSignal, SignalChannel
from nippo_feed.engine.writes import FeedWriter

__all__ = [
    "MISS",
    "CacheEntry",
    "FeedCache",
    "feed_key",
    "FeedRuntime",
    "FeedSession",
    "FeedView",
    "build_runtime",
    "FeedPage",
    "PaginatedLoader",
    "PaginationCursor",
    "merge",
    "DisplayNameResolver",
    "HighWaterMark",
    "PollOutcome",
    "StalenessPoller",
    "FeedFilter",
    "apply_filters",
    "parse_keywords",
    "rank",
    "score",
    "NewContentSignal",
    "SignalChannel",
    "FeedWriter",
]
