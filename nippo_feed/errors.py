"""Error taxonomy shared by the feed engine and its store adapters.

Adapters raise these; engine components catch them at their own boundary
and degrade to cached or partial data with a log line.
"""

from __future__ import annotations

from typing import Any, Iterable


class FeedError(Exception):
    """Base class for feed engine errors."""


class TransientFetchError(FeedError):
    """A remote read or write failed in a way that may succeed on retry."""

    def __init__(self, message: str, partition_id: str | None = None):
        super().__init__(message)
        self.partition_id = partition_id


class ProfileNotFoundError(FeedError):
    """The profile store has no usable profile for an identity."""

    def __init__(self, identity: str):
        super().__init__(f"no profile for {identity!r}")
        self.identity = identity


class MalformedTimestampError(FeedError, ValueError):
    def __init__(self, raw: Any, reason: str = "unrecognized timestamp shape"):
        super().__init__(f"{reason}: {raw!r}")
        self.raw = raw


class CacheConsistencyWarning(UserWarning):
    """Duplicate ids showed up while merging pages; later copies were dropped."""

    def __init__(self, duplicate_ids: Iterable[str]):
        self.duplicate_ids = sorted(set(duplicate_ids))
        preview = ", ".join(self.duplicate_ids[:5])
        more = "" if len(self.duplicate_ids) <= 5 else f" (+{len(self.duplicate_ids) - 5} more)"
        super().__init__(f"dropped {len(self.duplicate_ids)} duplicate id(s): {preview}{more}")
