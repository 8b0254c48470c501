"""FeedCache — last merged feed per (identity, partition set), with a TTL.

Entries are frozen values; every mutation swaps in a new entry, so a reader
sees either the old or the new state and never a half-applied append.

Besides plain expiry, three things make an entry miss:

- ``invalidate(key, reason)`` marks it stale.
- ``note_local_write()`` opens a read-your-own-write window. Entries fetched
  before the window closes miss, so the read after a local write refetches
  even when the remote store is still replicating.
- The persistent ``forceRefresh`` flag in the LocalStore, set by another
  session or process after a write. The next ``get`` consumes it once and
  drops every entry.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from nippo_feed.store.local import FORCE_REFRESH_KEY, LocalStore
from nippo_feed.timeline.base import TimelineItem

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 30_000
DEFAULT_WRITE_GRACE_MS = 3_000


class _Miss:
    def __repr__(self):
        return "MISS"

    def __bool__(self):
        return False


MISS = _Miss()


def now_ms() -> int:
    return int(time.time() * 1000)


def feed_key(identity: str, partition_ids: Iterable[str]) -> str:
    return f"{identity}|{','.join(sorted(set(partition_ids)))}"


@dataclass(frozen=True)
class CacheEntry:
    items: tuple[TimelineItem, ...]
    fetched_at_ms: int
    ttl_ms: int
    invalidated: bool = False
    cursor: Optional[Any] = None
    has_more: bool = True
    write_seq: int = 0

    def is_fresh(self, at_ms: int) -> bool:
        return not self.invalidated and at_ms - self.fetched_at_ms < self.ttl_ms


class FeedCache:
    def __init__(
        self,
        local: LocalStore | None = None,
        ttl_ms: int = DEFAULT_TTL_MS,
        write_grace_ms: int = DEFAULT_WRITE_GRACE_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self._local = local
        self.ttl_ms = ttl_ms
        self.write_grace_ms = write_grace_ms
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._dirty_until_ms = 0
        self._write_seq = 0

    def _consume_force_refresh(self):
        if self._local is None or not self._local.has(FORCE_REFRESH_KEY):
            return
        self._local.delete(FORCE_REFRESH_KEY)
        logger.info("Force-refresh flag found, invalidating %d cache entries", len(self._entries))
        for key in list(self._entries):
            self.invalidate(key, "force refresh")

    def get(self, key: str) -> tuple[TimelineItem, ...] | _Miss:
        """Cached items for ``key`` if fresh, else MISS."""
        self._consume_force_refresh()
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache miss for %s (empty)", key)
            return MISS

        at = self._clock()
        if not entry.is_fresh(at):
            logger.debug("Cache miss for %s (age %dms, invalidated=%s)",
                         key, at - entry.fetched_at_ms, entry.invalidated)
            return MISS
        if entry.fetched_at_ms < self._dirty_until_ms:
            logger.debug("Cache miss for %s (inside local write window)", key)
            return MISS

        logger.debug("Cache hit for %s (%d items)", key, len(entry.items))
        return entry.items

    def needs_reload(self, key: str) -> bool:
        """Whether ``key`` must be refetched from the first page before paging on.

        True when there is no entry, when it was invalidated (including by a
        consumed refresh flag) or when a local write happened after it was
        fetched. Age alone does not count; appending to an old head is fine.
        """
        self._consume_force_refresh()
        entry = self._entries.get(key)
        if entry is None or entry.invalidated:
            return True
        if entry.write_seq < self._write_seq:
            logger.debug("Entry %s predates a local write", key)
            return True
        return False

    def peek(self, key: str) -> CacheEntry | None:
        """The entry regardless of freshness, for stale fallbacks and cursors."""
        return self._entries.get(key)

    def put(self, key: str, items: Iterable[TimelineItem], cursor: Any = None, has_more: bool = True):
        self._entries[key] = CacheEntry(
            items=tuple(items),
            fetched_at_ms=self._clock(),
            ttl_ms=self.ttl_ms,
            cursor=cursor,
            has_more=has_more,
            write_seq=self._write_seq,
        )

    def append(self, key: str, items: Iterable[TimelineItem], cursor: Any = None, has_more: bool = True):
        """Replace the items of an existing entry after loading another page.

        The fetch time of the first page is kept, so appending never extends
        how long the head of the feed counts as fresh.
        """
        entry = self._entries.get(key)
        if entry is None:
            self.put(key, items, cursor, has_more)
            return
        self._entries[key] = dataclasses.replace(
            entry, items=tuple(items), cursor=cursor, has_more=has_more,
        )

    def invalidate(self, key: str, reason: str = ""):
        entry = self._entries.get(key)
        if entry is None or entry.invalidated:
            return
        logger.debug("Invalidating %s: %s", key, reason or "unspecified")
        self._entries[key] = dataclasses.replace(entry, invalidated=True)

    def note_local_write(self):
        self._dirty_until_ms = max(self._dirty_until_ms, self._clock() + self.write_grace_ms)
        self._write_seq += 1

    def request_refresh(self):
        """Set the persistent flag so other sessions refetch on their next read."""
        if self._local is not None:
            self._local.set(FORCE_REFRESH_KEY, self._clock())

    def clear(self):
        self._entries = {}
