"""FeedSession — the consumer-facing entry point of the engine.

Ties the loader, name resolver, alert computation, merge and cache together
for one viewer and one set of partitions. Public methods never raise on
network trouble; they return a FeedView whose ``stale``/``partial`` flags say
how complete it is.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from typing import Callable, Iterable

from nippo_feed.config import FeedConfig, load_token
from nippo_feed.engine.cache import MISS, FeedCache, feed_key, now_ms
from nippo_feed.engine.loader import DEFAULT_COLLECTIONS, PaginatedLoader
from nippo_feed.engine.merge import merge
from nippo_feed.engine.names import DisplayNameResolver
from nippo_feed.engine.poller import HighWaterMark, StalenessPoller
from nippo_feed.engine.search import FeedFilter, apply_filters
from nippo_feed.engine.signals import SignalChannel
from nippo_feed.engine.writes import FeedWriter
from nippo_feed.store.firestore import FirestoreRestStore
from nippo_feed.store.local import LocalStore
from nippo_feed.store.remote import POSTS, DocumentStore, ProfileStore
from nippo_feed.timeline.alerts import compute_missing_alerts
from nippo_feed.timeline.base import Alert, Partition, Post, TimelineItem

logger = logging.getLogger(__name__)


@dataclass
class FeedView:
    items: list[TimelineItem] = field(default_factory=list)
    has_more: bool = False
    stale: bool = False
    partial: bool = False
    failed_partitions: list[str] = field(default_factory=list)
    from_cache: bool = False
    skipped: bool = False
    generation: int = 0


class FeedSession:
    """One viewer's feed over a fixed set of partitions.

    Loading never moves the viewer's high-water mark. Call ``mark_seen`` once
    items are actually shown, otherwise the staleness poller keeps treating
    them as new.
    """

    def __init__(
        self,
        identity: str,
        partitions: Iterable[Partition],
        loader: PaginatedLoader,
        cache: FeedCache,
        names: DisplayNameResolver,
        local: LocalStore | None = None,
        page_size: int = 20,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], int] = now_ms,
        compute_alerts: bool = True,
    ):
        self.identity = identity
        self._loader = loader
        self._cache = cache
        self._names = names
        self.page_size = page_size
        self.tz = tz
        self._clock = clock
        self.compute_alerts = compute_alerts
        self.mark = HighWaterMark(local, identity) if local is not None else None
        self._generation = 0
        self._loading = False
        self._set_partitions(partitions)

    def _set_partitions(self, partitions: Iterable[Partition]):
        self.partitions = {p.id: p for p in partitions}
        self.key = feed_key(self.identity, self.partitions)

    @property
    def partition_ids(self) -> list[str]:
        return list(self.partitions)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def loading(self) -> bool:
        return self._loading

    def reset(self, partitions: Iterable[Partition] | None = None):
        """Drop in-flight results and start over, optionally with new partitions."""
        self._generation += 1
        self._cache.invalidate(self.key, "session reset")
        if partitions is not None:
            self._set_partitions(partitions)

    def _current_view(self, **flags) -> FeedView:
        entry = self._cache.peek(self.key)
        if entry is None:
            return FeedView(generation=self._generation, **flags)
        return FeedView(
            items=list(entry.items),
            has_more=entry.has_more,
            generation=self._generation,
            **flags,
        )

    @property
    def items(self) -> list[TimelineItem]:
        entry = self._cache.peek(self.key)
        return list(entry.items) if entry else []

    async def load_first_page(self) -> FeedView:
        cached = self._cache.get(self.key)
        if cached is not MISS:
            return self._current_view(from_cache=True)
        return await self._load(replace=True)

    async def load_next_page(self) -> FeedView:
        if self._cache.needs_reload(self.key):
            # appending to a head that predates a write would keep the old copies
            return await self.refresh()
        entry = self._cache.peek(self.key)
        if entry.cursor is None:
            return await self.load_first_page()
        if not entry.has_more:
            return self._current_view(from_cache=True)
        return await self._load(replace=False)

    async def refresh(self) -> FeedView:
        """Reload from the first page, ignoring the cache."""
        self._cache.invalidate(self.key, "refresh requested")
        return await self._load(replace=True)

    async def _load(self, replace: bool) -> FeedView:
        if self._loading:
            logger.debug("Page load already in flight for %s, skipping", self.key)
            return self._current_view(skipped=True)

        self._loading = True
        generation = self._generation
        try:
            return await self._load_locked(replace, generation)
        finally:
            self._loading = False

    async def _load_locked(self, replace: bool, generation: int) -> FeedView:
        entry = self._cache.peek(self.key)
        cursor = None if replace or entry is None else entry.cursor

        page = await self._loader.fetch_next_page(self.partition_ids, self.page_size, cursor)

        if generation != self._generation:
            logger.debug("Discarding page for superseded request (generation %d)", generation)
            return self._current_view(skipped=True)

        all_failed = bool(self.partitions) and len(page.failed_partitions) == len(self.partitions)
        if all_failed:
            logger.warning("All partitions failed to load; serving cached feed")
            return self._current_view(stale=True, partial=True, failed_partitions=page.failed_partitions)

        kept = [] if replace or entry is None else [i for i in entry.items if not isinstance(i, Alert)]
        items = merge(kept, page.items)

        alerts: list[Alert] = []
        if self.compute_alerts:
            posts = [i for i in items if isinstance(i, Post)]
            alerts = compute_missing_alerts(self.partitions.values(), posts, self._clock(), self.tz)

        new_posts = [i for i in page.items if isinstance(i, Post)]
        identities = [p.author_id for p in new_posts] + [a.user_id for a in alerts]
        names = await self._names.resolve_batch(identities)

        if generation != self._generation:
            logger.debug("Discarding page for superseded request (generation %d)", generation)
            return self._current_view(skipped=True)

        decorated = {item.id: self._decorate(item, names) for item in page.items}
        items = [decorated.get(i.id, i) for i in items]
        items = merge(items, [self._decorate(a, names) for a in alerts])

        if replace or entry is None:
            self._cache.put(self.key, items, page.next_cursor, page.has_more)
        else:
            self._cache.append(self.key, items, page.next_cursor, page.has_more)

        logger.info("Feed %s: %d items after page of %d (has_more=%s)",
                    self.key, len(items), len(page.items), page.has_more)
        return FeedView(
            items=items,
            has_more=page.has_more,
            partial=bool(page.failed_partitions),
            failed_partitions=page.failed_partitions,
            generation=self._generation,
        )

    def _decorate(self, item: TimelineItem, names: dict[str, str]) -> TimelineItem:
        partition = self.partitions.get(item.partition_id or "")
        partition_name = item.partition_name or (partition.name if partition else "")
        if isinstance(item, Post):
            return dataclasses.replace(
                item,
                author_name=names.get(item.author_id or "", item.author_name or self._names.placeholder),
                partition_name=partition_name,
            )
        if isinstance(item, Alert):
            return dataclasses.replace(
                item,
                username=names.get(item.user_id, item.username or self._names.placeholder),
                partition_name=partition_name,
            )
        return dataclasses.replace(item, partition_name=partition_name)

    def search(self, feed_filter: FeedFilter) -> list[TimelineItem]:
        """Filter and rank what is already loaded; never fetches."""
        return apply_filters(self.items, feed_filter, self.tz)

    def mark_seen(self, items: Iterable[TimelineItem] | None = None) -> bool:
        """Record that the viewer has been shown ``items`` (default: everything loaded)."""
        if self.mark is None:
            return False
        times = [i.timestamp_ms for i in (self.items if items is None else items) if i.timestamp_ms is not None]
        return self.mark.advance(max(times)) if times else False


# ══════════════════════════════════════════════════════════════════
# Wiring
# ══════════════════════════════════════════════════════════════════

@dataclass
class FeedRuntime:
    session: FeedSession
    poller: StalenessPoller
    writer: FeedWriter
    channel: SignalChannel
    local: LocalStore


def build_runtime(
    config: FeedConfig,
    identity: str,
    partitions: Iterable[Partition],
    store: DocumentStore | None = None,
    profiles: ProfileStore | None = None,
    local: LocalStore | None = None,
    clock: Callable[[], int] = now_ms,
    display_name: str = "",
) -> FeedRuntime:
    """Build every engine component for one viewer from config."""
    if store is None:
        store = FirestoreRestStore(
            config.project_id, load_token, api_url=config.api_url, timeout=config.fetch_timeout_s,
        )
    if profiles is None:
        profiles = store  # the REST store serves profiles too
    local = local or LocalStore(config.local_db_path)
    partitions = list(partitions)

    collections = DEFAULT_COLLECTIONS if config.include_summaries else (POSTS,)
    loader = PaginatedLoader(
        store,
        collections=collections,
        per_partition_cap=config.per_partition_cap,
        max_concurrent=config.max_concurrent_fetches,
        fetch_timeout_s=config.fetch_timeout_s,
    )
    cache = FeedCache(local, ttl_ms=config.cache_ttl_ms, write_grace_ms=config.write_grace_ms, clock=clock)
    names = DisplayNameResolver(
        profiles, local, own_identity=identity,
        placeholder=config.placeholder_name, lookup_timeout_s=config.fetch_timeout_s,
    )
    session = FeedSession(
        identity, partitions, loader, cache, names, local=local,
        page_size=config.page_size, tz=config.tz, clock=clock,
    )
    channel = SignalChannel()
    poller = StalenessPoller(
        store, local, identity, lambda: session.partition_ids, channel,
        interval_s=config.poll_interval_s, tolerance_ms=config.poll_tolerance_ms,
        timeout_s=config.fetch_timeout_s,
    )
    writer = FeedWriter(store, cache, identity, display_name=display_name, clock=clock)
    return FeedRuntime(session=session, poller=poller, writer=writer, channel=channel, local=local)
