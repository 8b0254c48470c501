"""Paginated loading across partitions.

Each partition is read as one stream per collection (posts, and meeting
summaries when enabled), newest first. A page is built by fetching one
bounded batch from every live stream, merging the batches in feed order and
taking records from the front until the page is full.

The cursor remembers, per stream, how far its batch was walked in store
order. A batch that came back full may hide older records that were not
fetched yet, so the walk also stops once such a batch is used up; those
records can only be placed after the next fetch. Records whose ids the session already returned are
skipped, which keeps pages monotonic even when a cursor is replayed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from nippo_feed.engine.merge import feed_order_key
from nippo_feed.errors import TransientFetchError
from nippo_feed.store.remote import MEETING_SUMMARIES, POSTS, DocumentStore, StoreRecord
from nippo_feed.timeline.base import TimelineItem, post_from_record, summary_from_record

logger = logging.getLogger(__name__)

DEFAULT_COLLECTIONS = (POSTS, MEETING_SUMMARIES)

# Extra fetch rounds allowed to fill one page after a batch ran dry.
MAX_ROUNDS = 4

StreamKey = tuple[str, str]  # (collection, partition_id)


@dataclass(frozen=True)
class StreamPosition:
    after: Any = None
    exhausted: bool = False


@dataclass(frozen=True)
class PaginationCursor:
    """Opaque resumption token for one feed session.

    All cursors derived from the same first page share ``consumed_ids``.
    """

    positions: dict = field(default_factory=dict)
    has_more: bool = True
    consumed_ids: set = field(default_factory=set, compare=False, repr=False)

    def position(self, stream: StreamKey) -> StreamPosition:
        return self.positions.get(stream) or StreamPosition()


@dataclass
class FeedPage:
    items: list[TimelineItem]
    next_cursor: PaginationCursor
    has_more: bool
    failed_partitions: list[str] = field(default_factory=list)


def item_from_record(collection: str, record: StoreRecord, partition_id: str) -> TimelineItem:
    if collection == MEETING_SUMMARIES:
        return summary_from_record(record.id, record.data, partition_id)
    return post_from_record(record.id, record.data, partition_id)


def _advance(position: StreamPosition, batch: list, walked: set[int], limit: int) -> StreamPosition:
    """Move a stream's position over the walked prefix of its batch.

    The store may order a stream differently from feed order (it sorts raw
    timestamp values by type first), so a record walked out of store order
    does not move the position past unwalked ones before it. Those are
    fetched again; already returned ids are skipped by the consumed ledger.
    Unreadable records never become candidates and are stepped over.
    """
    done = 0
    while done < len(batch) and (batch[done][1] is None or done in walked):
        done += 1
    after = batch[done - 1][0].ref if done else position.after
    return StreamPosition(after=after, exhausted=len(batch) < limit and done == len(batch))


class PaginatedLoader:
    def __init__(
        self,
        store: DocumentStore,
        collections: Sequence[str] = DEFAULT_COLLECTIONS,
        per_partition_cap: int = 20,
        max_concurrent: int = 5,
        fetch_timeout_s: float = 10.0,
    ):
        self._store = store
        self.collections = tuple(collections)
        self.per_partition_cap = per_partition_cap
        self.max_concurrent = max_concurrent
        self.fetch_timeout_s = fetch_timeout_s

    async def _fetch_stream(
        self,
        stream: StreamKey,
        after: Any,
        limit: int,
        semaphore: asyncio.Semaphore,
    ) -> list[tuple[StoreRecord, TimelineItem | None]]:
        """The batch in store order; unreadable records carry None."""
        collection, partition_id = stream
        async with semaphore:
            try:
                page = await asyncio.wait_for(
                    self._store.query_page(collection, partition_id, after=after, limit=limit),
                    timeout=self.fetch_timeout_s,
                )
            except asyncio.TimeoutError as exc:
                raise TransientFetchError(
                    f"{collection} query timed out after {self.fetch_timeout_s}s", partition_id,
                ) from exc

        batch: list[tuple[StoreRecord, TimelineItem | None]] = []
        for record in page.records:
            try:
                item = item_from_record(collection, record, partition_id)
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping unreadable %s record %s: %s", collection, record.id, exc)
                item = None
            batch.append((record, item))
        return batch

    async def fetch_next_page(
        self,
        partition_ids: Iterable[str],
        page_size: int,
        cursor: PaginationCursor | None = None,
    ) -> FeedPage:
        """Fetch the next page of the feed across ``partition_ids``.

        Passing ``cursor=None`` starts a new session. Failing partitions are
        logged and skipped; they stay unexhausted so ``has_more`` remains true.
        """
        partitions = list(dict.fromkeys(partition_ids))
        if cursor is None:
            cursor = PaginationCursor()
        if not partitions or page_size <= 0:
            return FeedPage([], PaginationCursor(cursor.positions, False, cursor.consumed_ids), False)

        consumed = cursor.consumed_ids
        positions: dict[StreamKey, StreamPosition] = dict(cursor.positions)
        streams = [(c, p) for p in partitions for c in self.collections]
        limit = max(1, min(page_size, self.per_partition_cap))
        semaphore = asyncio.Semaphore(self.max_concurrent)
        failed: set[StreamKey] = set()
        page: list[TimelineItem] = []

        for _ in range(MAX_ROUNDS):
            live = [
                s for s in streams
                if s not in failed and not positions.get(s, StreamPosition()).exhausted
            ]
            if not live or len(page) >= page_size:
                break

            results = await asyncio.gather(
                *(self._fetch_stream(s, positions.get(s, StreamPosition()).after, limit, semaphore)
                  for s in live),
                return_exceptions=True,
            )

            batches: dict[StreamKey, list] = {}
            for stream, result in zip(live, results):
                if isinstance(result, BaseException):
                    failed.add(stream)
                    logger.warning("Skipping %s for partition %s: %s", stream[0], stream[1], result)
                    continue
                batches[stream] = result

            candidates = [
                (item, stream, index)
                for stream, batch in batches.items()
                for index, (_, item) in enumerate(batch)
                if item is not None
            ]
            candidates.sort(key=lambda c: feed_order_key(c[0]))
            readable = {s: sum(1 for _, item in batch if item is not None) for s, batch in batches.items()}

            walked: dict[StreamKey, set[int]] = {s: set() for s in batches}
            for item, stream, index in candidates:
                if len(page) >= page_size:
                    break
                walked[stream].add(index)
                if item.id not in consumed:
                    consumed.add(item.id)
                    page.append(item)
                if len(batches[stream]) >= limit and len(walked[stream]) == readable[stream]:
                    # unfetched records of this stream may sort before the next candidate
                    break

            for stream, batch in batches.items():
                positions[stream] = _advance(positions.get(stream, StreamPosition()), batch, walked[stream], limit)

        has_more = not all(positions.get(s, StreamPosition()).exhausted for s in streams)
        failed_partitions = sorted({p for _, p in failed})
        if failed_partitions:
            logger.warning("Page served without %d partition(s): %s",
                           len(failed_partitions), ", ".join(failed_partitions))
        logger.debug("Loaded page of %d items from %d streams (has_more=%s)",
                     len(page), len(streams), has_more)

        return FeedPage(
            items=page,
            next_cursor=PaginationCursor(positions, has_more, consumed),
            has_more=has_more,
            failed_partitions=failed_partitions,
        )
