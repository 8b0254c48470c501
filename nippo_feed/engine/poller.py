"""Background staleness check.

Every interval the poller asks the store for the single newest record across
the viewer's partitions and compares its time with the viewer's high-water
mark, the newest time they have been shown. It only ever signals; refreshing
the feed is up to whoever listens on the channel.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Callable, Iterable

from nippo_feed.engine.signals import NewContentSignal, SignalChannel
from nippo_feed.store.local import LocalStore, last_viewed_key
from nippo_feed.store.remote import POSTS, DocumentStore
from nippo_feed.timeline.base import record_author, record_timestamp
from nippo_feed.timeline.timestamps import normalize

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 60.0
DEFAULT_TOLERANCE_MS = 1_000


class PollOutcome(enum.Enum):
    IDLE = "idle"                  # nothing to check or nothing newer
    BASELINE = "baseline"          # first poll, high-water mark initialized
    SELF_AUTHORED = "self"         # newer record is the viewer's own; mark advanced
    SIGNALED = "signaled"          # new content signal published
    ALREADY_SIGNALED = "already"   # newer record was signaled before
    ERROR = "error"


class HighWaterMark:
    """The persisted ``lastViewed:<identity>`` time for one viewer."""

    def __init__(self, local: LocalStore, identity: str):
        self._local = local
        self.identity = identity
        self.key = last_viewed_key(identity)

    def get(self) -> int | None:
        value = self._local.get(self.key)
        return value if isinstance(value, int) else None

    def advance(self, timestamp_ms: int | None) -> bool:
        """Move the mark forward; never backward. Returns True if it moved."""
        if timestamp_ms is None:
            return False
        current = self.get()
        if current is not None and timestamp_ms <= current:
            return False
        self._local.set(self.key, timestamp_ms)
        return True


class StalenessPoller:
    def __init__(
        self,
        store: DocumentStore,
        local: LocalStore,
        identity: str,
        partition_ids: Iterable[str] | Callable[[], Iterable[str]],
        channel: SignalChannel,
        interval_s: float = DEFAULT_INTERVAL_S,
        tolerance_ms: int = DEFAULT_TOLERANCE_MS,
        timeout_s: float = 10.0,
        collection: str = POSTS,
    ):
        self._store = store
        self.identity = identity
        self._partition_ids = partition_ids
        self.channel = channel
        self.interval_s = interval_s
        self.tolerance_ms = tolerance_ms
        self.timeout_s = timeout_s
        self.collection = collection
        self.mark = HighWaterMark(local, identity)
        self._last_signaled_ms: int | None = None
        self._task: asyncio.Task | None = None
        self._stop: asyncio.Event | None = None

    def partitions(self) -> list[str]:
        source = self._partition_ids() if callable(self._partition_ids) else self._partition_ids
        return list(dict.fromkeys(source))

    async def check_once(self) -> PollOutcome:
        partitions = self.partitions()
        if not partitions:
            return PollOutcome.IDLE

        try:
            record = await asyncio.wait_for(
                self._store.query_latest(self.collection, partitions), timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("Staleness check timed out after %.1fs", self.timeout_s)
            return PollOutcome.ERROR
        except Exception as exc:
            logger.warning("Staleness check failed: %s", exc)
            return PollOutcome.ERROR

        if record is None:
            return PollOutcome.IDLE

        newest = normalize(record_timestamp(record.data))
        if newest is None:
            logger.warning("Newest record %s has no readable timestamp", record.id)
            return PollOutcome.IDLE

        seen = self.mark.get()
        if seen is None:
            self.mark.advance(newest)
            logger.debug("High-water mark for %s initialized at %d", self.identity, newest)
            return PollOutcome.BASELINE

        if newest - seen <= self.tolerance_ms:
            return PollOutcome.IDLE

        if record_author(record.data) == self.identity:
            self.mark.advance(newest)
            logger.debug("Own record %s is newest; high-water mark advanced", record.id)
            return PollOutcome.SELF_AUTHORED

        if self._last_signaled_ms is not None and newest <= self._last_signaled_ms:
            return PollOutcome.ALREADY_SIGNALED

        self._last_signaled_ms = newest
        logger.info("New content for %s: %s at %d (seen up to %d)", self.identity, record.id, newest, seen)
        self.channel.publish(NewContentSignal(
            identity=self.identity,
            newest_ms=newest,
            high_water_mark_ms=seen,
            record_id=record.id,
            partition_id=record.data.get("groupId"),
        ))
        return PollOutcome.SIGNALED

    async def run(self):
        """Poll until stopped. Each check is independent of page loads."""
        if self._stop is None:
            self._stop = asyncio.Event()
        while not self._stop.is_set():
            await self.check_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop = asyncio.Event()
            self._task = asyncio.create_task(self.run(), name=f"staleness-poller:{self.identity}")
        return self._task

    async def stop(self):
        if self._stop is not None:
            self._stop.set()
        if self._task is not None:
            try:
                await self._task
            finally:
                self._task = None
