"""Writes the viewer makes from the feed: status changes, read receipts, memos.

After a successful write the cache opens its read-your-own-write window and
the persistent refresh flag is set, so this session and any other one on the
device refetch before serving the feed again.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from nippo_feed.engine.cache import FeedCache, now_ms
from nippo_feed.errors import TransientFetchError
from nippo_feed.store.remote import POSTS, DocumentStore
from nippo_feed.timeline.base import (
    STATUS_CONFIRMED,
    STATUS_IN_PROGRESS,
    STATUS_UNCONFIRMED,
    normalize_tags,
)

logger = logging.getLogger(__name__)

VALID_STATUSES = (STATUS_UNCONFIRMED, STATUS_IN_PROGRESS, STATUS_CONFIRMED)


class FeedWriter:
    def __init__(
        self,
        store: DocumentStore,
        cache: FeedCache,
        identity: str,
        display_name: str = "",
        clock: Callable[[], int] = now_ms,
    ):
        self._store = store
        self._cache = cache
        self.identity = identity
        self.display_name = display_name
        self._clock = clock

    def _written(self):
        self._cache.note_local_write()
        self._cache.request_refresh()

    async def update_status(self, post_id: str, status: str) -> bool:
        if status not in VALID_STATUSES:
            raise ValueError(f"unknown status {status!r}; expected one of {', '.join(VALID_STATUSES)}")
        try:
            await self._store.update_fields(POSTS, post_id, {
                f"statusByUser.{self.identity}": status,
                "statusUpdatedAt": self._clock(),
                "statusUpdatedBy": self.identity,
            })
        except TransientFetchError as exc:
            logger.warning("Status update for post %s failed: %s", post_id, exc)
            return False
        self._written()
        return True

    async def mark_read(self, post_id: str) -> bool:
        try:
            await self._store.update_fields(POSTS, post_id, {f"readBy.{self.identity}": self._clock()})
        except TransientFetchError as exc:
            logger.warning("Marking post %s read failed: %s", post_id, exc)
            return False
        self._written()
        return True

    async def add_memo(self, post_id: str, content: str, tags: Iterable[str] = ()) -> str | None:
        """Attach a memo to a post. Returns the new memo id, or None on failure."""
        content = content.strip()
        if not content:
            raise ValueError("memo content is empty")
        try:
            memo_id = await self._store.add_document(f"{POSTS}/{post_id}/memos", {
                "postId": post_id,
                "content": content,
                "createdAt": self._clock(),
                "createdBy": self.identity,
                "createdByName": self.display_name,
                "tags": normalize_tags(list(tags)),
                "imageUrls": [],
            })
        except TransientFetchError as exc:
            logger.warning("Adding memo to post %s failed: %s", post_id, exc)
            return None
        self._written()
        return memo_id
