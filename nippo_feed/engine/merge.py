"""Merge timeline items from several sources into one feed order.

Duplicates are collapsed by id, keeping the first occurrence, and the result
is ordered newest first with a deterministic tie-break:

1. known timestamps before UNKNOWN
2. timestamp descending
3. kind priority (post, meeting summary, alert)
4. id ascending

Because the first occurrence wins and the order is total, merging the same
batch twice changes nothing.
"""

from __future__ import annotations

import logging
from typing import Iterable

from nippo_feed.errors import CacheConsistencyWarning
from nippo_feed.timeline.base import KIND_PRIORITY, TimelineItem
from nippo_feed.timeline.timestamps import sort_key

logger = logging.getLogger(__name__)


def feed_order_key(item: TimelineItem) -> tuple:
    known, neg_ts = sort_key(item.timestamp_ms)
    return (known, neg_ts, KIND_PRIORITY.get(item.kind, len(KIND_PRIORITY)), item.id)


def dedupe(items: Iterable[TimelineItem]) -> tuple[list[TimelineItem], list[str]]:
    """Drop repeated ids. Returns (unique items in input order, dropped ids)."""
    seen: set[str] = set()
    unique: list[TimelineItem] = []
    dropped: list[str] = []
    for item in items:
        if item.id in seen:
            dropped.append(item.id)
            continue
        seen.add(item.id)
        unique.append(item)
    return unique, dropped


def merge(
    existing: Iterable[TimelineItem],
    incoming: Iterable[TimelineItem] = (),
) -> list[TimelineItem]:
    unique, dropped = dedupe([*existing, *incoming])
    if dropped:
        logger.info("%s", CacheConsistencyWarning(dropped))
    unique.sort(key=feed_order_key)
    return unique
