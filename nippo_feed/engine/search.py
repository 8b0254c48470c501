"""Keyword scoring, ranking and filters over cached feed items.

Every keyword is scored against each searchable field of an item; within a
field only the best match counts, and the field scores add up. A keyword that
matches nothing zeroes the whole item (AND semantics).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timezone, tzinfo
from typing import Iterable, Optional

from nippo_feed.timeline.base import Alert, MeetingSummary, Post, TimelineItem
from nippo_feed.timeline.timestamps import day_of, sort_key

TAG_EXACT = 5
FIELD_EXACT = 4
PREFIX = 3
CONTAINS = 2
STATUS_MATCH = 1

ALERT_LABELS = ("missing", "alert", "未投稿", "アラート")

_split_re = re.compile(r"[\s,、]+")


def parse_keywords(text: str | None) -> list[str]:
    """Lowercase, split on whitespace/commas and strip a leading '#'."""
    if not text:
        return []
    keywords = []
    for raw in _split_re.split(text.strip().lower()):
        word = raw.lstrip("#")
        if word and word not in keywords:
            keywords.append(word)
    return keywords


def _text_score(value: str, keyword: str, *, exact: int = FIELD_EXACT, prefix: int = 0) -> int:
    value = value.lower()
    if not value:
        return 0
    if value == keyword:
        return exact
    if prefix and value.startswith(keyword):
        return prefix
    if keyword in value:
        return CONTAINS
    return 0


def _tags_score(tags: Iterable[str], keyword: str) -> int:
    best = 0
    for tag in tags:
        tag = tag.lstrip("#").lower()
        if tag == keyword:
            return TAG_EXACT
        if keyword in tag:
            best = CONTAINS
    return best


def _keyword_score(item: TimelineItem, keyword: str) -> int:
    if isinstance(item, Post):
        return (
            _tags_score(item.tags, keyword)
            + _text_score(item.message, keyword, prefix=PREFIX)
            + _text_score(item.author_name, keyword)
            + _text_score(item.partition_name, keyword)
            + (STATUS_MATCH if keyword in item.status.lower() else 0)
        )
    if isinstance(item, MeetingSummary):
        return (
            _text_score(item.title, keyword, prefix=PREFIX)
            + _text_score(item.partition_name, keyword)
            + (STATUS_MATCH if keyword in item.status.lower() else 0)
        )
    if isinstance(item, Alert):
        label = max((_text_score(label, keyword) for label in ALERT_LABELS), default=0)
        return (
            label
            + _text_score(item.username, keyword)
            + _text_score(item.partition_name, keyword)
        )
    return 0


def score(item: TimelineItem, keywords: Iterable[str]) -> int:
    """Total relevance of ``item``; 0 unless every keyword matched somewhere."""
    total = 0
    matched_any = False
    for keyword in keywords:
        keyword = keyword.lower().lstrip("#")
        if not keyword:
            continue
        part = _keyword_score(item, keyword)
        if part <= 0:
            return 0
        total += part
        matched_any = True
    return total if matched_any else 0


def rank(items: Iterable[TimelineItem], keywords: list[str]) -> list[TimelineItem]:
    """Matching items by score, then recency, then id."""
    scored = [(score(item, keywords), item) for item in items]
    scored = [(s, item) for s, item in scored if s > 0]
    scored.sort(key=lambda pair: (-pair[0], sort_key(pair[1].timestamp_ms), pair[1].id))
    return [item for _, item in scored]


def filter_by_date_range(
    items: Iterable[TimelineItem],
    start: date | None = None,
    end: date | None = None,
    tz: tzinfo = timezone.utc,
) -> list[TimelineItem]:
    """Keep items whose day falls in the inclusive range. UNKNOWN times drop out."""
    if start is None and end is None:
        return list(items)
    kept = []
    for item in items:
        day = day_of(item.timestamp_ms, tz)
        if day is None:
            continue
        if start is not None and day < start:
            continue
        if end is not None and day > end:
            continue
        kept.append(item)
    return kept


def filter_by_partition(items: Iterable[TimelineItem], partition_id: str | None) -> list[TimelineItem]:
    if not partition_id:
        return list(items)
    return [item for item in items if item.partition_id == partition_id]


@dataclass
class FeedFilter:
    keywords: list[str] = field(default_factory=list)
    start: Optional[date] = None
    end: Optional[date] = None
    partition_id: Optional[str] = None

    @classmethod
    def from_query(cls, query: str | None = None, **kwargs) -> "FeedFilter":
        return cls(keywords=parse_keywords(query), **kwargs)

    @property
    def is_empty(self) -> bool:
        return not (self.keywords or self.start or self.end or self.partition_id)


def apply_filters(
    items: Iterable[TimelineItem],
    feed_filter: FeedFilter,
    tz: tzinfo = timezone.utc,
) -> list[TimelineItem]:
    """Partition, date and keyword filters combined with AND.

    Without keywords the incoming order is kept; with keywords the result is
    ranked.
    """
    result = filter_by_partition(items, feed_filter.partition_id)
    result = filter_by_date_range(result, feed_filter.start, feed_filter.end, tz)
    if feed_filter.keywords:
        result = rank(result, feed_filter.keywords)
    return result
