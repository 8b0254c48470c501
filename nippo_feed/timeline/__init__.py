"""Timeline items: posts, meeting summaries and computed alerts."""

from nippo_feed.timeline.base import (
    Alert,
    MeetingSummary,
    Memo,
    Partition,
    Post,
    TimelineItem,
)
from nippo_feed.timeline.timestamps import UNKNOWN, normalize
from nippo_feed.timeline.alerts import compute_missing_alerts

__all__ = [
    "Alert",
    "MeetingSummary",
    "Memo",
    "Partition",
    "Post",
    "TimelineItem",
    "UNKNOWN",
    "normalize",
    "compute_missing_alerts",
]
