"""Missing-submission alerts.

Once a group's daily report deadline has passed, every member without a post
in that group for the day gets an alert item in the feed. Alerts are computed
locally from the posts already loaded; they are never stored remotely.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, time as dtime, timezone, tzinfo
from typing import Iterable

from nippo_feed.timeline.base import Alert, Partition, Post
from nippo_feed.timeline.timestamps import day_of

logger = logging.getLogger(__name__)

_deadline_re = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def parse_deadline(text: str | None) -> dtime | None:
    if not text:
        return None
    m = _deadline_re.match(text)
    if not m:
        logger.warning("Ignoring malformed report deadline %r", text)
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        logger.warning("Ignoring out-of-range report deadline %r", text)
        return None
    return dtime(hour, minute)


def alert_id(partition_id: str, user_id: str, day_iso: str) -> str:
    return f"alert:{partition_id}:{user_id}:{day_iso}"


def compute_missing_alerts(
    partitions: Iterable[Partition],
    posts: Iterable[Post],
    now_ms: int,
    tz: tzinfo = timezone.utc,
    names: dict[str, str] | None = None,
) -> list[Alert]:
    """Build one alert per member who missed today's deadline.

    Args:
        partitions: Groups with their members and deadline.
        posts: Posts loaded so far; only today's posts (in ``tz``) count.
        now_ms: Current time in epoch milliseconds.
        tz: Zone the deadline is expressed in.
        names: Optional identity -> display name map for the alert label.
    """
    names = names or {}
    now = datetime.fromtimestamp(now_ms / 1000, tz=tz)
    today = now.date()

    submitted: set[tuple[str, str]] = set()
    for post in posts:
        if post.author_id and day_of(post.timestamp_ms, tz) == today:
            submitted.add((post.partition_id, post.author_id))

    alerts: list[Alert] = []
    for partition in partitions:
        deadline = parse_deadline(partition.report_deadline)
        if deadline is None:
            continue
        deadline_at = datetime.combine(today, deadline, tzinfo=tz)
        if now < deadline_at:
            continue
        deadline_ms = int(deadline_at.timestamp() * 1000)

        for member_id in partition.member_ids:
            if (partition.id, member_id) in submitted:
                continue
            alerts.append(Alert(
                id=alert_id(partition.id, member_id, today.isoformat()),
                partition_id=partition.id,
                timestamp_ms=deadline_ms,
                user_id=member_id,
                username=names.get(member_id, ""),
                partition_name=partition.name,
                deadline=partition.report_deadline,
            ))

    if alerts:
        logger.debug("Computed %d missing-submission alerts", len(alerts))
    return alerts
