"""Timeline item dataclasses and conversion from raw store records.

Store records are opaque mappings. Only the handful of fields the feed needs
are read here, each with the fallbacks older clients relied on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Optional, Union

from nippo_feed.timeline.timestamps import normalize

STATUS_UNCONFIRMED = "unconfirmed"
STATUS_CONFIRMED = "confirmed"
STATUS_IN_PROGRESS = "in_progress"

SUMMARY_DRAFT = "draft"
SUMMARY_PUBLISHED = "published"

MAX_TAGS = 10
MAX_TAG_LENGTH = 50


@dataclass
class Partition:
    """A work group whose records the viewer is authorized to read."""

    id: str
    name: str = ""
    member_ids: list[str] = field(default_factory=list)
    report_deadline: Optional[str] = None


@dataclass
class Memo:
    id: str
    post_id: str
    content: str
    created_at_ms: Optional[int]
    created_by: str
    created_by_name: str = ""
    tags: list[str] = field(default_factory=list)
    image_refs: list[str] = field(default_factory=list)
    status: Optional[str] = None


@dataclass
class Post:
    """A daily report submitted to one partition."""

    kind: ClassVar[str] = "post"

    id: str
    partition_id: str
    author_id: Optional[str]
    timestamp_ms: Optional[int]
    message: str = ""
    tags: list[str] = field(default_factory=list)
    photo_refs: list[str] = field(default_factory=list)
    status: str = STATUS_UNCONFIRMED
    status_by_user: dict[str, str] = field(default_factory=dict)
    read_by: dict[str, int] = field(default_factory=dict)
    memos: list[Memo] = field(default_factory=list)
    author_name: str = ""
    partition_name: str = ""

    def status_for(self, identity: str | None) -> str:
        if identity and identity in self.status_by_user:
            return self.status_by_user[identity]
        return self.status

    def is_read_by(self, identity: str) -> bool:
        return identity in self.read_by


@dataclass
class Alert:
    """A member who had not submitted a report when the group deadline passed."""

    kind: ClassVar[str] = "alert"

    id: str
    partition_id: str
    timestamp_ms: Optional[int]
    user_id: str
    username: str = ""
    partition_name: str = ""
    deadline: str = ""

    @property
    def author_id(self) -> None:
        return None


@dataclass
class MeetingSummary:
    kind: ClassVar[str] = "meeting_summary"

    id: str
    partition_id: Optional[str]
    created_at_ms: Optional[int]
    title: str = ""
    status: str = SUMMARY_DRAFT
    participants: list[str] = field(default_factory=list)
    partition_name: str = ""

    @property
    def timestamp_ms(self) -> Optional[int]:
        return self.created_at_ms

    @property
    def author_id(self) -> None:
        return None


TimelineItem = Union[Post, Alert, MeetingSummary]

# Lower sorts first when timestamps tie.
KIND_PRIORITY = {
    Post.kind: 0,
    MeetingSummary.kind: 1,
    Alert.kind: 2,
}


# ══════════════════════════════════════════════════════════════════
# Record conversion
# ══════════════════════════════════════════════════════════════════

def record_timestamp(data: Mapping[str, Any]) -> Any:
    """Pick the raw creation-time value out of a record."""
    for key in ("createdAt", "timestamp", "created_at"):
        if data.get(key) is not None:
            return data[key]
    return None


def record_author(data: Mapping[str, Any]) -> Optional[str]:
    for key in ("authorId", "userId", "createdBy"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def normalize_tags(raw_tags: Any) -> list[str]:
    """Trim, drop empties and overlong tags, cap the count, prefix with '#'."""
    if not isinstance(raw_tags, (list, tuple)):
        return []
    tags: list[str] = []
    for raw in raw_tags:
        if not isinstance(raw, str):
            continue
        tag = raw.strip()
        if not tag or len(tag.lstrip("#")) > MAX_TAG_LENGTH:
            continue
        if not tag.startswith("#"):
            tag = "#" + tag
        if tag not in tags:
            tags.append(tag)
        if len(tags) >= MAX_TAGS:
            break
    return tags


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [v for v in value if isinstance(v, str) and v]


def memo_from_record(memo_id: str, data: Mapping[str, Any], post_id: str = "") -> Memo:
    return Memo(
        id=memo_id,
        post_id=data.get("postId") or post_id,
        content=data.get("content") or "",
        created_at_ms=normalize(data.get("createdAt")),
        created_by=data.get("createdBy") or "",
        created_by_name=data.get("createdByName") or "",
        tags=normalize_tags(data.get("tags")),
        image_refs=_str_list(data.get("imageUrls")),
        status=data.get("status"),
    )


def post_from_record(record_id: str, data: Mapping[str, Any], partition_id: str = "") -> Post:
    status_by_user = data.get("statusByUser")
    read_by = data.get("readBy")
    memos = []
    for raw in data.get("memos") or []:
        if isinstance(raw, Mapping) and raw.get("id"):
            memos.append(memo_from_record(str(raw["id"]), raw, record_id))

    return Post(
        id=record_id,
        partition_id=data.get("groupId") or partition_id,
        author_id=record_author(data),
        timestamp_ms=normalize(record_timestamp(data)),
        message=data.get("message") or data.get("content") or "",
        tags=normalize_tags(data.get("tags")),
        photo_refs=_str_list(data.get("photoUrls") or data.get("images")),
        status=data.get("status") or STATUS_UNCONFIRMED,
        status_by_user={
            k: v for k, v in (status_by_user or {}).items() if isinstance(v, str)
        } if isinstance(status_by_user, Mapping) else {},
        read_by={
            k: ms for k, ms in ((k, normalize(v)) for k, v in read_by.items()) if ms is not None
        } if isinstance(read_by, Mapping) else {},
        memos=memos,
        partition_name=data.get("groupName") or "",
    )


def summary_from_record(record_id: str, data: Mapping[str, Any], partition_id: str | None = None) -> MeetingSummary:
    status = data.get("status")
    return MeetingSummary(
        id=record_id,
        partition_id=data.get("groupId") or partition_id,
        created_at_ms=normalize(record_timestamp(data)),
        title=data.get("meetingTitle") or data.get("title") or "",
        status=status if status in (SUMMARY_DRAFT, SUMMARY_PUBLISHED) else SUMMARY_DRAFT,
        participants=_str_list(data.get("participants")),
        partition_name=data.get("groupName") or "",
    )


def partition_from_record(record_id: str, data: Mapping[str, Any]) -> Partition:
    settings = data.get("settings") if isinstance(data.get("settings"), Mapping) else {}
    deadline = settings.get("reportDeadline") or data.get("reportDeadline")

    # members holds either bare ids or member objects depending on the writer
    member_ids = _str_list(data.get("memberIds"))
    for member in data.get("members") or []:
        member_id = member.get("id") if isinstance(member, Mapping) else member
        if isinstance(member_id, str) and member_id and member_id not in member_ids:
            member_ids.append(member_id)

    return Partition(
        id=record_id,
        name=data.get("name") or "",
        member_ids=member_ids,
        report_deadline=deadline if isinstance(deadline, str) else None,
    )
