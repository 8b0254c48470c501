"""Boundary types for the remote document and profile stores.

The engine depends only on these protocols. ``FirestoreRestStore`` is the
production implementation; tests use in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol

POSTS = "posts"
MEETING_SUMMARIES = "meeting_summaries"
GROUPS = "groups"
USERS = "users"


@dataclass(frozen=True)
class StoreRecord:
    """One document as returned by a query.

    ``ref`` is an opaque position token: passing it back as ``after`` resumes
    the same query strictly after this record.
    """

    id: str
    data: Mapping[str, Any]
    ref: Any = None


@dataclass
class RecordPage:
    records: list[StoreRecord] = field(default_factory=list)
    resume_token: Optional[Any] = None


class DocumentStore(Protocol):
    async def query_page(
        self,
        collection: str,
        partition_id: str,
        *,
        after: Any = None,
        limit: int = 20,
    ) -> RecordPage:
        """Records of one partition, newest first, starting after ``after``."""
        ...

    async def query_latest(self, collection: str, partition_ids: list[str]) -> StoreRecord | None:
        """The single newest record across the given partitions."""
        ...

    async def get_document(self, collection: str, doc_id: str) -> StoreRecord | None:
        ...

    async def update_fields(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        """Set dotted field paths on an existing document."""
        ...

    async def add_document(self, collection: str, fields: Mapping[str, Any]) -> str:
        ...


class ProfileStore(Protocol):
    async def get_profile(self, identity: str) -> Mapping[str, Any] | None:
        ...
