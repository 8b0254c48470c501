"""Shared fakes for the feed engine tests.

The in-memory document store orders records exactly like the REST adapter
(timestamp descending, id ascending) and records every call it receives.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Mapping

import pytest

from nippo_feed.errors import TransientFetchError
from nippo_feed.store.firestore import nest_field_paths
from nippo_feed.store.local import LocalStore
from nippo_feed.store.remote import POSTS, RecordPage, StoreRecord
from nippo_feed.timeline.base import record_timestamp
from nippo_feed.timeline.timestamps import normalize, sort_key

BASE_MS = 1_714_550_400_000  # 2024-05-01T08:00:00Z


class FakeClock:
    def __init__(self, start_ms: int = BASE_MS):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


def _order(record: StoreRecord) -> tuple:
    return (*sort_key(normalize(record_timestamp(record.data))), record.id)


def _deep_update(target: dict, updates: Mapping[str, Any]):
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


class InMemoryDocumentStore:
    def __init__(self):
        self.collections: dict[str, list[StoreRecord]] = {}
        self.calls: list[tuple] = []
        self.latest_calls: list[tuple] = []
        self.failing: set[str] = set()
        self.delay_s: dict[str, float] = {}
        self.fail_writes = False
        self._ids = itertools.count(1)

    def add(self, collection: str, doc_id: str, **data) -> StoreRecord:
        record = StoreRecord(id=doc_id, data=dict(data))
        record = StoreRecord(id=doc_id, data=record.data, ref=_order(record))
        self.collections.setdefault(collection, []).append(record)
        return record

    def add_post(self, doc_id: str, group: str, created_at: Any, author: str = "u-other", **extra) -> StoreRecord:
        return self.add(POSTS, doc_id, groupId=group, createdAt=created_at, authorId=author, **extra)

    def find(self, collection: str, doc_id: str) -> StoreRecord | None:
        for record in self.collections.get(collection, []):
            if record.id == doc_id:
                return record
        return None

    async def query_page(self, collection, partition_id, *, after=None, limit=20) -> RecordPage:
        self.calls.append((collection, partition_id, after, limit))
        if partition_id in self.delay_s:
            await asyncio.sleep(self.delay_s[partition_id])
        if partition_id in self.failing:
            raise TransientFetchError("partition unavailable", partition_id)

        records = sorted(
            (r for r in self.collections.get(collection, []) if r.data.get("groupId") == partition_id),
            key=_order,
        )
        if after is not None:
            records = [r for r in records if _order(r) > after]
        page = records[:limit]
        return RecordPage(records=page, resume_token=page[-1].ref if len(page) == limit else None)

    async def query_latest(self, collection, partition_ids):
        self.latest_calls.append((collection, list(partition_ids)))
        if any(p in self.failing for p in partition_ids):
            raise TransientFetchError("partition unavailable")
        records = [r for r in self.collections.get(collection, []) if r.data.get("groupId") in partition_ids]
        return min(records, key=_order) if records else None

    async def get_document(self, collection, doc_id):
        return self.find(collection, doc_id)

    async def update_fields(self, collection, doc_id, fields):
        if self.fail_writes:
            raise TransientFetchError("write rejected")
        record = self.find(collection, doc_id)
        if record is None:
            raise TransientFetchError(f"{collection}/{doc_id} not found")
        _deep_update(record.data, nest_field_paths(fields))

    async def add_document(self, collection, fields):
        if self.fail_writes:
            raise TransientFetchError("write rejected")
        doc_id = f"doc{next(self._ids)}"
        self.add(collection, doc_id, **fields)
        return doc_id


class FakeProfileStore:
    def __init__(self, profiles: dict[str, dict] | None = None):
        self.profiles = dict(profiles or {})
        self.calls: list[str] = []
        self.failing: set[str] = set()

    async def get_profile(self, identity):
        self.calls.append(identity)
        if identity in self.failing:
            raise TransientFetchError(f"profile {identity} unavailable")
        return self.profiles.get(identity)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def profiles():
    return FakeProfileStore({
        "u-alice": {"displayName": "Alice"},
        "u-bob": {"username": "bob"},
        "u-carol": {"email": "carol@example.com"},
    })


@pytest.fixture
def local(tmp_path):
    db = LocalStore(tmp_path / "feed.db")
    yield db
    db.close()
