"""Firestore REST adapter for the document and profile stores.

Talks to ``https://firestore.googleapis.com/v1`` with a caller-supplied bearer
token. Blocking ``requests`` calls run in worker threads so the engine's event
loop stays responsive. Every failure surfaces as TransientFetchError.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

import requests

from nippo_feed.errors import TransientFetchError
from nippo_feed.store.remote import USERS, RecordPage, StoreRecord
from nippo_feed.timeline.timestamps import normalize, sort_key

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://firestore.googleapis.com/v1"

PARTITION_FIELD = "groupId"
TIMESTAMP_FIELD = "createdAt"

# Firestore rejects larger IN filters
IN_FILTER_LIMIT = 10

_PLAIN_SEGMENT = re.compile(r"[A-Za-z_][A-Za-z_0-9]*")


# ══════════════════════════════════════════════════════════════════
# Typed value codec
# ══════════════════════════════════════════════════════════════════

def decode_value(value: Mapping[str, Any]) -> Any:
    """Convert one Firestore typed value to plain Python."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        # left as RFC 3339 text; the timestamp normalizer reads it
        return value["timestampValue"]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields") or {})
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values") or []]
    if "referenceValue" in value:
        return value["referenceValue"]
    if "geoPointValue" in value:
        return dict(value["geoPointValue"])
    if "bytesValue" in value:
        return value["bytesValue"]
    logger.debug("Unknown Firestore value type: %s", list(value))
    return None


def decode_fields(fields: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: decode_value(v) for k, v in fields.items()}


def encode_value(value: Any) -> Dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": value.isoformat()}
    if isinstance(value, Mapping):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"cannot encode {type(value).__name__} as a Firestore value")


def encode_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: encode_value(v) for k, v in data.items()}


def nest_field_paths(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn {"a.b": 1, "c": 2} into {"a": {"b": 1}, "c": 2}."""
    nested: Dict[str, Any] = {}
    for path, value in fields.items():
        parts = path.split(".")
        node = nested
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
    return nested


def _mask_path(path: str) -> str:
    """Backtick-quote segments that are not plain identifiers (e.g. user ids with dashes)."""
    return ".".join(
        part if _PLAIN_SEGMENT.fullmatch(part) else "`" + part.replace("`", "\\`") + "`"
        for part in path.split(".")
    )


def _doc_id(name: str) -> str:
    return name.rsplit("/", 1)[-1]


def _split_collection(collection: str) -> tuple[str, str]:
    """'posts/abc/memos' -> ('posts/abc', 'memos'); 'posts' -> ('', 'posts')."""
    parent, _, leaf = collection.rpartition("/")
    return parent, leaf


# ══════════════════════════════════════════════════════════════════
# Store
# ══════════════════════════════════════════════════════════════════

class FirestoreRestStore:
    """DocumentStore and ProfileStore backed by the Firestore REST API.

    Feed queries order by ``createdAt`` descending then document name
    ascending, which needs a composite index on (groupId, createdAt, __name__).
    """

    def __init__(
        self,
        project_id: str,
        token_provider: Callable[[], Optional[str]],
        api_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        self.project_id = project_id
        self._token_provider = token_provider
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests.Session()

    @property
    def documents_root(self) -> str:
        return f"projects/{self.project_id}/databases/(default)/documents"

    def _url(self, path: str = "") -> str:
        base = f"{self.api_url}/{self.documents_root}"
        return f"{base}/{path}" if path else base

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _request(self, method: str, url: str, *, partition_id: str | None = None,
                 allow_404: bool = False, **kwargs) -> Any:
        try:
            resp = self._http.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise TransientFetchError(f"{method} {url} failed: {exc}", partition_id) from exc

        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code != 200:
            raise TransientFetchError(
                f"{method} {url} returned {resp.status_code}: {resp.text[:200]}", partition_id,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise TransientFetchError(f"{method} {url} returned invalid JSON", partition_id) from exc

    # ── queries ──────────────────────────────────────────────────

    def _run_query(self, collection: str, structured: Dict[str, Any],
                   partition_id: str | None = None) -> List[StoreRecord]:
        parent, leaf = _split_collection(collection)
        structured = {"from": [{"collectionId": leaf}], **structured}
        url = self._url(f"{parent}:runQuery") if parent else f"{self._url()}:runQuery"
        rows = self._request("POST", url, partition_id=partition_id, json={"structuredQuery": structured})

        records: List[StoreRecord] = []
        for row in rows or []:
            doc = row.get("document")
            if not doc:
                continue
            raw_fields = doc.get("fields") or {}
            ref = {"ts": raw_fields.get(TIMESTAMP_FIELD), "name": doc["name"]}
            records.append(StoreRecord(id=_doc_id(doc["name"]), data=decode_fields(raw_fields), ref=ref))
        return records

    def _feed_query(self, where: Dict[str, Any], limit: int, after: Any = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {
            "where": where,
            "orderBy": [
                {"field": {"fieldPath": TIMESTAMP_FIELD}, "direction": "DESCENDING"},
                {"field": {"fieldPath": "__name__"}, "direction": "ASCENDING"},
            ],
            "limit": limit,
        }
        if after and after.get("ts") is not None:
            query["startAt"] = {
                "values": [after["ts"], {"referenceValue": after["name"]}],
                "before": False,
            }
        return query

    def _query_page_sync(self, collection: str, partition_id: str, after: Any, limit: int) -> RecordPage:
        where = {"fieldFilter": {
            "field": {"fieldPath": PARTITION_FIELD},
            "op": "EQUAL",
            "value": {"stringValue": partition_id},
        }}
        records = self._run_query(collection, self._feed_query(where, limit, after), partition_id)
        resume = records[-1].ref if len(records) >= limit and records else None
        return RecordPage(records=records, resume_token=resume)

    def _query_latest_sync(self, collection: str, partition_ids: List[str]) -> StoreRecord | None:
        newest: StoreRecord | None = None
        for start in range(0, len(partition_ids), IN_FILTER_LIMIT):
            chunk = partition_ids[start:start + IN_FILTER_LIMIT]
            where = {"fieldFilter": {
                "field": {"fieldPath": PARTITION_FIELD},
                "op": "IN",
                "value": {"arrayValue": {"values": [{"stringValue": p} for p in chunk]}},
            }}
            for record in self._run_query(collection, self._feed_query(where, 1)):
                if newest is None or sort_key(normalize(record.data.get(TIMESTAMP_FIELD))) < sort_key(
                        normalize(newest.data.get(TIMESTAMP_FIELD))):
                    newest = record
        return newest

    async def query_page(self, collection: str, partition_id: str, *,
                         after: Any = None, limit: int = 20) -> RecordPage:
        return await asyncio.to_thread(self._query_page_sync, collection, partition_id, after, limit)

    async def query_latest(self, collection: str, partition_ids: List[str]) -> StoreRecord | None:
        if not partition_ids:
            return None
        return await asyncio.to_thread(self._query_latest_sync, collection, list(partition_ids))

    # ── documents ────────────────────────────────────────────────

    def _get_document_sync(self, collection: str, doc_id: str) -> StoreRecord | None:
        doc = self._request("GET", self._url(f"{collection}/{doc_id}"), allow_404=True)
        if doc is None:
            return None
        return StoreRecord(id=_doc_id(doc["name"]), data=decode_fields(doc.get("fields") or {}))

    def _update_fields_sync(self, collection: str, doc_id: str, fields: Mapping[str, Any]):
        params = [("updateMask.fieldPaths", _mask_path(path)) for path in fields]
        params.append(("currentDocument.exists", "true"))
        self._request(
            "PATCH", self._url(f"{collection}/{doc_id}"),
            params=params, json={"fields": encode_fields(nest_field_paths(fields))},
        )

    def _add_document_sync(self, collection: str, fields: Mapping[str, Any]) -> str:
        doc = self._request("POST", self._url(collection), json={"fields": encode_fields(fields)})
        return _doc_id(doc["name"])

    async def get_document(self, collection: str, doc_id: str) -> StoreRecord | None:
        return await asyncio.to_thread(self._get_document_sync, collection, doc_id)

    async def update_fields(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._update_fields_sync, collection, doc_id, fields)

    async def add_document(self, collection: str, fields: Mapping[str, Any]) -> str:
        return await asyncio.to_thread(self._add_document_sync, collection, fields)

    async def get_profile(self, identity: str) -> Mapping[str, Any] | None:
        record = await self.get_document(USERS, identity)
        return record.data if record else None

    def close(self):
        self._http.close()
