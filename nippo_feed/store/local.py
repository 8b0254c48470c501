"""LocalStore — small persistent key/value file for per-device feed state.

Holds the poller high-water-marks (``lastViewed:<identity>``), the last known
profile of the signed-in user (``profile:<identity>``) and the one-shot
``forceRefresh`` flag other parts of the app set after a write. Values are
msgpack blobs in a single SQLite table at ~/.nippo/feed.db.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

import msgpack

logger = logging.getLogger(__name__)

LOCAL_DB_PATH = Path.home() / ".nippo" / "feed.db"

FORCE_REFRESH_KEY = "forceRefresh"

LOCAL_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key         TEXT PRIMARY KEY,
    value       BLOB NOT NULL,              -- msgpack
    updated_at  INTEGER NOT NULL            -- epoch ms
);
"""


def last_viewed_key(identity: str) -> str:
    return f"lastViewed:{identity}"


def profile_key(identity: str) -> str:
    return f"profile:{identity}"


class LocalStore:
    """Key/value access to the local feed database.

    Pass ``":memory:"`` as the path for a throwaway store.
    """

    def __init__(self, db_path: Path | str | None = None):
        self._db_path = db_path or LOCAL_DB_PATH
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if str(self._db_path) == ":memory:":
                self._conn = sqlite3.connect(":memory:")
            else:
                path = Path(self._db_path)
                path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(str(path))
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(LOCAL_SCHEMA)
        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def get(self, key: str, default: Any = None) -> Any:
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return msgpack.unpackb(row[0], raw=False)
        except (msgpack.UnpackException, ValueError) as exc:
            logger.warning("Discarding unreadable local value for %s: %s", key, exc)
            self.delete(key)
            return default

    def set(self, key: str, value: Any):
        packed = msgpack.packb(value, use_bin_type=True)
        self.conn.execute(
            "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
            (key, packed, int(time.time() * 1000)),
        )
        self.conn.commit()

    def has(self, key: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM kv WHERE key = ? LIMIT 1", (key,)).fetchone()
        return row is not None

    def delete(self, key: str) -> bool:
        cur = self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self.conn.commit()
        return cur.rowcount > 0

    def pop(self, key: str, default: Any = None) -> Any:
        value = self.get(key, default)
        self.delete(key)
        return value

    def keys(self, prefix: str = "") -> list[str]:
        rows = self.conn.execute(
            "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%",),
        ).fetchall()
        return [r[0] for r in rows]
