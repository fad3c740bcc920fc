"""Embedded key-value database for settings and fallback values.

Two tables live in a single sqlite file:

- `settings` holds fixed literal names, most importantly `folder_handle`
  (the persisted directory capability token).
- `fallback_data` holds a plain JSON copy of every value written through the
  tiered store, keyed by the same storage keys as the directory tier.

The connection is shared across worker threads (the async store calls in via
`asyncio.to_thread`), so every statement runs under a lock.
"""
from __future__ import annotations
import logging
import math
import sqlite3
from pathlib import Path
from threading import RLock
from typing import Any, Iterable, Optional

from .errors import NotFound, QuotaExceeded, StorageIOError
from .serializer import JSONSerializer

logger = logging.getLogger(__name__)

FOLDER_HANDLE_SETTING = "folder_handle"
UNSYNCED_SETTING = "unsynced_keys"

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS settings (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS fallback_data (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def _translate(exc: sqlite3.Error) -> Exception:
    name = getattr(exc, "sqlite_errorname", "")
    if name == "SQLITE_FULL" or "full" in str(exc).lower():
        return QuotaExceeded(f"metadata store is full: {exc}")
    return StorageIOError(f"metadata store error: {exc}")


class MetadataStore:
    def __init__(self, db_path: str | Path = ":memory:", max_bytes: Optional[int] = None) -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        self._serializer = JSONSerializer()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        with self._lock, self._conn:
            self._conn.executescript(_SCHEMA_SQL)
        if max_bytes is not None:
            self.set_quota(max_bytes)

    def set_quota(self, max_bytes: int) -> None:
        """Cap the database size; writes past the cap raise `QuotaExceeded`."""
        with self._lock:
            page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
            pages = max(1, math.ceil(max_bytes / page_size))
            self._conn.execute(f"PRAGMA max_page_count = {int(pages)}")
        logger.debug("Metadata store %s capped at %d pages", self.db_path, pages)

    def _execute(self, sql: str, params: tuple = ()) -> list:
        try:
            with self._lock, self._conn:
                return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise _translate(e) from e

    # settings table

    def get_setting(self, name: str, default: Any = None) -> Any:
        rows = self._execute("SELECT value FROM settings WHERE name = ?", (name,))
        if not rows:
            return default
        return self._serializer.load(rows[0][0].encode("utf-8"))

    def put_setting(self, name: str, value: Any) -> None:
        text = self._serializer.dumps(value)
        self._execute(
            "INSERT INTO settings (name, value) VALUES (?, ?) "
            "ON CONFLICT(name) DO UPDATE SET value = excluded.value",
            (name, text),
        )

    def delete_setting(self, name: str) -> None:
        self._execute("DELETE FROM settings WHERE name = ?", (name,))

    # fallback_data table

    def save(self, key: str, value: Any) -> None:
        self.save_text(key, self._serializer.dumps(value))

    def save_text(self, key: str, text: str) -> None:
        self._execute(
            "INSERT INTO fallback_data (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, text),
        )

    def load(self, key: str) -> Any:
        """Return the fallback value for `key`. Raises `NotFound` if absent."""
        rows = self._execute("SELECT value FROM fallback_data WHERE key = ?", (key,))
        if not rows:
            raise NotFound(key)
        return self._serializer.load(rows[0][0].encode("utf-8"))

    def delete(self, key: str) -> None:
        self._execute("DELETE FROM fallback_data WHERE key = ?", (key,))

    def exists(self, key: str) -> bool:
        return bool(self._execute("SELECT 1 FROM fallback_data WHERE key = ?", (key,)))

    def list_keys(self) -> Iterable[str]:
        return [row[0] for row in self._execute("SELECT key FROM fallback_data ORDER BY key")]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
