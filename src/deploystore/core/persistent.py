"""
Durable key/value cache backed by SQLite.

Holds the last known-good document (and the credential keys) across process
restarts. It is the fallback of last resort when the publish target cannot be
read.

Manifesto:
    Local durability is what makes ``save_all`` safe to call offline: the
    document is on disk before the remote publish is even attempted. The
    store is deliberately small and boring:

    - **One table:** ``kv(key TEXT PRIMARY KEY, value TEXT, updated_at REAL)``
    - **JSON values:** anything ``json.dumps`` accepts
    - **Quota aware:** a write over ``max_bytes`` (or SQLite reporting a full
      disk) purges every non-essential key once and retries exactly once

Architecture:
    ::

        PersistentCache
          ├── get / set / remove / keys        generic durable storage
          ├── purge_non_essential()            quota recovery
          └── load_document / save_document    the cached Document slot

Examples:
    >>> cache = PersistentCache(Path("/tmp/deploystore.db"))
    >>> cache.set("team_id", "team_123")
    True
    >>> cache.get("team_id")
    'team_123'

Tags:
    cache, persistence, sqlite, quota, deploystore

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from deploystore.core.errors import SchemaError, StorageError, StorageQuotaError
from deploystore.core.logging import get_logger
from deploystore.core.schema import Document, clean_project_urls, validate_document

logger = get_logger(__name__)

TOKEN_KEY = "deploystore.token"
TEAM_ID_KEY = "deploystore.team_id"
TEAM_NAME_KEY = "deploystore.team_name"
DOCUMENT_KEY = "deploystore.document"
PENDING_KEY = "deploystore.pending"

ESSENTIAL_KEYS = frozenset({TOKEN_KEY, TEAM_ID_KEY, TEAM_NAME_KEY})

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at REAL NOT NULL
)
"""


def _is_disk_full(error: sqlite3.Error) -> bool:
    if getattr(error, "sqlite_errorcode", None) == getattr(sqlite3, "SQLITE_FULL", 13):
        return True
    return "full" in str(error).lower()


class PersistentCache:
    """SQLite-backed durable key/value store.

    Attributes:
        path: Database file (``":memory:"`` for a process-local store)
        max_bytes: Quota for the sum of stored value sizes (``None`` = unbounded)
        essential_keys: Keys that survive a quota purge
    """

    def __init__(
        self,
        path: Path | str,
        *,
        max_bytes: int | None = None,
        essential_keys: Iterable[str] = ESSENTIAL_KEYS,
        clock: Callable[[], float] = time.time,
    ):
        self.path = str(path)
        self.max_bytes = max_bytes
        self.essential_keys = frozenset(essential_keys)
        self._clock = clock
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self.path)
            self._conn.execute(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open durable cache at {self.path}", cause=e) from e

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> PersistentCache:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # ── Generic key/value ────────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the stored value, or None when absent or unreadable."""
        try:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot read {key!r} from durable cache", cause=e) from e
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logger.warning("persistent_value_corrupt", key=key, error=str(e))
            return None

    def set(self, key: str, value: Any, *, keep: Iterable[str] = ()) -> bool:
        """Store a value; on quota exhaustion purge non-essential keys once and retry once.

        Args:
            key: Key to write
            value: JSON-serializable value
            keep: Extra keys the purge must leave alone for this write

        Returns:
            True if stored, False if the retry after purging still hit the quota.

        Raises:
            StorageError: a non-quota storage failure
        """
        serialized = json.dumps(value, ensure_ascii=False)
        try:
            self._write(key, serialized)
            return True
        except StorageQuotaError as e:
            logger.warning("persistent_quota_exceeded", key=key, error=e.message)

        self.purge_non_essential(keep=keep)
        try:
            self._write(key, serialized)
            return True
        except StorageQuotaError as e:
            logger.error("persistent_write_failed", key=key, error=e.message)
            return False

    def _write(self, key: str, serialized: str) -> None:
        if self.max_bytes is not None:
            projected = self.stored_bytes(excluding=key) + len(serialized.encode("utf-8"))
            if projected > self.max_bytes:
                raise StorageQuotaError(
                    f"Durable cache quota exceeded ({projected} > {self.max_bytes} bytes)"
                ).with_context(operation="set", key=key)
        try:
            with self._conn:
                self._conn.execute(
                    "INSERT OR REPLACE INTO kv (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, serialized, self._clock()),
                )
        except sqlite3.OperationalError as e:
            if _is_disk_full(e):
                raise StorageQuotaError("Durable cache storage is full", cause=e) from e
            raise StorageError(f"Cannot write {key!r} to durable cache", cause=e) from e
        except sqlite3.Error as e:
            raise StorageError(f"Cannot write {key!r} to durable cache", cause=e) from e

    def stored_bytes(self, *, excluding: str | None = None) -> int:
        """Sum of stored value sizes in bytes, optionally leaving one key out."""
        try:
            row = self._conn.execute(
                "SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0) FROM kv WHERE key != ?",
                (excluding or "",),
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError("Cannot measure durable cache usage", cause=e) from e
        return int(row[0])

    def remove(self, key: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"Cannot remove {key!r} from durable cache", cause=e) from e

    def keys(self) -> list[str]:
        try:
            return [row[0] for row in self._conn.execute("SELECT key FROM kv ORDER BY key")]
        except sqlite3.Error as e:
            raise StorageError("Cannot list durable cache keys", cause=e) from e

    def purge_non_essential(self, *, keep: Iterable[str] = ()) -> list[str]:
        """Delete every key except the essential (credential/session) ones and ``keep``."""
        kept = self.essential_keys | frozenset(keep)
        purged = [key for key in self.keys() if key not in kept]
        try:
            with self._conn:
                self._conn.executemany("DELETE FROM kv WHERE key = ?", [(key,) for key in purged])
        except sqlite3.Error as e:
            raise StorageError("Cannot purge durable cache", cause=e) from e
        logger.info("persistent_purged", purged=len(purged))
        return purged

    # ── Document slot ────────────────────────────────────────────────────

    def save_document(self, document: Document) -> bool:
        """Replace the cached document, stamping ``cachedAt`` (epoch ms)."""
        payload = document.to_payload()
        payload["cachedAt"] = int(self._clock() * 1000)
        return self.set(DOCUMENT_KEY, payload)

    def mark_pending(self, pending: bool) -> bool:
        """Flag the cached document as saved locally but not yet published.

        A quota purge triggered by the flag never removes the document it
        refers to. Returns False when the flag could not be stored.
        """
        if not pending:
            self.remove(PENDING_KEY)
            return True
        return self.set(PENDING_KEY, True, keep=(DOCUMENT_KEY,))

    def has_pending(self) -> bool:
        return bool(self.get(PENDING_KEY))

    def load_document(self) -> Document | None:
        """Return the cached document, or None if absent or structurally invalid."""
        payload = self.get(DOCUMENT_KEY)
        if payload is None:
            return None
        try:
            document = validate_document(payload)
        except SchemaError as e:
            logger.warning("persistent_document_invalid", error=e.message, field=e.field)
            return None
        return clean_project_urls(document)


__all__ = [
    "PersistentCache",
    "DOCUMENT_KEY",
    "PENDING_KEY",
    "TOKEN_KEY",
    "TEAM_ID_KEY",
    "TEAM_NAME_KEY",
    "ESSENTIAL_KEYS",
]
