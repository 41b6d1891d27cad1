"""
In-memory document cache with TTL and a byte budget.

Fetched documents are kept for a short time keyed by their read URL, so
repeated loads inside one process do not hit the publish target.

Manifesto:
    - **TTL by insertion:** an entry is valid while ``now - inserted_at < ttl``;
      expired entries are evicted lazily on access
    - **Byte budget:** capacity is bounded by the estimated serialized size of
      all values, not by entry count
    - **True LRU:** when over budget, the entry with the oldest *last access*
      is evicted; ``get`` refreshes recency, ``set`` counts as an access.
      Entries never read since insertion are therefore evicted in insertion
      order.
    - **Detached values:** ``set`` stores a deep copy and ``get`` hands out a
      fresh one, so callers editing a loaded document never touch the cache

Size estimate:
    ``len(json.dumps(value)) * 2`` per entry, i.e. two bytes per character,
    so multi-byte text is not under-counted.

Examples:
    >>> cache = LocalCache(ttl_seconds=300, max_bytes=10 * 1024 * 1024)
    >>> cache.set("https://store.vercel.app/data.json", {"projects": []})
    >>> cache.get("https://store.vercel.app/data.json")
    {'projects': []}

Tags:
    cache, ttl, lru, in-memory, deploystore

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import copy
import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from deploystore.core.logging import get_logger

logger = get_logger(__name__)


def estimate_size(value: Any) -> int:
    """Estimated bytes of a cached value (two bytes per serialized character)."""
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json")
    return len(json.dumps(value, default=str)) * 2


@dataclass
class CacheEntry:
    """One cached value."""

    value: Any
    inserted_at: float
    last_access: float
    size_bytes: int

    def expired(self, now: float, ttl: float) -> bool:
        return now - self.inserted_at >= ttl


class LocalCache:
    """Process-lifetime cache bounded by TTL and estimated bytes.

    Attributes:
        ttl_seconds: Lifetime of an entry from insertion.
        max_bytes: Budget for the sum of estimated entry sizes.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        max_bytes: int = 10 * 1024 * 1024,
        clock: Callable[[], float] = time.time,
    ):
        self._store: dict[str, CacheEntry] = {}
        self._ttl = ttl_seconds
        self._max_bytes = max_bytes
        self._clock = clock
        self.evictions = 0

    def get(self, key: str) -> Any | None:
        """Return the value if present and fresh, else evict it and return None."""
        entry = self._store.get(key)
        if entry is None:
            return None

        now = self._clock()
        if entry.expired(now, self._ttl):
            self.delete(key)
            return None

        entry.last_access = now
        return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any) -> None:
        """Insert or replace a value, evicting least-recently-used entries while over budget."""
        now = self._clock()
        size = estimate_size(value)
        self._store.pop(key, None)

        while self._store and self.size_bytes() + size > self._max_bytes:
            self._evict_lru()

        self._store[key] = CacheEntry(value=copy.deepcopy(value), inserted_at=now, last_access=now, size_bytes=size)

    def _evict_lru(self) -> None:
        # min() keeps the first of equal timestamps, i.e. insertion order
        lru_key = min(self._store, key=lambda k: self._store[k].last_access)
        evicted = self._store.pop(lru_key)
        self.evictions += 1
        logger.debug("cache_evicted", key=lru_key, size_bytes=evicted.size_bytes)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def exists(self, key: str) -> bool:
        """Check if key exists and is not expired, without refreshing recency."""
        entry = self._store.get(key)
        if entry is None:
            return False
        if entry.expired(self._clock(), self._ttl):
            self.delete(key)
            return False
        return True

    def clear(self) -> None:
        self._store.clear()

    def size(self) -> int:
        """Number of cached keys."""
        return len(self._store)

    def size_bytes(self) -> int:
        """Estimated bytes held by all cached values."""
        return sum(entry.size_bytes for entry in self._store.values())

    def keys(self) -> list[str]:
        return list(self._store)


__all__ = ["CacheEntry", "LocalCache", "estimate_size"]
