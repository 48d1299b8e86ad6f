"""
In-memory TTL cache for fingerprints and pairwise similarity scores.

Each DeduplicationEngine owns its own instances; nothing here is module-level
state. Writes replace an entry as a whole, so a reader never observes a
partially updated value.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

# Overflow eviction trims the cache down to this share of max_size.
EVICTION_TARGET_RATIO = 0.8


@dataclass
class CacheEntry(Generic[V]):
    value: V
    expires_at: float
    access_count: int = 0
    last_access: float = 0.0


class TTLCache(Generic[K, V]):
    """
    Keyed cache with TTL expiry and access-count eviction.

    When an insert pushes the cache past `max_size`, the least-accessed
    entries (ties broken by oldest last access) are evicted until the size
    is back at 80% of the limit.

    Args:
        name: Label used in logs and stats
        ttl_seconds: Lifetime of an entry after its last write
        max_size: Entry limit before eviction
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        name: str,
        ttl_seconds: float = 3600.0,
        max_size: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: dict[K, CacheEntry[V]] = {}
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and entry.expires_at > self._clock()

    def get(self, key: K) -> V | None:
        """Return the live value for key, counting a hit or a miss."""
        entry = self._entries.get(key)
        now = self._clock()
        if entry is None:
            self.misses += 1
            return None
        if entry.expires_at <= now:
            del self._entries[key]
            self.misses += 1
            return None
        entry.access_count += 1
        entry.last_access = now
        self.hits += 1
        return entry.value

    def set(self, key: K, value: V) -> None:
        """Insert or replace an entry."""
        now = self._clock()
        self._entries[key] = CacheEntry(value=value, expires_at=now + self.ttl_seconds, last_access=now)
        if len(self._entries) > self.max_size:
            self._evict_least_used()

    def invalidate(self, key: K) -> bool:
        return self._entries.pop(key, None) is not None

    def invalidate_where(self, predicate: Callable[[K], bool]) -> int:
        """Drop every entry whose key matches predicate; returns the count."""
        doomed = [key for key in self._entries if predicate(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _evict_least_used(self) -> None:
        self.evict_expired()
        target = max(1, int(self.max_size * EVICTION_TARGET_RATIO))
        overflow = len(self._entries) - target
        if overflow <= 0:
            return
        ranked = sorted(
            self._entries.items(),
            key=lambda item: (item[1].access_count, item[1].last_access),
        )
        for key, _ in ranked[:overflow]:
            del self._entries[key]
        self.evictions += overflow
        logger.debug(f"Cache '{self.name}' evicted {overflow} entries (size now {len(self._entries)})")

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "name": self.name,
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hits / lookups, 4) if lookups else 0.0,
        }
