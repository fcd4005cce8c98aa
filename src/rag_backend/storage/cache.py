"""
Process-local TTL caches owned by the collection store.

Entries are independently keyed and time-bounded; a lock guards the map so
concurrent requests (and worker threads) can read and write safely. The
clock is injectable so tests can move time explicitly.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Generic, TypeVar

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry(Generic[V]):
    """A cached value with the time it was observed."""

    value: V
    observed_at: float


@dataclass(frozen=True)
class ExistenceCacheEntry:
    """Cached answer to "does this collection exist"."""

    collection_name: str
    exists: bool
    observed_at: float


class ExpiringCache(Generic[V]):
    """
    Lock-guarded map with a fixed TTL.

    ``get`` only returns fresh values; ``get_entry`` also returns stale ones
    so callers can fall back to them when the remote source is unavailable.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be > 0, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}
        self._lock = Lock()

    def now(self) -> float:
        return self._clock()

    def is_fresh(self, entry: CacheEntry[V]) -> bool:
        return self._clock() - entry.observed_at < self.ttl_seconds

    def get(self, key: str) -> V | None:
        """Return the value if present and not expired."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is None or not self.is_fresh(entry):
            return None
        return entry.value

    def get_entry(self, key: str) -> CacheEntry[V] | None:
        """Return the entry regardless of age."""
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, observed_at=self._clock())

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ExistenceCache:
    """Collection existence cache keyed by collection name."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._cache: ExpiringCache[bool] = ExpiringCache(ttl_seconds, clock)

    @property
    def ttl_seconds(self) -> float:
        return self._cache.ttl_seconds

    def age(self, name: str) -> float | None:
        """Seconds since ``name`` was last observed, or None if never."""
        entry = self._cache.get_entry(name)
        if entry is None:
            return None
        return self._cache.now() - entry.observed_at

    def lookup(self, name: str) -> ExistenceCacheEntry | None:
        """Return the entry for ``name`` regardless of age, or None."""
        entry = self._cache.get_entry(name)
        if entry is None:
            return None
        return ExistenceCacheEntry(name, entry.value, entry.observed_at)

    def fresh(self, name: str) -> bool | None:
        """Return the cached answer if still within the TTL."""
        return self._cache.get(name)

    def record(self, name: str, exists: bool) -> None:
        self._cache.set(name, exists)

    def invalidate(self, name: str | None = None) -> None:
        if name is None:
            self._cache.clear()
        else:
            self._cache.invalidate(name)
