"""Time-bounded cache for computed grade aggregates."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float


class GradeCache:
    """Keyed store of ``(value, stored_at)`` entries that expire after a TTL.

    Owned by whoever serves the aggregates and passed in explicitly, so its
    lifetime is the lifetime of that owner. ``clock`` defaults to
    ``time.monotonic`` and can be replaced in tests.

    ``get`` returns None both for a miss and for a cached None; use ``in`` or
    ``get_or_compute`` when None is a meaningful value. ``get_or_compute``
    holds the lock while computing, so concurrent callers for a stale key
    compute once. Expired entries are pruned whenever a value is stored.
    """

    def __init__(
        self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}
        # Reentrant so a compute callback may read the cache
        self._lock = threading.RLock()

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at < self.ttl_seconds

    def _fresh_entry(self, key: Hashable) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry, self._clock()):
            del self._entries[key]
            return None
        return entry

    def _store(self, key: Hashable, value: Any) -> None:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if not self._is_fresh(e, now)]
        for k in expired:
            del self._entries[k]
        self._entries[key] = CacheEntry(value=value, stored_at=now)

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._fresh_entry(key)
            return entry.value if entry is not None else None

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._store(key, value)

    def invalidate(self, key: Hashable) -> bool:
        """Drop one entry. Returns True if something was removed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        with self._lock:
            entry = self._fresh_entry(key)
            if entry is not None:
                return entry.value
            value = compute()
            self._store(key, value)
            return value

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return self._fresh_entry(key) is not None

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for e in self._entries.values() if self._is_fresh(e, now))
