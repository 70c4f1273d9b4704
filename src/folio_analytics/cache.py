"""
Small in-process TTL cache for query results.

The cache is an explicit object owned by the ``Analytics`` instance and
passed to the routers that use it, so tests can build their own with a
fake clock.
"""
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Hashable, Optional


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """Thread-safe key/value cache whose entries expire after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}
        self._lock = Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self.clock():
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self.clock() + ttl)

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        now = self.clock()
        with self._lock:
            return sum(1 for entry in self._entries.values() if entry.expires_at > now)
