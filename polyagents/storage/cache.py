"""TTL caching layer for expensive operations.

Caches:
  - AI trade decisions (10 minute TTL, keyed by agent id + market id)
  - Market list responses (60 second TTL)
  - News feed responses (5 minute TTL)

Thread-safe, with automatic eviction of stale entries and a
configurable maximum cache size.
"""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable

from polyagents.observability.logger import get_logger

log = get_logger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    """A single cached value with TTL."""
    key: str
    value: Any
    created_at: float
    ttl_secs: float
    size_bytes: int = 0

    def is_expired(self, now: float) -> bool:
        return (now - self.created_at) >= self.ttl_secs


class TTLCache:
    """Thread-safe TTL cache with LRU eviction."""

    def __init__(self, max_size_mb: int = 50, clock: Clock = time.time):
        self._lock = Lock()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_size_bytes = max_size_mb * 1024 * 1024
        self._current_size_bytes = 0
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any | None:
        """Get a value from cache. Returns None on miss or expiry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                # Kept until overwritten or evicted so get_stale can still serve it.
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def get_stale(self, key: str) -> Any | None:
        """Return the value even if expired (last-good-copy fallback)."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.value if entry else None

    def put(self, key: str, value: Any, ttl_secs: float) -> None:
        """Put a value into cache with TTL."""
        size = _estimate_size(value)
        with self._lock:
            if key in self._entries:
                old = self._entries.pop(key)
                self._current_size_bytes -= old.size_bytes

            # Evict LRU entries if over size
            while self._current_size_bytes + size > self._max_size_bytes and self._entries:
                _, evicted = self._entries.popitem(last=False)
                self._current_size_bytes -= evicted.size_bytes

            self._entries[key] = CacheEntry(
                key=key, value=value, created_at=self._clock(),
                ttl_secs=ttl_secs, size_bytes=size,
            )
            self._current_size_bytes += size

    def invalidate(self, key: str) -> bool:
        """Remove a specific key. Returns True if it existed."""
        with self._lock:
            entry = self._entries.pop(key, None)
            if entry:
                self._current_size_bytes -= entry.size_bytes
                return True
            return False

    def invalidate_prefix(self, prefix: str) -> int:
        """Remove all keys starting with prefix. Returns count removed."""
        with self._lock:
            to_remove = [k for k in self._entries if k.startswith(prefix)]
            for k in to_remove:
                entry = self._entries.pop(k)
                self._current_size_bytes -= entry.size_bytes
            return len(to_remove)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._current_size_bytes = 0

    @property
    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "entries": len(self._entries),
                "size_mb": round(self._current_size_bytes / (1024 * 1024), 2),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total, 3) if total > 0 else 0.0,
            }


def _estimate_size(value: Any) -> int:
    """Rough estimate of object size in bytes."""
    try:
        return len(json.dumps(value, default=str).encode())
    except (TypeError, ValueError):
        return 1024
