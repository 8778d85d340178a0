"""
TTL snapshot cache
- Holds the last result of an expensive catalog scan per scope key
- Entries expire after a fixed TTL
- Thread-safe; the lock only guards the in-memory dict, never the scan itself
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CachedSnapshot(Generic[T]):
    """A cached value and the time it was stored"""
    value: T
    stored_at: float = field(default_factory=time.monotonic)
    hit_count: int = 0

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_expired(self, ttl_seconds: float, now: float) -> bool:
        return self.age(now) >= ttl_seconds


class TTLCache(Generic[T]):
    """Scope-keyed snapshot cache with expiry"""

    def __init__(self, ttl_seconds: float = 3600, *, clock: Optional[Callable[[], float]] = None):
        """
        Args:
            ttl_seconds: lifetime of a snapshot, default 1 hour
            clock: monotonic clock, injectable for tests
        """
        self._entries: Dict[str, CachedSnapshot[T]] = {}
        self._ttl_seconds = float(ttl_seconds)
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._total_hits = 0
        self._total_misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get(self, key: str) -> Optional[T]:
        """Return the cached value, or None when missing or expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._total_misses += 1
                return None
            if entry.is_expired(self._ttl_seconds, now):
                del self._entries[key]
                self._total_misses += 1
                return None
            entry.hit_count += 1
            self._total_hits += 1
            return entry.value

    def put(self, key: str, value: T) -> None:
        snapshot = CachedSnapshot(value=value, stored_at=self._clock())
        with self._lock:
            self._entries[key] = snapshot

    def age(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            return None if entry is None else entry.age(self._clock())

    def invalidate(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._total_hits + self._total_misses
            return {
                "size": len(self._entries),
                "ttl_seconds": self._ttl_seconds,
                "total_hits": self._total_hits,
                "total_misses": self._total_misses,
                "hit_rate": round(self._total_hits / lookups, 4) if lookups else 0,
            }
