"""In-memory TTL cache for upstream responses."""

import json
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, TypeVar

V = TypeVar("V")


def cache_key(endpoint: str, params: Optional[dict] = None) -> str:
    """Fingerprint a request from its endpoint name and parameters."""
    return f"{endpoint}_{json.dumps(params or {}, sort_keys=True, default=str)}"


@dataclass
class CacheEntry(Generic[V]):
    """Cache entry with its capture time and time-to-live."""
    value: V
    timestamp: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.timestamp < self.ttl


class TTLCache(Generic[V]):
    """Key/value cache where every entry carries its own TTL.

    Expiry is checked on read: an expired entry is treated as absent and
    removed at that point. There is no background sweep.

    Features:
    - Per-entry TTL with a cache-wide default
    - Injectable clock for deterministic expiry
    - Hit/miss statistics
    """

    def __init__(
        self,
        default_ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            default_ttl: TTL in seconds used when set() is given none
            clock: Monotonic time source in seconds
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry[V]] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[V]:
        """Get a live value.

        Args:
            key: Cache key

        Returns:
            The cached value, or None if absent or expired
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if not entry.is_valid(self._clock()):
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return entry.value

    def set(self, key: str, value: V, ttl: Optional[float] = None):
        """Store a value, replacing any previous entry for the key."""
        self._entries[key] = CacheEntry(
            value=value,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def remove(self, key: str) -> bool:
        """Remove an entry. Returns True if it existed."""
        return self._entries.pop(key, None) is not None

    def clear(self):
        """Drop every entry and reset statistics."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.is_valid(self._clock())

    def stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dictionary with hits, misses, hit_rate, size
        """
        total = self._hits + self._misses
        return {
            'hits': self._hits,
            'misses': self._misses,
            'hit_rate': self._hits / total if total > 0 else 0.0,
            'size': len(self._entries),
        }
