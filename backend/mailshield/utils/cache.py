"""
MailShield In-Memory TTL Cache

Process-local key/value cache with lazy TTL eviction. Instances are
injected into the components that need them (threat-intel results,
click-time verdicts, rate-limit counters) together with a clock so
tests can control time.
"""

import time
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

# Returns seconds; only differences between calls matter.
Clock = Callable[[], float]


@dataclass
class CacheStats:
    """Counters reported by :meth:`TTLCache.stats`."""
    size: int
    hits: int
    misses: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hit_rate, 3),
        }


class TTLCache(Generic[V]):
    """
    Thread-safe TTL cache.

    Expired entries are dropped when they are read or when a write needs
    room; ``evict_expired`` is the explicit sweep for callers that want
    periodic cleanup. When ``max_entries`` is reached the oldest entry
    is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: Optional[int] = None,
        clock: Optional[Clock] = None,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock: Clock = clock or time.monotonic
        self._entries: "OrderedDict[str, Tuple[V, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Optional[V]:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                self._evictions += 1
                self._misses += 1
                return None
            self._hits += 1
            return value

    def set(self, key: str, value: V, ttl_seconds: Optional[float] = None) -> None:
        """Store value under key for ttl_seconds (cache default when omitted)."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            elif self.max_entries is not None and len(self._entries) >= self.max_entries:
                self._evict_expired_locked(now)
                while len(self._entries) >= self.max_entries:
                    self._entries.popitem(last=False)
                    self._evictions += 1
            self._entries[key] = (value, now + ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def expires_in(self, key: str) -> Optional[float]:
        """Seconds until key expires, None if absent."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            remaining = entry[1] - self._clock()
            return remaining if remaining > 0 else None

    def evict_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        with self._lock:
            return self._evict_expired_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
            )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def _evict_expired_locked(self, now: float) -> int:
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        self._evictions += len(expired)
        if expired:
            logger.debug(f"Evicted {len(expired)} expired cache entries")
        return len(expired)
