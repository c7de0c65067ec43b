"""Unified caching abstraction for urlsentry.

Provides consistent caching behavior across:
- Analysis verdicts (keyed by normalized URL)
- External intelligence answers (one namespace per service)

Supports:
- In-memory caching with per-entry TTL
- Bounded size with oldest-first bulk eviction
- Thread-safe operations
"""

import logging
import math
import threading
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class CacheEntry:
    """Represents a cached value with timestamp."""

    __slots__ = ("value", "timestamp", "ttl_seconds")

    def __init__(self, value: Any, timestamp: float, ttl_seconds: Optional[float] = None):
        self.value = value
        self.timestamp = timestamp
        self.ttl_seconds = ttl_seconds

    def is_expired(self, default_ttl: float, now: float) -> bool:
        """Check if this entry has expired."""
        ttl = self.ttl_seconds if self.ttl_seconds is not None else default_ttl
        return now - self.timestamp >= ttl


class CacheManager:
    """
    In-memory TTL cache with bounded size.

    Usage:
        cache = CacheManager(ttl_seconds=3600, namespace="virustotal", max_entries=1000)

        cache.set("https://example.com", verdict, ttl_seconds=86400)
        cached = cache.get("https://example.com")

    When the cache is full, inserting a new key first evicts the oldest
    `evict_fraction` of entries (at least one) by insertion timestamp.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        namespace: str = "",
        max_entries: Optional[int] = None,
        evict_fraction: float = 0.2,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize cache manager.

        Args:
            ttl_seconds: Default TTL for cache entries
            namespace: Prefix for cache keys (e.g., "results", "virustotal")
            max_entries: Capacity; None means unbounded
            evict_fraction: Share of entries dropped when the cache is full
            clock: Time source in seconds (injectable for tests)
        """
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace
        self.max_entries = max_entries
        self.evict_fraction = evict_fraction
        self._clock = clock

        self._memory: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _make_key(self, key: str) -> str:
        """Generate full cache key with namespace."""
        if self.namespace:
            return f"{self.namespace}:{key}"
        return key

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached value if exists and not expired.

        Args:
            key: Cache key (will be prefixed with namespace)

        Returns:
            Cached value or None if not found/expired
        """
        full_key = self._make_key(key)

        with self._lock:
            entry = self._memory.get(full_key)
            if entry is not None:
                if not entry.is_expired(self.ttl_seconds, self._clock()):
                    self._hits += 1
                    return entry.value
                # Expired - remove from memory
                del self._memory[full_key]
            self._misses += 1

        return None

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
    ) -> None:
        """
        Set cached value.

        Args:
            key: Cache key (will be prefixed with namespace)
            value: Value to cache
            ttl_seconds: Override default TTL for this entry
        """
        full_key = self._make_key(key)

        with self._lock:
            if full_key not in self._memory and self._is_full():
                self._evict_oldest()
            self._memory[full_key] = CacheEntry(
                value=value,
                timestamp=self._clock(),
                ttl_seconds=ttl_seconds,
            )

    def clear(self) -> None:
        """Clear all cached values."""
        with self._lock:
            self._memory.clear()

    def _is_full(self) -> bool:
        return self.max_entries is not None and len(self._memory) >= self.max_entries

    def _evict_oldest(self) -> None:
        """Drop the oldest entries by timestamp. Caller holds the lock."""
        count = max(1, math.floor(self.max_entries * self.evict_fraction))
        oldest = sorted(self._memory.items(), key=lambda item: item[1].timestamp)[:count]
        for full_key, _ in oldest:
            del self._memory[full_key]
        self._evictions += len(oldest)
        logger.debug(f"Evicted {len(oldest)} entries from {self.namespace or 'cache'}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._memory)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "namespace": self.namespace,
                "ttl_seconds": self.ttl_seconds,
                "memory_entries": len(self._memory),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
