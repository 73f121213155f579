"""
Bastion - TTL Cache
===================

TTL-based cache for per-community state held in memory.

Author: Bastion Maintainers
"""

from typing import Dict, Generic, Optional, Tuple, TypeVar

from bastion.utils.clock import Clock, SYSTEM_CLOCK

K = TypeVar("K")
V = TypeVar("V")


class TTLCache(Generic[K, V]):
    """
    A simple TTL-based cache with automatic expiration.

    Safe for single-threaded async use. Time comes from the injected clock
    so expiry follows logical time in tests.
    """

    def __init__(self, ttl: float, max_size: int = 100, clock: Clock = SYSTEM_CLOCK):
        """
        Initialize the TTL cache.

        Args:
            ttl: Time-to-live for cached items, in seconds.
            max_size: Maximum number of items to store (oldest evicted first).
            clock: Time source.
        """
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._cache: Dict[K, Tuple[V, float]] = {}

    def get(self, key: K) -> Optional[V]:
        """
        Get an item from the cache if it exists and hasn't expired.

        Returns:
            The cached value or None if not found/expired.
        """
        entry = self._cache.get(key)
        if entry is None:
            return None

        value, cached_at = entry
        if self._clock.now() - cached_at > self._ttl:
            self._cache.pop(key, None)
            return None

        return value

    def set(self, key: K, value: V) -> None:
        """Set an item, refreshing its timestamp."""
        if len(self._cache) >= self._max_size and key not in self._cache:
            self._evict_oldest()

        self._cache[key] = (value, self._clock.now())

    def delete(self, key: K) -> bool:
        """
        Delete an item from the cache.

        Returns:
            True if item was deleted, False if not found.
        """
        return self._cache.pop(key, None) is not None

    def _evict_oldest(self) -> None:
        if not self._cache:
            return
        oldest_key = min(self._cache, key=lambda k: self._cache[k][1])
        del self._cache[oldest_key]

    def cleanup_expired(self) -> int:
        """
        Remove all expired items from the cache.

        Returns:
            Number of items removed.
        """
        now = self._clock.now()
        expired_keys = [
            k for k, (_, cached_at) in self._cache.items()
            if now - cached_at > self._ttl
        ]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._cache)


__all__ = ["TTLCache"]
