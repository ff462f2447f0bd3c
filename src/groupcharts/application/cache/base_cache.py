"""Base cache interface and in-memory implementation."""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """Cache entry with value and metadata."""

    value: V
    created_at: float
    ttl_seconds: int

    # Unix timestamps, so no timezone drama. A clock jumping backwards can expire entries early.
    def is_expired(self) -> bool:
        """Check if cache entry is expired."""
        return time.time() > (self.created_at + self.ttl_seconds)


class BaseCache(ABC, Generic[K, V]):
    """Base cache interface for all cache implementations."""

    @abstractmethod
    async def get(self, key: K) -> V | None:
        """Get value from cache.

        Returns:
            Cached value if found and not expired, None otherwise
        """

    @abstractmethod
    async def set(self, key: K, value: V, ttl_seconds: int = 3600) -> None:
        """Set value in cache."""

    @abstractmethod
    async def delete(self, key: K) -> bool:
        """Delete value from cache. Returns True if it existed."""

    @abstractmethod
    async def clear(self) -> None:
        """Clear all entries from cache."""


class InMemoryCache(BaseCache[K, V]):
    """In-memory cache implementation using a dictionary.

    Per-process only - a restart drops everything, and nothing is shared between workers.
    """

    # Listen up future me, the _lock is what keeps concurrent coroutines (the compatibility
    # funnel scores 10 candidates at once!) from read-modify-writing the dict at the same time.
    def __init__(self) -> None:
        self._cache: dict[K, CacheEntry[V]] = {}
        self._lock = asyncio.Lock()

    # get() evicts expired entries on read, so it has a side effect.
    async def get(self, key: K) -> V | None:
        async with self._lock:
            entry = self._cache.get(key)
            if not entry:
                return None

            if entry.is_expired():
                del self._cache[key]
                return None

            return entry.value

    async def get_many(self, keys: list[K]) -> dict[K, V]:
        """Get every non-expired key in one lock acquisition."""
        found: dict[K, V] = {}
        async with self._lock:
            for key in keys:
                entry = self._cache.get(key)
                if entry is None:
                    continue
                if entry.is_expired():
                    del self._cache[key]
                    continue
                found[key] = entry.value
        return found

    async def set(self, key: K, value: V, ttl_seconds: int = 3600) -> None:
        async with self._lock:
            self._cache[key] = CacheEntry(
                value=value,
                created_at=time.time(),
                ttl_seconds=ttl_seconds,
            )

    async def delete(self, key: K) -> bool:
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()

    async def cleanup_expired(self) -> int:
        """Remove expired entries from cache.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            expired_keys = [
                key for key, entry in self._cache.items() if entry.is_expired()
            ]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)

    # Not locked - monitoring only.
    def get_stats(self) -> dict[str, Any]:
        total_entries = len(self._cache)
        expired_entries = sum(1 for entry in self._cache.values() if entry.is_expired())
        return {
            "total_entries": total_entries,
            "active_entries": total_entries - expired_entries,
            "expired_entries": expired_entries,
        }
