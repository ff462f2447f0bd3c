"""Tests for the in-memory cache and the cached genre provider."""

from unittest.mock import AsyncMock

import pytest

from groupcharts.application.cache import CachedGenreProvider, InMemoryCache
from groupcharts.domain.ports import IGenreProvider


class TestInMemoryCache:
    """Test InMemoryCache."""

    @pytest.fixture
    def cache(self) -> InMemoryCache[str, int]:
        return InMemoryCache()

    async def test_set_and_get(self, cache: InMemoryCache[str, int]) -> None:
        await cache.set("a", 1)

        assert await cache.get("a") == 1
        assert await cache.get("missing") is None

    async def test_expired_entry_is_evicted_on_read(
        self, cache: InMemoryCache[str, int]
    ) -> None:
        await cache.set("old", 1, ttl_seconds=-1)

        assert await cache.get("old") is None
        assert cache.get_stats()["total_entries"] == 0

    async def test_get_many_skips_missing_and_expired(
        self, cache: InMemoryCache[str, int]
    ) -> None:
        await cache.set("a", 1)
        await cache.set("b", 2, ttl_seconds=-1)

        assert await cache.get_many(["a", "b", "c"]) == {"a": 1}

    async def test_delete_and_clear(self, cache: InMemoryCache[str, int]) -> None:
        await cache.set("a", 1)
        await cache.set("b", 2)

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False
        await cache.clear()
        assert await cache.get("b") is None

    async def test_cleanup_expired(self, cache: InMemoryCache[str, int]) -> None:
        await cache.set("fresh", 1)
        await cache.set("stale", 2, ttl_seconds=-1)

        assert cache.get_stats() == {
            "total_entries": 2,
            "active_entries": 1,
            "expired_entries": 1,
        }
        assert await cache.cleanup_expired() == 1
        assert await cache.get("fresh") == 1


class TestCachedGenreProvider:
    """Test the genre provider decorator."""

    @pytest.fixture
    def provider(self) -> AsyncMock:
        mock = AsyncMock(spec=IGenreProvider)
        mock.get_genres.return_value = {"artist x": ["indie", "rock"]}
        return mock

    async def test_second_lookup_is_served_from_cache(self, provider: AsyncMock) -> None:
        cached = CachedGenreProvider(provider)

        first = await cached.get_genres(["artist x", "artist y"])
        second = await cached.get_genres(["artist x", "artist y"])

        assert first == second == {"artist x": ["indie", "rock"]}
        provider.get_genres.assert_awaited_once_with(["artist x", "artist y"])

    async def test_only_missing_keys_are_fetched(self, provider: AsyncMock) -> None:
        cache: InMemoryCache[str, list[str]] = InMemoryCache()
        await cache.set("artist x", ["indie"])
        provider.get_genres.return_value = {"artist z": ["jazz"]}

        result = await CachedGenreProvider(provider, cache).get_genres(["artist x", "artist z"])

        assert result == {"artist x": ["indie"], "artist z": ["jazz"]}
        provider.get_genres.assert_awaited_once_with(["artist z"])
