"""In-memory cache in front of a genre provider.

Hey future me - the compatibility funnel asks for the genres of the SAME popular artists once
per candidate group. Without this, ten candidates in a batch mean ten identical lookups.
Artists with no known genres are cached as [] so they aren't re-queried every time either.
"""

import logging

from groupcharts.application.cache.base_cache import InMemoryCache
from groupcharts.domain.ports import IGenreProvider

logger = logging.getLogger(__name__)


class CachedGenreProvider(IGenreProvider):
    """Genre provider decorator with a TTL cache."""

    def __init__(
        self,
        provider: IGenreProvider,
        cache: InMemoryCache[str, list[str]] | None = None,
        ttl_seconds: int = 6 * 3600,
    ) -> None:
        self._provider = provider
        self._cache: InMemoryCache[str, list[str]] = cache or InMemoryCache()
        self._ttl_seconds = ttl_seconds

    async def get_genres(self, artist_keys: list[str]) -> dict[str, list[str]]:
        cached = await self._cache.get_many(artist_keys)
        missing = [key for key in artist_keys if key not in cached]
        if missing:
            fetched = await self._provider.get_genres(missing)
            logger.debug(
                "Genre cache miss for %d of %d artists", len(missing), len(artist_keys)
            )
            for key in missing:
                genres = fetched.get(key, [])
                cached[key] = genres
                await self._cache.set(key, genres, ttl_seconds=self._ttl_seconds)
        return {key: genres for key, genres in cached.items() if genres}
