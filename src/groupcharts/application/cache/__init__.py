"""Caching layer - in-process caches in front of slow lookups."""

from groupcharts.application.cache.base_cache import BaseCache, InMemoryCache
from groupcharts.application.cache.genre_cache import CachedGenreProvider

__all__ = ["BaseCache", "CachedGenreProvider", "InMemoryCache"]
