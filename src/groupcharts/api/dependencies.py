"""Dependency injection for API endpoints."""

import logging
from collections.abc import AsyncGenerator
from typing import cast

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from groupcharts.application.cache import InMemoryCache
from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.application.services.entry_stats_service import EntryStatsService
from groupcharts.application.services.group_settings_service import GroupSettingsService
from groupcharts.application.services.recommendation_service import (
    RecommendationService,
)
from groupcharts.application.services.records_service import RecordsService
from groupcharts.application.services.trends_service import TrendsService
from groupcharts.config import Settings
from groupcharts.infrastructure.persistence.database import Database

logger = logging.getLogger(__name__)


def get_database(request: Request) -> Database:
    """Database attached to app.state at startup (503 if startup didn't run)."""
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    return cast(Database, db)


def get_app_settings(request: Request) -> Settings:
    return cast(Settings, request.app.state.settings)


# Hey future me - one session per request via session_scope(): the whole request commits
# together or rolls back together. The settings PATCH relies on this - settings write,
# week deletion and regeneration queueing land atomically.
async def get_db_session(
    db: Database = Depends(get_database),
) -> AsyncGenerator[AsyncSession, None]:
    async with db.session_scope() as session:
        yield session


def get_session_factory(
    db: Database = Depends(get_database),
) -> async_sessionmaker[AsyncSession]:
    return db.session_factory


def get_genre_cache(request: Request) -> InMemoryCache[str, list[str]]:
    """Process-wide genre cache shared by recommendation requests."""
    cache = getattr(request.app.state, "genre_cache", None)
    if cache is None:
        cache = InMemoryCache[str, list[str]]()
        request.app.state.genre_cache = cache
    return cast(InMemoryCache[str, list[str]], cache)


def get_acting_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    """Acting user for owner-gated operations (authentication lives in front of this API)."""
    return x_user_id


def get_chart_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> ChartGenerationService:
    return ChartGenerationService(session, settings=settings)


def get_trends_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> TrendsService:
    return TrendsService(session, settings)


def get_records_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> RecordsService:
    return RecordsService(session, settings)


def get_entry_stats_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> EntryStatsService:
    return EntryStatsService(session, settings)


def get_group_settings_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
) -> GroupSettingsService:
    return GroupSettingsService(session, settings)


def get_recommendation_service(
    session: AsyncSession = Depends(get_db_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    genre_cache: InMemoryCache[str, list[str]] = Depends(get_genre_cache),
    settings: Settings = Depends(get_app_settings),
) -> RecommendationService:
    return RecommendationService(session, session_factory, genre_cache, settings)
