"""API router initialization."""

# Hey future me, this aggregates every sub-router; create_app() mounts it under /api.

from fastapi import APIRouter

from groupcharts.api.routers import charts, entries, groups, records, trends

api_router = APIRouter()

api_router.include_router(charts.router, tags=["Charts"])
api_router.include_router(trends.router, tags=["Trends"])
api_router.include_router(records.router, tags=["Records"])
api_router.include_router(entries.router, tags=["Entries"])
api_router.include_router(groups.router, tags=["Groups"])

__all__ = ["api_router", "charts", "entries", "groups", "records", "trends"]
