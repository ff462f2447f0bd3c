"""Trends API endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from groupcharts.api.dependencies import get_trends_service
from groupcharts.api.schemas.trends import TrendsResponse
from groupcharts.application.services.trends_service import TrendsService

router = APIRouter()


@router.get("/groups/{group_id}/trends")
async def get_trends(
    group_id: str,
    week_start: datetime | None = Query(default=None, description="Defaults to latest week"),
    service: TrendsService = Depends(get_trends_service),
) -> TrendsResponse:
    """What changed in a group-week: movers, comebacks, streaks, fun facts, spotlight."""
    payload = await service.get_trends(group_id, week_start)
    return TrendsResponse.model_validate(payload)
