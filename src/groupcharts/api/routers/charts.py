"""Chart API endpoints."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from groupcharts.api.dependencies import get_chart_service
from groupcharts.api.schemas.charts import (
    ChartEntryResponse,
    ChartResponse,
    GenerateWeekResponse,
    WeekListResponse,
)
from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.domain.entities import ChartType
from groupcharts.domain.exceptions import EntityNotFoundException

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/groups/{group_id}/charts")
async def get_chart(
    group_id: str,
    chart_type: str = Query(default=ChartType.ARTISTS.value),
    week_start: datetime | None = Query(default=None, description="Defaults to latest week"),
    service: ChartGenerationService = Depends(get_chart_service),
) -> ChartResponse:
    """Get one chart of a group-week in position order."""
    parsed = ChartType.parse(chart_type)
    if week_start is None:
        weeks = await service.list_weeks(group_id)
        if not weeks:
            raise EntityNotFoundException("ChartWeek", f"{group_id}@latest")
        week_start = weeks[-1]
    rows = await service.get_chart(group_id, week_start, parsed)
    return ChartResponse(
        group_id=group_id,
        chart_type=parsed.value,
        week_start=week_start,
        entries=[ChartEntryResponse.model_validate(row) for row in rows],
    )


@router.get("/groups/{group_id}/charts/weeks")
async def list_chart_weeks(
    group_id: str,
    service: ChartGenerationService = Depends(get_chart_service),
) -> WeekListResponse:
    return WeekListResponse(group_id=group_id, weeks=await service.list_weeks(group_id))


# Hey future me - this catches the group up: every finished week missing since the last chart
# is built, oldest first. The response describes the latest week; calling it again in the
# same week returns that stored week with created=false. Finished queued regenerations run too.
@router.post("/groups/{group_id}/charts/generate")
async def generate_charts(
    group_id: str,
    service: ChartGenerationService = Depends(get_chart_service),
) -> GenerateWeekResponse:
    """Generate every missing finished week of a group."""
    generated = await service.generate_missing_weeks(group_id)
    latest = generated[-1] if generated else await service.generate_latest_week(group_id)
    regenerated = await service.process_regeneration_queue(group_id)
    return GenerateWeekResponse(
        **latest.to_dict(),
        generated_weeks=[result.week_start.isoformat() for result in generated],
        regenerated_weeks=regenerated,
    )


@router.post("/groups/{group_id}/charts/initialize")
async def initialize_group_charts(
    group_id: str,
    service: ChartGenerationService = Depends(get_chart_service),
) -> WeekListResponse:
    """Backfill the last finished weeks of a new group."""
    generated = await service.initialize_group(group_id)
    return WeekListResponse(group_id=group_id, weeks=generated)
