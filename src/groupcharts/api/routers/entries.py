"""Chart entry stats endpoints."""

from fastapi import APIRouter, Depends

from groupcharts.api.dependencies import get_entry_stats_service
from groupcharts.api.schemas.charts import EntryStatsResponse
from groupcharts.application.services.entry_stats_service import EntryStatsService

router = APIRouter()


@router.get("/groups/{group_id}/entries/{chart_type}/{slug}/stats")
async def get_entry_stats(
    group_id: str,
    chart_type: str,
    slug: str,
    service: EntryStatsService = Depends(get_entry_stats_service),
) -> EntryStatsResponse:
    """Lifetime stats of an entry; stale cache rows are recomputed on the way."""
    stats = await service.get_entry_stats_by_slug(group_id, chart_type, slug)
    return EntryStatsResponse.model_validate(stats)
