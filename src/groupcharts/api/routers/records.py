"""Records API endpoints."""

from fastapi import APIRouter, Depends, Query

from groupcharts.api.dependencies import get_records_service
from groupcharts.api.schemas.records import (
    GroupRecordsResponse,
    RecordLeaderboard,
    RecordTypeInfo,
)
from groupcharts.application.services.records_service import (
    RecordsService,
    list_record_types,
)

router = APIRouter()


@router.get("/records/types")
async def get_record_types() -> list[RecordTypeInfo]:
    return [RecordTypeInfo(**item) for item in list_record_types()]


@router.get("/groups/{group_id}/records")
async def get_group_records(
    group_id: str,
    service: RecordsService = Depends(get_records_service),
) -> GroupRecordsResponse:
    """Stored records summary. Status stays 'pending' until the next calculation."""
    return GroupRecordsResponse.model_validate(await service.get_group_records(group_id))


@router.post("/groups/{group_id}/records/calculate")
async def calculate_group_records(
    group_id: str,
    service: RecordsService = Depends(get_records_service),
) -> GroupRecordsResponse:
    await service.calculate_group_records(group_id)
    return GroupRecordsResponse.model_validate(await service.get_group_records(group_id))


# Hey future me - the record type is validated BEFORE any query runs; an unknown type is a
# 422 from the ValidationException handler, never a silent empty board.
@router.get("/groups/{group_id}/records/{record_type}")
async def get_record_leaderboard(
    group_id: str,
    record_type: str,
    chart_type: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=100),
    service: RecordsService = Depends(get_records_service),
) -> RecordLeaderboard:
    board = await service.get_record(group_id, record_type, chart_type, limit)
    return RecordLeaderboard.model_validate(board)
