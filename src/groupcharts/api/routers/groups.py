"""Group settings and recommendation endpoints."""

import logging

from fastapi import APIRouter, Depends, Query

from groupcharts.api.dependencies import (
    get_acting_user_id,
    get_group_settings_service,
    get_recommendation_service,
)
from groupcharts.api.schemas.groups import (
    GroupSettingsResponse,
    GroupSettingsUpdate,
    Recommendation,
    RecommendationsResponse,
    RejectResponse,
)
from groupcharts.application.services.group_settings_service import GroupSettingsService
from groupcharts.application.services.recommendation_service import (
    RecommendationService,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# Hey future me - a tracking-day change here DELETES materialized weeks. It's owner-only and
# explicit; the whole thing commits in the request transaction or not at all.
@router.patch("/groups/{group_id}/settings")
async def update_group_settings(
    group_id: str,
    body: GroupSettingsUpdate,
    acting_user_id: str = Depends(get_acting_user_id),
    service: GroupSettingsService = Depends(get_group_settings_service),
) -> GroupSettingsResponse:
    result = await service.update_settings(
        group_id,
        acting_user_id,
        chart_size=body.chart_size,
        chart_mode=body.chart_mode,
        tracking_day_of_week=body.tracking_day_of_week,
    )
    return GroupSettingsResponse(**result.to_dict())


@router.get("/users/{user_id}/recommendations")
async def get_recommendations(
    user_id: str,
    refresh: bool = Query(default=False, description="Ignore the cached result"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> RecommendationsResponse:
    recommendations = await service.get_recommendations(user_id, force=refresh)
    return RecommendationsResponse(
        user_id=user_id,
        recommendations=[Recommendation(**r) for r in recommendations],
    )


@router.post("/users/{user_id}/recommendations/{group_id}/reject")
async def reject_recommendation(
    user_id: str,
    group_id: str,
    service: RecommendationService = Depends(get_recommendation_service),
) -> RejectResponse:
    rejected = await service.reject_group(user_id, group_id)
    return RejectResponse(user_id=user_id, group_id=group_id, rejected=rejected)
