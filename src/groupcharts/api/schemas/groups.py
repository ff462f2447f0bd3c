"""API schemas for group settings and recommendations."""

from pydantic import BaseModel, Field

from groupcharts.domain.entities import ChartMode


class GroupSettingsUpdate(BaseModel):
    """PATCH body - only the fields present are changed."""

    chart_size: int | None = Field(default=None, description="10, 20, 50 or 100")
    chart_mode: ChartMode | None = None
    tracking_day_of_week: int | None = Field(
        default=None, description="0 = Sunday ... 6 = Saturday"
    )


class GroupSettingsResponse(BaseModel):
    group_id: str
    chart_mode: str
    chart_size: int
    tracking_day_of_week: int
    changed: list[str]
    deleted_weeks: list[str]
    queued_weeks: list[str]


class Recommendation(BaseModel):
    group_id: str
    group_name: str
    score: float = Field(..., ge=0, le=100)
    artist_overlap: float
    track_overlap: float
    genre_overlap: float
    pattern_score: float


class RecommendationsResponse(BaseModel):
    user_id: str
    recommendations: list[Recommendation]


class RejectResponse(BaseModel):
    user_id: str
    group_id: str
    rejected: bool
