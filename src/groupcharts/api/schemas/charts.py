"""API schemas for charts and entry stats."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ChartEntryResponse(BaseModel):
    """One position of a weekly chart."""

    model_config = ConfigDict(from_attributes=True)

    position: int = Field(..., ge=1)
    entry_key: str
    name: str
    artist: str | None = None
    slug: str
    playcount: int = Field(..., ge=0)
    vibe_score: float | None = Field(default=None, description="Null for plays_only groups")
    position_change: int | None = Field(default=None, description="Null = new entry")
    plays_change: int | None = None
    entry_type: str
    total_weeks_appeared: int
    highest_position: int
    major_driver_id: str | None = None


class ChartResponse(BaseModel):
    """A chart of one type for one group-week."""

    group_id: str
    chart_type: str
    week_start: datetime
    entries: list[ChartEntryResponse]


class WeekListResponse(BaseModel):
    group_id: str
    weeks: list[datetime]


class GenerateWeekResponse(BaseModel):
    """Outcome of a generation request."""

    group_id: str
    week_start: str
    created: bool
    total_plays: int
    missing_members: list[str] = Field(default_factory=list)
    entry_counts: dict[str, int] = Field(default_factory=dict)
    generated_weeks: list[str] = Field(default_factory=list)
    regenerated_weeks: int = 0


class MajorDriver(BaseModel):
    user_id: str
    name: str | None = Field(default=None, description="Resolved at read time")
    contribution: float


class EntryStatsResponse(BaseModel):
    """Lifetime stats of one chart entry."""

    chart_type: str
    entry_key: str
    name: str | None
    artist: str | None = None
    slug: str | None
    peak_position: int | None
    weeks_at_peak: int
    debut_position: int | None
    debut_week: datetime | None
    weeks_at_one: int
    weeks_in_top10: int
    total_weeks_charting: int
    total_weeks_appeared: int
    longest_streak: int
    current_streak: int
    is_streak_ongoing: bool
    latest_appearance: datetime | None
    total_vs: float
    total_plays: int
    major_driver: MajorDriver | None = None
