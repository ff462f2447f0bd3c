"""API schemas for weekly trends.

Hey future me - fun facts are a discriminated union on ``kind``. Stored payloads are plain
JSON; they get validated HERE, at the read boundary, so a malformed stored fact fails loudly
instead of reaching a client half-shaped.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Field


class EntryRef(BaseModel):
    chart_type: str
    entry_key: str
    name: str
    artist: str | None = None
    slug: str
    position: int
    playcount: int


class NewEntry(EntryRef):
    is_debut: bool


class Climber(EntryRef):
    position_change: int
    is_new_peak: bool


class Faller(EntryRef):
    position_change: int


class Comeback(EntryRef):
    weeks_away: int = Field(..., ge=1)


class ChartExit(BaseModel):
    chart_type: str
    entry_key: str
    name: str
    artist: str | None = None
    slug: str
    last_position: int


class Streak(BaseModel):
    chart_type: str
    entry_key: str
    name: str
    artist: str | None = None
    slug: str
    position: int
    streak_length: int = Field(..., ge=2)


class SpotlightItem(BaseModel):
    chart_type: str
    name: str
    artist: str | None = None
    slug: str
    plays: int


class MemberSpotlight(BaseModel):
    user_id: str
    name: str | None = None
    total_plays: int
    distinct_entries: int
    highlight: str
    top_contributions: list[SpotlightItem]


class Contributor(BaseModel):
    user_id: str
    name: str | None = None
    plays: int
    entries: int


# ----- fun facts -----


class _FactBase(BaseModel):
    priority: int
    text: str


class ComebackFact(_FactBase):
    kind: Literal["comeback"]
    chart_type: str
    entry_key: str
    weeks_away: int


class StreakFact(_FactBase):
    kind: Literal["streak"]
    chart_type: str
    entry_key: str
    streak_length: int


class NewPeakFact(_FactBase):
    kind: Literal["new_peak"]
    chart_type: str
    entry_key: str
    position: int


class FirstTimersFact(_FactBase):
    kind: Literal["first_timers"]
    count: int


class ArtistDominanceFact(_FactBase):
    kind: Literal["artist_dominance"]
    artist: str
    count: int


class StabilityFact(_FactBase):
    kind: Literal["stability"]
    count: int


class TopThreeUnchangedFact(_FactBase):
    kind: Literal["top_three_unchanged"]
    chart_type: str


class PlayIncreaseFact(_FactBase):
    kind: Literal["play_increase"]
    percent: int


class CloseRaceFact(_FactBase):
    kind: Literal["close_race"]
    chart_type: str
    difference: int


class MvpFact(_FactBase):
    kind: Literal["mvp"]
    user_id: str
    plays: int


class TotalPlaysFact(_FactBase):
    kind: Literal["total_plays"]
    total_plays: int


FunFact = Annotated[
    ComebackFact
    | StreakFact
    | NewPeakFact
    | FirstTimersFact
    | ArtistDominanceFact
    | StabilityFact
    | TopThreeUnchangedFact
    | PlayIncreaseFact
    | CloseRaceFact
    | MvpFact
    | TotalPlaysFact,
    Field(discriminator="kind"),
]


class TrendsResponse(BaseModel):
    """Everything that changed in one group-week."""

    week_start: str
    new_entries: list[NewEntry] = Field(default_factory=list)
    biggest_climbers: list[Climber] = Field(default_factory=list)
    biggest_fallers: list[Faller] = Field(default_factory=list)
    exits: list[ChartExit] = Field(default_factory=list)
    comebacks: list[Comeback] = Field(default_factory=list)
    streaks: list[Streak] = Field(default_factory=list)
    fun_facts: list[FunFact] = Field(default_factory=list)
    member_spotlight: MemberSpotlight | None = None
    top_contributors: list[Contributor] = Field(default_factory=list)
    total_plays: int = 0
    total_plays_change: int | None = None
    chart_turnover: int = 0
