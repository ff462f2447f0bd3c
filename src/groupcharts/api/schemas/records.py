"""API schemas for records.

Leaderboard rows are a discriminated union on ``kind``: entry records rank chart entries,
artist records rank artists.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class EntryRecordRow(BaseModel):
    kind: Literal["entry"]
    rank: int = Field(..., ge=1)
    entry_key: str
    name: str | None
    artist: str | None = None
    slug: str | None
    value: float = Field(..., gt=0)


class ArtistRecordRow(BaseModel):
    kind: Literal["artist"]
    rank: int = Field(..., ge=1)
    artist: str
    value: int = Field(..., gt=0)


RecordRow = Annotated[EntryRecordRow | ArtistRecordRow, Field(discriminator="kind")]


class RecordLeaderboard(BaseModel):
    record_type: str
    display_name: str
    chart_type: str
    entries: list[RecordRow]


class RecordTotals(BaseModel):
    entries_charted: int
    number_ones: int


class RecordsSummary(BaseModel):
    chart_records: dict[str, dict[str, RecordLeaderboard]] = Field(default_factory=dict)
    artist_records: dict[str, RecordLeaderboard] = Field(default_factory=dict)
    totals: dict[str, RecordTotals] = Field(default_factory=dict)
    calculated_at: str | None = None


class GroupRecordsResponse(BaseModel):
    group_id: str
    status: Literal["pending", "completed"]
    records: RecordsSummary
    updated_at: datetime | None = None


class RecordTypeInfo(BaseModel):
    record_type: str
    display_name: str
    is_artist_record: bool
