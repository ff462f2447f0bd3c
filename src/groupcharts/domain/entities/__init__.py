"""Domain entities for group charts.

Hey future me - these are plain dataclasses, NOT ORM models and NOT pydantic models.
The domain layer stays free of SQLAlchemy; repositories convert between the two.
Anything that crosses the HTTP boundary gets its own pydantic schema in api/schemas.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from groupcharts.domain.exceptions import (
    UnsupportedChartTypeError,
    UnsupportedRecordTypeError,
    ValidationException,
)


class ChartType(str, Enum):
    """The three kinds of chart a group produces each week."""

    ARTISTS = "artists"
    TRACKS = "tracks"
    ALBUMS = "albums"

    @classmethod
    def parse(cls, value: "str | ChartType") -> "ChartType":
        """Parse a chart type, raising UnsupportedChartTypeError on junk."""
        if isinstance(value, ChartType):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedChartTypeError(value) from None


class ChartMode(str, Enum):
    """Ranking strategy selected per group."""

    PLAYS_ONLY = "plays_only"
    VS = "vs"
    VS_WEIGHTED = "vs_weighted"

    @classmethod
    def parse(cls, value: "str | ChartMode") -> "ChartMode":
        if isinstance(value, ChartMode):
            return value
        try:
            return cls(str(value))
        except ValueError:
            raise ValidationException(f"Unsupported chart mode: {value}") from None


# Hey future me - "new" means "not in LAST week's chart", which covers both debuts and
# re-entries. Whether a new entry is a debut or a comeback is decided by
# total_weeks_appeared (1 = debut), not by this enum.
class EntryType(str, Enum):
    """Movement classification of a chart entry relative to the previous week."""

    NEW = "new"
    UP = "up"
    DOWN = "down"
    STEADY = "steady"


class RecordStatus(str, Enum):
    """Lifecycle of a group's records summary."""

    PENDING = "pending"
    COMPLETED = "completed"


class RecordType(str, Enum):
    """Leaderboards the records engine knows how to build."""

    MOST_WEEKS_ON_CHART = "most-weeks-on-chart"
    MOST_WEEKS_IN_TOP_10 = "most-weeks-in-top-10"
    MOST_CONSECUTIVE_WEEKS = "most-consecutive-weeks"
    MOST_PLAYS = "most-plays"
    MOST_TOTAL_VS = "most-total-vs"
    MOST_WEEKS_AT_ONE = "most-weeks-at-one"
    HIGHEST_DEBUT = "highest-debut"
    ARTIST_MOST_NUMBER_ONE_SONGS = "artist-most-number-one-songs"
    ARTIST_MOST_NUMBER_ONE_ALBUMS = "artist-most-number-one-albums"
    ARTIST_MOST_SONGS_IN_TOP_10 = "artist-most-songs-in-top-10"
    ARTIST_MOST_ALBUMS_IN_TOP_10 = "artist-most-albums-in-top-10"
    ARTIST_MOST_SONGS_CHARTED = "artist-most-songs-charted"
    ARTIST_MOST_ALBUMS_CHARTED = "artist-most-albums-charted"

    @classmethod
    def parse(cls, value: "str | RecordType") -> "RecordType":
        if isinstance(value, RecordType):
            return value
        try:
            return cls(str(value))
        except ValueError:
            raise UnsupportedRecordTypeError(value) from None

    @property
    def display_name(self) -> str:
        return RECORD_DISPLAY_NAMES[self]

    @property
    def is_artist_record(self) -> bool:
        return self.value.startswith("artist-")


RECORD_DISPLAY_NAMES: dict[RecordType, str] = {
    RecordType.MOST_WEEKS_ON_CHART: "Most Weeks on Chart",
    RecordType.MOST_WEEKS_IN_TOP_10: "Most Weeks in Top 10",
    RecordType.MOST_CONSECUTIVE_WEEKS: "Most Consecutive Weeks",
    RecordType.MOST_PLAYS: "Most Plays",
    RecordType.MOST_TOTAL_VS: "Most Total Vibe Score",
    RecordType.MOST_WEEKS_AT_ONE: "Most Weeks at #1",
    RecordType.HIGHEST_DEBUT: "Highest Debut",
    RecordType.ARTIST_MOST_NUMBER_ONE_SONGS: "Artist with Most #1 Songs",
    RecordType.ARTIST_MOST_NUMBER_ONE_ALBUMS: "Artist with Most #1 Albums",
    RecordType.ARTIST_MOST_SONGS_IN_TOP_10: "Artist with Most Songs in Top 10",
    RecordType.ARTIST_MOST_ALBUMS_IN_TOP_10: "Artist with Most Albums in Top 10",
    RecordType.ARTIST_MOST_SONGS_CHARTED: "Artist with Most Songs Charted",
    RecordType.ARTIST_MOST_ALBUMS_CHARTED: "Artist with Most Albums Charted",
}


# =============================================================================
# SNAPSHOTS (input side)
# =============================================================================


@dataclass(frozen=True)
class SnapshotItem:
    """One line of a member's weekly top list."""

    name: str
    playcount: int
    artist: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationException("Snapshot item name cannot be empty")
        if self.playcount < 0:
            raise ValidationException(
                f"Snapshot item playcount cannot be negative: {self.playcount}"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnapshotItem":
        return cls(
            name=str(data["name"]),
            playcount=int(data.get("playcount", 0) or 0),
            artist=data.get("artist") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "playcount": self.playcount}
        if self.artist:
            result["artist"] = self.artist
        return result


@dataclass
class MemberSnapshot:
    """A user's top lists for one week. Immutable once recorded."""

    user_id: str
    week_start: datetime
    top_artists: list[SnapshotItem] = field(default_factory=list)
    top_tracks: list[SnapshotItem] = field(default_factory=list)
    top_albums: list[SnapshotItem] = field(default_factory=list)

    def items_for(self, chart_type: ChartType) -> list[SnapshotItem]:
        if chart_type is ChartType.ARTISTS:
            return self.top_artists
        if chart_type is ChartType.TRACKS:
            return self.top_tracks
        return self.top_albums

    @property
    def total_plays(self) -> int:
        """Weekly listening volume, measured on the artist list."""
        return sum(item.playcount for item in self.top_artists)


@dataclass
class GroupConfig:
    """Read-only view of a group's chart configuration."""

    id: str
    name: str
    owner_id: str
    chart_mode: ChartMode = ChartMode.PLAYS_ONLY
    chart_size: int = 10
    tracking_day_of_week: int = 0
    chart_types: tuple[ChartType, ...] = (
        ChartType.ARTISTS,
        ChartType.TRACKS,
        ChartType.ALBUMS,
    )
    is_private: bool = False
    is_solo: bool = False
    allow_free_join: bool = True
    created_at: datetime | None = None


@dataclass(frozen=True)
class QueuedRegeneration:
    """A group-week waiting to be rebuilt (UTC-aware week start)."""

    group_id: str
    week_start: datetime
    reason: str


# =============================================================================
# PIPELINE VALUES (aggregate -> score -> rank)
# =============================================================================


@dataclass
class AggregatedEntry:
    """One chartable item merged across all members for a group-week."""

    entry_key: str
    name: str
    artist: str | None
    playcount: int = 0
    contributions: dict[str, int] = field(default_factory=dict)

    @property
    def distinct_contributors(self) -> int:
        return sum(1 for plays in self.contributions.values() if plays > 0)


@dataclass
class ScoredEntry:
    """An aggregated entry with its mode-specific ranking value."""

    entry: AggregatedEntry
    value: float
    vibe_score: float | None
    major_driver_id: str | None
    major_driver_contribution: float

    @property
    def entry_key(self) -> str:
        return self.entry.entry_key

    @property
    def playcount(self) -> int:
        return self.entry.playcount


@dataclass
class RankedEntry:
    """A scored entry placed on a chart, with week-over-week metrics."""

    scored: ScoredEntry
    position: int
    position_change: int | None
    entry_type: EntryType
    plays_change: int | None
    total_weeks_appeared: int
    highest_position: int
    slug: str

    @property
    def entry_key(self) -> str:
        return self.scored.entry_key

    @property
    def name(self) -> str:
        return self.scored.entry.name

    @property
    def artist(self) -> str | None:
        return self.scored.entry.artist

    @property
    def playcount(self) -> int:
        return self.scored.playcount
