"""Compatibility Engine - how well a user's listening fits a group.

Four components, each 0..100:

- artist overlap / track overlap: 100 * sqrt(user_share * group_share), where a share is the
  fraction of that side's plays landing on keys both sides have. Symmetric-ish and 0 when
  nothing is shared.
- genre overlap: cosine similarity of genre weight vectors * 100 (an artist's plays are split
  evenly across its genres).
- pattern score: how similar the listening habits are - mean of min/max ratios of average
  weekly plays (group: per member) and average distinct artists per week.

The overall score is the weighted sum (CompatibilitySettings weights, validated to sum to 1),
rounded to 2 decimals. Everything below the service class is pure, so the same inputs always
give the same score.
"""

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.application.services.all_time_stats_service import merge_weekly_lists
from groupcharts.config import CompatibilitySettings, Settings, get_settings
from groupcharts.domain.entities import ChartType, MemberSnapshot
from groupcharts.domain.ports import IGenreProvider
from groupcharts.domain.value_objects.chart_keys import make_entry_key
from groupcharts.domain.value_objects.weeks import WEEK, ensure_utc
from groupcharts.infrastructure.persistence.repositories import (
    AllTimeStatsRepository,
    ChartRepository,
    CompatibilityRepository,
    GenreRepository,
    GroupRepository,
    SnapshotRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class ListeningProfile:
    """Plays per artist/track key plus habit averages."""

    artist_plays: dict[str, int] = field(default_factory=dict)
    track_plays: dict[str, int] = field(default_factory=dict)
    avg_weekly_plays: float = 0.0
    avg_distinct_artists: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.artist_plays and not self.track_plays

    def top_artists(self, limit: int) -> list[str]:
        ordered = sorted(self.artist_plays.items(), key=lambda kv: (-kv[1], kv[0]))
        return [key for key, _plays in ordered[:limit]]


@dataclass(frozen=True)
class CompatibilityBreakdown:
    """Overall score and its components."""

    score: float
    artist_overlap: float
    track_overlap: float
    genre_overlap: float
    pattern_score: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def build_user_profile(snapshots: Iterable[MemberSnapshot]) -> ListeningProfile:
    """Sum a user's weekly snapshots into one profile."""
    profile = ListeningProfile()
    weekly_plays: list[float] = []
    weekly_artists: list[float] = []
    for snapshot in snapshots:
        played_artists = 0
        for item in snapshot.top_artists:
            if item.playcount <= 0:
                continue
            key = make_entry_key(item.name, None, ChartType.ARTISTS)
            profile.artist_plays[key] = profile.artist_plays.get(key, 0) + item.playcount
            played_artists += 1
        for item in snapshot.top_tracks:
            if item.playcount <= 0:
                continue
            key = make_entry_key(item.name, item.artist, ChartType.TRACKS)
            profile.track_plays[key] = profile.track_plays.get(key, 0) + item.playcount
        weekly_plays.append(float(snapshot.total_plays))
        weekly_artists.append(float(played_artists))
    profile.avg_weekly_plays = _mean(weekly_plays)
    profile.avg_distinct_artists = _mean(weekly_artists)
    return profile


def build_group_profile(
    top_artists: Iterable[Mapping[str, Any]],
    top_tracks: Iterable[Mapping[str, Any]],
    weekly_totals: Iterable[tuple[int, int, int]],
) -> ListeningProfile:
    """Profile of a group from its catalogue and weekly totals.

    Args:
        top_artists: Catalogue artist items (entry_key, playcount)
        top_tracks: Catalogue track items (entry_key, playcount)
        weekly_totals: (total_plays, distinct_artists, member_count) per week
    """
    weekly_plays: list[float] = []
    weekly_artists: list[float] = []
    for total_plays, distinct_artists, member_count in weekly_totals:
        weekly_plays.append(total_plays / member_count if member_count else 0.0)
        weekly_artists.append(float(distinct_artists))
    return ListeningProfile(
        artist_plays={i["entry_key"]: int(i["playcount"]) for i in top_artists},
        track_plays={i["entry_key"]: int(i["playcount"]) for i in top_tracks},
        avg_weekly_plays=_mean(weekly_plays),
        avg_distinct_artists=_mean(weekly_artists),
    )


def overlap_score(user: Mapping[str, int], group: Mapping[str, int]) -> float:
    """100 * sqrt(user share on shared keys * group share on shared keys)."""
    user_total = sum(user.values())
    group_total = sum(group.values())
    if user_total <= 0 or group_total <= 0:
        return 0.0
    shared = user.keys() & group.keys()
    if not shared:
        return 0.0
    user_share = sum(user[k] for k in shared) / user_total
    group_share = sum(group[k] for k in shared) / group_total
    return 100.0 * math.sqrt(user_share * group_share)


def genre_vector(
    artist_plays: Mapping[str, int], genres: Mapping[str, list[str]]
) -> dict[str, float]:
    vector: dict[str, float] = {}
    for artist, plays in artist_plays.items():
        tags = genres.get(artist) or []
        if not tags or plays <= 0:
            continue
        weight = plays / len(tags)
        for tag in tags:
            vector[tag] = vector.get(tag, 0.0) + weight
    return vector


def cosine_similarity(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    dot = sum(value * b[key] for key, value in a.items() if key in b)
    norm_a = math.sqrt(sum(v * v for v in a.values()))
    norm_b = math.sqrt(sum(v * v for v in b.values()))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _ratio(a: float, b: float) -> float:
    high = max(a, b)
    return min(a, b) / high if high > 0 else 0.0


def pattern_score(user: ListeningProfile, group: ListeningProfile) -> float:
    return 100.0 * _mean(
        [
            _ratio(user.avg_weekly_plays, group.avg_weekly_plays),
            _ratio(user.avg_distinct_artists, group.avg_distinct_artists),
        ]
    )


def score_profiles(
    user: ListeningProfile,
    group: ListeningProfile,
    genres: Mapping[str, list[str]],
    settings: CompatibilitySettings,
) -> CompatibilityBreakdown:
    """Combine the four components into one deterministic score."""
    artist = overlap_score(user.artist_plays, group.artist_plays)
    track = overlap_score(user.track_plays, group.track_plays)
    genre = 100.0 * cosine_similarity(
        genre_vector(user.artist_plays, genres), genre_vector(group.artist_plays, genres)
    )
    pattern = pattern_score(user, group)
    overall = (
        settings.artist_weight * artist
        + settings.track_weight * track
        + settings.genre_weight * genre
        + settings.pattern_weight * pattern
    )
    return CompatibilityBreakdown(
        score=round(overall, 2),
        artist_overlap=round(artist, 2),
        track_overlap=round(track, 2),
        genre_overlap=round(genre, 2),
        pattern_score=round(pattern, 2),
    )


class CompatibilityService:
    """Scores one user against one group."""

    def __init__(
        self,
        session: AsyncSession,
        genre_provider: IGenreProvider | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._genres = genre_provider or GenreRepository(session)
        self._groups = GroupRepository(session)
        self._snapshots = SnapshotRepository(session)
        self._charts = ChartRepository(session)
        self._all_time = AllTimeStatsRepository(session)
        self._scores = CompatibilityRepository(session)

    def _window_start(self, now: datetime) -> datetime:
        return ensure_utc(now) - WEEK * self.settings.compatibility.candidate_window_weeks

    async def user_profile(self, user_id: str, now: datetime | None = None) -> ListeningProfile:
        now = now or datetime.now(UTC)
        snapshots = await self._snapshots.list_snapshots_since(
            user_id, self._window_start(now)
        )
        return build_user_profile(snapshots)

    async def group_profile(
        self, group_id: str, now: datetime | None = None
    ) -> ListeningProfile:
        now = now or datetime.now(UTC)
        weekly = await self._charts.list_weekly_stats(group_id)
        catalogue = await self._all_time.get(group_id)
        if catalogue is not None and catalogue.top_artists:
            top_artists, top_tracks = catalogue.top_artists, catalogue.top_tracks or []
        else:
            top_artists = merge_weekly_lists([w.top_artists or [] for w in weekly])
            top_tracks = merge_weekly_lists([w.top_tracks or [] for w in weekly])
        since = self._window_start(now)
        recent = [w for w in weekly if ensure_utc(w.week_start) >= since] or weekly
        return build_group_profile(
            top_artists,
            top_tracks,
            [(w.total_plays, w.distinct_artists, w.member_count) for w in recent],
        )

    async def calculate(
        self,
        user_id: str,
        group_id: str,
        now: datetime | None = None,
        user_profile: ListeningProfile | None = None,
    ) -> CompatibilityBreakdown:
        """Score without persisting anything (safe on a read-only session)."""
        user = user_profile or await self.user_profile(user_id, now)
        group = await self.group_profile(group_id, now)
        artists = sorted(user.artist_plays.keys() | group.artist_plays.keys())
        genres = await self._genres.get_genres(artists)
        breakdown = score_profiles(user, group, genres, self.settings.compatibility)
        logger.debug("Compatibility %s -> %s: %s", user_id, group_id, breakdown.score)
        return breakdown

    async def stored_score(
        self, user_id: str, group_id: str, now: datetime | None = None
    ) -> CompatibilityBreakdown | None:
        """The persisted score of a pair while younger than ``score_ttl_hours``."""
        now = ensure_utc(now or datetime.now(UTC))
        ttl = timedelta(hours=self.settings.compatibility.score_ttl_hours)
        stored = await self._scores.get_score(user_id, group_id)
        if stored is None or ensure_utc(stored.computed_at) + ttl <= now:
            return None
        return CompatibilityBreakdown(
            score=stored.score,
            artist_overlap=stored.artist_overlap,
            track_overlap=stored.track_overlap,
            genre_overlap=stored.genre_overlap,
            pattern_score=stored.pattern_score,
        )

    async def get_or_calculate(
        self, user_id: str, group_id: str, now: datetime | None = None
    ) -> CompatibilityBreakdown:
        """Stored score while fresh, otherwise recalculated and persisted."""
        now = ensure_utc(now or datetime.now(UTC))
        await self._groups.get(group_id)
        stored = await self.stored_score(user_id, group_id, now)
        if stored is not None:
            return stored
        breakdown = await self.calculate(user_id, group_id, now)
        await self._scores.upsert_score(
            user_id, group_id, **breakdown.to_dict(), computed_at=now
        )
        return breakdown
