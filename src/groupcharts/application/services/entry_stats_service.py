"""Stats Cache - per-entry lifetime stats derived from chart entry rows.

Hey future me - the chart_entry_stats table is a CACHE. The truth is always the chart_entries
rows. A row is recomputed lazily when it's flagged stale (new week charted, week regenerated)
or when its major driver is flagged stale (membership changed). Recompute is pure and
idempotent: rescan rows -> derive fields -> overwrite. Two recomputes racing just both write
the same answer.

Failure isolation in a batch: compute every key first (pure, per-key try/except), THEN write.
A key whose compute blows up is logged and left stale - the next pass tries again.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.config import Settings, get_settings
from groupcharts.domain.entities import ChartType
from groupcharts.domain.exceptions import EntityNotFoundException, StatsRecomputeError
from groupcharts.domain.value_objects.weeks import WEEK, ensure_utc
from groupcharts.infrastructure.persistence.models import (
    ChartEntryModel,
    ChartEntryStatsModel,
    utc_now,
)
from groupcharts.infrastructure.persistence.repositories import (
    ChartRepository,
    EntryStatsRepository,
    GroupRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

TOP_10 = 10


@dataclass
class EntryStats:
    """Derived lifetime stats of one entry."""

    entry_key: str
    name: str
    artist: str | None
    slug: str
    peak_position: int
    weeks_at_peak: int
    debut_position: int
    debut_week: datetime
    weeks_at_one: int
    weeks_in_top10: int
    total_weeks_charting: int
    total_weeks_appeared: int
    longest_streak: int
    current_streak: int
    is_streak_ongoing: bool
    latest_appearance: datetime
    total_vs: float
    total_plays: int
    major_driver_id: str | None = None
    major_driver_contribution: float = 0.0


@dataclass
class RecomputeSummary:
    """Outcome of a batch recompute."""

    recomputed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "recomputed": len(self.recomputed),
            "failed": len(self.failed),
            "removed": len(self.removed),
        }


def compute_entry_stats(
    rows: Sequence[ChartEntryModel],
    latest_group_week: datetime | None,
    current_member_ids: Iterable[str],
) -> EntryStats | None:
    """Derive stats from every chart row of one entry.

    Args:
        rows: All chart rows of the entry (any order)
        latest_group_week: Most recent charted week of the group (streak "ongoing" check)
        current_member_ids: Members eligible to be the major driver

    Returns:
        EntryStats, or None when the entry has no rows at all
    """
    if not rows:
        return None
    ordered = sorted(rows, key=lambda r: ensure_utc(r.week_start))
    positions = [row.position for row in ordered]
    peak = min(positions)

    longest = 0
    run = 0
    previous_week: datetime | None = None
    for row in ordered:
        week = ensure_utc(row.week_start)
        run = run + 1 if previous_week is not None and week - previous_week == WEEK else 1
        longest = max(longest, run)
        previous_week = week

    latest = ensure_utc(ordered[-1].week_start)
    ongoing = latest_group_week is not None and latest == ensure_utc(latest_group_week)

    members = set(current_member_ids)
    driven: dict[str, int] = {}
    for row in ordered:
        for user_id, plays in (row.contributions or {}).items():
            if user_id in members and plays > 0:
                driven[user_id] = driven.get(user_id, 0) + plays
    driver_id: str | None = None
    driver_plays = 0
    if driven:
        driver_id, driver_plays = min(driven.items(), key=lambda kv: (-kv[1], kv[0]))

    last = ordered[-1]
    return EntryStats(
        entry_key=last.entry_key,
        name=last.name,
        artist=last.artist,
        slug=last.slug,
        peak_position=peak,
        weeks_at_peak=positions.count(peak),
        debut_position=ordered[0].position,
        debut_week=ensure_utc(ordered[0].week_start),
        weeks_at_one=positions.count(1),
        weeks_in_top10=sum(1 for p in positions if p <= TOP_10),
        total_weeks_charting=len(ordered),
        total_weeks_appeared=max(len(ordered), last.total_weeks_appeared),
        longest_streak=longest,
        current_streak=run if ongoing else 0,
        is_streak_ongoing=ongoing,
        latest_appearance=latest,
        total_vs=round(sum(row.vibe_score or 0.0 for row in ordered), 4),
        total_plays=sum(row.playcount for row in ordered),
        major_driver_id=driver_id,
        major_driver_contribution=float(driver_plays),
    )


def _apply(model: ChartEntryStatsModel, stats: EntryStats) -> None:
    model.name = stats.name
    model.artist = stats.artist
    model.slug = stats.slug
    model.peak_position = stats.peak_position
    model.weeks_at_peak = stats.weeks_at_peak
    model.debut_position = stats.debut_position
    model.debut_week = stats.debut_week
    model.weeks_at_one = stats.weeks_at_one
    model.weeks_in_top10 = stats.weeks_in_top10
    model.total_weeks_charting = stats.total_weeks_charting
    model.total_weeks_appeared = stats.total_weeks_appeared
    model.longest_streak = stats.longest_streak
    model.current_streak = stats.current_streak
    model.is_streak_ongoing = stats.is_streak_ongoing
    model.latest_appearance = stats.latest_appearance
    model.total_vs = stats.total_vs
    model.total_plays = stats.total_plays
    model.major_driver_id = stats.major_driver_id
    model.major_driver_contribution = stats.major_driver_contribution
    model.stale = False
    model.major_driver_stale = False
    model.last_calculated = utc_now()


class EntryStatsService:
    """Invalidates, recomputes and serves cached entry stats."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._stats = EntryStatsRepository(session)
        self._charts = ChartRepository(session)
        self._groups = GroupRepository(session)
        self._users = UserRepository(session)

    # ===== INVALIDATION =====

    async def invalidate(
        self, group_id: str, chart_type: ChartType, entry_keys: Sequence[str]
    ) -> int:
        """Mark stats of the given keys stale (creating stale rows for unseen keys)."""
        count = await self._stats.mark_stale(group_id, chart_type, entry_keys)
        logger.debug("Marked %d %s stats stale for group %s", count, chart_type.value, group_id)
        return count

    async def invalidate_major_driver(self, group_id: str, user_id: str) -> int:
        """Flag every entry driven by ``user_id`` for a driver re-pick (member left/joined)."""
        count = await self._stats.mark_driver_stale_for_user(group_id, user_id)
        if count:
            logger.info(
                "Flagged %d entries of group %s for major driver recompute (user %s)",
                count,
                group_id,
                user_id,
            )
        return count

    # ===== RECOMPUTE =====

    async def recompute(
        self, group_id: str, chart_type: ChartType, entry_key: str
    ) -> ChartEntryStatsModel | None:
        """Recompute one key now.

        Returns:
            The fresh stats row, or None if the entry no longer has chart rows

        Raises:
            StatsRecomputeError: Deriving the stats failed
        """
        latest = await self._charts.get_latest_week_start(group_id)
        members = await self._groups.get_member_ids(group_id)
        rows = await self._charts.get_entry_history(group_id, chart_type, entry_key)
        try:
            stats = compute_entry_stats(rows, latest, members)
        except Exception as e:
            raise StatsRecomputeError(entry_key, str(e)) from e
        return await self._write(group_id, chart_type, entry_key, stats)

    async def recompute_many(
        self,
        group_id: str,
        chart_type: ChartType,
        entry_keys: Sequence[str],
    ) -> RecomputeSummary:
        """Recompute a batch of keys; a failing key is logged and skipped."""
        summary = RecomputeSummary()
        if not entry_keys:
            return summary

        latest = await self._charts.get_latest_week_start(group_id)
        members = await self._groups.get_member_ids(group_id)

        computed: dict[str, EntryStats | None] = {}
        for key in entry_keys:
            try:
                rows = await self._charts.get_entry_history(group_id, chart_type, key)
                computed[key] = compute_entry_stats(rows, latest, members)
            except Exception as e:
                logger.exception(
                    "Stats recompute failed for %s/%s in group %s",
                    chart_type.value,
                    key,
                    group_id,
                )
                summary.failed[key] = str(e)

        for key, stats in computed.items():
            await self._write(group_id, chart_type, key, stats)
            if stats is None:
                summary.removed.append(key)
            else:
                summary.recomputed.append(key)

        logger.info(
            "Recomputed %s stats for group %s: %s",
            chart_type.value,
            group_id,
            summary.to_dict(),
        )
        return summary

    async def refresh_stale(
        self, group_id: str, chart_type: ChartType | None = None, limit: int | None = None
    ) -> RecomputeSummary:
        """Recompute every stale (or driver-stale) row of a group."""
        by_type: dict[ChartType, list[str]] = {}
        for ct, key in await self._stats.list_stale_keys(group_id, chart_type, limit):
            by_type.setdefault(ct, []).append(key)

        total = RecomputeSummary()
        for ct, keys in by_type.items():
            part = await self.recompute_many(group_id, ct, keys)
            total.recomputed.extend(part.recomputed)
            total.failed.update(part.failed)
            total.removed.extend(part.removed)
        return total

    async def _write(
        self,
        group_id: str,
        chart_type: ChartType,
        entry_key: str,
        stats: EntryStats | None,
    ) -> ChartEntryStatsModel | None:
        model = await self._stats.get(group_id, chart_type, entry_key)
        if stats is None:
            # Entry vanished (all its weeks were regenerated away) - drop the cache row
            if model is not None:
                await self.session.delete(model)
                await self.session.flush()
            return None
        if model is None:
            model = ChartEntryStatsModel(
                group_id=group_id, chart_type=chart_type.value, entry_key=entry_key
            )
            self.session.add(model)
        _apply(model, stats)
        await self.session.flush()
        return model

    # ===== READS =====

    async def get_entry_stats(
        self, group_id: str, chart_type: ChartType | str, entry_key: str
    ) -> dict[str, Any]:
        """Fresh stats of one entry; recomputes first when the cached row is stale.

        Raises:
            UnsupportedChartTypeError: Unknown chart type
            EntityNotFoundException: The entry never charted in this group
        """
        chart_type = ChartType.parse(chart_type)
        await self._groups.get(group_id)
        model = await self._stats.get(group_id, chart_type, entry_key)
        if (
            model is None
            or model.stale
            or model.major_driver_stale
            or model.last_calculated is None
        ):
            model = await self.recompute(group_id, chart_type, entry_key)
        if model is None:
            raise EntityNotFoundException("ChartEntry", f"{chart_type.value}/{entry_key}")

        driver_ids = [model.major_driver_id] if model.major_driver_id else []
        names = await self._users.get_names(driver_ids)
        return {
            "chart_type": model.chart_type,
            "entry_key": model.entry_key,
            "name": model.name,
            "artist": model.artist,
            "slug": model.slug,
            "peak_position": model.peak_position,
            "weeks_at_peak": model.weeks_at_peak,
            "debut_position": model.debut_position,
            "debut_week": ensure_utc(model.debut_week) if model.debut_week else None,
            "weeks_at_one": model.weeks_at_one,
            "weeks_in_top10": model.weeks_in_top10,
            "total_weeks_charting": model.total_weeks_charting,
            "total_weeks_appeared": model.total_weeks_appeared,
            "longest_streak": model.longest_streak,
            "current_streak": model.current_streak,
            "is_streak_ongoing": model.is_streak_ongoing,
            "latest_appearance": ensure_utc(model.latest_appearance)
            if model.latest_appearance
            else None,
            "total_vs": model.total_vs,
            "total_plays": model.total_plays,
            "major_driver": (
                {
                    "user_id": model.major_driver_id,
                    "name": names.get(model.major_driver_id),
                    "contribution": model.major_driver_contribution,
                }
                if model.major_driver_id
                else None
            ),
        }

    async def get_entry_stats_by_slug(
        self, group_id: str, chart_type: ChartType | str, slug: str
    ) -> dict[str, Any]:
        chart_type = ChartType.parse(chart_type)
        row = await self._charts.get_entry_by_slug(group_id, chart_type, slug)
        if row is None:
            raise EntityNotFoundException("ChartEntry", f"{chart_type.value}/{slug}")
        return await self.get_entry_stats(group_id, chart_type, row.entry_key)
