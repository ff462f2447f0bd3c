"""Chart generation - drives Aggregator -> Scorer -> Ranker -> Trend Analyzer per group-week.

Hey future me - a group-week is produced ONCE. Calling generate_week() again for a week that
already exists just returns what's stored (idempotent). Only replace=True (regeneration after a
tracking-day change, or an explicit admin request) deletes and rebuilds, and that delete +
rebuild runs in the caller's transaction: readers see the old week or the new one, never a
half-written chart. This service never commits - session_scope() / the request does.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.application.services.aggregation_service import ChartAggregator
from groupcharts.application.services.chart_ranking import (
    ChartRanker,
    EntryHistory,
    PreviousPlacement,
)
from groupcharts.application.services.entry_stats_service import EntryStatsService
from groupcharts.application.services.trends_service import TrendsService
from groupcharts.application.services.vibe_score import ChartScorer, VibeScoreParams
from groupcharts.config import Settings, get_settings
from groupcharts.domain.entities import ChartType, RankedEntry, RecordStatus
from groupcharts.domain.exceptions import (
    EntityNotFoundException,
    InvalidStateException,
    ValidationException,
)
from groupcharts.domain.ports import ISnapshotProvider
from groupcharts.domain.value_objects.weeks import (
    WEEK,
    ensure_utc,
    get_last_finished_weeks,
    get_week_end,
    get_week_start_for_day,
)
from groupcharts.infrastructure.observability.logger_template import log_operation
from groupcharts.infrastructure.persistence.models import (
    ChartEntryModel,
    GroupWeeklyStatsModel,
)
from groupcharts.infrastructure.persistence.repositories import (
    ChartRepository,
    GroupRepository,
    RecordsRepository,
    SnapshotRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class WeekChartResult:
    """Materialized charts of one group-week."""

    group_id: str
    week_start: datetime
    created: bool
    entries: dict[ChartType, list[ChartEntryModel]] = field(default_factory=dict)
    total_plays: int = 0
    missing_members: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "group_id": self.group_id,
            "week_start": self.week_start.isoformat(),
            "created": self.created,
            "total_plays": self.total_plays,
            "missing_members": self.missing_members,
            "entry_counts": {ct.value: len(rows) for ct, rows in self.entries.items()},
        }


def _weekly_list(ranked: list[RankedEntry]) -> list[dict]:
    return [
        {
            "entry_key": entry.entry_key,
            "name": entry.name,
            "artist": entry.artist,
            "playcount": entry.playcount,
            "position": entry.position,
        }
        for entry in ranked
    ]


class ChartGenerationService:
    """Builds, regenerates and reads group weekly charts."""

    def __init__(
        self,
        session: AsyncSession,
        snapshot_provider: ISnapshotProvider | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._groups = GroupRepository(session)
        self._charts = ChartRepository(session)
        self._records = RecordsRepository(session)
        self._aggregator = ChartAggregator(snapshot_provider or SnapshotRepository(session))
        self._scorer = ChartScorer(VibeScoreParams.from_settings(self.settings.charts))
        self._ranker = ChartRanker()
        self._stats = EntryStatsService(session, self.settings)
        self._trends = TrendsService(session, self.settings)

    # ===== GENERATION =====

    async def generate_week(
        self,
        group_id: str,
        week_start: datetime,
        *,
        replace: bool = False,
        compute_trends: bool = True,
        now: datetime | None = None,
    ) -> WeekChartResult:
        """Materialize the charts of one group-week.

        Args:
            group_id: Group to chart
            week_start: Week start; must be UTC midnight on the group's tracking day
            replace: Delete and rebuild an already materialized week
            compute_trends: Run the trend analyzer afterwards
            now: Reference time for the finished-week check (defaults to now)

        Returns:
            WeekChartResult (created=False when the week already existed)

        Raises:
            EntityNotFoundException: Unknown group
            ValidationException: week_start is not aligned to the tracking day
            InvalidStateException: The week has not finished yet
        """
        group = await self._groups.get(group_id)
        week_start = ensure_utc(week_start)
        aligned = get_week_start_for_day(week_start, group.tracking_day_of_week)
        if aligned != week_start:
            raise ValidationException(
                f"Week start {week_start.isoformat()} is not aligned to tracking day "
                f"{group.tracking_day_of_week} (expected {aligned.isoformat()})"
            )
        if get_week_end(week_start) > ensure_utc(now or datetime.now(UTC)):
            raise InvalidStateException(
                f"Week {week_start.date()} of group {group_id} has not finished yet"
            )

        if await self._charts.has_week(group_id, week_start):
            if not replace:
                logger.debug("Week %s of group %s already charted", week_start.date(), group_id)
                return await self._load_week(group_id, week_start)

        async with log_operation(
            logger,
            "chart_generation",
            group_id=group_id,
            week_start=week_start.isoformat(),
            replace=replace,
        ):
            touched: dict[ChartType, set[str]] = {}
            if replace:
                touched = await self._charts.get_entry_keys_for_weeks(group_id, [week_start])
                await self._charts.delete_week(group_id, week_start)

            members = await self._groups.get_member_ids(group_id)
            aggregation = await self._aggregator.aggregate(
                members, week_start, group.chart_types
            )
            previous_rows = await self._charts.get_week_entries(
                group_id, week_start - WEEK
            )

            result = WeekChartResult(
                group_id=group_id,
                week_start=week_start,
                created=True,
                total_plays=aggregation.total_plays,
                missing_members=aggregation.missing_members,
            )
            weekly_lists: dict[ChartType, list[dict]] = {}

            for chart_type in group.chart_types:
                previous = {
                    row.entry_key: PreviousPlacement(row.position, row.playcount)
                    for row in previous_rows
                    if row.chart_type == chart_type.value
                }
                scored = self._scorer.score_all(
                    aggregation.entries_for(chart_type), group.chart_mode
                )
                top_keys = [
                    e.entry_key
                    for e in self._ranker.rank(scored, chart_type, group.chart_size)
                ]
                summary = await self._charts.get_history_summary(
                    group_id, chart_type, top_keys, before=week_start
                )
                history = {
                    key: EntryHistory(weeks_appeared=count, best_position=best)
                    for key, (count, best, _last) in summary.items()
                }
                ranked = self._ranker.rank(
                    scored, chart_type, group.chart_size, previous, history
                )

                rows = [self._to_row(group_id, chart_type, week_start, e) for e in ranked]
                self._charts.add_entries(rows)
                result.entries[chart_type] = rows
                weekly_lists[chart_type] = _weekly_list(ranked)
                touched.setdefault(chart_type, set()).update(top_keys)

            self._charts.add_weekly_stats(
                GroupWeeklyStatsModel(
                    group_id=group_id,
                    week_start=week_start,
                    week_end=get_week_end(week_start),
                    top_artists=weekly_lists.get(ChartType.ARTISTS, []),
                    top_tracks=weekly_lists.get(ChartType.TRACKS, []),
                    top_albums=weekly_lists.get(ChartType.ALBUMS, []),
                    total_plays=aggregation.total_plays,
                    distinct_artists=len(aggregation.entries_for(ChartType.ARTISTS)),
                    member_count=len(members),
                )
            )
            await self.session.flush()

            for chart_type, keys in touched.items():
                await self._stats.invalidate(group_id, chart_type, sorted(keys))
            await self._records.set_status(group_id, RecordStatus.PENDING.value)

            if compute_trends:
                await self._trends.calculate_week_trends(group_id, week_start)

        return result

    async def generate_latest_week(
        self, group_id: str, now: datetime | None = None
    ) -> WeekChartResult:
        """Generate the most recent fully finished week of a group."""
        group = await self._groups.get(group_id)
        (week_start,) = get_last_finished_weeks(1, group.tracking_day_of_week, now)
        return await self.generate_week(group_id, week_start, now=now)

    # Hey future me - this is what the worker and the generate endpoint call. A cycle that
    # only built the latest week would leave a hole whenever a week finished while we were
    # down, and a hole breaks streaks and turns regulars into fake comebacks.
    async def generate_missing_weeks(
        self, group_id: str, now: datetime | None = None
    ) -> list[WeekChartResult]:
        """Build every finished week after the group's latest chart, oldest first.

        Only the most recent ``initial_weeks`` finished weeks are considered, so a long
        outage does not backfill the whole gap. A group without any chart gets the
        initial backfill.

        Returns:
            Results of the weeks that were newly generated
        """
        group = await self._groups.get(group_id)
        latest = await self._charts.get_latest_week_start(group_id)
        weeks = get_last_finished_weeks(
            self.settings.charts.initial_weeks, group.tracking_day_of_week, now
        )
        if latest is not None:
            weeks = [week for week in weeks if week > latest]

        results = await self._generate_weeks(group_id, weeks, now)
        if results:
            logger.info(
                "Caught up group %s (%s): %d weeks generated (%s to %s)",
                group_id,
                "initial backfill" if latest is None else "missing weeks",
                len(results),
                results[0].week_start.date(),
                results[-1].week_start.date(),
            )
        return results

    async def initialize_group(
        self, group_id: str, now: datetime | None = None
    ) -> list[datetime]:
        """Backfill the last finished weeks of a new group, oldest first.

        Returns:
            Week starts that were newly generated
        """
        group = await self._groups.get(group_id)
        weeks = get_last_finished_weeks(
            self.settings.charts.initial_weeks, group.tracking_day_of_week, now
        )
        generated = [r.week_start for r in await self._generate_weeks(group_id, weeks, now)]
        logger.info(
            "Initialized group %s: %d of %d weeks generated",
            group_id,
            len(generated),
            len(weeks),
        )
        return generated

    async def _generate_weeks(
        self, group_id: str, weeks: list[datetime], now: datetime | None
    ) -> list[WeekChartResult]:
        created: list[WeekChartResult] = []
        for week_start in weeks:
            result = await self.generate_week(group_id, week_start, now=now)
            if result.created:
                created.append(result)
        return created

    async def process_regeneration_queue(
        self, group_id: str | None = None, now: datetime | None = None
    ) -> int:
        """Regenerate queued weeks that have finished, oldest first.

        Weeks that are still running stay queued. Weeks no longer aligned to the group's
        tracking day (it changed again) are dropped from the queue.

        Returns:
            Number of weeks regenerated
        """
        now = ensure_utc(now or datetime.now(UTC))
        regenerated = 0
        for item in await self._charts.list_regenerations(group_id):
            week_start = ensure_utc(item.week_start)
            if get_week_end(week_start) > now:
                continue
            group = await self._groups.get(item.group_id)
            if get_week_start_for_day(week_start, group.tracking_day_of_week) != week_start:
                logger.info(
                    "Dropping obsolete regeneration of %s for group %s",
                    week_start.date(),
                    item.group_id,
                )
                await self._charts.clear_regeneration(item.group_id, week_start)
                continue
            await self.generate_week(item.group_id, week_start, replace=True, now=now)
            await self._charts.clear_regeneration(item.group_id, week_start)
            regenerated += 1
        return regenerated

    # ===== READS =====

    async def get_chart(
        self, group_id: str, week_start: datetime, chart_type: ChartType | str
    ) -> list[ChartEntryModel]:
        """Rows of one chart in position order.

        Raises:
            UnsupportedChartTypeError: chart_type is not artists/tracks/albums
            EntityNotFoundException: The week has not been charted
        """
        chart_type = ChartType.parse(chart_type)
        await self._groups.get(group_id)
        if not await self._charts.has_week(group_id, week_start):
            raise EntityNotFoundException("ChartWeek", f"{group_id}@{week_start.date()}")
        return await self._charts.get_week_entries(group_id, week_start, chart_type)

    async def list_weeks(self, group_id: str) -> list[datetime]:
        await self._groups.get(group_id)
        return await self._charts.list_week_starts(group_id)

    async def _load_week(self, group_id: str, week_start: datetime) -> WeekChartResult:
        rows = await self._charts.get_week_entries(group_id, week_start)
        stats = await self._charts.get_weekly_stats(group_id, week_start)
        result = WeekChartResult(
            group_id=group_id,
            week_start=week_start,
            created=False,
            total_plays=stats.total_plays if stats else 0,
        )
        for row in rows:
            result.entries.setdefault(ChartType(row.chart_type), []).append(row)
        return result

    @staticmethod
    def _to_row(
        group_id: str, chart_type: ChartType, week_start: datetime, entry: RankedEntry
    ) -> ChartEntryModel:
        return ChartEntryModel(
            group_id=group_id,
            chart_type=chart_type.value,
            week_start=week_start,
            entry_key=entry.entry_key,
            name=entry.name,
            artist=entry.artist,
            slug=entry.slug,
            position=entry.position,
            playcount=entry.playcount,
            vibe_score=entry.scored.vibe_score,
            position_change=entry.position_change,
            plays_change=entry.plays_change,
            entry_type=entry.entry_type.value,
            total_weeks_appeared=entry.total_weeks_appeared,
            highest_position=entry.highest_position,
            major_driver_id=entry.scored.major_driver_id,
            contributions=dict(entry.scored.entry.contributions),
        )
