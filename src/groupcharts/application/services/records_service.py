"""Records Engine - all-time leaderboards per group, chart type and record type.

Rough-then-refine, so we never recompute every entry a group ever charted:

1. rough: top ``rough_limit`` rows of the stats cache by the (possibly stale) cached field
2. missing: entries with no calculated stats row that charted the most weeks - they might
   belong on the board but the cache hasn't seen them yet
3. recompute the stale rows of (1) plus everything from (2), in bounded batches
4. refine: re-query by the fresh field, drop zero values, rank 1..K

Artist records ("artist with most #1 songs" etc.) don't go through the stats cache at all:
they are a straight COUNT(DISTINCT entry_key) over the tracks/albums chart rows.
"""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from groupcharts.application.services.entry_stats_service import EntryStatsService
from groupcharts.config import Settings, get_settings
from groupcharts.domain.entities import ChartType, RecordStatus, RecordType
from groupcharts.domain.exceptions import ValidationException
from groupcharts.infrastructure.observability.logger_template import log_operation
from groupcharts.infrastructure.persistence.models import (
    ChartEntryModel,
    ChartEntryStatsModel,
    utc_now,
)
from groupcharts.infrastructure.persistence.repositories import (
    GroupRepository,
    RecordsRepository,
)

logger = logging.getLogger(__name__)

SUMMARY_LIMIT = 10

# Record type -> cached stats column it ranks by
STATS_FIELDS: dict[RecordType, InstrumentedAttribute[Any]] = {
    RecordType.MOST_WEEKS_ON_CHART: ChartEntryStatsModel.total_weeks_charting,
    RecordType.MOST_WEEKS_IN_TOP_10: ChartEntryStatsModel.weeks_in_top10,
    RecordType.MOST_CONSECUTIVE_WEEKS: ChartEntryStatsModel.longest_streak,
    RecordType.MOST_PLAYS: ChartEntryStatsModel.total_plays,
    RecordType.MOST_TOTAL_VS: ChartEntryStatsModel.total_vs,
    RecordType.MOST_WEEKS_AT_ONE: ChartEntryStatsModel.weeks_at_one,
    RecordType.HIGHEST_DEBUT: ChartEntryStatsModel.debut_position,
}

# Artist record type -> (chart type scanned, worst qualifying position or None for any)
ARTIST_RECORDS: dict[RecordType, tuple[ChartType, int | None]] = {
    RecordType.ARTIST_MOST_NUMBER_ONE_SONGS: (ChartType.TRACKS, 1),
    RecordType.ARTIST_MOST_NUMBER_ONE_ALBUMS: (ChartType.ALBUMS, 1),
    RecordType.ARTIST_MOST_SONGS_IN_TOP_10: (ChartType.TRACKS, 10),
    RecordType.ARTIST_MOST_ALBUMS_IN_TOP_10: (ChartType.ALBUMS, 10),
    RecordType.ARTIST_MOST_SONGS_CHARTED: (ChartType.TRACKS, None),
    RecordType.ARTIST_MOST_ALBUMS_CHARTED: (ChartType.ALBUMS, None),
}


def list_record_types() -> list[dict[str, Any]]:
    """Every supported record type with its display name."""
    return [
        {
            "record_type": record_type.value,
            "display_name": record_type.display_name,
            "is_artist_record": record_type.is_artist_record,
        }
        for record_type in RecordType
    ]


def _chunks(items: Sequence[str], size: int) -> list[Sequence[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class RecordsService:
    """Builds record leaderboards and the per-group records summary."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._groups = GroupRepository(session)
        self._records = RecordsRepository(session)
        self._stats = EntryStatsService(session, self.settings)

    # ===== LEADERBOARDS =====

    async def get_record(
        self,
        group_id: str,
        record_type: RecordType | str,
        chart_type: ChartType | str | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """One leaderboard.

        Args:
            group_id: Group
            record_type: Record type (validated before any work)
            chart_type: Chart type for entry records; ignored by artist records
            limit: Max leaderboard length (defaults to ``records.result_limit``)

        Raises:
            UnsupportedRecordTypeError: Unknown record type
            UnsupportedChartTypeError: Unknown chart type
            ValidationException: An entry record without a chart type
            EntityNotFoundException: Unknown group
        """
        record_type = RecordType.parse(record_type)
        parsed_chart_type = ChartType.parse(chart_type) if chart_type is not None else None
        await self._groups.get(group_id)
        limit = limit or self.settings.records.result_limit

        if record_type.is_artist_record:
            entries = await self._artist_leaderboard(group_id, record_type, limit)
            scanned = ARTIST_RECORDS[record_type][0]
        else:
            if parsed_chart_type is None:
                raise ValidationException(
                    f"Record type '{record_type.value}' needs a chart_type"
                )
            entries = await self._entry_leaderboard(
                group_id, parsed_chart_type, record_type, limit
            )
            scanned = parsed_chart_type

        return {
            "record_type": record_type.value,
            "display_name": record_type.display_name,
            "chart_type": scanned.value,
            "entries": entries,
        }

    async def _entry_leaderboard(
        self,
        group_id: str,
        chart_type: ChartType,
        record_type: RecordType,
        limit: int,
    ) -> list[dict[str, Any]]:
        column = STATS_FIELDS[record_type]
        ascending = record_type is RecordType.HIGHEST_DEBUT
        cfg = self.settings.records

        # 1. rough candidates from cached values
        rough_order = (
            func.coalesce(column, 1_000_000).asc()
            if ascending
            else func.coalesce(column, 0).desc()
        )
        rough = await self.session.execute(
            select(
                ChartEntryStatsModel.entry_key,
                ChartEntryStatsModel.stale,
                ChartEntryStatsModel.major_driver_stale,
                ChartEntryStatsModel.last_calculated,
            )
            .where(
                ChartEntryStatsModel.group_id == group_id,
                ChartEntryStatsModel.chart_type == chart_type.value,
            )
            .order_by(rough_order, ChartEntryStatsModel.entry_key)
            .limit(cfg.rough_limit)
        )
        stale_keys = [
            key
            for key, stale, driver_stale, calculated in rough.all()
            if stale or driver_stale or calculated is None
        ]

        # 2. charted entries the cache has never calculated
        calculated = select(ChartEntryStatsModel.entry_key).where(
            ChartEntryStatsModel.group_id == group_id,
            ChartEntryStatsModel.chart_type == chart_type.value,
            ChartEntryStatsModel.last_calculated.is_not(None),
        )
        weeks = func.count(func.distinct(ChartEntryModel.week_start))
        missing = await self.session.execute(
            select(ChartEntryModel.entry_key, weeks)
            .where(
                ChartEntryModel.group_id == group_id,
                ChartEntryModel.chart_type == chart_type.value,
                ChartEntryModel.entry_key.not_in(calculated),
            )
            .group_by(ChartEntryModel.entry_key)
            .order_by(weeks.desc(), ChartEntryModel.entry_key)
            .limit(cfg.missing_limit)
        )
        missing_keys = [key for key, _count in missing.all()]

        # 3. bounded recompute
        to_recompute = list(dict.fromkeys([*stale_keys, *missing_keys]))
        if to_recompute:
            logger.debug(
                "Records %s/%s: recomputing %d stats rows (%d stale, %d missing)",
                chart_type.value,
                record_type.value,
                len(to_recompute),
                len(stale_keys),
                len(missing_keys),
            )
        for chunk in _chunks(to_recompute, cfg.recompute_batch_size):
            await self._stats.recompute_many(group_id, chart_type, chunk)

        # 4. refine on fresh values only
        fresh = (
            select(ChartEntryStatsModel)
            .where(
                ChartEntryStatsModel.group_id == group_id,
                ChartEntryStatsModel.chart_type == chart_type.value,
                ChartEntryStatsModel.stale.is_(False),
                ChartEntryStatsModel.last_calculated.is_not(None),
            )
            .limit(limit)
        )
        if ascending:
            fresh = fresh.where(column.is_not(None), column > 0).order_by(
                column.asc(), ChartEntryStatsModel.entry_key
            )
        else:
            fresh = fresh.where(column > 0).order_by(
                column.desc(), ChartEntryStatsModel.entry_key
            )
        rows = (await self.session.execute(fresh)).scalars().all()

        return [
            {
                "kind": "entry",
                "rank": rank,
                "entry_key": row.entry_key,
                "name": row.name,
                "artist": row.artist,
                "slug": row.slug,
                "value": getattr(row, column.key),
            }
            for rank, row in enumerate(rows, start=1)
        ]

    async def _artist_leaderboard(
        self, group_id: str, record_type: RecordType, limit: int
    ) -> list[dict[str, Any]]:
        chart_type, worst_position = ARTIST_RECORDS[record_type]
        count = func.count(func.distinct(ChartEntryModel.entry_key))
        stmt = select(ChartEntryModel.artist, count).where(
            ChartEntryModel.group_id == group_id,
            ChartEntryModel.chart_type == chart_type.value,
            ChartEntryModel.artist.is_not(None),
        )
        if worst_position is not None:
            stmt = stmt.where(ChartEntryModel.position <= worst_position)
        stmt = (
            stmt.group_by(ChartEntryModel.artist)
            .having(count > 0)
            .order_by(count.desc(), ChartEntryModel.artist)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            {"kind": "artist", "rank": rank, "artist": artist, "value": value}
            for rank, (artist, value) in enumerate(result.all(), start=1)
        ]

    # ===== SUMMARY =====

    async def calculate_group_records(self, group_id: str) -> dict[str, Any]:
        """Rebuild and store the records summary of a group (status -> completed)."""
        group = await self._groups.get(group_id)
        async with log_operation(logger, "records_calculation", group_id=group_id):
            await self._stats.refresh_stale(group_id)

            chart_records: dict[str, dict[str, Any]] = {}
            totals: dict[str, dict[str, int]] = {}
            for chart_type in group.chart_types:
                boards: dict[str, Any] = {}
                for record_type in STATS_FIELDS:
                    board = await self.get_record(
                        group_id, record_type, chart_type, limit=SUMMARY_LIMIT
                    )
                    boards[record_type.value] = board
                chart_records[chart_type.value] = boards
                totals[chart_type.value] = await self._totals(group_id, chart_type)

            artist_records = {
                record_type.value: await self.get_record(
                    group_id, record_type, limit=SUMMARY_LIMIT
                )
                for record_type in ARTIST_RECORDS
            }

            records = {
                "chart_records": chart_records,
                "artist_records": artist_records,
                "totals": totals,
                "calculated_at": utc_now().isoformat(),
            }
            await self._records.save(group_id, records, RecordStatus.COMPLETED.value)
        return records

    async def _totals(self, group_id: str, chart_type: ChartType) -> dict[str, int]:
        distinct = func.count(func.distinct(ChartEntryModel.entry_key))
        base = select(distinct).where(
            ChartEntryModel.group_id == group_id,
            ChartEntryModel.chart_type == chart_type.value,
        )
        charted = (await self.session.execute(base)).scalar() or 0
        number_ones = (
            await self.session.execute(base.where(ChartEntryModel.position == 1))
        ).scalar() or 0
        return {"entries_charted": charted, "number_ones": number_ones}

    async def get_group_records(self, group_id: str) -> dict[str, Any]:
        """Stored records summary (status 'pending' until the first calculation)."""
        await self._groups.get(group_id)
        model = await self._records.get(group_id)
        if model is None:
            return {"group_id": group_id, "status": RecordStatus.PENDING.value, "records": {}}
        return {
            "group_id": group_id,
            "status": model.status,
            "records": model.records or {},
            "updated_at": model.updated_at,
        }
