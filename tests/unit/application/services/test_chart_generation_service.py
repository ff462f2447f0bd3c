"""Tests for ChartGenerationService against a real SQLite database."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.config import Settings
from groupcharts.domain.entities import ChartMode, ChartType
from groupcharts.domain.exceptions import (
    EntityNotFoundException,
    InvalidStateException,
    UnsupportedChartTypeError,
    ValidationException,
)
from groupcharts.infrastructure.persistence.repositories import (
    ChartRepository,
    EntryStatsRepository,
    RecordsRepository,
)

WEEK_1 = datetime(2024, 1, 7, tzinfo=UTC)
WEEK_2 = datetime(2024, 1, 14, tzinfo=UTC)
WEEK_3 = datetime(2024, 1, 21, tzinfo=UTC)

# Hey future me - example_group (conftest) charts Artist X in week 1 (alice 10 + bob 5),
# skips it in week 2 and brings it back in week 3.


class TestGenerateWeek:
    """Test generate_week."""

    @pytest.fixture
    def service(self, session: AsyncSession, settings: Settings) -> ChartGenerationService:
        return ChartGenerationService(session, settings=settings)

    async def test_plays_only_sums_member_plays(
        self, service: ChartGenerationService, example_group: str
    ) -> None:
        result = await service.generate_week(example_group, WEEK_1)

        assert result.created is True
        artists = result.entries[ChartType.ARTISTS]
        assert [(r.entry_key, r.position, r.playcount) for r in artists] == [
            ("artist x", 1, 15),
            ("artist y", 2, 3),
        ]
        assert artists[0].contributions == {"alice": 10, "bob": 5}
        assert artists[0].major_driver_id == "alice"
        assert artists[0].entry_type == "new"
        assert artists[0].vibe_score is None
        assert result.total_plays == 18

    async def test_absent_entry_gets_no_row(
        self, service: ChartGenerationService, session: AsyncSession, example_group: str
    ) -> None:
        await service.generate_week(example_group, WEEK_1)
        await service.generate_week(example_group, WEEK_2)

        rows = await ChartRepository(session).get_week_entries(
            example_group, WEEK_2, ChartType.ARTISTS
        )
        assert [r.entry_key for r in rows] == ["artist y"]
        assert rows[0].position_change == 1
        assert rows[0].entry_type == "up"
        assert rows[0].plays_change == 1
        assert rows[0].total_weeks_appeared == 2

    async def test_reentry_counts_earlier_weeks(
        self, service: ChartGenerationService, example_group: str
    ) -> None:
        for week in (WEEK_1, WEEK_2, WEEK_3):
            await service.generate_week(example_group, week)

        rows = await service.get_chart(example_group, WEEK_3, "artists")
        returning = next(r for r in rows if r.entry_key == "artist x")
        assert returning.position_change is None
        assert returning.entry_type == "new"
        assert returning.total_weeks_appeared == 2
        assert returning.highest_position == 1

    async def test_missing_members_are_reported(
        self, service: ChartGenerationService, example_group: str
    ) -> None:
        result = await service.generate_week(example_group, WEEK_2)
        assert result.missing_members == ["bob"]

    async def test_generation_is_idempotent(
        self, service: ChartGenerationService, session: AsyncSession, example_group: str
    ) -> None:
        await service.generate_week(example_group, WEEK_1)
        again = await service.generate_week(example_group, WEEK_1)

        assert again.created is False
        rows = await ChartRepository(session).get_week_entries(example_group, WEEK_1)
        assert len(rows) == 5  # 2 artists + 3 tracks
        assert len(again.entries[ChartType.ARTISTS]) == 2

    async def test_replace_rebuilds_identical_chart(
        self, service: ChartGenerationService, session: AsyncSession, example_group: str
    ) -> None:
        first = await service.generate_week(example_group, WEEK_1)
        before = [
            (r.chart_type, r.entry_key, r.position)
            for rows in first.entries.values()
            for r in rows
        ]

        rebuilt = await service.generate_week(example_group, WEEK_1, replace=True)

        assert rebuilt.created is True
        rows = await ChartRepository(session).get_week_entries(example_group, WEEK_1)
        assert sorted((r.chart_type, r.entry_key, r.position) for r in rows) == sorted(before)

    async def test_generation_marks_stats_stale_and_records_pending(
        self, service: ChartGenerationService, session: AsyncSession, example_group: str
    ) -> None:
        await service.generate_week(example_group, WEEK_1)

        stats = await EntryStatsRepository(session).get(
            example_group, ChartType.ARTISTS, "artist x"
        )
        records = await RecordsRepository(session).get(example_group)
        assert stats is not None and stats.stale is True
        assert records is not None and records.status == "pending"

    async def test_unaligned_week_rejected(
        self, service: ChartGenerationService, example_group: str
    ) -> None:
        with pytest.raises(ValidationException):
            await service.generate_week(example_group, WEEK_1 + timedelta(days=1))

    async def test_unfinished_week_rejected(
        self, service: ChartGenerationService, session: AsyncSession, example_group: str
    ) -> None:
        midweek = WEEK_3 + timedelta(days=3)

        with pytest.raises(InvalidStateException):
            await service.generate_week(example_group, WEEK_3, now=midweek)
        assert not await ChartRepository(session).has_week(example_group, WEEK_3)

    async def test_unknown_group(self, service: ChartGenerationService) -> None:
        with pytest.raises(EntityNotFoundException):
            await service.generate_week("nope", WEEK_1)


class TestChartModes:
    """Shared listening changes the order under the vs modes."""

    async def _generate(
        self, seed, session: AsyncSession, settings: Settings, mode: ChartMode
    ) -> list[str]:
        await seed.group("gm", ["alice", "bob", "carol"], chart_mode=mode)
        await seed.snapshot("alice", WEEK_1, artists={"Solo Act": 10, "Shared Act": 3})
        await seed.snapshot("bob", WEEK_1, artists={"Shared Act": 3})
        await seed.snapshot("carol", WEEK_1, artists={"Shared Act": 3})
        result = await ChartGenerationService(session, settings=settings).generate_week(
            "gm", WEEK_1
        )
        return [row.entry_key for row in result.entries[ChartType.ARTISTS]]

    async def test_plays_only_favours_volume(
        self, seed, session: AsyncSession, settings: Settings
    ) -> None:
        order = await self._generate(seed, session, settings, ChartMode.PLAYS_ONLY)
        assert order == ["solo act", "shared act"]

    async def test_vs_favours_shared_listening(
        self, seed, session: AsyncSession, settings: Settings
    ) -> None:
        order = await self._generate(seed, session, settings, ChartMode.VS)
        assert order == ["shared act", "solo act"]

    async def test_chart_size_truncates(
        self, seed, session: AsyncSession, settings: Settings
    ) -> None:
        await seed.group("big", ["alice"])
        artists = {f"Artist {i:02d}": 50 - i for i in range(25)}
        await seed.snapshot("alice", WEEK_1, artists=artists)

        result = await ChartGenerationService(session, settings=settings).generate_week(
            "big", WEEK_1
        )
        assert [r.position for r in result.entries[ChartType.ARTISTS]] == list(range(1, 11))


class TestBackfillAndReads:
    """Test initialize_group, generate_latest_week, generate_missing_weeks and the reads."""

    @pytest.fixture
    def service(self, session: AsyncSession, settings: Settings) -> ChartGenerationService:
        return ChartGenerationService(session, settings=settings)

    async def test_initialize_generates_last_finished_weeks(
        self, service: ChartGenerationService, example_group: str, settings: Settings
    ) -> None:
        now = datetime(2024, 1, 24, 12, tzinfo=UTC)  # Wednesday

        generated = await service.initialize_group(example_group, now=now)

        assert len(generated) == settings.charts.initial_weeks
        assert generated[-1] == WEEK_2
        assert await service.initialize_group(example_group, now=now) == []

    async def test_generate_latest_week(
        self, service: ChartGenerationService, example_group: str
    ) -> None:
        result = await service.generate_latest_week(
            example_group, now=datetime(2024, 1, 29, tzinfo=UTC)
        )
        assert result.week_start == WEEK_3

    async def test_missing_weeks_fill_the_gap(
        self, service: ChartGenerationService, example_group: str
    ) -> None:
        now = datetime(2024, 1, 29, 9, tzinfo=UTC)
        await service.generate_week(example_group, WEEK_1)

        results = await service.generate_missing_weeks(example_group, now=now)

        assert [r.week_start for r in results] == [WEEK_2, WEEK_3]
        assert all(r.created for r in results)
        assert await service.list_weeks(example_group) == [WEEK_1, WEEK_2, WEEK_3]
        assert await service.generate_missing_weeks(example_group, now=now) == []

    async def test_missing_weeks_capped_to_most_recent(
        self, service: ChartGenerationService, example_group: str, settings: Settings
    ) -> None:
        await service.generate_week(example_group, WEEK_1)
        # Nine finished weeks missing
        now = WEEK_1 + timedelta(weeks=10, hours=1)

        results = await service.generate_missing_weeks(example_group, now=now)

        assert len(results) == settings.charts.initial_weeks
        assert results[0].week_start == WEEK_1 + timedelta(weeks=5)
        assert results[-1].week_start == WEEK_1 + timedelta(weeks=9)

    async def test_missing_weeks_of_new_group_is_the_backfill(
        self, service: ChartGenerationService, example_group: str, settings: Settings
    ) -> None:
        results = await service.generate_missing_weeks(
            example_group, now=datetime(2024, 1, 24, 12, tzinfo=UTC)
        )

        assert len(results) == settings.charts.initial_weeks
        assert results[-1].week_start == WEEK_2

    async def test_get_chart_rejects_unknown_chart_type(
        self, service: ChartGenerationService, example_group: str
    ) -> None:
        with pytest.raises(UnsupportedChartTypeError):
            await service.get_chart(example_group, WEEK_1, "songs")

    async def test_get_chart_of_uncharted_week(
        self, service: ChartGenerationService, example_group: str
    ) -> None:
        with pytest.raises(EntityNotFoundException):
            await service.get_chart(example_group, WEEK_1, ChartType.ARTISTS)

    async def test_list_weeks_oldest_first(
        self, service: ChartGenerationService, example_group: str
    ) -> None:
        await service.generate_week(example_group, WEEK_2)
        await service.generate_week(example_group, WEEK_1)

        assert await service.list_weeks(example_group) == [WEEK_1, WEEK_2]
