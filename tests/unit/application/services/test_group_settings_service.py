"""Tests for owner-only chart settings updates."""

from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.application.services.group_settings_service import (
    TRACKING_DAY_REASON,
    GroupSettingsService,
)
from groupcharts.config import Settings
from groupcharts.domain.entities import ChartMode, ChartType
from groupcharts.domain.exceptions import AuthorizationError, ValidationException
from groupcharts.infrastructure.persistence.repositories import (
    ChartRepository,
    EntryStatsRepository,
    GroupRepository,
    RecordsRepository,
)

MONDAY_1 = datetime(2024, 1, 8, tzinfo=UTC)
MONDAY_2 = datetime(2024, 1, 15, tzinfo=UTC)
WEDNESDAY_NOW = datetime(2024, 1, 17, 10, tzinfo=UTC)


@pytest.fixture
async def monday_group(seed, session: AsyncSession, settings: Settings) -> str:
    await seed.group("mon", ["alice", "bob"], owner="alice", tracking_day_of_week=1)
    await seed.snapshot("alice", MONDAY_1, artists={"Artist X": 6})
    await seed.snapshot("bob", MONDAY_2, artists={"Artist Y": 4})
    charts = ChartGenerationService(session, settings=settings)
    await charts.generate_week("mon", MONDAY_1)
    await charts.generate_week("mon", MONDAY_2)
    await RecordsRepository(session).set_status("mon", "completed")
    return "mon"


@pytest.fixture
def service(session: AsyncSession, settings: Settings) -> GroupSettingsService:
    return GroupSettingsService(session, settings)


class TestTrackingDayChange:
    """Moving the tracking day deletes overlapping weeks and queues the new ones."""

    async def test_monday_to_wednesday(
        self, service: GroupSettingsService, session: AsyncSession, monday_group: str
    ) -> None:
        result = await service.update_settings(
            monday_group, "alice", tracking_day_of_week=3, now=WEDNESDAY_NOW
        )

        assert result.changed == ["tracking_day_of_week"]
        assert result.group.tracking_day_of_week == 3
        assert result.deleted_weeks == [MONDAY_1, MONDAY_2]
        assert sorted(result.queued_weeks) == [
            datetime(2024, 1, 3, tzinfo=UTC),
            datetime(2024, 1, 10, tzinfo=UTC),
            datetime(2024, 1, 17, tzinfo=UTC),
        ]

        charts = ChartRepository(session)
        assert await charts.list_week_starts(monday_group) == []
        queue = await charts.list_regenerations(monday_group)
        assert {item.reason for item in queue} == {TRACKING_DAY_REASON}
        records = await RecordsRepository(session).get(monday_group)
        assert records is not None and records.status == "pending"
        stats = await EntryStatsRepository(session).get(
            monday_group, ChartType.ARTISTS, "artist x"
        )
        assert stats is not None and stats.stale is True

    async def test_queue_regenerates_finished_weeks_only(
        self,
        service: GroupSettingsService,
        session: AsyncSession,
        settings: Settings,
        monday_group: str,
    ) -> None:
        await service.update_settings(
            monday_group, "alice", tracking_day_of_week=3, now=WEDNESDAY_NOW
        )
        charts = ChartGenerationService(session, settings=settings)

        # The in-progress week (Jan 17) must wait
        assert await charts.process_regeneration_queue(now=WEDNESDAY_NOW) == 2
        assert await charts.process_regeneration_queue(
            now=datetime(2024, 1, 25, tzinfo=UTC)
        ) == 1
        assert await ChartRepository(session).list_regenerations(monday_group) == []

    async def test_same_day_is_a_no_op(
        self, service: GroupSettingsService, session: AsyncSession, monday_group: str
    ) -> None:
        result = await service.update_settings(
            monday_group, "alice", tracking_day_of_week=1, now=WEDNESDAY_NOW
        )

        assert result.changed == []
        assert result.deleted_weeks == []
        assert await ChartRepository(session).list_week_starts(monday_group) == [
            MONDAY_1,
            MONDAY_2,
        ]


class TestValidation:
    """Only the owner may change settings, and only to valid values."""

    async def test_non_owner_rejected(
        self, service: GroupSettingsService, monday_group: str
    ) -> None:
        with pytest.raises(AuthorizationError):
            await service.update_settings(monday_group, "bob", chart_size=20)

    @pytest.mark.parametrize(
        "changes",
        [
            {"chart_size": 15},
            {"chart_mode": "loudest"},
            {"tracking_day_of_week": 7},
        ],
    )
    async def test_invalid_values_change_nothing(
        self,
        service: GroupSettingsService,
        session: AsyncSession,
        monday_group: str,
        changes: dict,
    ) -> None:
        with pytest.raises(ValidationException):
            await service.update_settings(monday_group, "alice", **changes)

        group = await GroupRepository(session).get(monday_group)
        assert group.chart_size == 10
        assert group.tracking_day_of_week == 1

    async def test_size_and_mode_update(
        self, service: GroupSettingsService, session: AsyncSession, monday_group: str
    ) -> None:
        result = await service.update_settings(
            monday_group, "alice", chart_size=20, chart_mode="vs"
        )

        assert result.changed == ["chart_size", "chart_mode"]
        assert result.group.chart_size == 20
        assert result.group.chart_mode is ChartMode.VS
        # Existing weeks are left alone
        assert len(await ChartRepository(session).list_week_starts(monday_group)) == 2
