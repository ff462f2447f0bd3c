"""Tests for ChartGenerationWorker."""

from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.application.workers.chart_generation_worker import (
    ChartGenerationWorker,
    create_chart_generation_worker,
)
from groupcharts.config import Settings
from groupcharts.infrastructure.persistence.database import Database
from groupcharts.infrastructure.persistence.repositories import (
    AllTimeStatsRepository,
    ChartRepository,
    RecordsRepository,
)

WEEK_1 = datetime(2024, 1, 7, tzinfo=UTC)
WEEK_2 = datetime(2024, 1, 14, tzinfo=UTC)
WEEK_3 = datetime(2024, 1, 21, tzinfo=UTC)
# Monday after week 3 closed
NOW = datetime(2024, 1, 29, 9, tzinfo=UTC)
# Monday after week 1 closed
EARLIER = datetime(2024, 1, 15, 9, tzinfo=UTC)


@pytest.fixture
def worker(db: Database, settings: Settings) -> ChartGenerationWorker:
    return create_chart_generation_worker(db.session_factory, settings)


class TestRunCycle:
    """Test one worker cycle."""

    async def test_first_cycle_backfills_and_builds_records(
        self,
        worker: ChartGenerationWorker,
        db: Database,
        settings: Settings,
        example_group: str,
    ) -> None:
        summary = await worker.run_cycle(NOW)

        backfill = settings.charts.initial_weeks
        assert summary == {"groups": 1, "failed": 0, "generated": backfill, "regenerated": 0}
        async with db.session_factory() as session:
            assert await ChartRepository(session).has_week(example_group, WEEK_3)
            records = await RecordsRepository(session).get(example_group)
            assert records is not None and records.status == "completed"
            assert await AllTimeStatsRepository(session).get(example_group) is not None

    async def test_second_cycle_is_a_no_op(
        self, worker: ChartGenerationWorker, settings: Settings, example_group: str
    ) -> None:
        await worker.run_cycle(NOW)
        summary = await worker.run_cycle(NOW)

        assert summary["generated"] == 0
        assert worker.get_stats()["cycles_completed"] == 2
        assert worker.get_stats()["weeks_generated"] == settings.charts.initial_weeks

    async def test_weeks_finished_between_cycles_are_caught_up(
        self, worker: ChartGenerationWorker, db: Database, example_group: str
    ) -> None:
        await worker.run_cycle(EARLIER)
        summary = await worker.run_cycle(NOW)

        assert summary["generated"] == 2
        async with db.session_factory() as session:
            weeks = await ChartRepository(session).list_week_starts(example_group, WEEK_1)
        assert weeks == [WEEK_1, WEEK_2, WEEK_3]

    async def test_failing_group_does_not_block_others(
        self,
        worker: ChartGenerationWorker,
        db: Database,
        settings: Settings,
        seed,
        example_group: str,
    ) -> None:
        await seed.group("broken", ["carol"])
        await seed.session.commit()
        real = ChartGenerationService.generate_missing_weeks

        async def flaky(self, group_id, now=None):
            if group_id == "broken":
                raise RuntimeError("snapshot store unavailable")
            return await real(self, group_id, now)

        with patch.object(ChartGenerationService, "generate_missing_weeks", flaky):
            summary = await worker.run_cycle(NOW)

        assert summary == {
            "groups": 2,
            "failed": 1,
            "generated": settings.charts.initial_weeks,
            "regenerated": 0,
        }
        assert worker.get_stats()["errors_total"] == 1
        async with db.session_factory() as session:
            assert await ChartRepository(session).has_week(example_group, WEEK_3)
            assert not await ChartRepository(session).has_week("broken", WEEK_3)


class TestLifecycle:
    """Test start/stop bookkeeping."""

    def test_stop_flags_worker(
        self, worker: ChartGenerationWorker, settings: Settings
    ) -> None:
        worker.stop()

        stats = worker.get_stats()
        assert stats["running"] is False
        assert stats["cycles_completed"] == 0
        assert stats["check_interval"] == settings.worker.check_interval
