"""Tests for the all-time group catalogue."""

from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.application.services.all_time_stats_service import (
    AllTimeStatsService,
    merge_weekly_lists,
)
from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.config import Settings

WEEK_1 = datetime(2024, 1, 7, tzinfo=UTC)
WEEK_3 = datetime(2024, 1, 21, tzinfo=UTC)


def _item(key: str, plays: int) -> dict:
    return {"entry_key": key, "name": key.title(), "artist": None, "playcount": plays}


class TestMergeWeeklyLists:
    """Test merge_weekly_lists."""

    def test_sums_plays_and_counts_weeks(self) -> None:
        merged = merge_weekly_lists(
            [[_item("a", 5), _item("b", 9)], [_item("a", 6)]]
        )

        assert [(e["entry_key"], e["playcount"], e["weeks"]) for e in merged] == [
            ("a", 11, 2),
            ("b", 9, 1),
        ]

    def test_only_weekly_top_ten_counts(self) -> None:
        week = [_item(f"artist {i:02d}", 20 - i) for i in range(12)]

        merged = merge_weekly_lists([week])

        assert len(merged) == 10
        assert "artist 11" not in {e["entry_key"] for e in merged}


class TestAllTimeStatsService:
    """Test the stored catalogue."""

    async def test_catalogue_from_charted_weeks(
        self, session: AsyncSession, settings: Settings, example_group: str
    ) -> None:
        charts = ChartGenerationService(session, settings=settings)
        await charts.generate_week(example_group, WEEK_1)
        await charts.generate_week(example_group, WEEK_3)

        catalogue = await AllTimeStatsService(session).get(example_group)

        assert [(a["entry_key"], a["playcount"]) for a in catalogue["artists"]] == [
            ("artist x", 22),
            ("artist y", 3),
            ("artist z", 2),
        ]
        assert catalogue["tracks"][0]["entry_key"] == "song a|artist x"
