"""Integration tests for the chart, trends and entry stats endpoints."""

from datetime import UTC, datetime

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.config import Settings

WEEK_1 = datetime(2024, 1, 7, tzinfo=UTC)
WEEK_2 = datetime(2024, 1, 14, tzinfo=UTC)
WEEK_3 = datetime(2024, 1, 21, tzinfo=UTC)


@pytest.fixture
async def charted(session: AsyncSession, settings: Settings, example_group: str) -> str:
    charts = ChartGenerationService(session, settings=settings)
    for week in (WEEK_1, WEEK_2, WEEK_3):
        await charts.generate_week(example_group, week)
    await session.commit()
    return example_group


class TestChartEndpoints:
    """GET/POST /api/groups/{id}/charts..."""

    async def test_latest_chart_by_default(self, client: AsyncClient, charted: str) -> None:
        response = await client.get(f"/api/groups/{charted}/charts")

        assert response.status_code == 200
        body = response.json()
        assert body["chart_type"] == "artists"
        assert body["week_start"].startswith("2024-01-21T00:00:00")
        assert [(e["entry_key"], e["position"]) for e in body["entries"]] == [
            ("artist x", 1),
            ("artist z", 2),
        ]
        assert body["entries"][0]["position_change"] is None

    async def test_chart_of_given_week_and_type(
        self, client: AsyncClient, charted: str
    ) -> None:
        response = await client.get(
            f"/api/groups/{charted}/charts",
            params={"chart_type": "tracks", "week_start": "2024-01-07T00:00:00Z"},
        )

        assert response.status_code == 200
        entries = response.json()["entries"]
        assert [e["slug"] for e in entries] == [
            "song-a-artist-x",
            "song-b-artist-x",
            "song-c-artist-y",
        ]
        assert entries[0]["artist"] == "Artist X"

    async def test_unknown_chart_type_is_422(self, client: AsyncClient, charted: str) -> None:
        response = await client.get(
            f"/api/groups/{charted}/charts", params={"chart_type": "songs"}
        )

        assert response.status_code == 422
        assert "songs" in response.json()["detail"]

    async def test_group_without_weeks_is_404(
        self, client: AsyncClient, example_group: str
    ) -> None:
        response = await client.get(f"/api/groups/{example_group}/charts")
        assert response.status_code == 404

    async def test_unknown_group_is_404(self, client: AsyncClient) -> None:
        response = await client.get("/api/groups/nope/charts/weeks")
        assert response.status_code == 404

    async def test_list_weeks(self, client: AsyncClient, charted: str) -> None:
        response = await client.get(f"/api/groups/{charted}/charts/weeks")

        assert response.status_code == 200
        assert len(response.json()["weeks"]) == 3

    async def test_generate_is_idempotent(
        self, client: AsyncClient, example_group: str
    ) -> None:
        first = await client.post(f"/api/groups/{example_group}/charts/generate")
        second = await client.post(f"/api/groups/{example_group}/charts/generate")

        assert first.status_code == 200
        assert first.json()["created"] is True
        assert len(first.json()["generated_weeks"]) == 5
        assert second.json()["created"] is False
        assert second.json()["generated_weeks"] == []
        assert second.json()["week_start"] == first.json()["week_start"]


class TestTrendsAndStatsEndpoints:
    """GET trends and entry stats."""

    async def test_trends_of_latest_week(self, client: AsyncClient, charted: str) -> None:
        response = await client.get(f"/api/groups/{charted}/trends")

        assert response.status_code == 200
        body = response.json()
        assert [c["entry_key"] for c in body["comebacks"]] == ["artist x"]
        assert body["comebacks"][0]["weeks_away"] == 2

    async def test_entry_stats_by_slug(self, client: AsyncClient, charted: str) -> None:
        response = await client.get(f"/api/groups/{charted}/entries/artists/artist-x/stats")

        assert response.status_code == 200
        body = response.json()
        assert body["weeks_at_one"] == 2
        assert body["major_driver"]["user_id"] == "bob"
        assert body["major_driver"]["name"] == "Bob"

    async def test_unknown_entry_is_404(self, client: AsyncClient, charted: str) -> None:
        response = await client.get(f"/api/groups/{charted}/entries/artists/nobody/stats")
        assert response.status_code == 404
