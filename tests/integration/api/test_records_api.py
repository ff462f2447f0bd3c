"""Integration tests for the records endpoints."""

from datetime import UTC, datetime

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.config import Settings

WEEKS = [datetime(2024, 1, day, tzinfo=UTC) for day in (7, 14, 21)]


@pytest.fixture
async def charted(session: AsyncSession, settings: Settings, example_group: str) -> str:
    charts = ChartGenerationService(session, settings=settings)
    for week in WEEKS:
        await charts.generate_week(example_group, week)
    await session.commit()
    return example_group


class TestRecordsEndpoints:
    """/api/records and /api/groups/{id}/records."""

    async def test_record_types(self, client: AsyncClient) -> None:
        response = await client.get("/api/records/types")

        assert response.status_code == 200
        types = {t["record_type"]: t for t in response.json()}
        assert len(types) == 13
        assert types["most-weeks-at-one"]["is_artist_record"] is False

    async def test_leaderboard(self, client: AsyncClient, charted: str) -> None:
        response = await client.get(
            f"/api/groups/{charted}/records/most-weeks-at-one",
            params={"chart_type": "artists"},
        )

        assert response.status_code == 200
        rows = response.json()["entries"]
        assert [(r["entry_key"], r["value"]) for r in rows] == [("artist x", 2), ("artist y", 1)]

    async def test_artist_leaderboard(self, client: AsyncClient, charted: str) -> None:
        response = await client.get(f"/api/groups/{charted}/records/artist-most-songs-charted")

        assert response.status_code == 200
        rows = response.json()["entries"]
        assert rows[0] == {"kind": "artist", "rank": 1, "artist": "Artist X", "value": 2}

    async def test_unknown_record_type_is_422(self, client: AsyncClient, charted: str) -> None:
        response = await client.get(f"/api/groups/{charted}/records/most-cowbell")
        assert response.status_code == 422

    async def test_entry_record_without_chart_type_is_422(
        self, client: AsyncClient, charted: str
    ) -> None:
        response = await client.get(f"/api/groups/{charted}/records/most-plays")
        assert response.status_code == 422

    async def test_summary_lifecycle(self, client: AsyncClient, charted: str) -> None:
        pending = await client.get(f"/api/groups/{charted}/records")
        assert pending.json()["status"] == "pending"

        calculated = await client.post(f"/api/groups/{charted}/records/calculate")

        assert calculated.status_code == 200
        body = calculated.json()
        assert body["status"] == "completed"
        assert body["records"]["totals"]["artists"]["number_ones"] == 2
