"""Tests for the group recommendation funnel."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.application.services.chart_generation_service import (
    ChartGenerationService,
)
from groupcharts.application.services.compatibility_service import CompatibilityService
from groupcharts.application.services.recommendation_service import (
    RecommendationService,
)
from groupcharts.config import Settings
from groupcharts.domain.exceptions import BusinessRuleViolation, EntityNotFoundException
from groupcharts.infrastructure.persistence.database import Database
from groupcharts.infrastructure.persistence.repositories import CompatibilityRepository

WEEK_1 = datetime(2024, 1, 7, tzinfo=UTC)
NOW = datetime(2024, 2, 14, 12, tzinfo=UTC)


@pytest.fixture
async def landscape(seed, session: AsyncSession, settings: Settings) -> None:
    """dana listens to Artist X and Artist Q; a handful of groups around her."""
    await seed.snapshot(
        "dana",
        WEEK_1,
        artists={"Artist X": 10, "Artist Q": 5},
        tracks=[("Song A", "Artist X", 4)],
    )

    listening = {
        "g-match": {"alice": {"Artist X": 8}, "bob": {"Artist X": 2, "Artist Q": 3}},
        "g-match2": {"mo": {"Artist Q": 4}, "ned": {"Artist Q": 2}},
        "g-nomatch": {"erin": {"Artist N": 9}, "frank": {"Artist N": 1}},
        "solo": {"gus": {"Artist X": 5}, "hank": {"Artist X": 5}},
        "private": {"ivy": {"Artist X": 5}, "jay": {"Artist X": 5}},
        "own": {"dana": {}, "kim": {"Artist X": 5}},
        "tiny": {"lou": {"Artist X": 5}},
    }
    flags = {
        "solo": {"is_solo": True},
        "private": {"is_private": True, "allow_free_join": False},
    }
    for group_id, members in listening.items():
        await seed.group(group_id, list(members), **flags.get(group_id, {}))
        for user_id, artists in members.items():
            if artists:
                await seed.snapshot(user_id, WEEK_1, artists=artists)

    charts = ChartGenerationService(session, settings=settings)
    for group_id in listening:
        await charts.generate_week(group_id, WEEK_1)
    await session.commit()


@pytest.fixture
def service(session: AsyncSession, db: Database, settings: Settings) -> RecommendationService:
    return RecommendationService(session, db.session_factory, settings=settings)


class TestRecommendations:
    """Pre-filter, candidate selection and scoring."""

    async def test_only_eligible_groups_sharing_an_artist(
        self, service: RecommendationService, landscape: None
    ) -> None:
        recommendations = await service.get_recommendations("dana", now=NOW)

        assert [r["group_id"] for r in recommendations] == ["g-match", "g-match2"]
        top = recommendations[0]
        assert top["group_name"] == "Group g-match"
        assert top["artist_overlap"] == pytest.approx(100.0)
        assert recommendations[0]["score"] > recommendations[1]["score"]

    async def test_failing_candidate_is_dropped(
        self, service: RecommendationService, landscape: None
    ) -> None:
        real = CompatibilityService.calculate

        async def flaky(self, user_id, group_id, now=None, user_profile=None):
            if group_id == "g-match":
                raise RuntimeError("genre lookup timed out")
            return await real(self, user_id, group_id, now, user_profile)

        with patch.object(CompatibilityService, "calculate", flaky):
            recommendations = await service.get_recommendations("dana", now=NOW)

        assert [r["group_id"] for r in recommendations] == ["g-match2"]

    async def test_user_without_listening(
        self, service: RecommendationService, seed, landscape: None
    ) -> None:
        await seed.user("nobody")
        assert await service.get_recommendations("nobody", now=NOW) == []

    async def test_cached_until_forced(
        self, service: RecommendationService, session: AsyncSession, landscape: None
    ) -> None:
        first = await service.get_recommendations("dana", now=NOW)
        assert await CompatibilityRepository(session).get_cache("dana") is not None

        with patch.object(service, "_calculate", AsyncMock(return_value=[])) as calculate:
            cached = await service.get_recommendations("dana", now=NOW)
            calculate.assert_not_called()
            forced = await service.get_recommendations("dana", now=NOW, force=True)
            calculate.assert_awaited_once()

        assert cached == first
        assert forced == []

    async def test_fresh_pair_scores_are_reused(
        self, service: RecommendationService, session: AsyncSession, landscape: None
    ) -> None:
        first = await service.get_recommendations("dana", now=NOW)
        await CompatibilityRepository(session).clear_cache("dana")
        unavailable = AsyncMock(side_effect=RuntimeError("genre lookup timed out"))

        with patch.object(CompatibilityService, "calculate", unavailable):
            again = await service.get_recommendations("dana", now=NOW)
            assert unavailable.await_count == 0
            forced = await service.get_recommendations("dana", now=NOW, force=True)

        assert again == first
        # The forced refresh rescored both candidates, and both failed
        assert unavailable.await_count == 2
        assert forced == []


class TestRejections:
    """Rejected groups are never recommended again."""

    async def test_reject_group(
        self, service: RecommendationService, landscape: None
    ) -> None:
        await service.get_recommendations("dana", now=NOW)

        assert await service.reject_group("dana", "g-match") is True
        assert await service.reject_group("dana", "g-match") is False

        recommendations = await service.get_recommendations("dana", now=NOW)
        assert [r["group_id"] for r in recommendations] == ["g-match2"]

    async def test_reject_unknown_group(
        self, service: RecommendationService, landscape: None
    ) -> None:
        with pytest.raises(EntityNotFoundException):
            await service.reject_group("dana", "no-such-group")

    async def test_member_cannot_reject_own_group(
        self, service: RecommendationService, landscape: None
    ) -> None:
        with pytest.raises(BusinessRuleViolation):
            await service.reject_group("dana", "own")
