"""Unit tests for the persistence repositories.

Hey future me - these go through a real SQLite file (see conftest). Repositories only flush,
so everything here runs inside one uncommitted session.
"""

from datetime import UTC, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.domain.entities import ChartMode, ChartType
from groupcharts.domain.exceptions import DuplicateEntityException, EntityNotFoundException
from groupcharts.infrastructure.persistence.repositories import (
    ChartRepository,
    CompatibilityRepository,
    EntryStatsRepository,
    GroupRepository,
    SnapshotRepository,
    UserRepository,
)

WEEK_1 = datetime(2024, 1, 7, tzinfo=UTC)
WEEK_2 = datetime(2024, 1, 14, tzinfo=UTC)


class TestGroupRepository:
    """Group configuration and roster."""

    async def test_get_maps_to_config(self, seed, session: AsyncSession) -> None:
        await seed.group("g", ["alice", "bob"], chart_mode=ChartMode.VS, chart_size=20)

        config = await GroupRepository(session).get("g")

        assert config.owner_id == "alice"
        assert config.chart_mode is ChartMode.VS
        assert config.chart_size == 20

    async def test_unknown_group(self, session: AsyncSession) -> None:
        with pytest.raises(EntityNotFoundException):
            await GroupRepository(session).get("missing")

    async def test_roster(self, seed, session: AsyncSession) -> None:
        await seed.group("g", ["carol", "alice", "bob"])
        await seed.group("h", ["alice"])
        groups = GroupRepository(session)

        assert await groups.get_member_ids("g") == ["alice", "bob", "carol"]
        assert await groups.get_group_ids_for_user("alice") == {"g", "h"}
        assert await groups.count_members(["g", "h", "nope"]) == {"g": 3, "h": 1}

    async def test_remove_unknown_member(self, seed, session: AsyncSession) -> None:
        await seed.group("g", ["alice"])

        with pytest.raises(EntityNotFoundException):
            await GroupRepository(session).remove_member("g", "zed")

    async def test_member_added_twice(self, seed, session: AsyncSession) -> None:
        await seed.group("g", ["alice", "bob"])

        with pytest.raises(DuplicateEntityException):
            await GroupRepository(session).add_member("g", "bob")
        assert await GroupRepository(session).get_member_ids("g") == ["alice", "bob"]


class TestUserRepository:
    """Display names are resolved at read time."""

    async def test_get_names_skips_unknown_ids(self, seed, session: AsyncSession) -> None:
        await seed.user("alice", "Alice")

        names = await UserRepository(session).get_names(["alice", "ghost", ""])

        assert names == {"alice": "Alice"}

    async def test_rename_unknown_user(self, session: AsyncSession) -> None:
        with pytest.raises(EntityNotFoundException):
            await UserRepository(session).rename("ghost", "Casper")


class TestSnapshotRepository:
    """Member weekly snapshots."""

    async def test_round_trip_and_window(self, seed, session: AsyncSession) -> None:
        await seed.snapshot("alice", WEEK_1, artists={"Artist X": 3})
        await seed.snapshot(
            "alice", WEEK_2, tracks=[("Song A", "Artist X", 2)]
        )
        snapshots = SnapshotRepository(session)

        first = await snapshots.get_snapshot("alice", WEEK_1)
        recent = await snapshots.list_snapshots_since("alice", WEEK_2)

        assert first is not None
        assert first.week_start == WEEK_1
        assert [(i.name, i.playcount) for i in first.top_artists] == [("Artist X", 3)]
        assert [s.week_start for s in recent] == [WEEK_2]
        assert recent[0].top_tracks[0].artist == "Artist X"
        assert await snapshots.get_snapshot("bob", WEEK_1) is None

    async def test_snapshot_is_written_once_per_week(self, seed, session: AsyncSession) -> None:
        await seed.snapshot("alice", WEEK_1, artists={"Artist X": 3})

        with pytest.raises(DuplicateEntityException):
            await seed.snapshot("alice", WEEK_1, artists={"Artist X": 9})

        stored = await SnapshotRepository(session).get_snapshot("alice", WEEK_1)
        assert stored is not None
        assert stored.top_artists[0].playcount == 3


class TestEntryStatsRepository:
    """Stale flags on the stats cache."""

    async def test_mark_stale_creates_placeholders(
        self, seed, session: AsyncSession
    ) -> None:
        await seed.group("g", ["alice"])
        stats = EntryStatsRepository(session)

        count = await stats.mark_stale("g", ChartType.ARTISTS, ["artist x", "artist y"])

        assert count == 2
        assert await stats.list_stale_keys("g") == [
            (ChartType.ARTISTS, "artist x"),
            (ChartType.ARTISTS, "artist y"),
        ]
        assert await stats.list_stale_keys("g", ChartType.TRACKS) == []
        assert len(await stats.list_stale_keys("g", limit=1)) == 1

    async def test_driver_flag_only_for_that_user(
        self, seed, session: AsyncSession
    ) -> None:
        await seed.group("g", ["alice", "bob"])
        stats = EntryStatsRepository(session)
        await stats.mark_stale("g", ChartType.ARTISTS, ["artist x", "artist y"])
        rows = await stats.get_many("g", ChartType.ARTISTS, ["artist x", "artist y"])
        rows["artist x"].major_driver_id = "bob"
        rows["artist y"].major_driver_id = "alice"
        await session.flush()

        assert await stats.mark_driver_stale_for_user("g", "bob") == 1
        assert rows["artist x"].major_driver_stale is True
        assert rows["artist y"].major_driver_stale is False

    async def test_orphans_are_deleted(self, seed, session: AsyncSession) -> None:
        await seed.group("g", ["alice"])
        stats = EntryStatsRepository(session)
        await stats.mark_stale("g", ChartType.ARTISTS, ["artist x"])

        assert await stats.delete_orphans("g", ChartType.ARTISTS) == 1
        assert await stats.get("g", ChartType.ARTISTS, "artist x") is None


class TestQueuesAndCaches:
    """Regeneration queue, recommendation cache and rejections."""

    async def test_regeneration_queue_dedupes(self, seed, session: AsyncSession) -> None:
        await seed.group("g", ["alice"])
        charts = ChartRepository(session)

        assert await charts.queue_regeneration("g", WEEK_2, "test") is True
        assert await charts.queue_regeneration("g", WEEK_2, "test") is False
        assert await charts.queue_regeneration("g", WEEK_1, "test") is True
        assert [q.week_start for q in await charts.list_regenerations("g")] == [
            WEEK_1,
            WEEK_2,
        ]

        await charts.clear_regeneration("g", WEEK_1)
        assert len(await charts.list_regenerations()) == 1

    async def test_recommendation_cache_and_rejections(
        self, seed, session: AsyncSession
    ) -> None:
        await seed.group("g", ["alice"])
        await seed.user("dana")
        repo = CompatibilityRepository(session)

        await repo.save_cache("dana", [{"group_id": "g"}], WEEK_2)
        cached = await repo.get_cache("dana")
        assert cached is not None and cached.recommendations == [{"group_id": "g"}]

        await repo.clear_cache("dana")
        session.expunge_all()
        assert await repo.get_cache("dana") is None

        assert await repo.add_rejection("dana", "g") is True
        assert await repo.add_rejection("dana", "g") is False
        assert await repo.get_rejected_group_ids("dana") == {"g"}
