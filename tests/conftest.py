"""Shared fixtures: a file-backed SQLite database per test plus seeding helpers.

Hey future me - the database is a FILE under tmp_path, not :memory:. The recommendation funnel
scores candidates concurrently, each in its own session/connection, and only a file database
lets those connections see what the test committed. Anything a worker or a second session
must read has to be committed first (``await session.commit()``).
"""

from collections.abc import AsyncGenerator, Iterable
from datetime import UTC, datetime
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.config import DatabaseSettings, Settings, WorkerSettings
from groupcharts.domain.entities import ChartMode, MemberSnapshot, SnapshotItem
from groupcharts.infrastructure.persistence.database import Database
from groupcharts.infrastructure.persistence.repositories import (
    GroupRepository,
    SnapshotRepository,
    UserRepository,
)
from groupcharts.main import create_app

# Sunday-anchored weeks (tracking day 0)
WEEK_1 = datetime(2024, 1, 7, tzinfo=UTC)
WEEK_2 = datetime(2024, 1, 14, tzinfo=UTC)
WEEK_3 = datetime(2024, 1, 21, tzinfo=UTC)
WEEK_4 = datetime(2024, 1, 28, tzinfo=UTC)


class Seeder:
    """Writes users, groups, members and snapshots through the real repositories."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._users: set[str] = set()

    async def user(self, user_id: str, name: str | None = None) -> None:
        if user_id in self._users:
            return
        await UserRepository(self.session).add(user_id, name or user_id.capitalize())
        self._users.add(user_id)

    async def group(
        self,
        group_id: str,
        members: Iterable[str],
        owner: str | None = None,
        *,
        chart_mode: ChartMode = ChartMode.PLAYS_ONLY,
        chart_size: int = 10,
        tracking_day_of_week: int = 0,
        is_private: bool = False,
        is_solo: bool = False,
        allow_free_join: bool = True,
    ) -> None:
        members = list(members)
        owner = owner or members[0]
        for user_id in {owner, *members}:
            await self.user(user_id)
        groups = GroupRepository(self.session)
        await groups.add(
            group_id,
            f"Group {group_id}",
            owner,
            chart_mode=chart_mode,
            chart_size=chart_size,
            tracking_day_of_week=tracking_day_of_week,
            is_private=is_private,
            is_solo=is_solo,
            allow_free_join=allow_free_join,
        )
        for user_id in members:
            await groups.add_member(group_id, user_id)

    async def snapshot(
        self,
        user_id: str,
        week_start: datetime,
        artists: dict[str, int] | None = None,
        tracks: Iterable[tuple[str, str, int]] = (),
        albums: Iterable[tuple[str, str, int]] = (),
    ) -> None:
        await self.user(user_id)
        await SnapshotRepository(self.session).add(
            MemberSnapshot(
                user_id=user_id,
                week_start=week_start,
                top_artists=[
                    SnapshotItem(name=name, playcount=plays)
                    for name, plays in (artists or {}).items()
                ],
                top_tracks=[
                    SnapshotItem(name=name, artist=artist, playcount=plays)
                    for name, artist, plays in tracks
                ],
                top_albums=[
                    SnapshotItem(name=name, artist=artist, playcount=plays)
                    for name, artist, plays in albums
                ],
            )
        )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'groupcharts.db'}"),
        worker=WorkerSettings(enabled=False),
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
async def session(db: Database) -> AsyncGenerator[AsyncSession, None]:
    async with db.session_factory() as session:
        yield session


@pytest.fixture
def seed(session: AsyncSession) -> Seeder:
    return Seeder(session)


@pytest.fixture
async def example_group(seed: Seeder) -> str:
    """Two members, three Sunday weeks - Artist X charts in week 1 and 3 but not week 2.

    Week 1: alice 10 + bob 5 plays of Artist X, bob 3 of Artist Y, two Artist X tracks.
    Week 2: alice 4 plays of Artist Y only.
    Week 3: bob 7 plays of Artist X, alice 2 plays of Artist Z.
    """
    await seed.group("g1", ["alice", "bob"], owner="alice")
    await seed.snapshot(
        "alice",
        WEEK_1,
        artists={"Artist X": 10},
        tracks=[("Song A", "Artist X", 6), ("Song B", "Artist X", 4)],
    )
    await seed.snapshot(
        "bob",
        WEEK_1,
        artists={"Artist X": 5, "Artist Y": 3},
        tracks=[("Song C", "Artist Y", 3)],
    )
    await seed.snapshot("alice", WEEK_2, artists={"Artist Y": 4})
    await seed.snapshot("bob", WEEK_3, artists={"Artist X": 7})
    await seed.snapshot("alice", WEEK_3, artists={"Artist Z": 2})
    await seed.session.commit()
    return "g1"


@pytest.fixture
async def client(db: Database, settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app (no lifespan, the test database is injected)."""
    app = create_app(settings, database=db)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
