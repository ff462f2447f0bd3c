"""Repository implementations for groupcharts.

Hey future me, this is the Repository pattern! Each repo gets its AsyncSession injected and
NEVER commits - the caller (session_scope / request dependency) owns the transaction. That's
what makes "delete a week + recreate it" atomic: both halves run through repos sharing one
session and land in one commit.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.domain.entities import (
    ChartMode,
    ChartType,
    GroupConfig,
    MemberSnapshot,
    QueuedRegeneration,
    SnapshotItem,
)
from groupcharts.domain.exceptions import DuplicateEntityException, EntityNotFoundException
from groupcharts.domain.ports import IGenreProvider, ISnapshotProvider
from groupcharts.domain.value_objects.weeks import ensure_utc
from groupcharts.infrastructure.persistence.models import (
    ArtistGenreModel,
    ChartEntryModel,
    ChartEntryStatsModel,
    ChartRegenerationModel,
    CompatibilityScoreModel,
    GroupAllTimeStatsModel,
    GroupMemberModel,
    GroupModel,
    GroupRecordsModel,
    GroupTrendsModel,
    GroupWeeklyStatsModel,
    MemberWeeklySnapshotModel,
    RecommendationCacheModel,
    RecommendationRejectionModel,
    UserModel,
    utc_now,
)

logger = logging.getLogger(__name__)


def _group_to_config(model: GroupModel) -> GroupConfig:
    return GroupConfig(
        id=model.id,
        name=model.name,
        owner_id=model.owner_id,
        chart_mode=ChartMode.parse(model.chart_mode),
        chart_size=model.chart_size,
        tracking_day_of_week=model.tracking_day_of_week,
        is_private=model.is_private,
        is_solo=model.is_solo,
        allow_free_join=model.allow_free_join,
        created_at=ensure_utc(model.created_at) if model.created_at else None,
    )


class UserRepository:
    """Users - only needed to resolve display names at read time."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, user_id: str, name: str) -> UserModel:
        model = UserModel(id=user_id, name=name)
        self.session.add(model)
        await self.session.flush()
        return model

    async def rename(self, user_id: str, name: str) -> None:
        result = await self.session.execute(
            update(UserModel).where(UserModel.id == user_id).values(name=name)
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("User", user_id)

    async def get_names(self, user_ids: Iterable[str]) -> dict[str, str]:
        """Map user ids to display names (unknown ids are left out)."""
        ids = {uid for uid in user_ids if uid}
        if not ids:
            return {}
        result = await self.session.execute(
            select(UserModel.id, UserModel.name).where(UserModel.id.in_(ids))
        )
        return {row.id: row.name for row in result}


class GroupRepository:
    """Group configuration store + membership roster."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(
        self,
        group_id: str,
        name: str,
        owner_id: str,
        *,
        chart_mode: ChartMode = ChartMode.PLAYS_ONLY,
        chart_size: int = 10,
        tracking_day_of_week: int = 0,
        is_private: bool = False,
        is_solo: bool = False,
        allow_free_join: bool = True,
    ) -> GroupModel:
        model = GroupModel(
            id=group_id,
            name=name,
            owner_id=owner_id,
            chart_mode=chart_mode.value,
            chart_size=chart_size,
            tracking_day_of_week=tracking_day_of_week,
            is_private=is_private,
            is_solo=is_solo,
            allow_free_join=allow_free_join,
        )
        self.session.add(model)
        await self.session.flush()
        return model

    async def get_model(self, group_id: str) -> GroupModel:
        model = await self.session.get(GroupModel, group_id)
        if model is None:
            raise EntityNotFoundException("Group", group_id)
        return model

    async def get(self, group_id: str) -> GroupConfig:
        """Get a group's chart configuration.

        Raises:
            EntityNotFoundException: If the group does not exist
        """
        return _group_to_config(await self.get_model(group_id))

    async def list_ids(self) -> list[str]:
        result = await self.session.execute(select(GroupModel.id).order_by(GroupModel.id))
        return list(result.scalars().all())

    async def add_member(
        self, group_id: str, user_id: str, joined_at: datetime | None = None
    ) -> GroupMemberModel:
        if user_id in await self.get_member_ids(group_id):
            raise DuplicateEntityException("GroupMember", f"{group_id}/{user_id}")
        model = GroupMemberModel(
            group_id=group_id, user_id=user_id, joined_at=joined_at or utc_now()
        )
        self.session.add(model)
        await self.session.flush()
        return model

    async def remove_member(self, group_id: str, user_id: str) -> None:
        result = await self.session.execute(
            delete(GroupMemberModel).where(
                GroupMemberModel.group_id == group_id,
                GroupMemberModel.user_id == user_id,
            )
        )
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("GroupMember", f"{group_id}/{user_id}")

    # Hey future me - the roster for a week is everyone who is a member NOW. When a group is
    # created we backfill its last weeks with the current members' listening, so filtering on
    # joined_at would make every backfilled chart empty.
    async def get_member_ids(self, group_id: str) -> list[str]:
        result = await self.session.execute(
            select(GroupMemberModel.user_id)
            .where(GroupMemberModel.group_id == group_id)
            .order_by(GroupMemberModel.user_id)
        )
        return list(result.scalars().all())

    async def get_group_ids_for_user(self, user_id: str) -> set[str]:
        result = await self.session.execute(
            select(GroupMemberModel.group_id).where(GroupMemberModel.user_id == user_id)
        )
        return set(result.scalars().all())

    async def count_members(self, group_ids: Sequence[str]) -> dict[str, int]:
        if not group_ids:
            return {}
        result = await self.session.execute(
            select(GroupMemberModel.group_id, func.count(GroupMemberModel.id))
            .where(GroupMemberModel.group_id.in_(group_ids))
            .group_by(GroupMemberModel.group_id)
        )
        return {group_id: count for group_id, count in result.all()}


class SnapshotRepository(ISnapshotProvider):
    """Database-backed snapshot provider."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _to_entity(model: MemberWeeklySnapshotModel) -> MemberSnapshot:
        return MemberSnapshot(
            user_id=model.user_id,
            week_start=ensure_utc(model.week_start),
            top_artists=[SnapshotItem.from_dict(i) for i in model.top_artists or []],
            top_tracks=[SnapshotItem.from_dict(i) for i in model.top_tracks or []],
            top_albums=[SnapshotItem.from_dict(i) for i in model.top_albums or []],
        )

    async def add(self, snapshot: MemberSnapshot) -> None:
        """Record a snapshot. Snapshots are immutable; a second write for a week fails.

        Raises:
            DuplicateEntityException: The user already has a snapshot for that week
        """
        if await self.get_snapshot(snapshot.user_id, snapshot.week_start) is not None:
            week = ensure_utc(snapshot.week_start).date()
            raise DuplicateEntityException("MemberSnapshot", f"{snapshot.user_id}/{week}")
        self.session.add(
            MemberWeeklySnapshotModel(
                user_id=snapshot.user_id,
                week_start=ensure_utc(snapshot.week_start),
                top_artists=[i.to_dict() for i in snapshot.top_artists],
                top_tracks=[i.to_dict() for i in snapshot.top_tracks],
                top_albums=[i.to_dict() for i in snapshot.top_albums],
            )
        )
        await self.session.flush()

    async def get_snapshot(
        self, user_id: str, week_start: datetime
    ) -> MemberSnapshot | None:
        result = await self.session.execute(
            select(MemberWeeklySnapshotModel).where(
                MemberWeeklySnapshotModel.user_id == user_id,
                MemberWeeklySnapshotModel.week_start == ensure_utc(week_start),
            )
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def list_snapshots_since(
        self, user_id: str, since: datetime
    ) -> list[MemberSnapshot]:
        result = await self.session.execute(
            select(MemberWeeklySnapshotModel)
            .where(
                MemberWeeklySnapshotModel.user_id == user_id,
                MemberWeeklySnapshotModel.week_start >= ensure_utc(since),
            )
            .order_by(MemberWeeklySnapshotModel.week_start.desc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]


class ChartRepository:
    """Chart entries, weekly stats, trends rows and the regeneration queue."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ===== CHART ENTRIES =====

    async def get_week_entries(
        self, group_id: str, week_start: datetime, chart_type: ChartType | None = None
    ) -> list[ChartEntryModel]:
        stmt = select(ChartEntryModel).where(
            ChartEntryModel.group_id == group_id,
            ChartEntryModel.week_start == ensure_utc(week_start),
        )
        if chart_type is not None:
            stmt = stmt.where(ChartEntryModel.chart_type == chart_type.value)
        stmt = stmt.order_by(ChartEntryModel.chart_type, ChartEntryModel.position)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_entry_history(
        self,
        group_id: str,
        chart_type: ChartType,
        entry_key: str,
        before: datetime | None = None,
    ) -> list[ChartEntryModel]:
        """All rows for one entry key, oldest week first."""
        stmt = select(ChartEntryModel).where(
            ChartEntryModel.group_id == group_id,
            ChartEntryModel.chart_type == chart_type.value,
            ChartEntryModel.entry_key == entry_key,
        )
        if before is not None:
            stmt = stmt.where(ChartEntryModel.week_start < ensure_utc(before))
        result = await self.session.execute(stmt.order_by(ChartEntryModel.week_start))
        return list(result.scalars().all())

    async def get_history_summary(
        self,
        group_id: str,
        chart_type: ChartType,
        entry_keys: Sequence[str],
        before: datetime,
    ) -> dict[str, tuple[int, int, datetime]]:
        """Per key: (weeks appeared, best position, last appearance) before a week."""
        if not entry_keys:
            return {}
        result = await self.session.execute(
            select(
                ChartEntryModel.entry_key,
                func.count(ChartEntryModel.id),
                func.min(ChartEntryModel.position),
                func.max(ChartEntryModel.week_start),
            )
            .where(
                ChartEntryModel.group_id == group_id,
                ChartEntryModel.chart_type == chart_type.value,
                ChartEntryModel.entry_key.in_(list(entry_keys)),
                ChartEntryModel.week_start < ensure_utc(before),
            )
            .group_by(ChartEntryModel.entry_key)
        )
        return {
            key: (count, best, ensure_utc(last))
            for key, count, best, last in result.all()
        }

    async def get_entry_by_slug(
        self, group_id: str, chart_type: ChartType, slug: str
    ) -> ChartEntryModel | None:
        result = await self.session.execute(
            select(ChartEntryModel)
            .where(
                ChartEntryModel.group_id == group_id,
                ChartEntryModel.chart_type == chart_type.value,
                ChartEntryModel.slug == slug,
            )
            .order_by(ChartEntryModel.week_start.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_entry_keys_for_weeks(
        self, group_id: str, week_starts: Sequence[datetime]
    ) -> dict[ChartType, set[str]]:
        if not week_starts:
            return {}
        result = await self.session.execute(
            select(ChartEntryModel.chart_type, ChartEntryModel.entry_key).where(
                ChartEntryModel.group_id == group_id,
                ChartEntryModel.week_start.in_([ensure_utc(w) for w in week_starts]),
            )
        )
        keys: dict[ChartType, set[str]] = {}
        for chart_type, entry_key in result.all():
            keys.setdefault(ChartType(chart_type), set()).add(entry_key)
        return keys

    def add_entries(self, entries: Iterable[ChartEntryModel]) -> None:
        self.session.add_all(list(entries))

    async def has_week(self, group_id: str, week_start: datetime) -> bool:
        result = await self.session.execute(
            select(func.count(GroupWeeklyStatsModel.id)).where(
                GroupWeeklyStatsModel.group_id == group_id,
                GroupWeeklyStatsModel.week_start == ensure_utc(week_start),
            )
        )
        return (result.scalar() or 0) > 0

    async def list_week_starts(
        self, group_id: str, since: datetime | None = None
    ) -> list[datetime]:
        """Materialized week starts for a group, oldest first."""
        stmt = select(GroupWeeklyStatsModel.week_start).where(
            GroupWeeklyStatsModel.group_id == group_id
        )
        if since is not None:
            stmt = stmt.where(GroupWeeklyStatsModel.week_start >= ensure_utc(since))
        result = await self.session.execute(stmt.order_by(GroupWeeklyStatsModel.week_start))
        return [ensure_utc(w) for w in result.scalars().all()]

    async def get_latest_week_start(self, group_id: str) -> datetime | None:
        result = await self.session.execute(
            select(func.max(GroupWeeklyStatsModel.week_start)).where(
                GroupWeeklyStatsModel.group_id == group_id
            )
        )
        latest = result.scalar()
        return ensure_utc(latest) if latest else None

    async def get_previous_week_start(
        self, group_id: str, week_start: datetime
    ) -> datetime | None:
        result = await self.session.execute(
            select(func.max(GroupWeeklyStatsModel.week_start)).where(
                GroupWeeklyStatsModel.group_id == group_id,
                GroupWeeklyStatsModel.week_start < ensure_utc(week_start),
            )
        )
        previous = result.scalar()
        return ensure_utc(previous) if previous else None

    # Hey future me - bulk DELETE statements run immediately (unlike session.delete on ORM
    # objects, which the unit of work would flush AFTER our inserts and trip the unique
    # position constraint). Keep it this way.
    async def delete_week(self, group_id: str, week_start: datetime) -> int:
        """Delete every materialized row for one group-week. Returns chart rows removed."""
        week = ensure_utc(week_start)
        result = await self.session.execute(
            delete(ChartEntryModel).where(
                ChartEntryModel.group_id == group_id,
                ChartEntryModel.week_start == week,
            )
        )
        await self.session.execute(
            delete(GroupWeeklyStatsModel).where(
                GroupWeeklyStatsModel.group_id == group_id,
                GroupWeeklyStatsModel.week_start == week,
            )
        )
        await self.session.execute(
            delete(GroupTrendsModel).where(
                GroupTrendsModel.group_id == group_id,
                GroupTrendsModel.week_start == week,
            )
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    # ===== WEEKLY STATS =====

    async def get_weekly_stats(
        self, group_id: str, week_start: datetime
    ) -> GroupWeeklyStatsModel | None:
        result = await self.session.execute(
            select(GroupWeeklyStatsModel).where(
                GroupWeeklyStatsModel.group_id == group_id,
                GroupWeeklyStatsModel.week_start == ensure_utc(week_start),
            )
        )
        return result.scalar_one_or_none()

    async def list_weekly_stats(
        self, group_id: str, since: datetime | None = None
    ) -> list[GroupWeeklyStatsModel]:
        stmt = select(GroupWeeklyStatsModel).where(
            GroupWeeklyStatsModel.group_id == group_id
        )
        if since is not None:
            stmt = stmt.where(GroupWeeklyStatsModel.week_start >= ensure_utc(since))
        result = await self.session.execute(stmt.order_by(GroupWeeklyStatsModel.week_start))
        return list(result.scalars().all())

    def add_weekly_stats(self, model: GroupWeeklyStatsModel) -> None:
        self.session.add(model)

    # ===== TRENDS =====

    async def get_trends(
        self, group_id: str, week_start: datetime
    ) -> GroupTrendsModel | None:
        result = await self.session.execute(
            select(GroupTrendsModel).where(
                GroupTrendsModel.group_id == group_id,
                GroupTrendsModel.week_start == ensure_utc(week_start),
            )
        )
        return result.scalar_one_or_none()

    async def save_trends(
        self,
        group_id: str,
        week_start: datetime,
        payload: dict[str, Any],
        total_plays: int,
        total_plays_change: int | None,
        chart_turnover: int,
    ) -> GroupTrendsModel:
        model = await self.get_trends(group_id, week_start)
        if model is None:
            model = GroupTrendsModel(group_id=group_id, week_start=ensure_utc(week_start))
            self.session.add(model)
        model.payload = payload
        model.total_plays = total_plays
        model.total_plays_change = total_plays_change
        model.chart_turnover = chart_turnover
        await self.session.flush()
        return model

    # ===== REGENERATION QUEUE =====

    async def queue_regeneration(
        self, group_id: str, week_start: datetime, reason: str
    ) -> bool:
        """Queue a week; returns False if it was already queued."""
        week = ensure_utc(week_start)
        result = await self.session.execute(
            select(ChartRegenerationModel.id).where(
                ChartRegenerationModel.group_id == group_id,
                ChartRegenerationModel.week_start == week,
            )
        )
        if result.scalar_one_or_none() is not None:
            return False
        self.session.add(
            ChartRegenerationModel(group_id=group_id, week_start=week, reason=reason)
        )
        await self.session.flush()
        return True

    async def list_regenerations(
        self, group_id: str | None = None
    ) -> list[QueuedRegeneration]:
        stmt = select(ChartRegenerationModel)
        if group_id is not None:
            stmt = stmt.where(ChartRegenerationModel.group_id == group_id)
        result = await self.session.execute(
            stmt.order_by(ChartRegenerationModel.week_start)
        )
        return [
            QueuedRegeneration(
                group_id=item.group_id,
                week_start=ensure_utc(item.week_start),
                reason=item.reason,
            )
            for item in result.scalars().all()
        ]

    async def clear_regeneration(self, group_id: str, week_start: datetime) -> None:
        await self.session.execute(
            delete(ChartRegenerationModel).where(
                ChartRegenerationModel.group_id == group_id,
                ChartRegenerationModel.week_start == ensure_utc(week_start),
            )
        )


class EntryStatsRepository:
    """Chart entry stats cache rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(
        self, group_id: str, chart_type: ChartType, entry_key: str
    ) -> ChartEntryStatsModel | None:
        result = await self.session.execute(
            select(ChartEntryStatsModel).where(
                ChartEntryStatsModel.group_id == group_id,
                ChartEntryStatsModel.chart_type == chart_type.value,
                ChartEntryStatsModel.entry_key == entry_key,
            )
        )
        return result.scalar_one_or_none()

    async def get_many(
        self, group_id: str, chart_type: ChartType, entry_keys: Sequence[str]
    ) -> dict[str, ChartEntryStatsModel]:
        if not entry_keys:
            return {}
        result = await self.session.execute(
            select(ChartEntryStatsModel).where(
                ChartEntryStatsModel.group_id == group_id,
                ChartEntryStatsModel.chart_type == chart_type.value,
                ChartEntryStatsModel.entry_key.in_(list(entry_keys)),
            )
        )
        return {row.entry_key: row for row in result.scalars().all()}

    async def mark_stale(
        self, group_id: str, chart_type: ChartType, entry_keys: Sequence[str]
    ) -> int:
        """Flag existing rows stale and create placeholder rows for unknown keys."""
        if not entry_keys:
            return 0
        existing = await self.get_many(group_id, chart_type, entry_keys)
        for row in existing.values():
            row.stale = True
        for key in set(entry_keys) - set(existing):
            self.session.add(
                ChartEntryStatsModel(
                    group_id=group_id,
                    chart_type=chart_type.value,
                    entry_key=key,
                    stale=True,
                )
            )
        await self.session.flush()
        return len(set(entry_keys))

    async def mark_driver_stale_for_user(self, group_id: str, user_id: str) -> int:
        result = await self.session.execute(
            update(ChartEntryStatsModel)
            .where(
                ChartEntryStatsModel.group_id == group_id,
                ChartEntryStatsModel.major_driver_id == user_id,
            )
            .values(major_driver_stale=True)
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]

    async def list_stale_keys(
        self, group_id: str, chart_type: ChartType | None = None, limit: int | None = None
    ) -> list[tuple[ChartType, str]]:
        stmt = select(ChartEntryStatsModel.chart_type, ChartEntryStatsModel.entry_key).where(
            ChartEntryStatsModel.group_id == group_id,
            (ChartEntryStatsModel.stale.is_(True))
            | (ChartEntryStatsModel.major_driver_stale.is_(True)),
        )
        if chart_type is not None:
            stmt = stmt.where(ChartEntryStatsModel.chart_type == chart_type.value)
        stmt = stmt.order_by(ChartEntryStatsModel.chart_type, ChartEntryStatsModel.entry_key)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        return [(ChartType(ct), key) for ct, key in result.all()]

    async def delete_orphans(self, group_id: str, chart_type: ChartType) -> int:
        """Remove stats rows whose entry no longer has any chart row."""
        has_rows = (
            select(ChartEntryModel.id)
            .where(
                ChartEntryModel.group_id == ChartEntryStatsModel.group_id,
                ChartEntryModel.chart_type == ChartEntryStatsModel.chart_type,
                ChartEntryModel.entry_key == ChartEntryStatsModel.entry_key,
            )
            .exists()
        )
        result = await self.session.execute(
            delete(ChartEntryStatsModel).where(
                ChartEntryStatsModel.group_id == group_id,
                ChartEntryStatsModel.chart_type == chart_type.value,
                ~has_rows,
            )
        )
        return int(result.rowcount or 0)  # type: ignore[attr-defined]


class RecordsRepository:
    """Group records summary rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, group_id: str) -> GroupRecordsModel | None:
        result = await self.session.execute(
            select(GroupRecordsModel).where(GroupRecordsModel.group_id == group_id)
        )
        return result.scalar_one_or_none()

    async def set_status(self, group_id: str, status: str) -> GroupRecordsModel:
        model = await self.get(group_id)
        if model is None:
            model = GroupRecordsModel(group_id=group_id, status=status, records={})
            self.session.add(model)
        else:
            model.status = status
        await self.session.flush()
        return model

    async def save(
        self, group_id: str, records: dict[str, Any], status: str
    ) -> GroupRecordsModel:
        model = await self.set_status(group_id, status)
        model.records = records
        await self.session.flush()
        return model


class AllTimeStatsRepository:
    """Group catalogue rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, group_id: str) -> GroupAllTimeStatsModel | None:
        result = await self.session.execute(
            select(GroupAllTimeStatsModel).where(
                GroupAllTimeStatsModel.group_id == group_id
            )
        )
        return result.scalar_one_or_none()

    async def get_many(self, group_ids: Sequence[str]) -> dict[str, GroupAllTimeStatsModel]:
        if not group_ids:
            return {}
        result = await self.session.execute(
            select(GroupAllTimeStatsModel).where(
                GroupAllTimeStatsModel.group_id.in_(list(group_ids))
            )
        )
        return {row.group_id: row for row in result.scalars().all()}

    async def save(
        self,
        group_id: str,
        top_artists: list[dict[str, Any]],
        top_tracks: list[dict[str, Any]],
        top_albums: list[dict[str, Any]],
    ) -> GroupAllTimeStatsModel:
        model = await self.get(group_id)
        if model is None:
            model = GroupAllTimeStatsModel(group_id=group_id)
            self.session.add(model)
        model.top_artists = top_artists
        model.top_tracks = top_tracks
        model.top_albums = top_albums
        model.updated_at = utc_now()
        await self.session.flush()
        return model


class GenreRepository(IGenreProvider):
    """Genre tags stored per artist key."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def set_genres(self, artist_key: str, genres: list[str]) -> None:
        model = await self.session.get(ArtistGenreModel, artist_key)
        if model is None:
            self.session.add(ArtistGenreModel(artist_key=artist_key, genres=genres))
        else:
            model.genres = genres
        await self.session.flush()

    async def get_genres(self, artist_keys: list[str]) -> dict[str, list[str]]:
        if not artist_keys:
            return {}
        result = await self.session.execute(
            select(ArtistGenreModel).where(ArtistGenreModel.artist_key.in_(artist_keys))
        )
        return {row.artist_key: list(row.genres or []) for row in result.scalars().all()}


class CompatibilityRepository:
    """Pairwise scores, recommendation cache and rejections."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_score(
        self, user_id: str, group_id: str
    ) -> CompatibilityScoreModel | None:
        result = await self.session.execute(
            select(CompatibilityScoreModel).where(
                CompatibilityScoreModel.user_id == user_id,
                CompatibilityScoreModel.group_id == group_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert_score(
        self,
        user_id: str,
        group_id: str,
        *,
        score: float,
        artist_overlap: float,
        track_overlap: float,
        genre_overlap: float,
        pattern_score: float,
        computed_at: datetime,
    ) -> CompatibilityScoreModel:
        model = await self.get_score(user_id, group_id)
        if model is None:
            model = CompatibilityScoreModel(user_id=user_id, group_id=group_id)
            self.session.add(model)
        model.score = score
        model.artist_overlap = artist_overlap
        model.track_overlap = track_overlap
        model.genre_overlap = genre_overlap
        model.pattern_score = pattern_score
        model.computed_at = computed_at
        await self.session.flush()
        return model

    async def get_cache(self, user_id: str) -> RecommendationCacheModel | None:
        return await self.session.get(RecommendationCacheModel, user_id)

    async def save_cache(
        self, user_id: str, recommendations: list[dict[str, Any]], calculated_at: datetime
    ) -> RecommendationCacheModel:
        model = await self.get_cache(user_id)
        if model is None:
            model = RecommendationCacheModel(user_id=user_id)
            self.session.add(model)
        model.recommendations = recommendations
        model.last_calculated = calculated_at
        await self.session.flush()
        return model

    async def clear_cache(self, user_id: str) -> None:
        await self.session.execute(
            delete(RecommendationCacheModel).where(
                RecommendationCacheModel.user_id == user_id
            )
        )

    async def get_rejected_group_ids(self, user_id: str) -> set[str]:
        result = await self.session.execute(
            select(RecommendationRejectionModel.group_id).where(
                RecommendationRejectionModel.user_id == user_id
            )
        )
        return set(result.scalars().all())

    async def add_rejection(self, user_id: str, group_id: str) -> bool:
        if group_id in await self.get_rejected_group_ids(user_id):
            return False
        self.session.add(RecommendationRejectionModel(user_id=user_id, group_id=group_id))
        await self.session.flush()
        return True
