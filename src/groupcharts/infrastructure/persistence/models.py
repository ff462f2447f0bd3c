"""SQLAlchemy ORM models for groupcharts."""

import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# Hey future me, utc_now() ensures ALL timestamps are UTC! Week windows are UTC midnight
# boundaries, so a naive local timestamp would silently shift a chart into the wrong week.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    # Every datetime column is timezone-aware (PostgreSQL rejects aware params otherwise)
    type_annotation_map = {datetime: DateTime(timezone=True)}


# =============================================================================
# USERS, GROUPS, MEMBERSHIP
# =============================================================================


class UserModel(Base):
    """A listener. Only the display name matters here - resolved at read time."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class GroupModel(Base):
    """A listening group and its chart configuration."""

    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    # 'plays_only' | 'vs' | 'vs_weighted' (string, not enum - SQLite compatibility)
    chart_mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default="plays_only"
    )
    chart_size: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    # 0 = Sunday ... 6 = Saturday
    tracking_day_of_week: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_private: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="0", default=False
    )
    is_solo: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="0", default=False
    )
    allow_free_join: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="1", default=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    members: Mapped[list["GroupMemberModel"]] = relationship(
        "GroupMemberModel", back_populates="group", cascade="all, delete-orphan"
    )


class GroupMemberModel(Base):
    """Membership row. The current roster charts every materialized week."""

    __tablename__ = "group_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    joined_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    group: Mapped["GroupModel"] = relationship("GroupModel", back_populates="members")

    __table_args__ = (
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_member"),
        Index("ix_group_members_user", "user_id"),
    )


# =============================================================================
# SNAPSHOTS (input, immutable)
# =============================================================================


class MemberWeeklySnapshotModel(Base):
    """A user's weekly top lists. Each list is JSON [{name, artist?, playcount}]."""

    __tablename__ = "member_weekly_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    week_start: Mapped[datetime] = mapped_column(nullable=False)
    top_artists: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    top_tracks: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    top_albums: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "week_start", name="uq_member_snapshot_week"),
        Index("ix_member_snapshots_week", "week_start"),
    )


# =============================================================================
# CHARTS (materialized per group-week)
# =============================================================================


class GroupWeeklyStatsModel(Base):
    """Merged top lists and total plays for one group-week."""

    __tablename__ = "group_weekly_stats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    week_start: Mapped[datetime] = mapped_column(nullable=False)
    week_end: Mapped[datetime] = mapped_column(nullable=False)
    top_artists: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    top_tracks: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    top_albums: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    total_plays: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    distinct_artists: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    member_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("group_id", "week_start", name="uq_group_weekly_stats"),
    )


class ChartEntryModel(Base):
    """One ranked row of a group's weekly chart.

    Hey future me - contributions is {user_id: plays} for THIS week. The stats cache sums
    it across weeks to find the major driver, so never drop it when writing rows.
    """

    __tablename__ = "chart_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    chart_type: Mapped[str] = mapped_column(String(10), nullable=False)
    week_start: Mapped[datetime] = mapped_column(nullable=False)
    entry_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    artist: Mapped[str | None] = mapped_column(String(512), nullable=True)
    slug: Mapped[str] = mapped_column(String(1024), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    playcount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vibe_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    position_change: Mapped[int | None] = mapped_column(Integer, nullable=True)
    plays_change: Mapped[int | None] = mapped_column(Integer, nullable=True)
    entry_type: Mapped[str] = mapped_column(String(10), nullable=False, default="new")
    total_weeks_appeared: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    highest_position: Mapped[int] = mapped_column(Integer, nullable=False)
    major_driver_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    contributions: Mapped[dict[str, int]] = mapped_column(
        JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        sa.UniqueConstraint(
            "group_id", "chart_type", "entry_key", "week_start", name="uq_chart_entry"
        ),
        sa.UniqueConstraint(
            "group_id", "chart_type", "week_start", "position", name="uq_chart_position"
        ),
        Index("ix_chart_entries_week", "group_id", "chart_type", "week_start"),
        Index("ix_chart_entries_key", "group_id", "chart_type", "entry_key"),
        Index("ix_chart_entries_slug", "group_id", "chart_type", "slug"),
    )


class ChartRegenerationModel(Base):
    """A group-week queued for regeneration after a destructive cleanup."""

    __tablename__ = "chart_regeneration_queue"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    week_start: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("group_id", "week_start", name="uq_chart_regeneration"),
    )


# =============================================================================
# DERIVED CACHES
# =============================================================================


class ChartEntryStatsModel(Base):
    """Derived per-entry aggregate. Reconstructable from chart_entries at any time.

    Hey future me - stale=True means "numbers may be behind the chart rows".
    major_driver_stale=True means only the driver columns need a refresh (e.g. the
    driver left the group). The driver's NAME is never stored here - join users.
    """

    __tablename__ = "chart_entry_stats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    chart_type: Mapped[str] = mapped_column(String(10), nullable=False)
    entry_key: Mapped[str] = mapped_column(String(1024), nullable=False)
    name: Mapped[str | None] = mapped_column(String(512), nullable=True)
    artist: Mapped[str | None] = mapped_column(String(512), nullable=True)
    slug: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    peak_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    weeks_at_peak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    debut_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    debut_week: Mapped[datetime | None] = mapped_column(nullable=True)
    weeks_at_one: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weeks_in_top10: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_weeks_charting: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    total_weeks_appeared: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_streak_ongoing: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="0", default=False
    )
    latest_appearance: Mapped[datetime | None] = mapped_column(nullable=True)
    total_vs: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    total_plays: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    major_driver_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    major_driver_contribution: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )
    stale: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="1", default=True
    )
    major_driver_stale: Mapped[bool] = mapped_column(
        sa.Boolean(), nullable=False, server_default="0", default=False
    )
    last_calculated: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        sa.UniqueConstraint(
            "group_id", "chart_type", "entry_key", name="uq_chart_entry_stats"
        ),
        Index("ix_entry_stats_stale", "group_id", "stale"),
    )


class GroupRecordsModel(Base):
    """Records summary per group (JSON validated through api/schemas on read)."""

    __tablename__ = "group_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    records: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )


class GroupTrendsModel(Base):
    """Trends payload per group-week."""

    __tablename__ = "group_trends"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    week_start: Mapped[datetime] = mapped_column(nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    total_plays: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_plays_change: Mapped[int | None] = mapped_column(Integer, nullable=True)
    chart_turnover: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("group_id", "week_start", name="uq_group_trends"),
    )


class GroupAllTimeStatsModel(Base):
    """Group catalogue: top 100 per type built from each week's top 10."""

    __tablename__ = "group_all_time_stats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    group_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    top_artists: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    top_tracks: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    top_albums: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )


# =============================================================================
# COMPATIBILITY / RECOMMENDATIONS
# =============================================================================


class ArtistGenreModel(Base):
    """Genre tags per artist key, fed by whatever tag source is configured."""

    __tablename__ = "artist_genres"

    artist_key: Mapped[str] = mapped_column(String(512), primary_key=True)
    genres: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )


class CompatibilityScoreModel(Base):
    """Cached pairwise user<->group score."""

    __tablename__ = "compatibility_scores"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    artist_overlap: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    track_overlap: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    genre_overlap: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    pattern_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    computed_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "group_id", name="uq_compatibility_score"),
    )


class RecommendationCacheModel(Base):
    """Per-user ranked recommendations, valid for a fixed TTL after last_calculated."""

    __tablename__ = "recommendation_cache"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    recommendations: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    last_calculated: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class RecommendationRejectionModel(Base):
    """A group the user dismissed from their recommendations."""

    __tablename__ = "recommendation_rejections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), nullable=False
    )
    rejected_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    __table_args__ = (
        sa.UniqueConstraint("user_id", "group_id", name="uq_recommendation_rejection"),
    )
