"""Group chart settings - owner-only updates, including the destructive tracking-day change.

Hey future me - changing the tracking day moves every future week window. Materialized weeks
built on the OLD anchor that overlap the new windows (the in-progress week plus the last
``initial_weeks`` finished weeks under the new day) are deleted, and the new-anchor weeks
covering them are queued for regeneration. All of it happens in the caller's transaction
together with the settings write: either the group moves to the new day with its charts
cleaned up, or nothing changes. The queue only regenerates weeks that have finished, so the
in-progress week waits until it closes.

Chart size / mode changes only affect weeks generated afterwards. Nothing is rewritten.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.application.services.entry_stats_service import EntryStatsService
from groupcharts.config import Settings, get_settings
from groupcharts.domain.entities import ChartMode, GroupConfig, RecordStatus
from groupcharts.domain.exceptions import AuthorizationError, ValidationException
from groupcharts.domain.value_objects.weeks import (
    WEEK,
    ensure_utc,
    get_last_finished_weeks,
    get_week_start_for_day,
    validate_tracking_day,
    weeks_overlap,
)
from groupcharts.infrastructure.persistence.models import utc_now
from groupcharts.infrastructure.persistence.repositories import (
    ChartRepository,
    GroupRepository,
    RecordsRepository,
)

logger = logging.getLogger(__name__)

TRACKING_DAY_REASON = "tracking_day_change"


@dataclass
class SettingsUpdateResult:
    """Updated configuration plus what the update cleaned up."""

    group: GroupConfig
    changed: list[str] = field(default_factory=list)
    deleted_weeks: list[datetime] = field(default_factory=list)
    queued_weeks: list[datetime] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group.id,
            "chart_mode": self.group.chart_mode.value,
            "chart_size": self.group.chart_size,
            "tracking_day_of_week": self.group.tracking_day_of_week,
            "changed": self.changed,
            "deleted_weeks": [w.isoformat() for w in self.deleted_weeks],
            "queued_weeks": [w.isoformat() for w in self.queued_weeks],
        }


class GroupSettingsService:
    """Validates and applies group chart settings."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._groups = GroupRepository(session)
        self._charts = ChartRepository(session)
        self._records = RecordsRepository(session)
        self._stats = EntryStatsService(session, self.settings)

    async def update_settings(
        self,
        group_id: str,
        acting_user_id: str,
        *,
        chart_size: int | None = None,
        chart_mode: ChartMode | str | None = None,
        tracking_day_of_week: int | None = None,
        now: datetime | None = None,
    ) -> SettingsUpdateResult:
        """Apply new chart settings.

        Args:
            group_id: Group to update
            acting_user_id: User requesting the change (must own the group)
            chart_size: New chart size (one of ``charts.allowed_chart_sizes``)
            chart_mode: New chart mode
            tracking_day_of_week: New tracking day (0 = Sunday ... 6 = Saturday)
            now: Reference time for the week windows (defaults to now)

        Raises:
            EntityNotFoundException: Unknown group
            AuthorizationError: acting user is not the owner
            ValidationException: invalid size / mode / day
        """
        model = await self._groups.get_model(group_id)
        if model.owner_id != acting_user_id:
            raise AuthorizationError("Only the group owner can change chart settings")

        # Validate everything before touching anything
        allowed = self.settings.charts.allowed_chart_sizes
        if chart_size is not None and chart_size not in allowed:
            raise ValidationException(
                f"chart_size must be one of {', '.join(str(s) for s in allowed)}, got {chart_size}"
            )
        mode = ChartMode.parse(chart_mode) if chart_mode is not None else None
        if tracking_day_of_week is not None:
            validate_tracking_day(tracking_day_of_week)

        changed: list[str] = []
        if chart_size is not None and chart_size != model.chart_size:
            model.chart_size = chart_size
            changed.append("chart_size")
        if mode is not None and mode.value != model.chart_mode:
            model.chart_mode = mode.value
            changed.append("chart_mode")

        deleted: list[datetime] = []
        queued: list[datetime] = []
        if (
            tracking_day_of_week is not None
            and tracking_day_of_week != model.tracking_day_of_week
        ):
            old_day = model.tracking_day_of_week
            model.tracking_day_of_week = tracking_day_of_week
            changed.append("tracking_day_of_week")
            deleted, queued = await self._realign_weeks(
                group_id, tracking_day_of_week, ensure_utc(now or datetime.now(UTC))
            )
            logger.warning(
                "Group %s tracking day %d -> %d: deleted %d weeks, queued %d for regeneration",
                group_id,
                old_day,
                tracking_day_of_week,
                len(deleted),
                len(queued),
            )

        if changed:
            model.updated_at = utc_now()
        await self.session.flush()

        return SettingsUpdateResult(
            group=await self._groups.get(group_id),
            changed=changed,
            deleted_weeks=deleted,
            queued_weeks=queued,
        )

    async def _realign_weeks(
        self, group_id: str, new_day: int, now: datetime
    ) -> tuple[list[datetime], list[datetime]]:
        current = get_week_start_for_day(now, new_day)
        windows = [
            *get_last_finished_weeks(self.settings.charts.initial_weeks, new_day, now),
            current,
        ]

        materialized = await self._charts.list_week_starts(group_id)
        to_delete = [
            week
            for week in materialized
            if any(weeks_overlap(week, week + WEEK, w, w + WEEK) for w in windows)
        ]
        if not to_delete:
            return [], []

        touched = await self._charts.get_entry_keys_for_weeks(group_id, to_delete)
        for week in to_delete:
            await self._charts.delete_week(group_id, week)
        for chart_type, keys in touched.items():
            await self._stats.invalidate(group_id, chart_type, sorted(keys))

        queued: list[datetime] = []
        for window in windows:
            if any(weeks_overlap(window, window + WEEK, d, d + WEEK) for d in to_delete):
                await self._charts.queue_regeneration(group_id, window, TRACKING_DAY_REASON)
                queued.append(window)

        await self._records.set_status(group_id, RecordStatus.PENDING.value)
        return to_delete, queued
