"""All-time stats - the group's catalogue (top 100 per chart type).

Built from the top 10 of every materialized week (group_weekly_stats lists), so it's cheap
and only moves when a week is charted or regenerated. The compatibility engine matches
users against it.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.domain.entities import ChartType
from groupcharts.infrastructure.persistence.models import GroupAllTimeStatsModel
from groupcharts.infrastructure.persistence.repositories import (
    AllTimeStatsRepository,
    ChartRepository,
    GroupRepository,
)

logger = logging.getLogger(__name__)

WEEKLY_TOP = 10
ALL_TIME_TOP = 100


def merge_weekly_lists(weekly_lists: list[list[dict[str, Any]]]) -> list[dict[str, Any]]:
    """Sum the top 10 of each week into one list, most plays first (top 100)."""
    merged: dict[str, dict[str, Any]] = {}
    for items in weekly_lists:
        for item in items[:WEEKLY_TOP]:
            key = item["entry_key"]
            entry = merged.get(key)
            if entry is None:
                entry = {
                    "entry_key": key,
                    "name": item["name"],
                    "artist": item.get("artist"),
                    "playcount": 0,
                    "weeks": 0,
                }
                merged[key] = entry
            entry["playcount"] += int(item.get("playcount", 0))
            entry["weeks"] += 1
    ordered = sorted(merged.values(), key=lambda e: (-e["playcount"], e["entry_key"]))
    return ordered[:ALL_TIME_TOP]


class AllTimeStatsService:
    """Maintains group_all_time_stats."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._groups = GroupRepository(session)
        self._charts = ChartRepository(session)
        self._all_time = AllTimeStatsRepository(session)

    async def calculate(self, group_id: str) -> GroupAllTimeStatsModel:
        await self._groups.get(group_id)
        weeks = await self._charts.list_weekly_stats(group_id)
        model = await self._all_time.save(
            group_id,
            top_artists=merge_weekly_lists([w.top_artists or [] for w in weeks]),
            top_tracks=merge_weekly_lists([w.top_tracks or [] for w in weeks]),
            top_albums=merge_weekly_lists([w.top_albums or [] for w in weeks]),
        )
        logger.debug("All-time stats for group %s rebuilt from %d weeks", group_id, len(weeks))
        return model

    async def get(self, group_id: str) -> dict[str, Any]:
        """Stored catalogue, calculated on first access."""
        model = await self._all_time.get(group_id) or await self.calculate(group_id)
        return {
            "group_id": group_id,
            ChartType.ARTISTS.value: model.top_artists or [],
            ChartType.TRACKS.value: model.top_tracks or [],
            ChartType.ALBUMS.value: model.top_albums or [],
            "updated_at": model.updated_at,
        }
