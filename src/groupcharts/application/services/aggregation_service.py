"""Aggregator - merges member snapshots into per-entry totals for a group-week.

Hey future me - a member without a snapshot for the week is NORMAL (didn't listen, provider had
nothing, joined late). It contributes zero and the rest of the group still gets a chart. Even
a provider that blows up for one member only costs that member's contribution.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from groupcharts.domain.entities import (
    AggregatedEntry,
    ChartType,
    MemberSnapshot,
)
from groupcharts.domain.ports import ISnapshotProvider
from groupcharts.domain.value_objects.chart_keys import make_entry_key

logger = logging.getLogger(__name__)


@dataclass
class AggregationResult:
    """Merged totals for one group-week."""

    week_start: datetime
    entries: dict[ChartType, list[AggregatedEntry]] = field(default_factory=dict)
    member_plays: dict[str, int] = field(default_factory=dict)
    contributing_members: list[str] = field(default_factory=list)
    missing_members: list[str] = field(default_factory=list)
    failed_members: dict[str, str] = field(default_factory=dict)

    @property
    def total_plays(self) -> int:
        """Total group listening for the week (artist list, every member)."""
        return sum(entry.playcount for entry in self.entries.get(ChartType.ARTISTS, []))

    def entries_for(self, chart_type: ChartType) -> list[AggregatedEntry]:
        return self.entries.get(chart_type, [])


def merge_snapshots(
    snapshots: Iterable[MemberSnapshot],
    chart_types: Sequence[ChartType],
) -> dict[ChartType, list[AggregatedEntry]]:
    """Merge member top lists by entry key, keeping each member's contribution.

    The display name/artist of an entry is taken from the first snapshot that mentions it
    (snapshots are processed in user id order, so this is deterministic). Items with a zero
    playcount are ignored.

    Args:
        snapshots: Member snapshots for one week
        chart_types: Chart types to build

    Returns:
        Per chart type, the merged entries sorted by entry key
    """
    ordered = sorted(snapshots, key=lambda s: s.user_id)
    merged: dict[ChartType, dict[str, AggregatedEntry]] = {ct: {} for ct in chart_types}

    for snapshot in ordered:
        for chart_type in chart_types:
            bucket = merged[chart_type]
            for item in snapshot.items_for(chart_type):
                if item.playcount <= 0:
                    continue
                key = make_entry_key(item.name, item.artist, chart_type)
                entry = bucket.get(key)
                if entry is None:
                    entry = AggregatedEntry(
                        entry_key=key,
                        name=item.name.strip(),
                        artist=item.artist.strip() if item.artist else None,
                    )
                    bucket[key] = entry
                entry.playcount += item.playcount
                entry.contributions[snapshot.user_id] = (
                    entry.contributions.get(snapshot.user_id, 0) + item.playcount
                )

    return {
        chart_type: [bucket[key] for key in sorted(bucket)]
        for chart_type, bucket in merged.items()
    }


class ChartAggregator:
    """Loads member snapshots and merges them."""

    def __init__(self, snapshot_provider: ISnapshotProvider) -> None:
        self._snapshots = snapshot_provider

    async def aggregate(
        self,
        member_ids: Sequence[str],
        week_start: datetime,
        chart_types: Sequence[ChartType],
    ) -> AggregationResult:
        """Aggregate the given members' listening for one week.

        Args:
            member_ids: Group roster for the week
            week_start: Week start (UTC midnight on the tracking day)
            chart_types: Chart types to build

        Returns:
            AggregationResult; never raises because of a single member
        """
        result = AggregationResult(week_start=week_start)
        if not member_ids:
            result.entries = {chart_type: [] for chart_type in chart_types}
            return result

        # Sequential on purpose: the DB-backed provider shares one AsyncSession.
        fetched: list[MemberSnapshot | None | BaseException] = []
        for user_id in member_ids:
            try:
                fetched.append(await self._snapshots.get_snapshot(user_id, week_start))
            except Exception as e:
                fetched.append(e)

        snapshots: list[MemberSnapshot] = []
        for user_id, outcome in zip(member_ids, fetched, strict=True):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Snapshot fetch failed for member %s (week %s): %s",
                    user_id,
                    week_start.date(),
                    outcome,
                )
                result.failed_members[user_id] = str(outcome)
                result.missing_members.append(user_id)
                continue
            if outcome is None:
                result.missing_members.append(user_id)
                continue
            snapshots.append(outcome)
            result.contributing_members.append(user_id)
            result.member_plays[user_id] = outcome.total_plays

        result.entries = merge_snapshots(snapshots, chart_types)

        logger.debug(
            "Aggregated week %s: %d/%d members contributed",
            week_start.date(),
            len(result.contributing_members),
            len(member_ids),
        )
        return result
