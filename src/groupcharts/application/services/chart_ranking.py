"""Ranker - orders scored entries into a chart and computes week-over-week deltas."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from groupcharts.domain.entities import ChartType, EntryType, RankedEntry, ScoredEntry
from groupcharts.domain.exceptions import ValidationException
from groupcharts.domain.value_objects.chart_keys import slugify_entry_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreviousPlacement:
    """Where an entry stood in the immediately preceding chart week."""

    position: int
    playcount: int


@dataclass(frozen=True)
class EntryHistory:
    """An entry's record in all weeks BEFORE the one being ranked."""

    weeks_appeared: int
    best_position: int


def classify_movement(position_change: int | None) -> EntryType:
    if position_change is None:
        return EntryType.NEW
    if position_change > 0:
        return EntryType.UP
    if position_change < 0:
        return EntryType.DOWN
    return EntryType.STEADY


class ChartRanker:
    """Pure ranking step. No I/O - the generation service feeds it previous-week data."""

    def rank(
        self,
        scored: Sequence[ScoredEntry],
        chart_type: ChartType,
        chart_size: int,
        previous: Mapping[str, PreviousPlacement] | None = None,
        history: Mapping[str, EntryHistory] | None = None,
    ) -> list[RankedEntry]:
        """Sort, truncate to ``chart_size`` and attach movement metrics.

        Ordering is value descending, then entry key ascending, so two runs over the same
        input always produce the same positions 1..N with N = min(chart_size, len(scored)).

        Args:
            scored: Scored entries for one chart type
            chart_type: Chart type being ranked (used for slugs)
            chart_size: Maximum number of positions
            previous: Last week's placements by entry key
            history: Prior-week aggregates by entry key

        Returns:
            Ranked entries in position order
        """
        if chart_size < 1:
            raise ValidationException(f"chart_size must be positive, got {chart_size}")
        previous = previous or {}
        history = history or {}

        ordered = sorted(
            (entry for entry in scored if entry.playcount > 0),
            key=lambda entry: (-entry.value, entry.entry_key),
        )[:chart_size]

        ranked: list[RankedEntry] = []
        for position, entry in enumerate(ordered, start=1):
            prior = previous.get(entry.entry_key)
            past = history.get(entry.entry_key)

            # Positive = climbed (old 5 -> new 2 gives +3)
            position_change = prior.position - position if prior else None
            plays_change = entry.playcount - prior.playcount if prior else None

            ranked.append(
                RankedEntry(
                    scored=entry,
                    position=position,
                    position_change=position_change,
                    entry_type=classify_movement(position_change),
                    plays_change=plays_change,
                    total_weeks_appeared=(past.weeks_appeared if past else 0) + 1,
                    highest_position=min(position, past.best_position)
                    if past
                    else position,
                    slug=slugify_entry_key(entry.entry_key, chart_type),
                )
            )
        return ranked
