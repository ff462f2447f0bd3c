"""Scorer - ranking value per aggregated entry, by chart mode.

Modes:
    plays_only   value = summed playcount
    vs           value = playcount * distinct_contributors ** shared_listening_exponent
    vs_weighted  value = vs_weight * vs + (1 - vs_weight) * playcount

Hey future me - the constants are SETTINGS (config.ChartSettings), not magic numbers. With the
default exponent of 2.0, five members playing something twice (10 * 25 = 250) beats one
member playing something fifty times (50 * 1 = 50). Any exponent > 0 keeps the important
property: holding playcount fixed, more distinct listeners never lowers the score.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from groupcharts.config import ChartSettings
from groupcharts.domain.entities import AggregatedEntry, ChartMode, ScoredEntry
from groupcharts.domain.exceptions import ValidationException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VibeScoreParams:
    """Tunable vibe score constants."""

    shared_listening_exponent: float = 2.0
    vs_weight: float = 0.5

    def __post_init__(self) -> None:
        if self.shared_listening_exponent <= 0:
            raise ValidationException(
                "shared_listening_exponent must be > 0, "
                f"got {self.shared_listening_exponent}"
            )
        if not 0 <= self.vs_weight <= 1:
            raise ValidationException(f"vs_weight must be within [0, 1], got {self.vs_weight}")

    @classmethod
    def from_settings(cls, settings: ChartSettings) -> "VibeScoreParams":
        return cls(
            shared_listening_exponent=settings.shared_listening_exponent,
            vs_weight=settings.vs_weight,
        )


def shared_listening_factor(distinct_contributors: int, params: VibeScoreParams) -> float:
    """Monotonically increasing reward for the number of distinct listeners."""
    if distinct_contributors <= 0:
        return 0.0
    return float(distinct_contributors) ** params.shared_listening_exponent


def vibe_score(playcount: int, distinct_contributors: int, params: VibeScoreParams) -> float:
    """The ``vs`` value of an entry."""
    return playcount * shared_listening_factor(distinct_contributors, params)


def weighted_vibe_score(
    playcount: int, distinct_contributors: int, params: VibeScoreParams
) -> float:
    """The ``vs_weighted`` value: blend of vibe score and raw plays."""
    vs = vibe_score(playcount, distinct_contributors, params)
    return params.vs_weight * vs + (1 - params.vs_weight) * playcount


def entry_value(entry: AggregatedEntry, mode: ChartMode, params: VibeScoreParams) -> float:
    """Ranking value of one entry under ``mode``."""
    if mode is ChartMode.PLAYS_ONLY:
        return float(entry.playcount)
    if mode is ChartMode.VS:
        return vibe_score(entry.playcount, entry.distinct_contributors, params)
    return weighted_vibe_score(entry.playcount, entry.distinct_contributors, params)


class ChartScorer:
    """Computes ranking values and the major driver of each entry."""

    def __init__(self, params: VibeScoreParams | None = None) -> None:
        self.params = params or VibeScoreParams()

    def score(self, entry: AggregatedEntry, mode: ChartMode) -> ScoredEntry:
        """Score one aggregated entry.

        Every mode is proportional to playcount for a fixed set of contributors, so a member's
        share of the value is their share of the plays. The major driver is the member with the
        most plays (ties go to the smaller user id, so the choice is stable).
        """
        value = entry_value(entry, mode, self.params)

        driver_id: str | None = None
        driver_contribution = 0.0
        if entry.contributions and entry.playcount > 0:
            driver_id, driver_plays = min(
                entry.contributions.items(), key=lambda item: (-item[1], item[0])
            )
            driver_contribution = value * driver_plays / entry.playcount

        return ScoredEntry(
            entry=entry,
            value=value,
            vibe_score=None if mode is ChartMode.PLAYS_ONLY else round(value, 4),
            major_driver_id=driver_id,
            major_driver_contribution=round(driver_contribution, 4),
        )

    def score_all(
        self, entries: Iterable[AggregatedEntry], mode: ChartMode
    ) -> list[ScoredEntry]:
        return [self.score(entry, mode) for entry in entries]
