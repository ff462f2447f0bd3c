"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from datetime import datetime

from groupcharts.domain.entities import MemberSnapshot


# Hey future me - the snapshot provider is the ONLY way listening data enters the chart
# pipeline. It may return None for any (user, week): that's a member who didn't listen or
# whose data never arrived, and the aggregator treats it as zero contribution.
class ISnapshotProvider(ABC):
    """Source of immutable per-user weekly top lists."""

    @abstractmethod
    async def get_snapshot(
        self, user_id: str, week_start: datetime
    ) -> MemberSnapshot | None:
        """Return the user's snapshot for the week, or None if there is none."""
        ...

    @abstractmethod
    async def list_snapshots_since(
        self, user_id: str, since: datetime
    ) -> list[MemberSnapshot]:
        """Return all of a user's snapshots with week_start >= since, newest first."""
        ...


class IGenreProvider(ABC):
    """Source of genre tags per artist key (lowercased artist name)."""

    @abstractmethod
    async def get_genres(self, artist_keys: list[str]) -> dict[str, list[str]]:
        """Map each known artist key to its genres. Unknown keys are omitted."""
        ...
