"""Trend Analyzer - what changed this week, derived from ranked chart history.

Runs once per completed group-week right after ranking and stores its payload in
group_trends. Definitions:

- new entries: positionChange is null (not on last week's chart). Debut vs comeback is
  told apart by total_weeks_appeared.
- comeback: not on last week's chart but appeared before; weeks_away = whole weeks between
  the last prior appearance and this week.
- streak: consecutive weeks (no gap) at or above the streak threshold, counted backwards
  from this week; only streaks >= 2 are reported.
- exits: on last week's chart, gone this week.

Hey future me - member names are NOT stored in the payload. Spotlight / contributors / the MVP
fact carry user ids only, and get_trends() resolves names on every read so a rename shows up
everywhere immediately.
"""

import logging
from collections import Counter, defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupcharts.config import Settings, get_settings
from groupcharts.domain.entities import ChartType
from groupcharts.domain.exceptions import EntityNotFoundException
from groupcharts.domain.value_objects.weeks import WEEK, ensure_utc, weeks_between
from groupcharts.infrastructure.persistence.models import ChartEntryModel
from groupcharts.infrastructure.persistence.repositories import (
    ChartRepository,
    GroupRepository,
    UserRepository,
)

logger = logging.getLogger(__name__)

TOP_MOVERS = 5
TOP_CONTRIBUTORS = 5
TOP_MEMBER_ITEMS = 3
PLAY_INCREASE_THRESHOLD = 0.20
CLOSE_RACE_PLAYS = 50


@dataclass(frozen=True)
class StreakResult:
    """A current streak of one entry."""

    chart_type: ChartType
    entry_key: str
    name: str
    artist: str | None
    slug: str
    position: int
    length: int


def calculate_streak(
    positions_by_week: Mapping[datetime, int],
    week_start: datetime,
    threshold: int,
    lookback_weeks: int,
) -> int:
    """Count consecutive weeks ending at ``week_start`` with position <= threshold.

    A missing week breaks the streak, as does a position below the threshold.

    Args:
        positions_by_week: Entry position per week start (UTC-aware keys)
        week_start: Week the streak ends in
        threshold: Worst position that still counts (e.g. 10)
        lookback_weeks: Maximum number of weeks to walk back

    Returns:
        Streak length (0 if the entry isn't within the threshold this week)
    """
    streak = 0
    cursor = ensure_utc(week_start)
    while streak < lookback_weeks:
        position = positions_by_week.get(cursor)
        if position is None or position > threshold:
            break
        streak += 1
        cursor -= WEEK
    return streak


def _entry_ref(row: ChartEntryModel) -> dict[str, Any]:
    return {
        "chart_type": row.chart_type,
        "entry_key": row.entry_key,
        "name": row.name,
        "artist": row.artist,
        "slug": row.slug,
        "position": row.position,
        "playcount": row.playcount,
    }


def _label(row: ChartEntryModel | dict[str, Any]) -> str:
    name = row["name"] if isinstance(row, dict) else row.name
    artist = row["artist"] if isinstance(row, dict) else row.artist
    return f"{name} by {artist}" if artist else name


class TrendsService:
    """Computes, stores and serves weekly trends."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self._charts = ChartRepository(session)
        self._groups = GroupRepository(session)
        self._users = UserRepository(session)

    # ===== STREAKS =====

    async def get_streaks(
        self,
        group_id: str,
        chart_type: ChartType | str,
        week_start: datetime | None = None,
        min_streak: int = 2,
    ) -> list[StreakResult]:
        """Current streaks of one chart, longest first."""
        chart_type = ChartType.parse(chart_type)
        week_start = week_start or await self._charts.get_latest_week_start(group_id)
        if week_start is None:
            return []
        rows = await self._charts.get_week_entries(group_id, week_start, chart_type)
        return await self._streaks_for(
            group_id, chart_type, ensure_utc(week_start), rows, min_streak
        )

    async def _streaks_for(
        self,
        group_id: str,
        chart_type: ChartType,
        week_start: datetime,
        rows: Sequence[ChartEntryModel],
        min_streak: int,
    ) -> list[StreakResult]:
        threshold = self.settings.charts.streak_threshold
        lookback = self.settings.charts.streak_lookback_weeks
        candidates = [row for row in rows if row.position <= threshold]
        if not candidates:
            return []

        since = week_start - WEEK * (lookback - 1)
        result = await self.session.execute(
            select(
                ChartEntryModel.entry_key,
                ChartEntryModel.week_start,
                ChartEntryModel.position,
            ).where(
                ChartEntryModel.group_id == group_id,
                ChartEntryModel.chart_type == chart_type.value,
                ChartEntryModel.entry_key.in_([row.entry_key for row in candidates]),
                ChartEntryModel.week_start >= since,
                ChartEntryModel.week_start <= week_start,
            )
        )
        history: dict[str, dict[datetime, int]] = defaultdict(dict)
        for key, week, position in result.all():
            history[key][ensure_utc(week)] = position

        streaks = []
        for row in candidates:
            length = calculate_streak(history[row.entry_key], week_start, threshold, lookback)
            if length >= min_streak:
                streaks.append(
                    StreakResult(
                        chart_type=chart_type,
                        entry_key=row.entry_key,
                        name=row.name,
                        artist=row.artist,
                        slug=row.slug,
                        position=row.position,
                        length=length,
                    )
                )
        streaks.sort(key=lambda s: (-s.length, s.position, s.entry_key))
        return streaks

    # ===== WEEKLY TRENDS =====

    async def calculate_week_trends(
        self, group_id: str, week_start: datetime
    ) -> dict[str, Any]:
        """Compute and store the trends payload of one charted week.

        Raises:
            EntityNotFoundException: The week has not been charted
        """
        week_start = ensure_utc(week_start)
        weekly = await self._charts.get_weekly_stats(group_id, week_start)
        if weekly is None:
            raise EntityNotFoundException("ChartWeek", f"{group_id}@{week_start.date()}")

        previous_start = week_start - WEEK
        current_rows = await self._charts.get_week_entries(group_id, week_start)
        previous_rows = await self._charts.get_week_entries(group_id, previous_start)
        previous_weekly = await self._charts.get_weekly_stats(group_id, previous_start)
        member_count = len(await self._groups.get_member_ids(group_id))

        by_type: dict[ChartType, list[ChartEntryModel]] = defaultdict(list)
        for row in current_rows:
            by_type[ChartType(row.chart_type)].append(row)

        new_rows = [row for row in current_rows if row.position_change is None]
        new_entries = [
            {**_entry_ref(row), "is_debut": row.total_weeks_appeared == 1}
            for row in new_rows
        ]

        climbers = sorted(
            (row for row in current_rows if (row.position_change or 0) > 0),
            key=lambda r: (-(r.position_change or 0), r.position, r.entry_key),
        )[:TOP_MOVERS]
        biggest_climbers = [
            {
                **_entry_ref(row),
                "position_change": row.position_change,
                "is_new_peak": row.position <= row.highest_position,
            }
            for row in climbers
        ]
        fallers = sorted(
            (row for row in current_rows if (row.position_change or 0) < 0),
            key=lambda r: ((r.position_change or 0), r.position, r.entry_key),
        )[:TOP_MOVERS]
        biggest_fallers = [
            {**_entry_ref(row), "position_change": row.position_change} for row in fallers
        ]

        current_keys = {(row.chart_type, row.entry_key) for row in current_rows}
        exits = [
            {
                "chart_type": row.chart_type,
                "entry_key": row.entry_key,
                "name": row.name,
                "artist": row.artist,
                "slug": row.slug,
                "last_position": row.position,
            }
            for row in previous_rows
            if (row.chart_type, row.entry_key) not in current_keys
        ]

        comebacks = await self._comebacks(group_id, week_start, new_rows)

        streaks: list[StreakResult] = []
        for chart_type, rows in by_type.items():
            streaks.extend(await self._streaks_for(group_id, chart_type, week_start, rows, 2))
        streaks.sort(key=lambda s: (-s.length, s.position, s.entry_key))

        spotlight, contributors = self._member_spotlight(current_rows, member_count)

        total_plays = weekly.total_plays
        total_plays_change = (
            total_plays - previous_weekly.total_plays if previous_weekly else None
        )

        fun_facts = self._fun_facts(
            by_type=by_type,
            previous_rows=previous_rows,
            comebacks=comebacks,
            streaks=streaks,
            new_entries=new_entries,
            spotlight=spotlight,
            total_plays=total_plays,
            previous_total=previous_weekly.total_plays if previous_weekly else None,
        )

        payload: dict[str, Any] = {
            "week_start": week_start.isoformat(),
            "new_entries": new_entries,
            "biggest_climbers": biggest_climbers,
            "biggest_fallers": biggest_fallers,
            "exits": exits,
            "comebacks": comebacks,
            "streaks": [
                {
                    "chart_type": s.chart_type.value,
                    "entry_key": s.entry_key,
                    "name": s.name,
                    "artist": s.artist,
                    "slug": s.slug,
                    "position": s.position,
                    "streak_length": s.length,
                }
                for s in streaks
            ],
            "fun_facts": fun_facts,
            "member_spotlight": spotlight,
            "top_contributors": contributors,
            "total_plays": total_plays,
            "total_plays_change": total_plays_change,
            "chart_turnover": len(new_entries),
        }

        await self._charts.save_trends(
            group_id,
            week_start,
            payload,
            total_plays=total_plays,
            total_plays_change=total_plays_change,
            chart_turnover=len(new_entries),
        )
        logger.info(
            "Trends for group %s week %s: %d new, %d comebacks, %d facts",
            group_id,
            week_start.date(),
            len(new_entries),
            len(comebacks),
            len(fun_facts),
        )
        return payload

    async def get_trends(
        self, group_id: str, week_start: datetime | None = None
    ) -> dict[str, Any]:
        """Stored trends of a week (latest week by default) with member names resolved."""
        await self._groups.get(group_id)
        week_start = week_start or await self._charts.get_latest_week_start(group_id)
        if week_start is None:
            raise EntityNotFoundException("ChartWeek", f"{group_id}@latest")

        stored = await self._charts.get_trends(group_id, week_start)
        payload = (
            stored.payload
            if stored is not None
            else await self.calculate_week_trends(group_id, week_start)
        )
        return await self._resolve_names(payload)

    async def _comebacks(
        self, group_id: str, week_start: datetime, new_rows: Sequence[ChartEntryModel]
    ) -> list[dict[str, Any]]:
        returning = [row for row in new_rows if row.total_weeks_appeared > 1]
        comebacks: list[dict[str, Any]] = []
        by_type: dict[ChartType, list[ChartEntryModel]] = defaultdict(list)
        for row in returning:
            by_type[ChartType(row.chart_type)].append(row)
        for chart_type, rows in by_type.items():
            summary = await self._charts.get_history_summary(
                group_id, chart_type, [row.entry_key for row in rows], before=week_start
            )
            for row in rows:
                if row.entry_key not in summary:
                    continue
                _count, _best, last_seen = summary[row.entry_key]
                comebacks.append(
                    {**_entry_ref(row), "weeks_away": weeks_between(last_seen, week_start)}
                )
        comebacks.sort(key=lambda c: (-c["weeks_away"], c["position"], c["entry_key"]))
        return comebacks

    def _member_spotlight(
        self, rows: Iterable[ChartEntryModel], member_count: int
    ) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
        plays: Counter[str] = Counter()
        entries: Counter[str] = Counter()
        items: dict[str, list[tuple[int, ChartEntryModel]]] = defaultdict(list)
        for row in rows:
            for user_id, amount in (row.contributions or {}).items():
                if amount <= 0:
                    continue
                plays[user_id] += amount
                entries[user_id] += 1
                items[user_id].append((amount, row))

        ranked = sorted(plays, key=lambda uid: (-plays[uid], uid))
        contributors = [
            {"user_id": uid, "plays": plays[uid], "entries": entries[uid]}
            for uid in ranked[:TOP_CONTRIBUTORS]
        ]

        if member_count < self.settings.charts.spotlight_min_members or not ranked:
            return None, contributors

        mvp = ranked[0]
        most_diverse = max(entries.values())
        highlight = (
            "MVP & Most Diverse Listener"
            if entries[mvp] == most_diverse
            else "Most Active Listener"
        )
        top_items = sorted(items[mvp], key=lambda item: (-item[0], item[1].position))
        spotlight = {
            "user_id": mvp,
            "total_plays": plays[mvp],
            "distinct_entries": entries[mvp],
            "highlight": highlight,
            "top_contributions": [
                {
                    "chart_type": row.chart_type,
                    "name": row.name,
                    "artist": row.artist,
                    "slug": row.slug,
                    "plays": amount,
                }
                for amount, row in top_items[:TOP_MEMBER_ITEMS]
            ],
        }
        return spotlight, contributors

    def _fun_facts(
        self,
        *,
        by_type: Mapping[ChartType, list[ChartEntryModel]],
        previous_rows: Sequence[ChartEntryModel],
        comebacks: list[dict[str, Any]],
        streaks: list[StreakResult],
        new_entries: list[dict[str, Any]],
        spotlight: dict[str, Any] | None,
        total_plays: int,
        previous_total: int | None,
    ) -> list[dict[str, Any]]:
        facts: list[dict[str, Any]] = []

        if comebacks:
            top = comebacks[0]
            facts.append(
                {
                    "kind": "comeback",
                    "priority": 1,
                    "chart_type": top["chart_type"],
                    "entry_key": top["entry_key"],
                    "weeks_away": top["weeks_away"],
                    "text": f"{_label(top)} is back after {top['weeks_away']} weeks away!",
                }
            )

        if streaks and streaks[0].length >= 3:
            top_streak = streaks[0]
            mood = "is on fire" if top_streak.length >= 5 else "is unstoppable"
            facts.append(
                {
                    "kind": "streak",
                    "priority": 2,
                    "chart_type": top_streak.chart_type.value,
                    "entry_key": top_streak.entry_key,
                    "streak_length": top_streak.length,
                    "text": (
                        f"{top_streak.name} {mood}: {top_streak.length} straight weeks "
                        f"in the top {self.settings.charts.streak_threshold}"
                    ),
                }
            )

        peaks = sorted(
            (
                row
                for rows in by_type.values()
                for row in rows
                if row.position <= 5
                and row.total_weeks_appeared > 1
                and (row.position_change or 0) > 0
                and row.position <= row.highest_position
            ),
            key=lambda r: (r.position, r.entry_key),
        )
        if peaks:
            peak = peaks[0]
            facts.append(
                {
                    "kind": "new_peak",
                    "priority": 3,
                    "chart_type": peak.chart_type,
                    "entry_key": peak.entry_key,
                    "position": peak.position,
                    "text": f"{_label(peak)} reached a new peak of #{peak.position}",
                }
            )

        debuts = sum(1 for entry in new_entries if entry["is_debut"])
        if debuts:
            facts.append(
                {
                    "kind": "first_timers",
                    "priority": 4,
                    "count": debuts,
                    "text": f"{debuts} entries charted for the very first time",
                }
            )

        track_artists = Counter(
            row.artist for row in by_type.get(ChartType.TRACKS, []) if row.artist
        )
        if track_artists:
            artist, count = min(track_artists.items(), key=lambda kv: (-kv[1], kv[0]))
            if count >= 2:
                facts.append(
                    {
                        "kind": "artist_dominance",
                        "priority": 5,
                        "artist": artist,
                        "count": count,
                        "text": f"{artist} has {count} tracks on the chart this week",
                    }
                )

        steady = sum(
            1 for rows in by_type.values() for row in rows if row.position_change == 0
        )
        if steady >= 3:
            facts.append(
                {
                    "kind": "stability",
                    "priority": 6,
                    "count": steady,
                    "text": f"{steady} entries held their exact position",
                }
            )

        current_top = [
            row.entry_key for row in by_type.get(ChartType.ARTISTS, [])[:3]
        ]
        previous_top = [
            row.entry_key
            for row in sorted(
                (r for r in previous_rows if r.chart_type == ChartType.ARTISTS.value),
                key=lambda r: r.position,
            )[:3]
        ]
        if len(current_top) == 3 and current_top == previous_top:
            facts.append(
                {
                    "kind": "top_three_unchanged",
                    "priority": 7,
                    "chart_type": ChartType.ARTISTS.value,
                    "text": "The top 3 artists are exactly the same as last week",
                }
            )

        if previous_total:
            increase = (total_plays - previous_total) / previous_total
            if increase >= PLAY_INCREASE_THRESHOLD:
                percent = round(increase * 100)
                facts.append(
                    {
                        "kind": "play_increase",
                        "priority": 8,
                        "percent": percent,
                        "text": f"Group listening is up {percent}% on last week",
                    }
                )

        leaders = by_type.get(ChartType.ARTISTS, [])
        if len(leaders) >= 2:
            gap = leaders[0].playcount - leaders[1].playcount
            if 0 <= gap < CLOSE_RACE_PLAYS:
                facts.append(
                    {
                        "kind": "close_race",
                        "priority": 9,
                        "chart_type": ChartType.ARTISTS.value,
                        "difference": gap,
                        "text": (
                            f"Close race at the top: only {gap} plays between "
                            f"{leaders[0].name} and {leaders[1].name}"
                        ),
                    }
                )

        if spotlight is not None:
            facts.append(
                {
                    "kind": "mvp",
                    "priority": 10,
                    "user_id": spotlight["user_id"],
                    "plays": spotlight["total_plays"],
                    "text": "{member} was the week's MVP with "
                    f"{spotlight['total_plays']} plays",
                }
            )

        if total_plays > 0:
            facts.append(
                {
                    "kind": "total_plays",
                    "priority": 11,
                    "total_plays": total_plays,
                    "text": f"The group logged {total_plays} plays this week",
                }
            )

        facts.sort(key=lambda fact: fact["priority"])
        return facts[: self.settings.charts.max_fun_facts]

    # The stored payload is the ORM row's dict: build new containers, never edit it in place.
    async def _resolve_names(self, stored: dict[str, Any]) -> dict[str, Any]:
        payload = dict(stored)
        user_ids = {c["user_id"] for c in payload.get("top_contributors", [])}
        spotlight = payload.get("member_spotlight")
        if spotlight:
            user_ids.add(spotlight["user_id"])
        names = await self._users.get_names(user_ids)

        payload["top_contributors"] = [
            {**c, "name": names.get(c["user_id"])} for c in payload.get("top_contributors", [])
        ]
        if spotlight:
            payload["member_spotlight"] = {
                **spotlight,
                "name": names.get(spotlight["user_id"]),
            }
        facts = []
        for fact in payload.get("fun_facts", []):
            if fact.get("kind") == "mvp":
                member = names.get(fact["user_id"], "A former member")
                fact = {**fact, "text": fact["text"].replace("{member}", member)}
            facts.append(fact)
        payload["fun_facts"] = facts
        return payload
