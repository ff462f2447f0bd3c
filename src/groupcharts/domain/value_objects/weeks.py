"""Week window helpers.

Hey future me - a group's week starts at UTC midnight on its tracking day and runs for
exactly seven days; the end is EXCLUSIVE. Tracking days use 0 = Sunday ... 6 = Saturday
(the numbering groups store), NOT Python's date.weekday() where 0 = Monday. Convert
through _sunday_based_weekday() and nowhere else.
"""

from datetime import UTC, datetime, timedelta

from groupcharts.domain.exceptions import ValidationException

WEEK = timedelta(days=7)


def _sunday_based_weekday(moment: datetime) -> int:
    return (moment.weekday() + 1) % 7


def ensure_utc(moment: datetime) -> datetime:
    """Return an aware UTC datetime (naive values are assumed to be UTC)."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def validate_tracking_day(day: int) -> int:
    if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6:
        raise ValidationException(
            f"tracking_day_of_week must be an integer 0-6 (0 = Sunday), got {day!r}"
        )
    return day


def get_week_start_for_day(moment: datetime, tracking_day: int) -> datetime:
    """Start of the week containing ``moment`` for a group tracking on ``tracking_day``.

    Args:
        moment: Any point in time
        tracking_day: 0 = Sunday ... 6 = Saturday

    Returns:
        UTC midnight of the most recent tracking day on or before ``moment``
    """
    validate_tracking_day(tracking_day)
    moment = ensure_utc(moment)
    days_back = (_sunday_based_weekday(moment) - tracking_day) % 7
    start = moment - timedelta(days=days_back)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def get_week_end(week_start: datetime) -> datetime:
    """Exclusive end of the week starting at ``week_start``."""
    return ensure_utc(week_start) + WEEK


def get_last_finished_weeks(
    count: int, tracking_day: int, now: datetime | None = None
) -> list[datetime]:
    """Start dates of the last ``count`` fully finished weeks, oldest first."""
    current = get_week_start_for_day(now or datetime.now(UTC), tracking_day)
    return [current - WEEK * offset for offset in range(count, 0, -1)]


def weeks_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """True if the half-open windows [start_a, end_a) and [start_b, end_b) intersect."""
    return ensure_utc(start_a) < ensure_utc(end_b) and ensure_utc(start_b) < ensure_utc(
        end_a
    )


def weeks_between(earlier: datetime, later: datetime) -> int:
    """Whole weeks from ``earlier`` to ``later`` (floored)."""
    return int((ensure_utc(later) - ensure_utc(earlier)) // WEEK)
