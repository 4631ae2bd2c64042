"""
Interval and availability membership tests.

Pure functions over the value types in ``models``. Times of day are
compared on UTC-normalized datetimes; converting a local schedule to
UTC is the caller's job.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional

from app.core.scheduling.models import (
    SchedulingValidationError,
    TimeWindow,
    WeeklyAvailability,
    Weekday,
)


def validate_interval(start: datetime, end: datetime) -> None:
    """Reject malformed intervals.

    Raises:
        SchedulingValidationError: if end is not after start
    """
    if end <= start:
        raise SchedulingValidationError(
            f"Session end {end.isoformat()} must be after start {start.isoformat()}"
        )


def intervals_overlap(
    start1: datetime,
    end1: datetime,
    start2: datetime,
    end2: datetime,
) -> bool:
    """Half-open overlap test. Touching intervals (end1 == start2) do not overlap."""
    return start1 < end2 and start2 < end1


def is_within_availability(
    availability: WeeklyAvailability,
    weekday: Weekday,
    start: datetime,
    end: datetime,
) -> bool:
    """Check that [start, end) fits inside the window for ``weekday``.

    A day without a window is always unavailable. Sessions that cross
    midnight never fit a same-day window.
    """
    window = availability.get(weekday)
    if window is None:
        return False

    if end.date() != start.date():
        return False

    return window.start <= start.time() and end.time() <= window.end


def window_overlap_minutes(
    first: Optional[TimeWindow],
    second: Optional[TimeWindow],
) -> int:
    """Minutes shared by two same-day windows (0 if either is missing)."""
    shared = intersect_windows(first, second)
    return shared.minutes if shared else 0


def weekly_overlap_minutes(
    first: WeeklyAvailability,
    second: WeeklyAvailability,
) -> int:
    """Minutes per week during which both parties are available."""
    return sum(
        window_overlap_minutes(first.get(day), second.get(day))
        for day in Weekday
    )


def intersect_windows(
    first: Optional[TimeWindow],
    second: Optional[TimeWindow],
) -> Optional[TimeWindow]:
    """Intersection of two windows, or None when they do not overlap."""
    if first is None or second is None:
        return None
    start = max(first.start, second.start)
    end = min(first.end, second.end)
    if start >= end:
        return None
    return TimeWindow(start, end)


def iter_slots(
    day: date,
    window: TimeWindow,
    duration_minutes: int,
    step_minutes: int,
) -> Iterator[tuple[datetime, datetime]]:
    """Yield [start, end) UTC slots of ``duration_minutes`` inside ``window`` on ``day``.

    Slots start at the window start and advance by ``step_minutes``.
    """
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    cursor = combine_utc(day, window.start)
    window_end = combine_utc(day, window.end)

    while cursor + duration <= window_end:
        yield cursor, cursor + duration
        cursor += step


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end, inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def combine_utc(day: date, at: time) -> datetime:
    """Aware UTC datetime for a date and time of day."""
    return datetime.combine(day, at.replace(tzinfo=None), tzinfo=timezone.utc)


def minutes_between(first: datetime, second: datetime) -> float:
    """Absolute distance between two datetimes in minutes."""
    return abs((second - first).total_seconds()) / 60
