"""
Slot generation.

Pure functions over salon wall-clock datetimes: no database, no clock, no
time zone. The caller hands in the pattern, the blocks, the busy intervals
(already converted to local time) and an optional cutoff for "now".

Intervals are half-open [start, end).
"""

from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, Optional

from .errors import ValidationError
from .patterns import Block, BusyInterval, WorkingPattern, block_interval, weekday_of

Interval = tuple[datetime, datetime]


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    out: list[Interval] = []
    for start, end in sorted(i for i in intervals if i[0] < i[1]):
        if out and start <= out[-1][1]:
            if end > out[-1][1]:
                out[-1] = (out[-1][0], end)
            continue
        out.append((start, end))
    return out


def subtract_interval(intervals: Iterable[Interval], cut_start: datetime, cut_end: datetime) -> list[Interval]:
    out: list[Interval] = []
    for start, end in intervals:
        if not overlaps(start, end, cut_start, cut_end):
            out.append((start, end))
            continue
        if start < cut_start:
            out.append((start, cut_start))
        if cut_end < end:
            out.append((cut_end, end))
    return out


def contains(intervals: Iterable[Interval], start: datetime, end: datetime) -> bool:
    return any(i_start <= start and end <= i_end for i_start, i_end in intervals)


def working_intervals(pattern: WorkingPattern, day: date) -> list[Interval]:
    """Working ranges for the day with the lunch break removed.

    A lunch break that does not sit inside one of the day's ranges is
    ignored for that day.
    """
    ranges = pattern.ranges_for(weekday_of(day))
    if not ranges:
        return []

    intervals = merge_intervals(
        (datetime.combine(day, r.start), datetime.combine(day, r.end)) for r in ranges
    )
    lunch = pattern.lunch
    if lunch is None:
        return intervals

    lunch_start = datetime.combine(day, lunch.start)
    lunch_end = datetime.combine(day, lunch.end)
    if not contains(intervals, lunch_start, lunch_end):
        return intervals
    return subtract_interval(intervals, lunch_start, lunch_end)


def free_intervals(
    pattern: WorkingPattern,
    blocks: Iterable[Block],
    busy: Iterable[BusyInterval],
    day: date,
) -> list[Interval]:
    intervals = working_intervals(pattern, day)
    for block in blocks:
        if not block.applies_to(day):
            continue
        block_start, block_end = block_interval(block, day)
        intervals = subtract_interval(intervals, block_start, block_end)
    for item in busy:
        intervals = subtract_interval(intervals, item.start, item.end)
    return merge_intervals(intervals)


EndOf = Callable[[datetime, int], Optional[datetime]]


def naive_end_of(start: datetime, duration_min: int) -> datetime:
    return start + timedelta(minutes=int(duration_min))


def generate_slots(
    pattern: WorkingPattern,
    blocks: Iterable[Block],
    busy: Iterable[BusyInterval],
    day: date,
    granularity_min: int,
    duration_min: int,
    not_before: datetime | None = None,
    end_of: EndOf | None = None,
) -> list[time]:
    """Start times at which a duration_min service fits entirely in free time.

    Candidates step by granularity_min from the start of every free
    interval, whatever the service duration is. Candidates earlier than
    not_before are dropped.

    end_of maps a wall-clock start to the wall-clock end of the service
    (SalonClock.end_of in production) and returns None for starts that do
    not exist on the salon clock. Without it the day is treated as having
    no daylight-saving jump.
    """
    if int(granularity_min) < 1:
        raise ValidationError("granularity must be >= 1 minute")
    if int(duration_min) < 1:
        raise ValidationError("service duration must be >= 1 minute")

    if not pattern.works_on(weekday_of(day)):
        return []

    end_of = end_of or naive_end_of
    step = timedelta(minutes=int(granularity_min))
    found: set[time] = set()
    for start, end in free_intervals(pattern, blocks, busy, day):
        cursor = start
        while cursor < end:
            finish = end_of(cursor, duration_min)
            if (
                finish is not None
                and finish <= end
                and cursor.date() == day
                and (not_before is None or cursor >= not_before)
            ):
                found.add(cursor.time())
            cursor += step
    return sorted(found)
