from datetime import date, datetime, time

import pytest

from salonbook.errors import ValidationError
from salonbook.patterns import (
    BusyInterval,
    DatedBlock,
    LunchBreak,
    RecurringBlock,
    WorkingPattern,
    WorkingRange,
    parse_weekdays,
    weekday_of,
)
from salonbook.slots import free_intervals, generate_slots, working_intervals
from salonbook.timezones import SalonClock

MONDAY = date(2026, 3, 2)
SUNDAY = date(2026, 3, 1)


def monday_pattern(start=time(9, 0), end=time(18, 0), lunch=None):
    return WorkingPattern(ranges=(WorkingRange(1, start, end),), lunch=lunch)


def test_weekday_convention_starts_on_sunday():
    assert weekday_of(SUNDAY) == 0
    assert weekday_of(MONDAY) == 1
    assert weekday_of(date(2026, 3, 7)) == 6


def test_lunch_break_is_removed_from_hourly_slots():
    pattern = monday_pattern(lunch=LunchBreak(time(12, 0), time(13, 0)))

    slots = generate_slots(pattern, [], [], MONDAY, granularity_min=60, duration_min=60)

    assert slots == [
        time(9, 0),
        time(10, 0),
        time(11, 0),
        time(13, 0),
        time(14, 0),
        time(15, 0),
        time(16, 0),
        time(17, 0),
    ]


def test_lunch_break_with_half_hour_grid():
    pattern = monday_pattern(lunch=LunchBreak(time(12, 0), time(13, 0)))

    slots = generate_slots(pattern, [], [], MONDAY, granularity_min=30, duration_min=30)

    assert time(11, 30) in slots
    assert time(12, 0) not in slots
    assert time(12, 30) not in slots
    assert time(13, 0) in slots


def test_step_follows_granularity_and_service_must_fit():
    pattern = monday_pattern(end=time(10, 0))

    assert generate_slots(pattern, [], [], MONDAY, granularity_min=15, duration_min=45) == [
        time(9, 0),
        time(9, 15),
    ]
    assert generate_slots(pattern, [], [], MONDAY, granularity_min=15, duration_min=60) == [time(9, 0)]
    assert generate_slots(pattern, [], [], MONDAY, granularity_min=15, duration_min=75) == []


def test_day_without_working_range_has_no_slots():
    assert generate_slots(monday_pattern(), [], [], SUNDAY, granularity_min=30, duration_min=30) == []


def test_busy_interval_is_half_open():
    busy = [BusyInterval(datetime(2026, 3, 2, 10, 0), datetime(2026, 3, 2, 10, 30), booking_id=7)]

    slots = generate_slots(monday_pattern(end=time(12, 0)), [], busy, MONDAY, granularity_min=30, duration_min=30)

    assert time(10, 0) not in slots
    assert time(9, 30) in slots
    assert time(10, 30) in slots


def test_recurring_block_respects_effective_from():
    pattern = monday_pattern()
    block = RecurringBlock(weekday=1, start=time(14, 0), end=time(15, 0), reason="training")
    later_block = RecurringBlock(
        weekday=1,
        start=time(14, 0),
        end=time(15, 0),
        effective_from=date(2026, 3, 9),
    )

    assert time(14, 0) not in generate_slots(pattern, [block], [], MONDAY, 60, 60)
    assert time(14, 0) in generate_slots(pattern, [later_block], [], MONDAY, 60, 60)
    assert time(14, 0) not in generate_slots(pattern, [later_block], [], date(2026, 3, 9), 60, 60)


def test_recurring_block_leaves_other_weekdays_alone():
    pattern = WorkingPattern(
        ranges=(
            WorkingRange(1, time(9, 0), time(18, 0)),
            WorkingRange(2, time(9, 0), time(18, 0)),
        )
    )
    block = RecurringBlock(weekday=1, start=time(14, 0), end=time(15, 0), reason="training")

    assert time(14, 0) not in generate_slots(pattern, [block], [], MONDAY, 60, 60)
    assert time(14, 0) in generate_slots(pattern, [block], [], date(2026, 3, 3), 60, 60)
    assert time(14, 0) not in generate_slots(pattern, [block], [], date(2026, 3, 16), 60, 60)


def test_dated_block_only_applies_to_its_date():
    pattern = monday_pattern()
    block = DatedBlock(block_date=MONDAY, start=time(9, 0), end=time(11, 0), reason="doctor")

    assert generate_slots(pattern, [block], [], MONDAY, 60, 60)[0] == time(11, 0)
    assert generate_slots(pattern, [block], [], date(2026, 3, 9), 60, 60)[0] == time(9, 0)


def test_split_shift_ignores_lunch_outside_working_ranges():
    pattern = WorkingPattern(
        ranges=(
            WorkingRange(1, time(9, 0), time(12, 0)),
            WorkingRange(1, time(14, 0), time(18, 0)),
        ),
        lunch=LunchBreak(time(12, 30), time(13, 0)),
    )

    assert working_intervals(pattern, MONDAY) == [
        (datetime(2026, 3, 2, 9, 0), datetime(2026, 3, 2, 12, 0)),
        (datetime(2026, 3, 2, 14, 0), datetime(2026, 3, 2, 18, 0)),
    ]
    assert generate_slots(pattern, [], [], MONDAY, 60, 60) == [
        time(9, 0),
        time(10, 0),
        time(11, 0),
        time(14, 0),
        time(15, 0),
        time(16, 0),
        time(17, 0),
    ]


def test_slots_before_cutoff_are_dropped():
    slots = generate_slots(
        monday_pattern(),
        [],
        [],
        MONDAY,
        granularity_min=60,
        duration_min=60,
        not_before=datetime(2026, 3, 2, 10, 5),
    )

    assert slots[0] == time(11, 0)


def test_free_intervals_subtracts_blocks_and_bookings():
    pattern = monday_pattern(end=time(12, 0))
    block = DatedBlock(block_date=MONDAY, start=time(9, 0), end=time(9, 30))
    busy = [BusyInterval(datetime(2026, 3, 2, 10, 0), datetime(2026, 3, 2, 11, 0))]

    assert free_intervals(pattern, [block], busy, MONDAY) == [
        (datetime(2026, 3, 2, 9, 30), datetime(2026, 3, 2, 10, 0)),
        (datetime(2026, 3, 2, 11, 0), datetime(2026, 3, 2, 12, 0)),
    ]


def test_invalid_granularity_or_duration_is_rejected():
    with pytest.raises(ValidationError):
        generate_slots(monday_pattern(), [], [], MONDAY, granularity_min=0, duration_min=30)
    with pytest.raises(ValidationError):
        generate_slots(monday_pattern(), [], [], MONDAY, granularity_min=15, duration_min=0)


def test_legacy_pattern_conversion():
    pattern = WorkingPattern.from_legacy("1, 2,3", "09:00", "18:00", "12:00", "13:00")

    assert pattern.weekdays == frozenset({1, 2, 3})
    assert pattern.lunch == LunchBreak(time(12, 0), time(13, 0))
    assert parse_weekdays("") == frozenset()

    with pytest.raises(ValidationError):
        parse_weekdays("1,9")
    with pytest.raises(ValidationError):
        WorkingPattern.from_legacy("1", "18:00", "09:00")
    with pytest.raises(ValidationError):
        WorkingPattern.from_legacy("1", "09:00", "18:00", lunch_start="12:00")


def test_candidates_missing_from_the_salon_clock_are_skipped():
    clock = SalonClock("America/New_York")
    pattern = WorkingPattern(ranges=(WorkingRange(0, time(1, 0), time(4, 0)),))

    slots = generate_slots(pattern, [], [], date(2026, 3, 8), 15, 30, end_of=clock.end_of)

    assert slots == [time(1, 0), time(1, 15), time(1, 30), time(1, 45), time(3, 0), time(3, 15), time(3, 30)]
