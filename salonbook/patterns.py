"""
Value types for weekly working patterns, blocks and busy intervals.

Weekdays follow the stored convention 0 = Sunday ... 6 = Saturday, which is
not Python's date.weekday() (0 = Monday). Always go through weekday_of().
"""

from dataclasses import dataclass
from datetime import date, datetime, time

from .errors import ValidationError


def weekday_of(day: date) -> int:
    return day.isoweekday() % 7


def _check_weekday(weekday: int) -> int:
    value = int(weekday)
    if value < 0 or value > 6:
        raise ValidationError(f"weekday must be 0..6 (0 = Sunday), got {weekday}")
    return value


def parse_hhmm(value: str | time) -> time:
    if isinstance(value, time):
        return value
    raw = str(value or "").strip()
    try:
        hour_s, minute_s = raw.split(":", 1)
        return time(int(hour_s), int(minute_s))
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM") from exc


def parse_weekdays(raw: str | None) -> frozenset[int]:
    """Legacy comma-joined weekday string ("1,2,3,4,5") -> set of weekdays."""
    out: set[int] = set()
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            out.add(_check_weekday(int(part)))
        except ValueError as exc:
            raise ValidationError(f"Invalid weekday list {raw!r}") from exc
    return frozenset(out)


def format_weekdays(weekdays) -> str:
    return ",".join(str(d) for d in sorted({_check_weekday(d) for d in weekdays}))


@dataclass(frozen=True)
class WorkingRange:
    weekday: int
    start: time
    end: time

    def __post_init__(self):
        _check_weekday(self.weekday)
        if not self.start < self.end:
            raise ValidationError(
                f"Working range start must be before end ({self.start} >= {self.end})"
            )


@dataclass(frozen=True)
class LunchBreak:
    start: time
    end: time

    def __post_init__(self):
        if not self.start < self.end:
            raise ValidationError("Lunch start must be before lunch end")


@dataclass(frozen=True)
class WorkingPattern:
    ranges: tuple[WorkingRange, ...] = ()
    lunch: LunchBreak | None = None

    @property
    def weekdays(self) -> frozenset[int]:
        return frozenset(r.weekday for r in self.ranges)

    def works_on(self, weekday: int) -> bool:
        return weekday in self.weekdays

    def ranges_for(self, weekday: int) -> list[WorkingRange]:
        return sorted((r for r in self.ranges if r.weekday == weekday), key=lambda r: r.start)

    @classmethod
    def from_legacy(
        cls,
        work_days: str | None,
        work_start: str | time,
        work_end: str | time,
        lunch_start: str | time | None = None,
        lunch_end: str | time | None = None,
    ) -> "WorkingPattern":
        start = parse_hhmm(work_start)
        end = parse_hhmm(work_end)
        ranges = tuple(WorkingRange(d, start, end) for d in sorted(parse_weekdays(work_days)))
        return cls(ranges=ranges, lunch=make_lunch(lunch_start, lunch_end))


def make_lunch(lunch_start, lunch_end) -> LunchBreak | None:
    if not lunch_start and not lunch_end:
        return None
    if not lunch_start or not lunch_end:
        raise ValidationError("Lunch break needs both start and end")
    return LunchBreak(parse_hhmm(lunch_start), parse_hhmm(lunch_end))


@dataclass(frozen=True)
class DatedBlock:
    block_date: date
    start: time
    end: time
    reason: str | None = None

    def __post_init__(self):
        if not self.start < self.end:
            raise ValidationError("Block start must be before block end")

    def applies_to(self, day: date) -> bool:
        return day == self.block_date


@dataclass(frozen=True)
class RecurringBlock:
    weekday: int
    start: time
    end: time
    reason: str | None = None
    effective_from: date | None = None

    def __post_init__(self):
        _check_weekday(self.weekday)
        if not self.start < self.end:
            raise ValidationError("Block start must be before block end")

    def applies_to(self, day: date) -> bool:
        if self.effective_from is not None and day < self.effective_from:
            return False
        return weekday_of(day) == self.weekday


Block = DatedBlock | RecurringBlock


def block_interval(block: Block, day: date) -> tuple[datetime, datetime]:
    return datetime.combine(day, block.start), datetime.combine(day, block.end)


@dataclass(frozen=True)
class BusyInterval:
    """An occupied [start, end) span in salon wall-clock time."""

    start: datetime
    end: datetime
    booking_id: int | None = None
