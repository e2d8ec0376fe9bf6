"""
Configurable booking policies.

Kept apart from the interval math in slots.py so each rule can be swapped
without touching slot generation.
"""

from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Sequence

from .config import settings
from .errors import ValidationError

GranularityPolicy = Callable[[int | None, Sequence[int]], int | None]


def explicit_granularity(explicit_min: int | None, offered_durations: Sequence[int]) -> int | None:
    if explicit_min is None:
        return None
    return int(explicit_min) if int(explicit_min) > 0 else None


def single_service_granularity(explicit_min: int | None, offered_durations: Sequence[int]) -> int | None:
    """A staff member offering exactly one service steps by that service's duration."""
    if not settings.SLOT_DERIVE_FROM_SINGLE_SERVICE:
        return None
    durations = [int(d) for d in offered_durations if d]
    if len(durations) != 1:
        return None
    return durations[0]


DEFAULT_GRANULARITY_POLICIES: tuple[GranularityPolicy, ...] = (
    explicit_granularity,
    single_service_granularity,
)


def resolve_granularity(
    explicit_min: int | None,
    offered_durations: Iterable[int],
    policies: Sequence[GranularityPolicy] = DEFAULT_GRANULARITY_POLICIES,
    default_min: int | None = None,
    floor_min: int | None = None,
) -> int:
    durations = list(offered_durations)
    chosen = None
    for policy in policies:
        chosen = policy(explicit_min, durations)
        if chosen is not None:
            break
    if chosen is None:
        chosen = int(default_min if default_min is not None else settings.SLOT_DEFAULT_GRANULARITY_MIN)
    floor = int(floor_min if floor_min is not None else settings.SLOT_GRANULARITY_FLOOR_MIN)
    return max(1, floor, int(chosen))


def validate_duration(duration_min) -> int:
    try:
        value = int(duration_min)
    except (TypeError, ValueError) as exc:
        raise ValidationError("duration_min must be an integer") from exc
    if value <= 0:
        raise ValidationError("duration_min must be > 0")
    return value


def check_booking_horizon(
    day: date,
    today: date,
    past_days: int | None = None,
    future_days: int | None = None,
) -> None:
    past = int(settings.BOOKING_HORIZON_PAST_DAYS if past_days is None else past_days)
    future = int(settings.BOOKING_HORIZON_FUTURE_DAYS if future_days is None else future_days)
    if day < today - timedelta(days=max(0, past)):
        raise ValidationError(f"Date {day.isoformat()} is too far in the past")
    if day > today + timedelta(days=max(0, future)):
        raise ValidationError(f"Date cannot be more than {future} days ahead")


def slot_cutoff(now_local: datetime, exclude_past: bool | None = None, min_advance_min: int | None = None) -> datetime | None:
    """Earliest bookable wall-clock start, or None when past slots stay visible."""
    exclude = settings.SLOT_EXCLUDE_PAST if exclude_past is None else exclude_past
    if not exclude:
        return None
    advance = int(settings.SLOT_MIN_ADVANCE_MIN if min_advance_min is None else min_advance_min)
    return now_local + timedelta(minutes=max(0, advance))
