"""
Slot availability for one staff member.

Loads a snapshot (pattern, blocks, active bookings) for the requested
salon-local date, moves bookings onto the salon wall-clock through
SalonClock and hands everything to the pure generator in slots.py.

The output is advisory: reservations re-check everything under the staff
lock (see reservations.py).
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import stores
from .config import settings
from .errors import AvailabilityUnavailable, ValidationError
from .models import Staff, Tenant
from .patterns import Block, BusyInterval, WorkingPattern, weekday_of
from .policies import check_booking_horizon, resolve_granularity, slot_cutoff, validate_duration
from .slots import generate_slots
from .timezones import SalonClock

logger = structlog.get_logger("salonbook.availability")

REASON_DAY_OFF = "day_off"
REASON_STAFF_INACTIVE = "staff_inactive"
REASON_FULLY_BOOKED = "fully_booked"


@dataclass
class DaySnapshot:
    pattern: WorkingPattern
    blocks: list[Block]
    busy: list[BusyInterval]


@dataclass
class SlotResult:
    staff_id: int
    day: date
    timezone: str
    duration_min: int
    granularity_min: int
    slots: list[time] = field(default_factory=list)
    reason: str | None = None


def load_day_snapshot(
    db: Session,
    tenant_id: int,
    staff: Staff,
    day: date,
    clock: SalonClock,
) -> DaySnapshot:
    pattern = stores.get_working_pattern(db, tenant_id, staff)
    blocks = stores.blocks_for_day(db, tenant_id, staff.id, day)
    start_utc, end_utc = clock.day_bounds(day)
    bookings = stores.active_bookings_between(db, tenant_id, staff.id, start_utc, end_utc)
    busy = [BusyInterval(*clock.local_span(b.start_at, b.end_at), booking_id=b.id) for b in bookings]
    return DaySnapshot(pattern=pattern, blocks=blocks, busy=busy)


def resolve_duration(db: Session, tenant_id: int, staff_id: int, service_id: int | None, duration_min: int | None) -> int:
    if service_id is None:
        if duration_min is None:
            raise ValidationError("service_id or duration_min is required")
        return validate_duration(duration_min)
    service = stores.require_service(db, tenant_id, service_id)
    if not stores.staff_offers_service(db, tenant_id, staff_id, service.id):
        raise ValidationError(f"Staff {staff_id} does not offer service {service_id}")
    return validate_duration(service.duration_min)


def staff_granularity(db: Session, tenant_id: int, staff: Staff) -> int:
    return resolve_granularity(
        staff.slot_interval_min,
        stores.staff_service_durations(db, tenant_id, staff.id),
    )


def _slots_for_staff(
    db: Session,
    tenant_id: int,
    staff: Staff,
    day: date,
    duration_min: int,
    granularity_min: int,
    clock: SalonClock,
    now_local: datetime,
) -> SlotResult:
    result = SlotResult(
        staff_id=staff.id,
        day=day,
        timezone=clock.zone_name,
        duration_min=duration_min,
        granularity_min=granularity_min,
    )
    if not bool(staff.is_active):
        result.reason = REASON_STAFF_INACTIVE
        return result

    snapshot = load_day_snapshot(db, tenant_id, staff, day, clock)
    if not snapshot.pattern.works_on(weekday_of(day)):
        result.reason = REASON_DAY_OFF
        return result

    result.slots = generate_slots(
        snapshot.pattern,
        snapshot.blocks,
        snapshot.busy,
        day,
        granularity_min,
        duration_min,
        not_before=slot_cutoff(now_local),
        end_of=clock.end_of,
    )
    if not result.slots:
        result.reason = REASON_FULLY_BOOKED
    return result


def get_available_slots(
    db: Session,
    tenant: Tenant,
    staff_id: int,
    day: date,
    service_id: int | None = None,
    duration_min: int | None = None,
    now: datetime | None = None,
) -> SlotResult:
    clock = SalonClock.for_tenant(tenant)
    now_local = clock.now_local(now)
    check_booking_horizon(day, now_local.date())
    try:
        staff = stores.require_staff(db, tenant.id, staff_id)
        duration = resolve_duration(db, tenant.id, staff.id, service_id, duration_min)
        granularity = staff_granularity(db, tenant.id, staff)
        result = _slots_for_staff(db, tenant.id, staff, day, duration, granularity, clock, now_local)
    except SQLAlchemyError as exc:
        logger.error(
            "availability_store_error",
            tenant_id=tenant.id,
            staff_id=staff_id,
            day=day.isoformat(),
            error=str(exc),
        )
        raise AvailabilityUnavailable("Availability is temporarily unavailable") from exc

    logger.info(
        "slots_generated",
        tenant_id=tenant.id,
        staff_id=staff_id,
        day=day.isoformat(),
        duration_min=result.duration_min,
        granularity_min=result.granularity_min,
        slots_count=len(result.slots),
        reason=result.reason,
    )
    return result


def list_available_days(
    db: Session,
    tenant: Tenant,
    staff_id: int,
    start_day: date,
    end_day: date,
    service_id: int | None = None,
    duration_min: int | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """Per-day slot counts for a date range, for calendar pickers."""
    if end_day < start_day:
        raise ValidationError("end must not be before start")
    span = (end_day - start_day).days + 1
    if span > int(settings.CALENDAR_MAX_DAYS):
        raise ValidationError(f"Calendar range cannot exceed {settings.CALENDAR_MAX_DAYS} days")

    clock = SalonClock.for_tenant(tenant)
    now_local = clock.now_local(now)
    check_booking_horizon(start_day, now_local.date())
    check_booking_horizon(end_day, now_local.date())

    out: list[dict] = []
    try:
        staff = stores.require_staff(db, tenant.id, staff_id)
        duration = resolve_duration(db, tenant.id, staff.id, service_id, duration_min)
        granularity = staff_granularity(db, tenant.id, staff)
        cursor = start_day
        while cursor <= end_day:
            result = _slots_for_staff(db, tenant.id, staff, cursor, duration, granularity, clock, now_local)
            out.append(
                {
                    "date": cursor,
                    "has_slots": bool(result.slots),
                    "open_slots_count": len(result.slots),
                    "reason": result.reason,
                }
            )
            cursor += timedelta(days=1)
    except SQLAlchemyError as exc:
        logger.error("availability_store_error", tenant_id=tenant.id, staff_id=staff_id, error=str(exc))
        raise AvailabilityUnavailable("Availability is temporarily unavailable") from exc
    return out
