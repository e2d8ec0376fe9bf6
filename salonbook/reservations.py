"""
Reservation coordinator.

Every write that can break "no two active bookings of one staff member
overlap" runs under staff_lock() plus a SELECT ... FOR UPDATE on the staff
row, and re-reads the day from the stores inside that critical section.
Nothing the slot endpoint returned earlier is trusted.
"""

import json
from datetime import date, datetime, timedelta

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import stores
from .config import settings
from .errors import (
    CONFLICT_CLIENT_OVERLAP,
    CONFLICT_OUTSIDE_WORKING_HOURS,
    CONFLICT_OVERLAP,
    CONFLICT_STAFF_INACTIVE,
    BookingError,
    ConflictError,
    ConsistencyError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .locks import staff_lock
from .models import (
    ACTIVE_BOOKING_STATUSES,
    BOOKING_STATUSES,
    Block,
    Booking,
    BookingStatusEvent,
    OutboxEvent,
    Staff,
    Tenant,
    utc_now_naive,
)
from .patterns import DatedBlock, RecurringBlock, WorkingPattern, block_interval
from .policies import check_booking_horizon, slot_cutoff
from .slots import contains, overlaps, working_intervals
from .timezones import SalonClock

logger = structlog.get_logger("salonbook.reservations")

ALLOWED_STATUS_TRANSITIONS = {
    "PENDING": {"CONFIRMED", "CANCELLED"},
    "CONFIRMED": {"COMPLETED", "CANCELLED"},
    "CANCELLED": {"PENDING", "CONFIRMED"},
    "COMPLETED": set(),
}

CONFIRMED_TOPIC = "booking.confirmed"


def _normalize_status(value: str | None) -> str:
    status = (value or "").strip().upper()
    if status not in BOOKING_STATUSES:
        raise ValidationError(f"Invalid booking status: {value}")
    return status


def _add_status_event(
    db: Session,
    booking: Booking,
    from_status: str | None,
    to_status: str,
    actor: str | None = None,
    note: str | None = None,
) -> BookingStatusEvent:
    event = BookingStatusEvent(
        tenant_id=booking.tenant_id,
        booking_id=booking.id,
        from_status=from_status,
        to_status=to_status,
        actor=(actor or "").strip() or None,
        note=(note or "").strip() or None,
        created_at=utc_now_naive(),
    )
    db.add(event)
    db.flush()
    return event


def _enqueue_confirmation(db: Session, booking: Booking, clock: SalonClock) -> None:
    db.add(
        OutboxEvent(
            tenant_id=booking.tenant_id,
            topic=CONFIRMED_TOPIC,
            key=f"booking_{booking.id}",
            payload_json=json.dumps(
                {
                    "booking_id": booking.id,
                    "staff_id": booking.staff_id,
                    "service_id": booking.service_id,
                    "client_id": booking.client_id,
                    "start_local": clock.render(booking.start_at).isoformat(),
                    "end_local": clock.render(booking.end_at).isoformat(),
                    "timezone": clock.zone_name,
                }
            ),
        )
    )


def _ensure_interval_free(
    db: Session,
    tenant_id: int,
    staff: Staff,
    clock: SalonClock,
    start_utc: datetime,
    end_utc: datetime,
    client_id: str | None,
    exclude_booking_id: int | None = None,
    check_schedule: bool = True,
) -> None:
    # schedule and blocks are wall-clock rules; bookings are compared as
    # stored instants
    local_start, local_end = clock.local_span(start_utc, end_utc)
    day = local_start.date()

    if check_schedule:
        pattern = stores.get_working_pattern(db, tenant_id, staff)
        if not contains(working_intervals(pattern, day), local_start, local_end):
            raise ConflictError(
                CONFLICT_OUTSIDE_WORKING_HOURS,
                "Requested time is outside the staff member's working hours",
            )
        for block in stores.blocks_for_day(db, tenant_id, staff.id, day):
            block_start, block_end = block_interval(block, day)
            if overlaps(local_start, local_end, block_start, block_end):
                raise ConflictError(CONFLICT_OVERLAP, "Requested time overlaps a blocked period")

    clashes = stores.active_bookings_between(
        db, tenant_id, staff.id, start_utc, end_utc, exclude_booking_id=exclude_booking_id
    )
    if clashes:
        raise ConflictError(CONFLICT_OVERLAP, f"Requested time overlaps booking #{clashes[0].id}")

    if client_id and bool(settings.RESERVATION_CHECK_CLIENT_OVERLAP):
        clashes = stores.active_client_bookings_between(
            db,
            tenant_id,
            client_id,
            start_utc,
            end_utc,
            exclude_booking_id=exclude_booking_id,
        )
        if clashes:
            raise ConflictError(
                CONFLICT_CLIENT_OVERLAP,
                f"Client already has booking #{clashes[0].id} at this time",
            )


def reserve(
    db: Session,
    tenant: Tenant,
    staff_id: int,
    service_id: int,
    client_id: str,
    requested_start: datetime,
    status: str | None = None,
    notes: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> Booking:
    """Atomically check and insert one booking.

    requested_start is salon wall-clock when naive, any zone when aware.
    Raises ValidationError, ConflictError or ConsistencyError; on any
    failure nothing is persisted.
    """
    client_key = (client_id or "").strip()
    if not client_key:
        raise ValidationError("client_id is required")
    initial_status = _normalize_status(status or settings.RESERVATION_DEFAULT_STATUS)
    if initial_status not in ACTIVE_BOOKING_STATUSES:
        raise ValidationError("New bookings must be PENDING or CONFIRMED")

    clock = SalonClock.for_tenant(tenant)
    local_start = clock.normalize_local(requested_start)
    start_utc = clock.to_instant(local_start)
    now_local = clock.now_local(now)
    check_booking_horizon(local_start.date(), now_local.date())
    cutoff = slot_cutoff(now_local)
    if cutoff is not None and local_start < cutoff:
        raise ValidationError("Requested start is in the past")

    with staff_lock(tenant.id, staff_id):
        try:
            staff = stores.require_staff(db, tenant.id, staff_id, for_update=True)
            if not bool(staff.is_active):
                raise ConflictError(CONFLICT_STAFF_INACTIVE, "Staff member is not active")
            service = stores.require_service(db, tenant.id, service_id)
            if not stores.staff_offers_service(db, tenant.id, staff.id, service.id):
                raise ValidationError(f"Staff {staff_id} does not offer service {service_id}")

            duration = int(service.duration_min)
            end_utc = start_utc + timedelta(minutes=duration)
            _ensure_interval_free(db, tenant.id, staff, clock, start_utc, end_utc, client_key)

            booking = Booking(
                tenant_id=tenant.id,
                staff_id=staff.id,
                service_id=service.id,
                client_id=client_key,
                start_at=start_utc,
                end_at=end_utc,
                duration_min=duration,
                status=initial_status,
                price=service.price,
                notes=(notes or "").strip() or None,
            )
            db.add(booking)
            db.flush()
            _add_status_event(db, booking, None, initial_status, actor=actor, note="created")
            if initial_status == "CONFIRMED":
                _enqueue_confirmation(db, booking, clock)
            db.commit()
        except ConflictError as exc:
            db.rollback()
            logger.info(
                "booking_conflict",
                tenant_id=tenant.id,
                staff_id=staff_id,
                start_local=local_start.isoformat(),
                code=exc.code,
            )
            raise
        except BookingError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("booking_store_error", tenant_id=tenant.id, staff_id=staff_id, error=str(exc))
            raise ConsistencyError("Booking could not be stored; nothing was saved") from exc
        except BaseException:
            db.rollback()
            raise

    logger.info(
        "booking_reserved",
        tenant_id=tenant.id,
        booking_id=booking.id,
        staff_id=staff_id,
        start_local=local_start.isoformat(),
        status=initial_status,
    )
    return booking


def transition_booking_status(
    db: Session,
    tenant: Tenant,
    booking_id: int,
    new_status: str,
    actor: str | None = None,
    note: str | None = None,
) -> Booking:
    """Status hook for payment and admin flows.

    Re-activating a cancelled booking re-checks the overlap invariant under
    the staff lock; the working pattern is not re-checked.
    """
    target = _normalize_status(new_status)
    booking = get_booking(db, tenant, booking_id)

    clock = SalonClock.for_tenant(tenant)
    with staff_lock(tenant.id, booking.staff_id):
        try:
            db.refresh(booking)
            current = booking.status
            if target == current:
                return booking
            if target not in ALLOWED_STATUS_TRANSITIONS.get(current, set()):
                raise ValidationError(f"Invalid booking status transition: {current} -> {target}")

            if current not in ACTIVE_BOOKING_STATUSES and target in ACTIVE_BOOKING_STATUSES:
                staff = stores.require_staff(db, tenant.id, booking.staff_id, for_update=True)
                if not bool(staff.is_active):
                    raise ConflictError(CONFLICT_STAFF_INACTIVE, "Staff member is not active")
                _ensure_interval_free(
                    db,
                    tenant.id,
                    staff,
                    clock,
                    booking.start_at,
                    booking.end_at,
                    booking.client_id,
                    exclude_booking_id=booking.id,
                    check_schedule=False,
                )

            booking.status = target
            booking.updated_at = utc_now_naive()
            _add_status_event(db, booking, current, target, actor=actor, note=note)
            if target == "CONFIRMED":
                _enqueue_confirmation(db, booking, clock)
            db.commit()
        except BookingError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            raise ConsistencyError("Booking status could not be stored") from exc
        except BaseException:
            db.rollback()
            raise

    logger.info(
        "booking_status_changed",
        tenant_id=tenant.id,
        booking_id=booking.id,
        from_status=current,
        to_status=target,
        actor=actor,
    )
    return booking


def cancel_booking(db: Session, tenant: Tenant, booking_id: int, actor: str | None = None, note: str | None = None) -> Booking:
    return transition_booking_status(db, tenant, booking_id, "CANCELLED", actor=actor, note=note)


def list_status_events(db: Session, tenant_id: int, booking_id: int) -> list[BookingStatusEvent]:
    return (
        db.query(BookingStatusEvent)
        .filter(BookingStatusEvent.tenant_id == tenant_id, BookingStatusEvent.booking_id == booking_id)
        .order_by(BookingStatusEvent.id.asc())
        .all()
    )


# -- schedule writes serialized with reservations ---------------------------


def _check_block_permission(staff: Staff, acting_staff_id: int | None) -> None:
    """acting_staff_id comes from the auth layer; None means an admin call."""
    if acting_staff_id is None:
        return
    if int(acting_staff_id) != staff.id:
        raise PermissionDeniedError("Staff can only manage their own blocks")
    if not bool(staff.can_manage_blocks):
        raise PermissionDeniedError("Staff member is not allowed to manage blocks")


def create_block(
    db: Session,
    tenant: Tenant,
    staff_id: int,
    block: DatedBlock | RecurringBlock,
    acting_staff_id: int | None = None,
) -> Block:
    with staff_lock(tenant.id, staff_id):
        try:
            staff = stores.require_staff(db, tenant.id, staff_id, for_update=True)
            _check_block_permission(staff, acting_staff_id)
            row = stores.insert_block(db, tenant.id, staff_id, block)
            db.commit()
        except BookingError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            raise ConsistencyError("Block could not be stored") from exc
    logger.info(
        "block_created",
        tenant_id=tenant.id,
        staff_id=staff_id,
        block_id=row.id,
        kind=row.kind,
        acting_staff_id=acting_staff_id,
    )
    return row


def remove_block(
    db: Session,
    tenant: Tenant,
    staff_id: int,
    block_id: int,
    acting_staff_id: int | None = None,
) -> None:
    with staff_lock(tenant.id, staff_id):
        try:
            staff = stores.require_staff(db, tenant.id, staff_id, for_update=True)
            _check_block_permission(staff, acting_staff_id)
            if not stores.delete_block(db, tenant.id, staff_id, block_id):
                raise NotFoundError(f"Block {block_id} not found")
        except BookingError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            raise ConsistencyError("Block could not be deleted") from exc
    logger.info("block_deleted", tenant_id=tenant.id, staff_id=staff_id, block_id=block_id, acting_staff_id=acting_staff_id)


def replace_working_pattern(db: Session, tenant: Tenant, staff_id: int, pattern: WorkingPattern) -> WorkingPattern:
    with staff_lock(tenant.id, staff_id):
        try:
            return stores.set_working_pattern(db, tenant.id, staff_id, pattern)
        except BookingError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            raise ConsistencyError("Schedule could not be stored") from exc


def get_booking(db: Session, tenant: Tenant, booking_id: int) -> Booking:
    booking = stores.get_booking(db, tenant.id, booking_id)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


def list_bookings(
    db: Session,
    tenant: Tenant,
    staff_id: int | None = None,
    day: date | None = None,
    status: str | None = None,
    client_id: str | None = None,
) -> list[Booking]:
    start_utc = end_utc = None
    if day is not None:
        start_utc, end_utc = SalonClock.for_tenant(tenant).day_bounds(day)
    if status:
        status = _normalize_status(status)
    return stores.list_bookings(
        db,
        tenant.id,
        staff_id=staff_id,
        client_id=(client_id or "").strip() or None,
        status=status,
        start_utc=start_utc,
        end_utc=end_utc,
    )
