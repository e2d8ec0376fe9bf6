from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from . import stores
from .availability import get_available_slots, list_available_days
from .db import get_db
from .errors import (
    AvailabilityUnavailable,
    BookingError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .models import Block, Booking, Service, Staff, Tenant
from .patterns import (
    DatedBlock,
    RecurringBlock,
    WorkingPattern,
    WorkingRange,
    format_weekdays,
    make_lunch,
)
from .reservations import (
    cancel_booking,
    create_block,
    get_booking,
    list_bookings,
    list_status_events,
    remove_block,
    replace_working_pattern,
    reserve,
    transition_booking_status,
)
from .schemas import (
    BlockCreate,
    BlockOut,
    BookingCreate,
    BookingOut,
    BookingStatusEventOut,
    BookingStatusUpdate,
    CalendarDayOut,
    LegacyScheduleIn,
    ScheduleIn,
    ScheduleOut,
    ServiceCreate,
    ServiceOut,
    SlotsOut,
    StaffCreate,
    StaffOut,
    StaffServiceOut,
    StaffUpdate,
    TenantCreate,
    TenantOut,
    WorkingRangeIn,
)
from .timezones import SalonClock

router = APIRouter(prefix="/api")


def _http_error(exc: BookingError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "code": exc.code, "retryable": exc.retryable},
        )
    headers = {"Retry-After": "1"} if isinstance(exc, AvailabilityUnavailable) else None
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"message": str(exc), "retryable": exc.retryable},
        headers=headers,
    )


def get_current_tenant(
    db: Session = Depends(get_db),
    x_tenant_slug: Optional[str] = Header(default=None),
) -> Tenant:
    slug = (x_tenant_slug or "").strip().lower()
    if not slug:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Tenant-Slug header is required")
    tenant = stores.get_tenant_by_slug(db, slug)
    if tenant is None or not bool(tenant.is_active):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Tenant {slug!r} not found")
    return tenant


def _to_tenant_out(tenant: Tenant) -> TenantOut:
    return TenantOut(
        id=tenant.id,
        slug=tenant.slug,
        name=tenant.name,
        timezone=SalonClock.for_tenant(tenant).zone_name,
    )


def _to_staff_out(staff: Staff) -> StaffOut:
    return StaffOut(
        id=staff.id,
        name=staff.name,
        is_active=bool(staff.is_active),
        slot_interval_min=staff.slot_interval_min,
        lunch_start=staff.lunch_start,
        lunch_end=staff.lunch_end,
        can_manage_blocks=bool(staff.can_manage_blocks),
    )


def _to_service_out(service: Service) -> ServiceOut:
    return ServiceOut(
        id=service.id,
        name=service.name,
        duration_min=int(service.duration_min),
        price=float(service.price or 0),
        is_active=bool(service.is_active),
    )


def _to_schedule_out(staff_id: int, pattern: WorkingPattern) -> ScheduleOut:
    return ScheduleOut(
        staff_id=staff_id,
        ranges=[WorkingRangeIn(weekday=r.weekday, start=r.start, end=r.end) for r in pattern.ranges],
        lunch_start=pattern.lunch.start if pattern.lunch else None,
        lunch_end=pattern.lunch.end if pattern.lunch else None,
        work_days=format_weekdays(pattern.weekdays),
    )


def _to_block_out(row: Block) -> BlockOut:
    return BlockOut(
        id=row.id,
        staff_id=row.staff_id,
        kind=row.kind,
        block_date=row.block_date,
        weekday=row.weekday,
        effective_from=row.effective_from,
        start=row.start_time,
        end=row.end_time,
        reason=row.reason,
    )


def _to_booking_out(clock: SalonClock, booking: Booking) -> BookingOut:
    return BookingOut(
        id=booking.id,
        staff_id=booking.staff_id,
        service_id=booking.service_id,
        client_id=booking.client_id,
        start=clock.render(booking.start_at),
        end=clock.render(booking.end_at),
        timezone=clock.zone_name,
        duration_min=int(booking.duration_min),
        status=booking.status,
        price=float(booking.price or 0),
        notes=booking.notes,
        created_at=booking.created_at,
    )


# -- tenants -----------------------------------------------------------------


@router.post("/tenants", response_model=TenantOut, status_code=status.HTTP_201_CREATED)
def create_tenant_endpoint(payload: TenantCreate, db: Session = Depends(get_db)):
    try:
        tenant = stores.create_tenant(db, slug=payload.slug, name=payload.name, timezone_name=payload.timezone)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_tenant_out(tenant)


@router.get("/tenant", response_model=TenantOut)
def get_tenant_endpoint(tenant: Tenant = Depends(get_current_tenant)):
    return _to_tenant_out(tenant)


# -- staff & services --------------------------------------------------------


@router.post("/staff", response_model=StaffOut, status_code=status.HTTP_201_CREATED)
def create_staff_endpoint(
    payload: StaffCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        staff = stores.create_staff(
            db,
            tenant.id,
            name=payload.name,
            slot_interval_min=payload.slot_interval_min,
            lunch_start=payload.lunch_start,
            lunch_end=payload.lunch_end,
            can_manage_blocks=payload.can_manage_blocks,
        )
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_staff_out(staff)


@router.get("/staff/{staff_id}", response_model=StaffOut)
def get_staff_endpoint(
    staff_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    staff = stores.get_staff(db, tenant.id, staff_id)
    if not staff:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff not found")
    return _to_staff_out(staff)


@router.patch("/staff/{staff_id}", response_model=StaffOut)
def update_staff_endpoint(
    staff_id: int,
    payload: StaffUpdate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        staff = stores.update_staff(
            db,
            tenant.id,
            staff_id,
            is_active=payload.is_active,
            slot_interval_min=payload.slot_interval_min,
            clear_slot_interval=payload.clear_slot_interval,
            lunch_start=payload.lunch_start,
            lunch_end=payload.lunch_end,
            clear_lunch=payload.clear_lunch,
            can_manage_blocks=payload.can_manage_blocks,
        )
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_staff_out(staff)


@router.post("/services", response_model=ServiceOut, status_code=status.HTTP_201_CREATED)
def create_service_endpoint(
    payload: ServiceCreate,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        service = stores.create_service(
            db,
            tenant.id,
            name=payload.name,
            duration_min=payload.duration_min,
            price=payload.price,
        )
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_service_out(service)


@router.post("/staff/{staff_id}/services/{service_id}", response_model=StaffServiceOut)
def assign_service_endpoint(
    staff_id: int,
    service_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        row = stores.assign_service(db, tenant.id, staff_id, service_id)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return StaffServiceOut(staff_id=row.staff_id, service_id=row.service_id, is_active=bool(row.is_active))


# -- schedule & blocks -------------------------------------------------------


@router.get("/staff/{staff_id}/schedule", response_model=ScheduleOut)
def get_schedule_endpoint(
    staff_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    staff = stores.get_staff(db, tenant.id, staff_id)
    if not staff:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff not found")
    return _to_schedule_out(staff.id, stores.get_working_pattern(db, tenant.id, staff))


@router.put("/staff/{staff_id}/schedule", response_model=ScheduleOut)
def put_schedule_endpoint(
    staff_id: int,
    payload: ScheduleIn,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        pattern = WorkingPattern(
            ranges=tuple(WorkingRange(r.weekday, r.start, r.end) for r in payload.ranges),
            lunch=make_lunch(payload.lunch_start, payload.lunch_end),
        )
        saved = replace_working_pattern(db, tenant, staff_id, pattern)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_schedule_out(staff_id, saved)


@router.put("/staff/{staff_id}/schedule/legacy", response_model=ScheduleOut)
def put_legacy_schedule_endpoint(
    staff_id: int,
    payload: LegacyScheduleIn,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        pattern = WorkingPattern.from_legacy(
            payload.work_days,
            payload.work_start,
            payload.work_end,
            payload.lunch_start,
            payload.lunch_end,
        )
        saved = replace_working_pattern(db, tenant, staff_id, pattern)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_schedule_out(staff_id, saved)


@router.get("/staff/{staff_id}/blocks", response_model=List[BlockOut])
def list_blocks_endpoint(
    staff_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    if not stores.get_staff(db, tenant.id, staff_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff not found")
    return [_to_block_out(row) for row in stores.list_blocks(db, tenant.id, staff_id)]


@router.post("/staff/{staff_id}/blocks", response_model=BlockOut, status_code=status.HTTP_201_CREATED)
def create_block_endpoint(
    staff_id: int,
    payload: BlockCreate,
    x_acting_staff_id: Optional[int] = Header(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    if payload.kind == "recurring":
        if payload.weekday is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="weekday is required for recurring blocks")
        block = RecurringBlock(
            weekday=payload.weekday,
            start=payload.start,
            end=payload.end,
            reason=payload.reason,
            effective_from=payload.effective_from,
        )
    else:
        if payload.block_date is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="block_date is required for dated blocks")
        block = DatedBlock(block_date=payload.block_date, start=payload.start, end=payload.end, reason=payload.reason)

    try:
        row = create_block(db, tenant, staff_id, block, acting_staff_id=x_acting_staff_id)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_block_out(row)


@router.delete("/staff/{staff_id}/blocks/{block_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_block_endpoint(
    staff_id: int,
    block_id: int,
    x_acting_staff_id: Optional[int] = Header(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        remove_block(db, tenant, staff_id, block_id, acting_staff_id=x_acting_staff_id)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return None


# -- availability ------------------------------------------------------------


@router.get("/staff/{staff_id}/slots", response_model=SlotsOut)
def get_slots_endpoint(
    staff_id: int,
    day: date = Query(alias="date"),
    service_id: Optional[int] = Query(default=None),
    duration_min: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        result = get_available_slots(db, tenant, staff_id, day, service_id=service_id, duration_min=duration_min)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return SlotsOut(
        staff_id=result.staff_id,
        date=result.day,
        timezone=result.timezone,
        duration_min=result.duration_min,
        granularity_min=result.granularity_min,
        slots=[slot.strftime("%H:%M") for slot in result.slots],
        reason=result.reason,
    )


@router.get("/staff/{staff_id}/calendar", response_model=List[CalendarDayOut])
def get_calendar_endpoint(
    staff_id: int,
    start: date,
    end: date,
    service_id: Optional[int] = Query(default=None),
    duration_min: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        days = list_available_days(
            db,
            tenant,
            staff_id,
            start,
            end,
            service_id=service_id,
            duration_min=duration_min,
        )
    except BookingError as exc:
        raise _http_error(exc) from exc
    return [CalendarDayOut(**row) for row in days]


# -- bookings ----------------------------------------------------------------


@router.post("/bookings", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
def create_booking_endpoint(
    payload: BookingCreate,
    x_actor: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        booking = reserve(
            db,
            tenant,
            staff_id=payload.staff_id,
            service_id=payload.service_id,
            client_id=payload.client_id,
            requested_start=payload.start,
            status=payload.status,
            notes=payload.notes,
            actor=x_actor,
        )
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_booking_out(SalonClock.for_tenant(tenant), booking)


@router.get("/bookings", response_model=List[BookingOut])
def list_bookings_endpoint(
    staff_id: Optional[int] = Query(default=None),
    day: Optional[date] = Query(default=None, alias="date"),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    client_id: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    clock = SalonClock.for_tenant(tenant)
    try:
        rows = list_bookings(db, tenant, staff_id=staff_id, day=day, status=status_filter, client_id=client_id)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return [_to_booking_out(clock, row) for row in rows]


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking_endpoint(
    booking_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    booking = stores.get_booking(db, tenant.id, booking_id)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return _to_booking_out(SalonClock.for_tenant(tenant), booking)


@router.patch("/bookings/{booking_id}/status", response_model=BookingOut)
def update_booking_status_endpoint(
    booking_id: int,
    payload: BookingStatusUpdate,
    x_actor: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        booking = transition_booking_status(db, tenant, booking_id, payload.status, actor=x_actor, note=payload.note)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_booking_out(SalonClock.for_tenant(tenant), booking)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking_endpoint(
    booking_id: int,
    x_actor: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        booking = cancel_booking(db, tenant, booking_id, actor=x_actor)
    except BookingError as exc:
        raise _http_error(exc) from exc
    return _to_booking_out(SalonClock.for_tenant(tenant), booking)


@router.get("/bookings/{booking_id}/events", response_model=List[BookingStatusEventOut])
def list_booking_events_endpoint(
    booking_id: int,
    db: Session = Depends(get_db),
    tenant: Tenant = Depends(get_current_tenant),
):
    try:
        get_booking(db, tenant, booking_id)
    except BookingError as exc:
        raise _http_error(exc) from exc
    rows = list_status_events(db, tenant.id, booking_id)
    return [
        BookingStatusEventOut(
            id=row.id,
            booking_id=row.booking_id,
            from_status=row.from_status,
            to_status=row.to_status,
            actor=row.actor,
            note=row.note,
            created_at=row.created_at,
        )
        for row in rows
    ]
