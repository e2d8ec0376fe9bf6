from datetime import date, datetime, time

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationError
from .models import (
    ACTIVE_BOOKING_STATUSES,
    Block,
    Booking,
    Service,
    Staff,
    StaffService,
    Tenant,
    WorkingHours,
)
from .patterns import (
    DatedBlock,
    LunchBreak,
    RecurringBlock,
    WorkingPattern,
    WorkingRange,
    make_lunch,
    weekday_of,
)
from .timezones import load_zone


# -- tenants -----------------------------------------------------------------


def create_tenant(db: Session, slug: str, name: str, timezone_name: str | None = None) -> Tenant:
    normalized_slug = (slug or "").strip().lower()
    if not normalized_slug:
        raise ValidationError("Tenant slug is required")
    zone = load_zone(timezone_name)
    existing = get_tenant_by_slug(db, normalized_slug)
    if existing is not None:
        raise ValidationError(f"Tenant {normalized_slug!r} already exists")
    tenant = Tenant(slug=normalized_slug, name=(name or "").strip() or normalized_slug, timezone=zone.key)
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def get_tenant_by_slug(db: Session, slug: str) -> Tenant | None:
    return db.execute(
        select(Tenant).where(Tenant.slug == (slug or "").strip().lower())
    ).scalar_one_or_none()


# -- staff & service catalog -------------------------------------------------


def create_staff(
    db: Session,
    tenant_id: int,
    name: str,
    slot_interval_min: int | None = None,
    lunch_start: time | None = None,
    lunch_end: time | None = None,
    can_manage_blocks: bool = False,
) -> Staff:
    normalized_name = (name or "").strip()
    if not normalized_name:
        raise ValidationError("Staff name is required")
    if slot_interval_min is not None and int(slot_interval_min) < 1:
        raise ValidationError("slot_interval_min must be >= 1")
    lunch = make_lunch(lunch_start, lunch_end)
    staff = Staff(
        tenant_id=tenant_id,
        name=normalized_name,
        is_active=True,
        slot_interval_min=slot_interval_min,
        lunch_start=lunch.start if lunch else None,
        lunch_end=lunch.end if lunch else None,
        can_manage_blocks=bool(can_manage_blocks),
    )
    db.add(staff)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError(f"Staff {normalized_name!r} already exists") from exc
    db.refresh(staff)
    return staff


def get_staff(db: Session, tenant_id: int, staff_id: int, for_update: bool = False) -> Staff | None:
    stmt = select(Staff).where(Staff.id == staff_id, Staff.tenant_id == tenant_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def require_staff(db: Session, tenant_id: int, staff_id: int, for_update: bool = False) -> Staff:
    staff = get_staff(db, tenant_id, staff_id, for_update=for_update)
    if staff is None:
        raise NotFoundError(f"Staff {staff_id} not found")
    return staff


def update_staff(
    db: Session,
    tenant_id: int,
    staff_id: int,
    *,
    is_active: bool | None = None,
    slot_interval_min: int | None = None,
    clear_slot_interval: bool = False,
    lunch_start: time | None = None,
    lunch_end: time | None = None,
    clear_lunch: bool = False,
    can_manage_blocks: bool | None = None,
) -> Staff:
    staff = require_staff(db, tenant_id, staff_id)
    if is_active is not None:
        staff.is_active = bool(is_active)
    if can_manage_blocks is not None:
        staff.can_manage_blocks = bool(can_manage_blocks)
    if clear_slot_interval:
        staff.slot_interval_min = None
    elif slot_interval_min is not None:
        if int(slot_interval_min) < 1:
            raise ValidationError("slot_interval_min must be >= 1")
        staff.slot_interval_min = int(slot_interval_min)
    if clear_lunch:
        staff.lunch_start = None
        staff.lunch_end = None
    elif lunch_start is not None or lunch_end is not None:
        lunch = make_lunch(lunch_start, lunch_end)
        staff.lunch_start, staff.lunch_end = lunch.start, lunch.end
    db.commit()
    db.refresh(staff)
    return staff


def set_staff_active(db: Session, tenant_id: int, staff_id: int, is_active: bool) -> Staff:
    return update_staff(db, tenant_id, staff_id, is_active=is_active)


def create_service(db: Session, tenant_id: int, name: str, duration_min: int, price: float = 0) -> Service:
    normalized_name = (name or "").strip()
    if not normalized_name:
        raise ValidationError("Service name is required")
    if int(duration_min) <= 0:
        raise ValidationError("duration_min must be > 0")
    service = Service(
        tenant_id=tenant_id,
        name=normalized_name,
        duration_min=int(duration_min),
        price=price,
        is_active=True,
    )
    db.add(service)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError(f"Service {normalized_name!r} already exists") from exc
    db.refresh(service)
    return service


def get_service(db: Session, tenant_id: int, service_id: int) -> Service | None:
    return db.execute(
        select(Service).where(Service.id == service_id, Service.tenant_id == tenant_id)
    ).scalar_one_or_none()


def require_service(db: Session, tenant_id: int, service_id: int) -> Service:
    service = get_service(db, tenant_id, service_id)
    if service is None or not bool(service.is_active):
        raise NotFoundError(f"Service {service_id} not found")
    return service


def assign_service(db: Session, tenant_id: int, staff_id: int, service_id: int) -> StaffService:
    require_staff(db, tenant_id, staff_id)
    require_service(db, tenant_id, service_id)
    row = db.execute(
        select(StaffService).where(
            StaffService.staff_id == staff_id,
            StaffService.service_id == service_id,
        )
    ).scalar_one_or_none()
    if row is None:
        row = StaffService(tenant_id=tenant_id, staff_id=staff_id, service_id=service_id)
        db.add(row)
    row.is_active = True
    db.commit()
    db.refresh(row)
    return row


def staff_offers_service(db: Session, tenant_id: int, staff_id: int, service_id: int) -> bool:
    """Staff without any assignment row offer every service of the salon."""
    rows = (
        db.execute(
            select(StaffService.service_id).where(
                StaffService.tenant_id == tenant_id,
                StaffService.staff_id == staff_id,
                StaffService.is_active.is_(True),
            )
        )
        .scalars()
        .all()
    )
    if not rows:
        return True
    return service_id in set(rows)


def staff_service_durations(db: Session, tenant_id: int, staff_id: int) -> list[int]:
    return [
        int(d)
        for d in db.execute(
            select(Service.duration_min)
            .join(StaffService, StaffService.service_id == Service.id)
            .where(
                StaffService.tenant_id == tenant_id,
                StaffService.staff_id == staff_id,
                StaffService.is_active.is_(True),
                Service.is_active.is_(True),
            )
        )
        .scalars()
        .all()
    ]


# -- schedule template store -------------------------------------------------


def get_working_pattern(db: Session, tenant_id: int, staff: Staff) -> WorkingPattern:
    rows = (
        db.execute(
            select(WorkingHours)
            .where(WorkingHours.tenant_id == tenant_id, WorkingHours.staff_id == staff.id)
            .order_by(WorkingHours.weekday.asc(), WorkingHours.start_time.asc())
        )
        .scalars()
        .all()
    )
    lunch = None
    if staff.lunch_start is not None and staff.lunch_end is not None and staff.lunch_start < staff.lunch_end:
        lunch = LunchBreak(staff.lunch_start, staff.lunch_end)
    return WorkingPattern(
        ranges=tuple(WorkingRange(int(r.weekday), r.start_time, r.end_time) for r in rows),
        lunch=lunch,
    )


def set_working_pattern(db: Session, tenant_id: int, staff_id: int, pattern: WorkingPattern) -> WorkingPattern:
    """Replace the staff member's weekly pattern (ranges and lunch) in one commit."""
    staff = require_staff(db, tenant_id, staff_id, for_update=True)
    db.execute(
        delete(WorkingHours).where(
            WorkingHours.tenant_id == tenant_id,
            WorkingHours.staff_id == staff.id,
        )
    )
    for item in pattern.ranges:
        db.add(
            WorkingHours(
                tenant_id=tenant_id,
                staff_id=staff.id,
                weekday=item.weekday,
                start_time=item.start,
                end_time=item.end,
            )
        )
    staff.lunch_start = pattern.lunch.start if pattern.lunch else None
    staff.lunch_end = pattern.lunch.end if pattern.lunch else None
    db.commit()
    return get_working_pattern(db, tenant_id, staff)


# -- block store -------------------------------------------------------------


def to_block_value(row: Block) -> DatedBlock | RecurringBlock:
    if row.kind == "recurring":
        return RecurringBlock(
            weekday=int(row.weekday),
            start=row.start_time,
            end=row.end_time,
            reason=row.reason,
            effective_from=row.effective_from,
        )
    return DatedBlock(block_date=row.block_date, start=row.start_time, end=row.end_time, reason=row.reason)


def insert_block(db: Session, tenant_id: int, staff_id: int, block: DatedBlock | RecurringBlock) -> Block:
    """Stage a block row; the caller commits."""
    if isinstance(block, RecurringBlock):
        row = Block(
            tenant_id=tenant_id,
            staff_id=staff_id,
            kind="recurring",
            weekday=block.weekday,
            effective_from=block.effective_from,
            start_time=block.start,
            end_time=block.end,
            reason=(block.reason or "").strip() or None,
        )
    else:
        row = Block(
            tenant_id=tenant_id,
            staff_id=staff_id,
            kind="dated",
            block_date=block.block_date,
            start_time=block.start,
            end_time=block.end,
            reason=(block.reason or "").strip() or None,
        )
    db.add(row)
    db.flush()
    return row


def list_blocks(db: Session, tenant_id: int, staff_id: int) -> list[Block]:
    return (
        db.execute(
            select(Block)
            .where(Block.tenant_id == tenant_id, Block.staff_id == staff_id)
            .order_by(Block.kind.asc(), Block.block_date.asc(), Block.weekday.asc(), Block.start_time.asc())
        )
        .scalars()
        .all()
    )


def delete_block(db: Session, tenant_id: int, staff_id: int, block_id: int) -> bool:
    row = db.execute(
        select(Block).where(
            Block.id == block_id,
            Block.tenant_id == tenant_id,
            Block.staff_id == staff_id,
        )
    ).scalar_one_or_none()
    if row is None:
        return False
    db.delete(row)
    db.commit()
    return True


def blocks_for_day(db: Session, tenant_id: int, staff_id: int, day: date) -> list[DatedBlock | RecurringBlock]:
    rows = (
        db.execute(
            select(Block).where(
                Block.tenant_id == tenant_id,
                Block.staff_id == staff_id,
                (
                    ((Block.kind == "dated") & (Block.block_date == day))
                    | ((Block.kind == "recurring") & (Block.weekday == weekday_of(day)))
                ),
            )
        )
        .scalars()
        .all()
    )
    values = [to_block_value(r) for r in rows]
    return [v for v in values if v.applies_to(day)]


# -- booking store -----------------------------------------------------------


def active_bookings_between(
    db: Session,
    tenant_id: int,
    staff_id: int,
    start_utc: datetime,
    end_utc: datetime,
    exclude_booking_id: int | None = None,
) -> list[Booking]:
    stmt = (
        select(Booking)
        .where(
            Booking.tenant_id == tenant_id,
            Booking.staff_id == staff_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            Booking.start_at < end_utc,
            Booking.end_at > start_utc,
        )
        .order_by(Booking.start_at.asc())
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    return db.execute(stmt).scalars().all()


def active_client_bookings_between(
    db: Session,
    tenant_id: int,
    client_id: str,
    start_utc: datetime,
    end_utc: datetime,
    exclude_booking_id: int | None = None,
) -> list[Booking]:
    stmt = select(Booking).where(
        Booking.tenant_id == tenant_id,
        Booking.client_id == client_id,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        Booking.start_at < end_utc,
        Booking.end_at > start_utc,
    )
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    return db.execute(stmt).scalars().all()


def get_booking(db: Session, tenant_id: int, booking_id: int) -> Booking | None:
    return db.execute(
        select(Booking).where(Booking.id == booking_id, Booking.tenant_id == tenant_id)
    ).scalar_one_or_none()


def list_bookings(
    db: Session,
    tenant_id: int,
    staff_id: int | None = None,
    client_id: str | None = None,
    status: str | None = None,
    start_utc: datetime | None = None,
    end_utc: datetime | None = None,
    limit: int = 200,
) -> list[Booking]:
    stmt = select(Booking).where(Booking.tenant_id == tenant_id)
    if staff_id is not None:
        stmt = stmt.where(Booking.staff_id == staff_id)
    if client_id:
        stmt = stmt.where(Booking.client_id == client_id)
    if status:
        stmt = stmt.where(Booking.status == status.strip().upper())
    if start_utc is not None:
        stmt = stmt.where(Booking.end_at > start_utc)
    if end_utc is not None:
        stmt = stmt.where(Booking.start_at < end_utc)
    stmt = stmt.order_by(Booking.start_at.asc(), Booking.id.asc()).limit(max(1, min(int(limit), 1000)))
    return db.execute(stmt).scalars().all()
