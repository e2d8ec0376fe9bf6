from datetime import date, datetime, time

from pydantic import BaseModel, Field, field_validator

from .models import BLOCK_KINDS


class TenantCreate(BaseModel):
    slug: str = Field(min_length=2, max_length=80)
    name: str = Field(min_length=2, max_length=120)
    timezone: str | None = Field(default=None, max_length=64)


class TenantOut(BaseModel):
    id: int
    slug: str
    name: str
    timezone: str


class StaffCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    slot_interval_min: int | None = Field(default=None, ge=1, le=480)
    lunch_start: time | None = None
    lunch_end: time | None = None
    can_manage_blocks: bool = False


class StaffUpdate(BaseModel):
    is_active: bool | None = None
    slot_interval_min: int | None = Field(default=None, ge=1, le=480)
    clear_slot_interval: bool = False
    lunch_start: time | None = None
    lunch_end: time | None = None
    clear_lunch: bool = False
    can_manage_blocks: bool | None = None


class StaffOut(BaseModel):
    id: int
    name: str
    is_active: bool
    slot_interval_min: int | None = None
    lunch_start: time | None = None
    lunch_end: time | None = None
    can_manage_blocks: bool = False


class ServiceCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    duration_min: int = Field(ge=1, le=720)
    price: float = Field(default=0, ge=0)


class ServiceOut(BaseModel):
    id: int
    name: str
    duration_min: int
    price: float
    is_active: bool


class StaffServiceOut(BaseModel):
    staff_id: int
    service_id: int
    is_active: bool


class WorkingRangeIn(BaseModel):
    weekday: int = Field(ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start: time
    end: time


class ScheduleIn(BaseModel):
    ranges: list[WorkingRangeIn] = Field(default_factory=list)
    lunch_start: time | None = None
    lunch_end: time | None = None


class LegacyScheduleIn(BaseModel):
    work_days: str = Field(description="Comma-joined weekdays, 0 = Sunday", examples=["1,2,3,4,5"])
    work_start: str = Field(examples=["09:00"])
    work_end: str = Field(examples=["18:00"])
    lunch_start: str | None = None
    lunch_end: str | None = None


class ScheduleOut(BaseModel):
    staff_id: int
    ranges: list[WorkingRangeIn]
    lunch_start: time | None = None
    lunch_end: time | None = None
    work_days: str


class BlockCreate(BaseModel):
    kind: str = Field(default="dated")
    block_date: date | None = None
    weekday: int | None = Field(default=None, ge=0, le=6)
    effective_from: date | None = None
    start: time
    end: time
    reason: str | None = Field(default=None, max_length=300)

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in BLOCK_KINDS:
            raise ValueError("kind must be 'dated' or 'recurring'")
        return normalized


class BlockOut(BaseModel):
    id: int
    staff_id: int
    kind: str
    block_date: date | None = None
    weekday: int | None = None
    effective_from: date | None = None
    start: time
    end: time
    reason: str | None = None


class SlotsOut(BaseModel):
    staff_id: int
    date: date
    timezone: str
    duration_min: int
    granularity_min: int
    slots: list[str]
    reason: str | None = None


class CalendarDayOut(BaseModel):
    date: date
    has_slots: bool
    open_slots_count: int
    reason: str | None = None


class BookingCreate(BaseModel):
    staff_id: int
    service_id: int
    client_id: str = Field(min_length=1, max_length=80)
    start: datetime = Field(description="Salon wall-clock when naive, converted when an offset is given")
    status: str | None = None
    notes: str | None = Field(default=None, max_length=500)


class BookingStatusUpdate(BaseModel):
    status: str
    note: str | None = Field(default=None, max_length=300)


class BookingOut(BaseModel):
    id: int
    staff_id: int
    service_id: int
    client_id: str
    start: datetime
    end: datetime
    timezone: str
    duration_min: int
    status: str
    price: float
    notes: str | None = None
    created_at: datetime


class BookingStatusEventOut(BaseModel):
    id: int
    booking_id: int
    from_status: str | None = None
    to_status: str
    actor: str | None = None
    note: str | None = None
    created_at: datetime
