"""
Single conversion boundary between stored instants and salon wall-clock time.

Storage holds naive UTC datetimes. Interval math (slots, blocks, working
hours, overlap checks) holds naive salon-local datetimes. Nothing else in
the package calls astimezone/replace(tzinfo=...) on booking data.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import settings
from .errors import ValidationError


def load_zone(name: str | None) -> ZoneInfo:
    zone_name = (name or settings.DEFAULT_SALON_TIMEZONE or "UTC").strip()
    try:
        return ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown time zone: {zone_name}") from exc


class SalonClock:
    def __init__(self, zone_name: str | None = None):
        self.zone = load_zone(zone_name)

    @property
    def zone_name(self) -> str:
        return self.zone.key

    @classmethod
    def for_tenant(cls, tenant) -> "SalonClock":
        return cls(getattr(tenant, "timezone", None))

    def to_local(self, instant: datetime) -> datetime:
        """Stored instant (naive UTC or aware) -> naive salon wall-clock."""
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.zone).replace(tzinfo=None)

    def to_instant(self, local: datetime) -> datetime:
        """Salon wall-clock (naive) or any aware datetime -> naive UTC for storage.

        Wall-clock times skipped by a daylight-saving jump are rejected;
        repeated ones resolve to the first occurrence.
        """
        if local.tzinfo is not None:
            return local.astimezone(timezone.utc).replace(tzinfo=None)
        aware = local.replace(tzinfo=self.zone, fold=0)
        utc_value = aware.astimezone(timezone.utc)
        if utc_value.astimezone(self.zone).replace(tzinfo=None) != local:
            raise ValidationError(
                f"{local.isoformat()} does not exist in {self.zone_name} (daylight-saving gap)"
            )
        return utc_value.replace(tzinfo=None)

    def exists(self, local: datetime) -> bool:
        try:
            self.to_instant(local)
        except ValidationError:
            return False
        return True

    def local_span(self, start_utc: datetime, end_utc: datetime) -> tuple[datetime, datetime]:
        """Wall-clock [start, end) covering a stored interval.

        On a spring-forward day the wall-clock span is longer than the
        elapsed time. On a fall-back day the wall-clock end can come before
        start + elapsed, so the span is widened to the elapsed length.
        """
        local_start = self.to_local(start_utc)
        local_end = max(self.to_local(end_utc), local_start + (end_utc - start_utc))
        return local_start, local_end

    def end_of(self, local_start: datetime, duration_min: int) -> datetime | None:
        """Wall-clock end of something lasting duration_min of real time.

        None when local_start itself is skipped by a daylight-saving jump.
        """
        if not self.exists(local_start):
            return None
        start_utc = self.to_instant(local_start)
        return self.local_span(start_utc, start_utc + timedelta(minutes=int(duration_min)))[1]

    def normalize_local(self, value: datetime) -> datetime:
        """Caller input -> naive salon wall-clock. Naive input is already local."""
        if value.tzinfo is None:
            return value
        return value.astimezone(self.zone).replace(tzinfo=None)

    def render(self, instant: datetime) -> datetime:
        """Stored instant -> aware datetime in the salon zone, for responses."""
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.zone)

    def now_local(self, now: datetime | None = None) -> datetime:
        current = now or datetime.now(timezone.utc)
        return self.to_local(current)

    def today(self, now: datetime | None = None) -> date:
        return self.now_local(now).date()

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """UTC window [start, end) covering the salon-local calendar day."""
        start_local = datetime.combine(day, time.min)
        end_local = start_local + timedelta(days=1)
        return self._boundary_instant(start_local), self._boundary_instant(end_local)

    def _boundary_instant(self, local: datetime) -> datetime:
        # midnight can fall inside a DST gap in some zones; fold=0 maps a
        # skipped wall-clock to the transition instant instead of rejecting it
        aware = local.replace(tzinfo=self.zone, fold=0)
        return aware.astimezone(timezone.utc).replace(tzinfo=None)
