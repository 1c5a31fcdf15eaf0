"""Clinic clock: the single source of "now" and of clinic civil time.

Guard evaluation never reads the host's local time. Instants are kept as
timezone-aware UTC datetimes; conversion to and from the clinic's civil time
goes through :class:`ClinicClock`, which is configured once per process with an
IANA timezone identifier.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from admission.config import settings
from admission.core.exceptions import NonexistentLocalTimeError


def _system_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(instant: datetime) -> datetime:
    """
    Normalize an aware datetime to UTC.

    Raises:
        ValueError: If the datetime is naive
    """
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError("Expected a timezone-aware datetime")
    return instant.astimezone(UTC)


class CivilInstant(BaseModel):
    """Wall-clock reading of an instant on the clinic's clock."""

    model_config = {"frozen": True}

    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int
    weekday: int
    timezone: str
    utc_offset_minutes: int

    def isoformat(self) -> str:
        """Render as ISO 8601 with the clinic's UTC offset."""
        sign = "+" if self.utc_offset_minutes >= 0 else "-"
        hours, minutes = divmod(abs(self.utc_offset_minutes), 60)
        return (
            f"{self.year:04d}-{self.month:02d}-{self.day:02d}"
            f"T{self.hour:02d}:{self.minute:02d}:{self.second:02d}"
            f"{sign}{hours:02d}:{minutes:02d}"
        )


class ClinicClock:
    """Converts between absolute instants and clinic civil time."""

    def __init__(
        self,
        timezone: str,
        now_source: Callable[[], datetime] = _system_now,
    ):
        """Initialize clock for an IANA timezone and a current-time source."""
        self.timezone_name = timezone
        self.zone = ZoneInfo(timezone)
        self._now_source = now_source

    def now(self) -> datetime:
        """Current instant as an aware UTC datetime."""
        return ensure_utc(self._now_source())

    def now_in_clinic_time(self) -> CivilInstant:
        """Current instant read on the clinic's clock."""
        return self.to_clinic_time(self.now())

    def to_clinic_time(self, instant: datetime) -> CivilInstant:
        """
        Resolve an absolute instant against the clinic timezone.

        Args:
            instant: Timezone-aware datetime

        Returns:
            Civil reading of the instant at the clinic
        """
        local = ensure_utc(instant).astimezone(self.zone)
        offset = local.utcoffset() or timedelta(0)
        return CivilInstant(
            year=local.year,
            month=local.month,
            day=local.day,
            hour=local.hour,
            minute=local.minute,
            second=local.second,
            weekday=local.weekday(),
            timezone=self.timezone_name,
            utc_offset_minutes=int(offset.total_seconds() // 60),
        )

    def from_clinic_time(
        self,
        year: int,
        month: int,
        day: int,
        hour: int = 0,
        minute: int = 0,
        second: int = 0,
    ) -> datetime:
        """
        Convert a clinic wall-clock reading to an absolute UTC instant.

        Ambiguous readings (clocks set back) resolve to the earlier instant.

        Raises:
            NonexistentLocalTimeError: If the reading falls in a DST gap
        """
        local = datetime(year, month, day, hour, minute, second, tzinfo=self.zone)
        instant = local.astimezone(UTC)
        # zoneinfo silently shifts gap times; a round trip exposes them
        if instant.astimezone(self.zone).replace(tzinfo=None) != local.replace(tzinfo=None):
            raise NonexistentLocalTimeError(
                f"{local.replace(tzinfo=None).isoformat()} does not exist in {self.timezone_name}"
            )
        return instant

    def localize(self, value: datetime) -> datetime:
        """Interpret naive datetimes as clinic-local time; normalize aware ones to UTC."""
        if value.tzinfo is None or value.utcoffset() is None:
            return self.from_clinic_time(
                value.year,
                value.month,
                value.day,
                value.hour,
                value.minute,
                value.second,
            )
        return ensure_utc(value)

    def format_clinic_time(self, instant: datetime) -> str:
        """Format an instant as ``HH:MM`` clinic time."""
        civil = self.to_clinic_time(instant)
        return f"{civil.hour:02d}:{civil.minute:02d}"


@lru_cache
def get_clinic_clock() -> ClinicClock:
    """Get the process-wide clinic clock."""
    return ClinicClock(settings.clinic_timezone)
