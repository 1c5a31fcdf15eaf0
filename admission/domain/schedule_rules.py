"""Rules a reschedule target time must satisfy on the clinic's calendar."""

from datetime import datetime, timedelta

from pydantic import BaseModel

from admission.config import Settings
from admission.core.clock import ClinicClock, ensure_utc
from admission.schemas.admission import GuardReason, GuardResult

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


class ScheduleRules(BaseModel):
    """Clinic opening hours and booking horizon."""

    model_config = {"frozen": True}

    enabled: bool = True
    open_hour: int = 9
    close_hour: int = 15
    lunch_start_hour: int = 12
    lunch_end_hour: int = 13
    slot_minutes: int = 30
    max_advance_days: int = 60
    work_days: frozenset[int] = frozenset({0, 1, 2, 3, 4, 5})

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScheduleRules":
        """Build rules from application settings."""
        return cls(
            enabled=settings.schedule_rules_enabled,
            open_hour=settings.clinic_open_hour,
            close_hour=settings.clinic_close_hour,
            lunch_start_hour=settings.lunch_start_hour,
            lunch_end_hour=settings.lunch_end_hour,
            slot_minutes=settings.slot_minutes,
            max_advance_days=settings.max_advance_days,
            work_days=settings.clinic_work_days,
        )

    @property
    def work_days_label(self) -> str:
        """Short label such as ``Mon-Sat``."""
        days = sorted(self.work_days)
        if not days:
            return "none"
        if days == list(range(days[0], days[-1] + 1)):
            return f"{WEEKDAY_NAMES[days[0]]}-{WEEKDAY_NAMES[days[-1]]}"
        return ", ".join(WEEKDAY_NAMES[d] for d in days)


def _deny(rule: str, message: str, target: datetime, clock: ClinicClock) -> GuardResult:
    return GuardResult.deny(
        GuardReason.INVALID_RESCHEDULE_TARGET,
        message,
        rule=rule,
        requested_at=clock.to_clinic_time(target).isoformat(),
    )


def validate_reschedule_target(
    target: datetime,
    now: datetime,
    clock: ClinicClock,
    rules: ScheduleRules,
) -> GuardResult:
    """
    Check that a reschedule target is a bookable clinic slot.

    Only the single target is validated; whether another appointment already
    occupies it is the scheduler's concern.

    Args:
        target: Proposed new ``scheduled_at``
        now: Current instant
        clock: Clinic clock used to read the target as civil time
        rules: Clinic schedule rules

    Returns:
        Allowed, or denied with ``INVALID_RESCHEDULE_TARGET`` and the broken rule
    """
    target = ensure_utc(target)
    now = ensure_utc(now)
    if not rules.enabled:
        return GuardResult.allow()

    if target <= now:
        return _deny("future", "The new appointment time must be in the future.", target, clock)

    civil = clock.to_clinic_time(target)
    if civil.weekday not in rules.work_days:
        return _deny(
            "work_day",
            f"Appointments are only available on clinic days ({rules.work_days_label}).",
            target,
            clock,
        )

    if not rules.open_hour <= civil.hour < rules.close_hour:
        return _deny(
            "work_hours",
            f"Outside clinic hours ({rules.open_hour:02d}:00-{rules.close_hour:02d}:00).",
            target,
            clock,
        )

    if rules.lunch_start_hour <= civil.hour < rules.lunch_end_hour:
        return _deny(
            "lunch",
            f"Not available during lunch "
            f"({rules.lunch_start_hour:02d}:00-{rules.lunch_end_hour:02d}:00).",
            target,
            clock,
        )

    if civil.minute % rules.slot_minutes != 0 or civil.second != 0:
        return _deny(
            "slot",
            f"The time must fall on a {rules.slot_minutes}-minute slot.",
            target,
            clock,
        )

    if target > now + timedelta(days=rules.max_advance_days):
        return _deny(
            "max_advance",
            f"Appointments can be booked at most {rules.max_advance_days} days ahead.",
            target,
            clock,
        )

    return GuardResult.allow()
