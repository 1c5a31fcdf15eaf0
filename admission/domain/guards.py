"""Transition guards: may an action be performed on an appointment right now.

Every guard is a pure function of the appointment snapshot and, where time
matters, an explicit ``now``. Guards never raise; they return a
:class:`GuardResult` whose denial reason and details are shown to staff.
"""

import math
from datetime import datetime, timedelta

from pydantic import BaseModel

from admission.config import Settings
from admission.core.clock import ClinicClock, ensure_utc
from admission.schemas.admission import GuardReason, GuardResult
from admission.schemas.appointments import (
    TERMINAL_STATUSES,
    AppointmentSnapshot,
    AppointmentStatus,
)

CHECK_IN_SOURCES = frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED})
NO_SHOW_SOURCES = CHECK_IN_SOURCES
RESCHEDULE_BLOCKERS = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})


class AdmissionPolicy(BaseModel):
    """Clinic-wide admission time windows, in minutes relative to ``scheduled_at``."""

    model_config = {"frozen": True}

    check_in_opens_before_minutes: int = 30
    check_in_closes_after_minutes: int = 15
    no_show_after_minutes: int = 15

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdmissionPolicy":
        """Build the policy from application settings."""
        return cls(
            check_in_opens_before_minutes=settings.check_in_opens_before_minutes,
            check_in_closes_after_minutes=settings.check_in_closes_after_minutes,
            no_show_after_minutes=settings.no_show_after_minutes,
        )

    def check_in_window(self, scheduled_at: datetime) -> tuple[datetime, datetime]:
        """Inclusive bounds of the check-in window."""
        scheduled_at = ensure_utc(scheduled_at)
        return (
            scheduled_at - timedelta(minutes=self.check_in_opens_before_minutes),
            scheduled_at + timedelta(minutes=self.check_in_closes_after_minutes),
        )

    def no_show_threshold(self, scheduled_at: datetime) -> datetime:
        """First instant at which a no-show may be recorded."""
        return ensure_utc(scheduled_at) + timedelta(minutes=self.no_show_after_minutes)


def minutes_between(earlier: datetime, later: datetime) -> int:
    """Whole minutes from ``earlier`` to ``later``, rounded up."""
    return math.ceil((later - earlier).total_seconds() / 60)


def _plural(count: int) -> str:
    return "minute" if count == 1 else "minutes"


def status_denial(status: AppointmentStatus, action_label: str) -> GuardResult:
    """Deny an action because of the appointment's status alone."""
    if status in TERMINAL_STATUSES:
        return GuardResult.deny(
            GuardReason.ALREADY_TERMINAL,
            f"Cannot {action_label}: appointment is already {status.value}.",
            current_status=status.value,
        )
    return GuardResult.deny(
        GuardReason.INVALID_STATUS,
        f"Cannot {action_label} an appointment in status {status.value}.",
        current_status=status.value,
    )


def can_check_in(
    appointment: AppointmentSnapshot,
    now: datetime,
    policy: AdmissionPolicy,
    clock: ClinicClock,
) -> GuardResult:
    """Allow check-in inside ``[scheduled_at - opens, scheduled_at + closes]``."""
    if appointment.status not in CHECK_IN_SOURCES:
        return status_denial(appointment.status, "check in")

    now = ensure_utc(now)
    opens_at, closes_at = policy.check_in_window(appointment.scheduled_at)
    window = {
        "window_opens_at": clock.to_clinic_time(opens_at).isoformat(),
        "window_closes_at": clock.to_clinic_time(closes_at).isoformat(),
    }

    if now < opens_at:
        remaining = minutes_between(now, opens_at)
        return GuardResult.deny(
            GuardReason.TOO_EARLY,
            f"Check-in opens in {remaining} {_plural(remaining)} "
            f"(at {clock.format_clinic_time(opens_at)}).",
            minutes_remaining=remaining,
            **window,
        )

    if now > closes_at:
        elapsed = minutes_between(closes_at, now)
        return GuardResult.deny(
            GuardReason.EXPIRED,
            f"Check-in window closed {elapsed} {_plural(elapsed)} ago. "
            "Mark as no-show or reschedule.",
            minutes_elapsed=elapsed,
            **window,
        )

    return GuardResult.allow(**window)


def can_complete(appointment: AppointmentSnapshot) -> GuardResult:
    """Allow completion only for a checked-in appointment, at any time."""
    if appointment.status == AppointmentStatus.CHECKED_IN:
        return GuardResult.allow()
    if appointment.status in TERMINAL_STATUSES:
        return status_denial(appointment.status, "complete")
    return GuardResult.deny(
        GuardReason.NOT_YET_CHECKED_IN,
        "The patient must be checked in before the appointment can be completed.",
        current_status=appointment.status.value,
    )


def can_cancel(appointment: AppointmentSnapshot) -> GuardResult:
    """Allow cancellation of any non-terminal appointment, including checked-in ones."""
    if appointment.status in TERMINAL_STATUSES:
        return status_denial(appointment.status, "cancel")
    return GuardResult.allow()


def can_mark_no_show(
    appointment: AppointmentSnapshot,
    now: datetime,
    policy: AdmissionPolicy,
    clock: ClinicClock,
) -> GuardResult:
    """Allow a no-show once the check-in window has closed without a check-in."""
    if appointment.status not in NO_SHOW_SOURCES:
        return status_denial(appointment.status, "mark as no-show")

    now = ensure_utc(now)
    threshold = policy.no_show_threshold(appointment.scheduled_at)
    available_at = clock.to_clinic_time(threshold).isoformat()
    if now < threshold:
        remaining = minutes_between(now, threshold)
        return GuardResult.deny(
            GuardReason.TOO_EARLY,
            f"Wait {remaining} more {_plural(remaining)} before marking as no-show.",
            minutes_remaining=remaining,
            available_at=available_at,
        )
    return GuardResult.allow(available_at=available_at)


def can_reschedule(appointment: AppointmentSnapshot) -> GuardResult:
    """Allow rescheduling unless the appointment was completed or cancelled."""
    if appointment.status in RESCHEDULE_BLOCKERS:
        return status_denial(appointment.status, "reschedule")
    return GuardResult.allow()


def can_confirm(appointment: AppointmentSnapshot) -> GuardResult:
    """Allow confirmation of a scheduled appointment."""
    if appointment.status == AppointmentStatus.SCHEDULED:
        return GuardResult.allow()
    return status_denial(appointment.status, "confirm")
