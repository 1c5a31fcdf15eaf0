"""Appointment schemas for the admission lifecycle."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"

    @property
    def is_terminal(self) -> bool:
        """Check whether no further transitions are possible."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }
)


class AppointmentAction(str, Enum):
    """Actions staff can request on an appointment."""

    CONFIRM = "confirm"
    CHECK_IN = "check_in"
    COMPLETE = "complete"
    CANCEL = "cancel"
    MARK_NO_SHOW = "mark_no_show"
    RESCHEDULE = "reschedule"
    # Second half of a reschedule; only the orchestrator issues it
    COMPLETE_RESCHEDULE = "complete_reschedule"

    @property
    def is_public(self) -> bool:
        """Check whether external callers may request this action."""
        return self is not AppointmentAction.COMPLETE_RESCHEDULE


class AppointmentSnapshot(BaseModel):
    """The status-related fields of an appointment the admission core reads."""

    model_config = {"frozen": True, "from_attributes": True}

    id: UUID
    scheduled_at: datetime
    status: AppointmentStatus
    version: int = 0
