"""Schemas for guard results, audit entries and transition outcomes."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from admission.schemas.appointments import AppointmentAction, AppointmentStatus


class GuardReason(str, Enum):
    """Why a guard denied an action."""

    TOO_EARLY = "too_early"
    EXPIRED = "expired"
    NOT_YET_CHECKED_IN = "not_yet_checked_in"
    ALREADY_TERMINAL = "already_terminal"
    INVALID_STATUS = "invalid_status"
    INVALID_RESCHEDULE_TARGET = "invalid_reschedule_target"


class GuardResult(BaseModel):
    """Either allowed, or denied with a reason tag and user-facing details."""

    model_config = {"frozen": True}

    allowed: bool
    reason: GuardReason | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    message: str | None = None

    @classmethod
    def allow(cls, **details: Any) -> "GuardResult":
        """Build an allowed result."""
        return cls(allowed=True, details=details)

    @classmethod
    def deny(cls, reason: GuardReason, message: str, **details: Any) -> "GuardResult":
        """Build a denied result."""
        return cls(allowed=False, reason=reason, details=details, message=message)


class GuardReport(BaseModel):
    """What can be done with an appointment right now."""

    appointment_id: UUID
    status: AppointmentStatus
    evaluated_at: datetime
    confirm: GuardResult
    check_in: GuardResult
    complete: GuardResult
    cancel: GuardResult
    mark_no_show: GuardResult
    reschedule: GuardResult
    suggested_action: AppointmentAction | None = None


class AuditEntryCreate(BaseModel):
    """An audit entry not yet persisted."""

    model_config = {"frozen": True}

    appointment_id: UUID
    action: AppointmentAction
    from_status: AppointmentStatus
    to_status: AppointmentStatus
    actor_id: str
    reason: str | None = None
    occurred_at: datetime
    new_scheduled_at: datetime | None = None
    previous_scheduled_at: datetime | None = None


class AuditEntry(AuditEntryCreate):
    """One immutable record of an accepted transition."""

    model_config = {"frozen": True, "from_attributes": True}

    id: int


class TransitionPlan(BaseModel):
    """A transition the state machine has accepted but not yet persisted."""

    model_config = {"frozen": True}

    action: AppointmentAction
    from_status: AppointmentStatus
    to_status: AppointmentStatus
    new_scheduled_at: datetime | None = None


# Outcomes


class Accepted(BaseModel):
    """The transition was persisted."""

    kind: Literal["accepted"] = "accepted"
    appointment_id: UUID
    status: AppointmentStatus
    scheduled_at: datetime
    audit_entry: AuditEntry
    audit_entries: list[AuditEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_entries(self) -> "Accepted":
        if not self.audit_entries:
            self.audit_entries = [self.audit_entry]
        return self


class IllegalTransition(BaseModel):
    """The action is not defined for the appointment's current status."""

    kind: Literal["illegal_transition"] = "illegal_transition"
    appointment_id: UUID | None = None
    from_status: AppointmentStatus
    action: AppointmentAction
    message: str


class GuardRejected(BaseModel):
    """Structurally legal, but forbidden by the current time or sub-state."""

    kind: Literal["guard_rejected"] = "guard_rejected"
    appointment_id: UUID | None = None
    action: AppointmentAction
    reason: GuardReason
    details: dict[str, Any] = Field(default_factory=dict)
    message: str


class ConcurrencyConflict(BaseModel):
    """Another transition on the same appointment won; retry after re-reading."""

    kind: Literal["concurrency_conflict"] = "concurrency_conflict"
    appointment_id: UUID
    message: str


class PartialReschedule(BaseModel):
    """Step 1 of a reschedule is recorded but step 2 is not; retry resumes at step 2."""

    kind: Literal["partial_reschedule"] = "partial_reschedule"
    appointment_id: UUID
    status: AppointmentStatus = AppointmentStatus.RESCHEDULED
    pending_scheduled_at: datetime
    audit_entry: AuditEntry
    message: str


class PersistenceFailure(BaseModel):
    """Infrastructure failure while writing; safe to retry."""

    kind: Literal["persistence_failure"] = "persistence_failure"
    appointment_id: UUID
    message: str


TransitionFailure = (
    IllegalTransition
    | GuardRejected
    | ConcurrencyConflict
    | PartialReschedule
    | PersistenceFailure
)

TransitionOutcome = Annotated[
    Accepted
    | IllegalTransition
    | GuardRejected
    | ConcurrencyConflict
    | PartialReschedule
    | PersistenceFailure,
    Field(discriminator="kind"),
]


# Requests


class TransitionRequest(BaseModel):
    """Request body for a status transition."""

    action: AppointmentAction
    reason: str | None = Field(None, max_length=500)
    new_scheduled_at: datetime | None = None
    now: datetime | None = None

    @model_validator(mode="after")
    def validate_reschedule_target(self) -> "TransitionRequest":
        """Require a target time when rescheduling."""
        if self.action == AppointmentAction.RESCHEDULE and self.new_scheduled_at is None:
            raise ValueError("new_scheduled_at is required when action is reschedule")
        return self


class RescheduleRequest(BaseModel):
    """Request body for rescheduling an appointment."""

    new_scheduled_at: datetime
    reason: str | None = Field(None, max_length=500)
    now: datetime | None = None
