"""Appointment admission endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from admission.config import settings
from admission.core.exceptions import BadRequestException
from admission.dependencies import Admission, CurrentActorId
from admission.schemas.admission import (
    AuditEntry,
    GuardReport,
    RescheduleRequest,
    TransitionRequest,
)
from admission.services.admission_service import Outcome

router = APIRouter()

OUTCOME_STATUS_CODES = {
    "accepted": status.HTTP_200_OK,
    "illegal_transition": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "guard_rejected": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "concurrency_conflict": status.HTTP_409_CONFLICT,
    "partial_reschedule": status.HTTP_503_SERVICE_UNAVAILABLE,
    "persistence_failure": status.HTTP_503_SERVICE_UNAVAILABLE,
}

OUTCOME_RESPONSES = {
    422: {"description": "Illegal transition or guard rejection"},
    409: {"description": "Concurrent transition on the same appointment; retry"},
    503: {"description": "Partial reschedule or persistence failure; retry"},
}


def outcome_response(outcome: Outcome) -> JSONResponse:
    """Serialize a transition outcome with its HTTP status code."""
    return JSONResponse(
        status_code=OUTCOME_STATUS_CODES[outcome.kind],
        content=outcome.model_dump(mode="json"),
    )


def ensure_clock_override_allowed(now: datetime | None) -> None:
    """Reject an explicit evaluation time unless overrides are enabled."""
    if now is not None and not settings.allow_clock_override:
        raise BadRequestException("Overriding the current time is disabled")


@router.post(
    "/{appointment_id}/transitions",
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Apply an admission action",
    responses=OUTCOME_RESPONSES,
)
async def request_transition(
    appointment_id: UUID,
    data: TransitionRequest,
    actor_id: CurrentActorId,
    service: Admission,
) -> JSONResponse:
    """
    Apply an action (check in, complete, cancel, ...) to an appointment.

    Args:
        appointment_id: Appointment ID
        data: Requested action
        actor_id: Authenticated staff member
        service: Admission service

    Returns:
        Transition outcome
    """
    ensure_clock_override_allowed(data.now)
    outcome = await service.request_transition(
        appointment_id,
        data.action,
        actor_id,
        now=data.now,
        reason=data.reason,
        new_scheduled_at=data.new_scheduled_at,
    )
    return outcome_response(outcome)


@router.post(
    "/{appointment_id}/reschedule",
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment",
    responses=OUTCOME_RESPONSES,
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: RescheduleRequest,
    actor_id: CurrentActorId,
    service: Admission,
) -> JSONResponse:
    """
    Move an appointment to a new time.

    A reschedule left half-done is completed by repeating the request.
    """
    ensure_clock_override_allowed(data.now)
    outcome = await service.reschedule(
        appointment_id,
        actor_id,
        data.new_scheduled_at,
        reason=data.reason,
        now=data.now,
    )
    return outcome_response(outcome)


@router.get(
    "/{appointment_id}/history",
    response_model=list[AuditEntry],
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment status history",
)
async def get_appointment_history(
    appointment_id: UUID,
    actor_id: CurrentActorId,
    service: Admission,
) -> list[AuditEntry]:
    """Get the audit trail of an appointment, oldest first."""
    return await service.history_for(appointment_id)


@router.get(
    "/{appointment_id}/guards",
    response_model=GuardReport,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Check which actions are available",
)
async def get_appointment_guards(
    appointment_id: UUID,
    actor_id: CurrentActorId,
    service: Admission,
    now: datetime | None = Query(None),
) -> GuardReport:
    """
    Evaluate every action without attempting any.

    Args:
        appointment_id: Appointment ID
        actor_id: Authenticated staff member
        service: Admission service
        now: Optional evaluation time, when overrides are enabled

    Returns:
        Guard results and the suggested next action
    """
    ensure_clock_override_allowed(now)
    return await service.evaluate_guards(appointment_id, now)
