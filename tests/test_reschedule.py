"""Tests for the two-step reschedule."""

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import select

from admission.core.exceptions import HistoryIntegrityError, PersistenceError
from admission.models import appointments
from admission.schemas.admission import (
    Accepted,
    GuardReason,
    GuardRejected,
    IllegalTransition,
    PartialReschedule,
)
from admission.schemas.appointments import AppointmentAction, AppointmentStatus
from admission.services.appointment_store import AppointmentStore
from admission.services.audit_service import AuditTrailWriter

A = AppointmentAction
S = AppointmentStatus


async def stored(db_session, appointment_id):
    result = await db_session.execute(
        select(appointments.c.status, appointments.c.scheduled_at, appointments.c.version).where(
            appointments.c.id == appointment_id
        )
    )
    row = result.one()
    await db_session.commit()
    return row


def failing_second_step():
    """Make the rescheduled -> scheduled write fail while step 1 still succeeds."""
    original = AppointmentStore.write_status

    async def write_status(self, snapshot, new_status, **kwargs):
        if snapshot.status == S.RESCHEDULED:
            raise PersistenceError("Failed to write appointment status: connection reset")
        return await original(self, snapshot, new_status, **kwargs)

    return patch.object(AppointmentStore, "write_status", write_status)


@pytest.fixture
def now(clock):
    return clock.from_clinic_time(2025, 3, 10, 11, 0)


@pytest.fixture
def target(clock):
    return clock.from_clinic_time(2025, 3, 12, 10, 30)


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [S.SCHEDULED, S.CONFIRMED, S.CHECKED_IN, S.NO_SHOW])
async def test_reschedule_round_trip(
    service, make_appointment, db_session, actor_id, now, target, clock, status
):
    """Two audit entries, final status scheduled at the new time."""
    appointment_id = await make_appointment(status=status)
    original_at = clock.from_clinic_time(2025, 3, 10, 14, 0)

    outcome = await service.reschedule(
        appointment_id, actor_id, target, reason="Doctor unavailable", now=now
    )

    assert isinstance(outcome, Accepted)
    assert outcome.status == S.SCHEDULED
    assert outcome.scheduled_at == target
    assert len(outcome.audit_entries) == 2
    assert outcome.audit_entry == outcome.audit_entries[-1]

    first, second = await service.history_for(appointment_id)
    assert (first.action, first.from_status, first.to_status) == (
        A.RESCHEDULE,
        status,
        S.RESCHEDULED,
    )
    assert (second.action, second.from_status, second.to_status) == (
        A.COMPLETE_RESCHEDULE,
        S.RESCHEDULED,
        S.SCHEDULED,
    )
    for entry in (first, second):
        assert entry.new_scheduled_at == target
        assert entry.previous_scheduled_at == original_at
        assert entry.reason == "Doctor unavailable"

    row = await stored(db_session, appointment_id)
    assert row.status == S.SCHEDULED.value
    assert row.scheduled_at == target
    assert row.version == 2


@pytest.mark.asyncio
async def test_reschedule_via_request_transition(service, make_appointment, actor_id, now, target):
    appointment_id = await make_appointment()
    outcome = await service.request_transition(
        appointment_id, A.RESCHEDULE, actor_id, now=now, new_scheduled_at=target
    )
    assert isinstance(outcome, Accepted)
    assert outcome.scheduled_at == target


@pytest.mark.asyncio
async def test_naive_target_is_clinic_local(service, make_appointment, actor_id, now, target):
    appointment_id = await make_appointment()
    outcome = await service.reschedule(
        appointment_id, actor_id, datetime(2025, 3, 12, 10, 30), now=now
    )
    assert isinstance(outcome, Accepted)
    assert outcome.scheduled_at == target


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [S.COMPLETED, S.CANCELLED])
async def test_reschedule_blocked_statuses(
    service, make_appointment, actor_id, now, target, status
):
    appointment_id = await make_appointment(status=status)
    outcome = await service.reschedule(appointment_id, actor_id, target, now=now)
    assert isinstance(outcome, IllegalTransition)
    assert await service.history_for(appointment_id) == []


@pytest.mark.asyncio
async def test_reschedule_outside_clinic_hours(service, make_appointment, actor_id, now, clock):
    appointment_id = await make_appointment()
    outcome = await service.reschedule(
        appointment_id, actor_id, clock.from_clinic_time(2025, 3, 12, 12, 0), now=now
    )
    assert isinstance(outcome, GuardRejected)
    assert outcome.reason == GuardReason.INVALID_RESCHEDULE_TARGET
    assert outcome.details["rule"] == "lunch"
    assert await service.history_for(appointment_id) == []


@pytest.mark.asyncio
async def test_partial_reschedule_then_resume(
    service, make_appointment, db_session, actor_id, now, target, clock
):
    """Step 2 fails: status stays rescheduled; retrying completes step 2 only."""
    appointment_id = await make_appointment()

    with failing_second_step():
        partial = await service.reschedule(
            appointment_id, actor_id, target, reason="Patient request", now=now
        )

    assert isinstance(partial, PartialReschedule)
    assert partial.status == S.RESCHEDULED
    assert partial.pending_scheduled_at == target
    assert partial.audit_entry.action == A.RESCHEDULE

    row = await stored(db_session, appointment_id)
    assert row.status == S.RESCHEDULED.value
    assert row.scheduled_at == clock.from_clinic_time(2025, 3, 10, 14, 0)
    assert len(await service.history_for(appointment_id)) == 1

    report = await service.evaluate_guards(appointment_id, now)
    assert report.reschedule.allowed
    assert report.reschedule.details == {"resume": True}

    resumed = await service.reschedule(appointment_id, "staff-supervisor", target, now=now)

    assert isinstance(resumed, Accepted)
    assert resumed.status == S.SCHEDULED
    assert resumed.scheduled_at == target
    assert [e.action for e in resumed.audit_entries] == [A.RESCHEDULE, A.COMPLETE_RESCHEDULE]

    history = await service.history_for(appointment_id)
    assert len(history) == 2
    assert history[1].actor_id == "staff-supervisor"
    assert history[1].reason == "Patient request"

    row = await stored(db_session, appointment_id)
    assert row.status == S.SCHEDULED.value
    assert row.scheduled_at == target


@pytest.mark.asyncio
async def test_resume_with_different_target_is_illegal(
    service, make_appointment, actor_id, now, target, clock
):
    appointment_id = await make_appointment()
    with failing_second_step():
        await service.reschedule(appointment_id, actor_id, target, now=now)

    other = clock.from_clinic_time(2025, 3, 13, 9, 0)
    outcome = await service.reschedule(appointment_id, actor_id, other, now=now)

    assert isinstance(outcome, IllegalTransition)
    assert outcome.from_status == S.RESCHEDULED
    assert "2025-03-12T10:30:00-06:00" in outcome.message
    assert len(await service.history_for(appointment_id)) == 1


@pytest.mark.asyncio
async def test_resume_without_target_uses_pending_one(
    service, make_appointment, actor_id, now, target
):
    appointment_id = await make_appointment()
    with failing_second_step():
        await service.reschedule(appointment_id, actor_id, target, now=now)

    outcome = await service.reschedule(appointment_id, actor_id, None, now=now)

    assert isinstance(outcome, Accepted)
    assert outcome.scheduled_at == target


@pytest.mark.asyncio
async def test_rescheduled_without_pending_entry_is_integrity_error(
    service, make_appointment, actor_id, now, target
):
    """A rescheduled row with no reschedule entry cannot be resumed."""
    appointment_id = await make_appointment(status=S.RESCHEDULED)
    with pytest.raises(HistoryIntegrityError):
        await service.reschedule(appointment_id, actor_id, target, now=now)


@pytest.mark.asyncio
async def test_history_replays_after_reschedule_and_admission(
    service, make_appointment, actor_id, now, target, clock, db_session
):
    appointment_id = await make_appointment()
    await service.reschedule(appointment_id, actor_id, target, now=now)
    await service.request_transition(
        appointment_id, A.CHECK_IN, actor_id, now=clock.from_clinic_time(2025, 3, 12, 10, 10)
    )

    assert await AuditTrailWriter(db_session).replay(appointment_id) == S.CHECKED_IN
    assert (await stored(db_session, appointment_id)).status == S.CHECKED_IN.value
