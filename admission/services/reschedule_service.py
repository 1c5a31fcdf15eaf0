"""Two-step reschedule: ``reschedule`` then ``complete_reschedule``."""

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from admission.core.clock import ClinicClock, ensure_utc
from admission.core.exceptions import (
    ConcurrencyConflictError,
    HistoryIntegrityError,
    NotFoundException,
    PersistenceError,
)
from admission.domain.guards import AdmissionPolicy
from admission.domain.schedule_rules import ScheduleRules
from admission.domain.state_machine import plan_transition
from admission.schemas.admission import (
    Accepted,
    AuditEntry,
    GuardRejected,
    IllegalTransition,
    PartialReschedule,
    TransitionPlan,
)
from admission.schemas.appointments import (
    AppointmentAction,
    AppointmentSnapshot,
    AppointmentStatus,
)
from admission.services.appointment_store import AppointmentStore
from admission.services.audit_service import AuditTrailWriter
from admission.services.transition_writer import TransitionWriter

logger = structlog.get_logger(__name__)

RescheduleOutcome = Accepted | IllegalTransition | GuardRejected | PartialReschedule


class RescheduleOrchestrator:
    """
    Moves an appointment to a new time through the ``rescheduled`` status.

    Step 1 records the intent and step 2 applies the new time; each is its
    own committed transaction. If step 2 fails the appointment is left
    ``rescheduled`` and a later call resumes at step 2 with the recorded
    target. Callers must hold the appointment's exclusion scope.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: ClinicClock,
        policy: AdmissionPolicy,
        schedule_rules: ScheduleRules,
    ):
        """Initialize orchestrator with database session and admission rules."""
        self.db = db
        self.clock = clock
        self.policy = policy
        self.schedule_rules = schedule_rules
        self.store = AppointmentStore(db)
        self.audit = AuditTrailWriter(db)
        self.writer = TransitionWriter(db)

    async def run(
        self,
        appointment_id: UUID,
        *,
        actor_id: str,
        new_scheduled_at: datetime | None,
        reason: str | None,
        now: datetime,
    ) -> RescheduleOutcome:
        """
        Reschedule an appointment, or finish a reschedule left half-done.

        Args:
            appointment_id: Appointment ID
            actor_id: Who requested the reschedule
            new_scheduled_at: Requested new time; may be omitted when resuming
            reason: Optional free-text reason
            now: Instant the request is evaluated at

        Returns:
            ``Accepted`` with both audit entries, a rejection, or
            ``PartialReschedule`` when only step 1 was recorded

        Raises:
            NotFoundException: If the appointment does not exist
            ConcurrencyConflictError: If step 1 lost a race
            PersistenceError: If step 1 could not be written
        """
        snapshot = await self.store.get_snapshot(appointment_id, for_update=True)
        if snapshot is None:
            await self.db.rollback()
            raise NotFoundException("Appointment not found")

        if snapshot.status == AppointmentStatus.RESCHEDULED:
            return await self._resume(snapshot, actor_id, new_scheduled_at, now)

        decision = plan_transition(
            snapshot,
            AppointmentAction.RESCHEDULE,
            now,
            policy=self.policy,
            clock=self.clock,
            schedule_rules=self.schedule_rules if self.schedule_rules.enabled else None,
            new_scheduled_at=new_scheduled_at,
        )
        if not isinstance(decision, TransitionPlan):
            await self.db.rollback()
            return decision

        pending, first = await self.writer.commit(
            snapshot,
            decision,
            actor_id=actor_id,
            reason=reason,
            occurred_at=now,
        )
        return await self._complete(pending, first, actor_id, now)

    async def _resume(
        self,
        snapshot: AppointmentSnapshot,
        actor_id: str,
        new_scheduled_at: datetime | None,
        now: datetime,
    ) -> RescheduleOutcome:
        latest = await self.audit.latest_for(snapshot.id)
        if (
            latest is None
            or latest.action != AppointmentAction.RESCHEDULE
            or latest.new_scheduled_at is None
        ):
            await self.db.rollback()
            raise HistoryIntegrityError(
                f"Appointment {snapshot.id} is rescheduled but has no pending reschedule entry"
            )

        pending_at = ensure_utc(latest.new_scheduled_at)
        if new_scheduled_at is not None and ensure_utc(new_scheduled_at) != pending_at:
            await self.db.rollback()
            return IllegalTransition(
                appointment_id=snapshot.id,
                from_status=snapshot.status,
                action=AppointmentAction.RESCHEDULE,
                message=(
                    "A reschedule to "
                    f"{self.clock.to_clinic_time(pending_at).isoformat()} is still pending; "
                    "retry with that time to complete it."
                ),
            )

        logger.info(
            "reschedule_resumed",
            appointment_id=str(snapshot.id),
            pending_scheduled_at=pending_at.isoformat(),
        )
        return await self._complete(snapshot, latest, actor_id, now)

    async def _complete(
        self,
        pending: AppointmentSnapshot,
        first: AuditEntry,
        actor_id: str,
        now: datetime,
    ) -> RescheduleOutcome:
        target = ensure_utc(first.new_scheduled_at)
        decision = plan_transition(
            pending,
            AppointmentAction.COMPLETE_RESCHEDULE,
            now,
            policy=self.policy,
            clock=self.clock,
            new_scheduled_at=target,
        )
        if not isinstance(decision, TransitionPlan):
            await self.db.rollback()
            return decision

        try:
            updated, second = await self.writer.commit(
                pending,
                decision,
                actor_id=actor_id,
                reason=first.reason,
                occurred_at=now,
            )
        except (ConcurrencyConflictError, PersistenceError) as e:
            logger.error(
                "reschedule_partial",
                appointment_id=str(pending.id),
                pending_scheduled_at=target.isoformat(),
                error=e.message,
            )
            return PartialReschedule(
                appointment_id=pending.id,
                pending_scheduled_at=target,
                audit_entry=first,
                message=(
                    "The reschedule was recorded but the new time could not be applied. "
                    "Retry the reschedule to complete it."
                ),
            )

        return Accepted(
            appointment_id=updated.id,
            status=updated.status,
            scheduled_at=updated.scheduled_at,
            audit_entry=second,
            audit_entries=[first, second],
        )
