"""Admission operations: status transitions, history and guard reports."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from admission.config import settings
from admission.core.clock import ClinicClock, get_clinic_clock
from admission.core.exceptions import (
    ConcurrencyConflictError,
    NotFoundException,
    PersistenceError,
)
from admission.core.locks import AppointmentLockManager, get_lock_manager
from admission.domain import state_machine
from admission.domain.guards import AdmissionPolicy
from admission.domain.schedule_rules import ScheduleRules
from admission.schemas.admission import (
    Accepted,
    AuditEntry,
    ConcurrencyConflict,
    GuardRejected,
    GuardReport,
    IllegalTransition,
    PartialReschedule,
    PersistenceFailure,
    TransitionPlan,
)
from admission.schemas.appointments import AppointmentAction, AppointmentSnapshot
from admission.services.appointment_store import AppointmentStore
from admission.services.audit_service import AuditTrailWriter
from admission.services.reschedule_service import RescheduleOrchestrator
from admission.services.transition_writer import TransitionWriter

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Outcome = (
    Accepted
    | IllegalTransition
    | GuardRejected
    | ConcurrencyConflict
    | PartialReschedule
    | PersistenceFailure
)


class AdmissionService:
    """Service for moving appointments through the admission lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: ClinicClock | None = None,
        locks: AppointmentLockManager | None = None,
        policy: AdmissionPolicy | None = None,
        schedule_rules: ScheduleRules | None = None,
    ):
        """Initialize service with database session and optional overrides."""
        self.db = db
        self.clock = clock or get_clinic_clock()
        self.locks = locks or get_lock_manager()
        self.policy = policy or AdmissionPolicy.from_settings(settings)
        self.schedule_rules = schedule_rules or ScheduleRules.from_settings(settings)
        self.store = AppointmentStore(db)
        self.audit = AuditTrailWriter(db)
        self.writer = TransitionWriter(db)
        self.orchestrator = RescheduleOrchestrator(
            db, self.clock, self.policy, self.schedule_rules
        )

    def _effective_now(self, now: datetime | None) -> datetime:
        return self.clock.localize(now) if now is not None else self.clock.now()

    async def _load(
        self, appointment_id: UUID, *, for_update: bool = False
    ) -> AppointmentSnapshot:
        snapshot = await self.store.get_snapshot(appointment_id, for_update=for_update)
        if snapshot is None:
            await self.db.rollback()
            raise NotFoundException("Appointment not found")
        return snapshot

    async def _exclusive(self, appointment_id: UUID, work: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``work`` while holding the appointment's exclusion scope.

        A caller cancelled while waiting leaves no trace. Once the scope is
        held, the work runs to completion and releases it even if the caller
        is cancelled; the cancellation is re-raised only after the work has
        finished with the session.
        """
        handle = await self.locks.acquire(str(appointment_id))

        async def locked() -> T:
            try:
                return await work()
            finally:
                await handle.release()

        task = asyncio.create_task(locked())
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # The session belongs to the request; keep it open until the work is done
            await asyncio.wait([task])
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "cancelled_transition_failed",
                    appointment_id=str(appointment_id),
                    exc_info=task.exception(),
                )
            raise

    async def _run(
        self,
        appointment_id: UUID,
        action: AppointmentAction,
        actor_id: str,
        work: Callable[[], Awaitable[Outcome]],
    ) -> Outcome:
        try:
            outcome = await self._exclusive(appointment_id, work)
        except ConcurrencyConflictError as e:
            outcome = ConcurrencyConflict(appointment_id=appointment_id, message=e.message)
        except PersistenceError as e:
            logger.error(
                "transition_persistence_failed",
                appointment_id=str(appointment_id),
                action=action.value,
                actor_id=actor_id,
                error=e.message,
            )
            outcome = PersistenceFailure(
                appointment_id=appointment_id,
                message="The transition could not be saved. Please retry.",
            )
        self._log_outcome(appointment_id, action, actor_id, outcome)
        return outcome

    def _log_outcome(
        self,
        appointment_id: UUID,
        action: AppointmentAction,
        actor_id: str,
        outcome: Outcome,
    ) -> None:
        if isinstance(outcome, Accepted):
            logger.info(
                "transition_accepted",
                appointment_id=str(appointment_id),
                action=action.value,
                actor_id=actor_id,
                status=outcome.status.value,
                audit_entry_id=outcome.audit_entry.id,
            )
        elif isinstance(outcome, IllegalTransition | GuardRejected):
            logger.info(
                "transition_rejected",
                appointment_id=str(appointment_id),
                action=action.value,
                actor_id=actor_id,
                kind=outcome.kind,
                reason=getattr(outcome, "reason", None),
            )
        elif isinstance(outcome, ConcurrencyConflict):
            logger.warning(
                "transition_conflict",
                appointment_id=str(appointment_id),
                action=action.value,
                actor_id=actor_id,
            )

    async def request_transition(
        self,
        appointment_id: UUID,
        action: AppointmentAction,
        actor_id: str,
        *,
        now: datetime | None = None,
        reason: str | None = None,
        new_scheduled_at: datetime | None = None,
    ) -> Outcome:
        """
        Apply an action to an appointment.

        Args:
            appointment_id: Appointment ID
            action: Requested action
            actor_id: Who requested the transition
            now: Evaluation instant; defaults to the clinic clock
            reason: Optional free-text reason stored in the audit entry
            new_scheduled_at: Target time, for ``reschedule`` only

        Returns:
            Transition outcome; rejections are returned, not raised

        Raises:
            NotFoundException: If the appointment does not exist
        """
        if action == AppointmentAction.RESCHEDULE:
            return await self.reschedule(
                appointment_id,
                actor_id,
                new_scheduled_at,
                reason=reason,
                now=now,
            )

        effective_now = self._effective_now(now)

        if not action.is_public:
            snapshot = await self._load(appointment_id)
            outcome = state_machine.illegal_transition(snapshot, action)
            self._log_outcome(appointment_id, action, actor_id, outcome)
            return outcome

        async def work() -> Outcome:
            snapshot = await self._load(appointment_id, for_update=True)
            decision = state_machine.plan_transition(
                snapshot,
                action,
                effective_now,
                policy=self.policy,
                clock=self.clock,
            )
            if not isinstance(decision, TransitionPlan):
                await self.db.rollback()
                return decision

            updated, entry = await self.writer.commit(
                snapshot,
                decision,
                actor_id=actor_id,
                reason=reason,
                occurred_at=effective_now,
            )
            return Accepted(
                appointment_id=updated.id,
                status=updated.status,
                scheduled_at=updated.scheduled_at,
                audit_entry=entry,
            )

        return await self._run(appointment_id, action, actor_id, work)

    async def reschedule(
        self,
        appointment_id: UUID,
        actor_id: str,
        new_scheduled_at: datetime | None,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Outcome:
        """
        Move an appointment to a new time.

        Naive datetimes are read as clinic-local time.

        Raises:
            NotFoundException: If the appointment does not exist
            NonexistentLocalTimeError: If a naive time falls in a DST gap
        """
        effective_now = self._effective_now(now)
        target = self.clock.localize(new_scheduled_at) if new_scheduled_at is not None else None

        async def work() -> Outcome:
            return await self.orchestrator.run(
                appointment_id,
                actor_id=actor_id,
                new_scheduled_at=target,
                reason=reason,
                now=effective_now,
            )

        outcome = await self._run(appointment_id, AppointmentAction.RESCHEDULE, actor_id, work)
        if isinstance(outcome, PartialReschedule):
            logger.warning(
                "reschedule_pending",
                appointment_id=str(appointment_id),
                pending_scheduled_at=outcome.pending_scheduled_at.isoformat(),
            )
        return outcome

    async def history_for(self, appointment_id: UUID) -> list[AuditEntry]:
        """
        Get the audit trail of an appointment, oldest first.

        Raises:
            NotFoundException: If the appointment does not exist
        """
        await self._load(appointment_id)
        return await self.audit.history_for(appointment_id)

    async def evaluate_guards(
        self,
        appointment_id: UUID,
        now: datetime | None = None,
    ) -> GuardReport:
        """
        Report which actions are currently possible, without attempting any.

        Raises:
            NotFoundException: If the appointment does not exist
        """
        effective_now = self._effective_now(now)
        snapshot = await self._load(appointment_id)
        results = state_machine.evaluate_guards(snapshot, effective_now, self.policy, self.clock)
        return GuardReport(
            appointment_id=snapshot.id,
            status=snapshot.status,
            evaluated_at=effective_now,
            confirm=results[AppointmentAction.CONFIRM],
            check_in=results[AppointmentAction.CHECK_IN],
            complete=results[AppointmentAction.COMPLETE],
            cancel=results[AppointmentAction.CANCEL],
            mark_no_show=results[AppointmentAction.MARK_NO_SHOW],
            reschedule=results[AppointmentAction.RESCHEDULE],
            suggested_action=state_machine.suggest_action(results),
        )
