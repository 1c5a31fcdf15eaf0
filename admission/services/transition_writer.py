"""Atomic status write plus audit append."""

from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admission.core.exceptions import PersistenceError
from admission.schemas.admission import AuditEntry, AuditEntryCreate, TransitionPlan
from admission.schemas.appointments import (
    AppointmentAction,
    AppointmentSnapshot,
)
from admission.services.appointment_store import AppointmentStore
from admission.services.audit_service import AuditTrailWriter

logger = structlog.get_logger(__name__)


class TransitionWriter:
    """Persists one planned transition in a single database transaction."""

    def __init__(self, db: AsyncSession):
        """Initialize writer with database session."""
        self.db = db
        self.store = AppointmentStore(db)
        self.audit = AuditTrailWriter(db)

    async def commit(
        self,
        snapshot: AppointmentSnapshot,
        plan: TransitionPlan,
        *,
        actor_id: str,
        reason: str | None,
        occurred_at: datetime,
    ) -> tuple[AppointmentSnapshot, AuditEntry]:
        """
        Write the new status and its audit entry, then commit.

        Either both become visible or neither does.

        Args:
            snapshot: Snapshot the plan was made from
            plan: Accepted transition
            actor_id: Who requested the transition
            reason: Optional free-text reason
            occurred_at: Instant the transition was evaluated at

        Returns:
            Updated snapshot and the stored audit entry

        Raises:
            ConcurrencyConflictError: If the row changed since ``snapshot`` was read
            PersistenceError: If the write or commit fails
        """
        moves_appointment = plan.action == AppointmentAction.COMPLETE_RESCHEDULE
        try:
            updated = await self.store.write_status(
                snapshot,
                plan.to_status,
                scheduled_at=plan.new_scheduled_at if moves_appointment else None,
            )
            entry = await self.audit.append(
                AuditEntryCreate(
                    appointment_id=snapshot.id,
                    action=plan.action,
                    from_status=plan.from_status,
                    to_status=plan.to_status,
                    actor_id=actor_id,
                    reason=reason,
                    occurred_at=occurred_at,
                    new_scheduled_at=plan.new_scheduled_at,
                    previous_scheduled_at=snapshot.scheduled_at if plan.new_scheduled_at else None,
                )
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "transition_commit_failed",
                appointment_id=str(snapshot.id),
                action=plan.action.value,
                error=str(e),
            )
            raise PersistenceError(f"Failed to commit transition: {e}") from e
        except Exception:
            await self.db.rollback()
            raise

        return updated, entry
