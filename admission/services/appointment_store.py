"""Reads and writes the status fields of appointments."""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admission.core.exceptions import ConcurrencyConflictError, PersistenceError
from admission.models.appointments import appointments
from admission.schemas.appointments import AppointmentSnapshot, AppointmentStatus

# PostgreSQL lock_not_available, raised by FOR UPDATE NOWAIT
LOCK_NOT_AVAILABLE = "55P03"

SNAPSHOT_COLUMNS = (
    appointments.c.id,
    appointments.c.scheduled_at,
    appointments.c.status,
    appointments.c.version,
)


def is_lock_not_available(error: DBAPIError) -> bool:
    """Whether a driver error means another transaction holds the row lock."""
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE


class AppointmentStore:
    """Status-field access to the externally owned appointments table."""

    def __init__(self, db: AsyncSession):
        """Initialize store with database session."""
        self.db = db

    async def get_snapshot(
        self,
        appointment_id: UUID,
        *,
        for_update: bool = False,
    ) -> AppointmentSnapshot | None:
        """
        Read the admission-relevant fields of an appointment.

        Args:
            appointment_id: Appointment ID
            for_update: Lock the row for the rest of the transaction without waiting

        Returns:
            Snapshot, or None if the appointment does not exist

        Raises:
            ConcurrencyConflictError: If another transaction holds the row lock
            PersistenceError: On any other database failure
        """
        stmt = select(*SNAPSHOT_COLUMNS).where(appointments.c.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update(nowait=True)

        try:
            result = await self.db.execute(stmt)
        except DBAPIError as e:
            await self.db.rollback()
            if not is_lock_not_available(e):
                raise PersistenceError(f"Failed to read appointment: {e}") from e
            raise ConcurrencyConflictError(
                "Appointment is being modified by another request"
            ) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to read appointment: {e}") from e

        row = result.fetchone()
        if row is None:
            return None
        return AppointmentSnapshot.model_validate(dict(row._mapping))

    async def write_status(
        self,
        snapshot: AppointmentSnapshot,
        new_status: AppointmentStatus,
        *,
        scheduled_at: datetime | None = None,
    ) -> AppointmentSnapshot:
        """
        Write a new status if the row is still at the snapshot's version.

        Does not commit; the caller commits together with the audit entry.

        Raises:
            ConcurrencyConflictError: If the row changed since ``snapshot`` was read
            PersistenceError: On database failure
        """
        values: dict = {
            "status": new_status.value,
            "version": snapshot.version + 1,
            "updated_at": datetime.now(UTC),
        }
        if scheduled_at is not None:
            values["scheduled_at"] = scheduled_at

        stmt = (
            update(appointments)
            .where(
                appointments.c.id == snapshot.id,
                appointments.c.version == snapshot.version,
            )
            .values(**values)
        )

        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to write appointment status: {e}") from e

        if result.rowcount != 1:
            raise ConcurrencyConflictError(
                "Appointment was modified by another request; re-read and retry"
            )

        return AppointmentSnapshot(
            id=snapshot.id,
            scheduled_at=scheduled_at or snapshot.scheduled_at,
            status=new_status,
            version=snapshot.version + 1,
        )
