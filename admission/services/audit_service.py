"""Append-only audit trail of accepted transitions."""

from uuid import UUID

from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from admission.core.exceptions import PersistenceError
from admission.domain.state_machine import replay_history
from admission.models.appointment_history import appointment_history
from admission.schemas.admission import AuditEntry, AuditEntryCreate
from admission.schemas.appointments import AppointmentStatus

ENTRY_COLUMNS = (
    appointment_history.c.id,
    appointment_history.c.appointment_id,
    appointment_history.c.action,
    appointment_history.c.from_status,
    appointment_history.c.to_status,
    appointment_history.c.actor_id,
    appointment_history.c.reason,
    appointment_history.c.occurred_at,
    appointment_history.c.new_scheduled_at,
    appointment_history.c.previous_scheduled_at,
)


class AuditTrailWriter:
    """
    Writes and reads audit entries.

    Entries are only ever inserted. There is no update or delete path, and the
    database rejects both on PostgreSQL.
    """

    def __init__(self, db: AsyncSession):
        """Initialize writer with database session."""
        self.db = db

    async def append(self, entry: AuditEntryCreate) -> AuditEntry:
        """
        Insert an audit entry in the current transaction.

        Does not commit; the entry becomes durable together with the status
        write it records.

        Args:
            entry: Entry to append

        Returns:
            The stored entry with its sequence id

        Raises:
            PersistenceError: If the insert fails
        """
        values = entry.model_dump()
        values["action"] = entry.action.value
        values["from_status"] = entry.from_status.value
        values["to_status"] = entry.to_status.value

        stmt = insert(appointment_history).values(**values).returning(*ENTRY_COLUMNS)
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to append audit entry: {e}") from e

        row = result.fetchone()
        return AuditEntry.model_validate(dict(row._mapping))

    async def history_for(self, appointment_id: UUID) -> list[AuditEntry]:
        """
        Get every audit entry for an appointment, oldest first.

        Args:
            appointment_id: Appointment ID

        Returns:
            Entries in insertion order; empty if none exist
        """
        stmt = (
            select(*ENTRY_COLUMNS)
            .where(appointment_history.c.appointment_id == appointment_id)
            .order_by(appointment_history.c.id.asc())
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read audit history: {e}") from e

        return [AuditEntry.model_validate(dict(row._mapping)) for row in result.fetchall()]

    async def latest_for(self, appointment_id: UUID) -> AuditEntry | None:
        """Get the most recent audit entry for an appointment."""
        stmt = (
            select(*ENTRY_COLUMNS)
            .where(appointment_history.c.appointment_id == appointment_id)
            .order_by(appointment_history.c.id.desc())
            .limit(1)
        )
        try:
            result = await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read audit history: {e}") from e

        row = result.fetchone()
        if row is None:
            return None
        return AuditEntry.model_validate(dict(row._mapping))

    async def replay(self, appointment_id: UUID) -> AppointmentStatus:
        """
        Recompute an appointment's status from its audit trail.

        Raises:
            HistoryIntegrityError: If the trail is not a valid transition chain
        """
        return replay_history(await self.history_for(appointment_id))
