"""Appointments table model using SQLAlchemy Core."""

import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    Uuid,
    func,
)

from admission.models.types import UTCDateTime

# Metadata for all tables
metadata = MetaData()

STATUS_VALUES = (
    "scheduled",
    "confirmed",
    "checked_in",
    "completed",
    "cancelled",
    "no_show",
    "rescheduled",
)

# Appointments table. Rows are created and owned by the scheduling side; the
# admission core reads id/scheduled_at/status/version and writes status,
# scheduled_at and version only.
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),
    # Opaque to the admission core
    Column("patient_id", Uuid, nullable=True),
    Column("notes", Text, nullable=True),
    # Admission state
    Column("scheduled_at", UTCDateTime, nullable=False),
    Column("status", Text, nullable=False, server_default="scheduled"),
    # Optimistic concurrency counter, bumped on every status write
    Column("version", Integer, nullable=False, server_default="0"),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "status IN (" + ", ".join(f"'{value}'" for value in STATUS_VALUES) + ")",
        name="appointments_status_check",
    ),
    Index("idx_appointments_scheduled_at", "scheduled_at"),
    Index("idx_appointments_status", "status"),
)
