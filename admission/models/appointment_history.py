"""Append-only appointment status history using SQLAlchemy Core."""

from sqlalchemy import (
    BigInteger,
    Column,
    ForeignKey,
    Index,
    Integer,
    Table,
    Text,
    Uuid,
    func,
)

from admission.models.appointments import metadata
from admission.models.types import UTCDateTime

appointment_history = Table(
    "appointment_history",
    metadata,
    # Monotonic sequence; defines replay order
    Column(
        "id",
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    ),
    Column(
        "appointment_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column("action", Text, nullable=False),
    Column("from_status", Text, nullable=False),
    Column("to_status", Text, nullable=False),
    Column("actor_id", Text, nullable=False),
    Column("reason", Text, nullable=True),
    Column("occurred_at", UTCDateTime, nullable=False),
    # Reschedule steps only
    Column("new_scheduled_at", UTCDateTime, nullable=True),
    Column("previous_scheduled_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Index("idx_appointment_history_appointment_id", "appointment_id", "id"),
)
