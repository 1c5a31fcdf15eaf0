"""Database models."""

from admission.models.appointment_history import appointment_history
from admission.models.appointments import appointments, metadata

__all__ = [
    "appointment_history",
    "appointments",
    "metadata",
]
