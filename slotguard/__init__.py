"""
Availability engine and booking conflict guard for appointment scheduling.
"""

from .domain.exceptions import (
    AppointmentConflictError,
    BlockedConflictError,
    ConfigurationError,
    ConflictError,
    InvalidScheduleError,
    ValidationError,
)
from .domain.models import overlaps
from .domain.slot_calculator import SlotCalculator, generate_available_slots
from .services.booking_guard import BookingConflictGuard

__version__ = "0.1.0"

__all__ = [
    "AppointmentConflictError",
    "BlockedConflictError",
    "BookingConflictGuard",
    "ConfigurationError",
    "ConflictError",
    "InvalidScheduleError",
    "SlotCalculator",
    "ValidationError",
    "generate_available_slots",
    "overlaps",
]
