"""
Domain layer - Pure business logic without external dependencies.
"""

from .conflicts import ensure_no_conflict, find_appointment_conflicts, find_blocked_conflicts
from .exceptions import (
    AppointmentConflictError,
    AppointmentNotFoundError,
    BlockedConflictError,
    BusinessNotFoundError,
    ConfigurationError,
    ConflictError,
    InvalidScheduleError,
    NotFoundError,
    SlotguardError,
    ValidationError,
)
from .lifecycle import apply_status_change, check_cancellation_invariant, generate_booking_token
from .models import (
    ACTIVE_STATUSES,
    INERT_STATUSES,
    Appointment,
    AppointmentPayload,
    AppointmentStatus,
    AvailableSlot,
    BlockedSlot,
    BusinessSchedule,
    TimeOfDayRange,
    TimeRange,
    overlaps,
)
from .slot_calculator import SlotCalculator, generate_available_slots
from .validation import (
    BookingPolicy,
    CustomerInfo,
    parse_customer,
    validate_proposed_interval,
    validate_schedule,
)

__all__ = [
    "ACTIVE_STATUSES",
    "INERT_STATUSES",
    "Appointment",
    "AppointmentConflictError",
    "AppointmentNotFoundError",
    "AppointmentPayload",
    "AppointmentStatus",
    "AvailableSlot",
    "BlockedConflictError",
    "BlockedSlot",
    "BookingPolicy",
    "BusinessNotFoundError",
    "BusinessSchedule",
    "ConfigurationError",
    "ConflictError",
    "CustomerInfo",
    "InvalidScheduleError",
    "NotFoundError",
    "SlotCalculator",
    "SlotguardError",
    "TimeOfDayRange",
    "TimeRange",
    "ValidationError",
    "apply_status_change",
    "check_cancellation_invariant",
    "ensure_no_conflict",
    "find_appointment_conflicts",
    "find_blocked_conflicts",
    "generate_available_slots",
    "generate_booking_token",
    "overlaps",
    "parse_customer",
    "validate_proposed_interval",
    "validate_schedule",
]
