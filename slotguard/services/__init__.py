"""
Service layer helpers that orchestrate storage adapters and domain logic.
"""

from .availability import AvailabilityService, ScheduleSourceProtocol
from .booking_guard import BookingConflictGuard, BookingStoreProtocol

__all__ = [
    "AvailabilityService",
    "BookingConflictGuard",
    "BookingStoreProtocol",
    "ScheduleSourceProtocol",
]
