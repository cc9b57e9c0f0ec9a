"""
Pure overlap searches backing the booking conflict guard.

These functions only inspect the snapshots they are given. Callers are
responsible for running them inside the storage layer's atomic unit so
that the check and the following insert cannot interleave with another
writer for the same business.
"""

from typing import Iterable, List, Optional

from .exceptions import AppointmentConflictError, BlockedConflictError
from .models import Appointment, BlockedSlot, TimeRange, overlaps


def find_appointment_conflicts(
    interval: TimeRange,
    appointments: Iterable[Appointment],
    exclude_id: Optional[str] = None,
) -> List[Appointment]:
    """
    Return the appointments that occupy part of ``interval``.

    Cancelled and no-show appointments are ignored. ``exclude_id`` skips the
    appointment being updated.
    """
    return [
        appointment
        for appointment in appointments
        if appointment.occupies_time
        and appointment.id != exclude_id
        and overlaps(interval, appointment)
    ]


def find_blocked_conflicts(
    interval: TimeRange,
    blocked_slots: Iterable[BlockedSlot],
) -> List[BlockedSlot]:
    """Return the blocked slots that overlap ``interval``."""
    return [blocked for blocked in blocked_slots if overlaps(interval, blocked)]


def ensure_no_conflict(
    business_id: str,
    interval: TimeRange,
    appointments: Iterable[Appointment],
    blocked_slots: Iterable[BlockedSlot],
    exclude_id: Optional[str] = None,
) -> None:
    """
    Raise if ``interval`` collides with an appointment or a block.

    Appointments are checked first, so an interval hitting both reports
    the appointment conflict.

    Raises:
        AppointmentConflictError: Overlap with an existing appointment
        BlockedConflictError: Overlap with a blocked slot
    """
    taken = find_appointment_conflicts(interval, appointments, exclude_id=exclude_id)
    if taken:
        raise AppointmentConflictError(
            "This time slot overlaps with an existing appointment",
            business_id=business_id,
            interval=interval,
            conflicts=taken,
        )

    blocked = find_blocked_conflicts(interval, blocked_slots)
    if blocked:
        raise BlockedConflictError(
            "This time slot is blocked",
            business_id=business_id,
            interval=interval,
            conflicts=blocked,
        )
