"""
Appointment lifecycle rules: booking tokens and status transitions.
"""

import dataclasses
import secrets

from pendulum import DateTime

from .exceptions import ValidationError
from .models import Appointment, AppointmentStatus

TOKEN_BYTES = 16


def generate_booking_token() -> str:
    """Return an unguessable 32-character hex token."""
    return secrets.token_hex(TOKEN_BYTES)


def check_cancellation_invariant(appointment: Appointment) -> Appointment:
    """
    Verify that ``cancelled_at`` is set iff the status is ``cancelled``.

    Raises:
        ValidationError: If the invariant does not hold
    """
    is_cancelled = appointment.status == AppointmentStatus.CANCELLED
    has_timestamp = appointment.cancelled_at is not None
    if is_cancelled != has_timestamp:
        raise ValidationError(
            f"Appointment {appointment.id}: cancellation timestamp must be present "
            f"exactly when the status is cancelled (status={appointment.status.value})"
        )
    return appointment


def apply_status_change(
    appointment: Appointment,
    status: AppointmentStatus,
    now: DateTime,
) -> Appointment:
    """
    Return a copy of ``appointment`` moved to ``status``.

    Cancelling stamps ``cancelled_at`` (an existing stamp is kept); leaving
    ``cancelled`` clears it.
    """
    status = AppointmentStatus(status)

    cancelled_at = appointment.cancelled_at
    if status == AppointmentStatus.CANCELLED:
        cancelled_at = cancelled_at or now
    else:
        cancelled_at = None

    updated = dataclasses.replace(
        appointment,
        status=status,
        cancelled_at=cancelled_at,
        updated_at=now,
    )
    return check_cancellation_invariant(updated)
