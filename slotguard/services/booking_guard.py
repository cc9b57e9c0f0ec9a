"""
Booking conflict guard.

Every booking goes through ``BookingConflictGuard.try_create_appointment``:
the proposal is validated locally, then handed to the storage adapter's
``atomic_check_and_insert_appointment``, which runs the overlap check and the
insert as one unit scoped to the business. Two concurrent proposals for
overlapping intervals therefore yield exactly one appointment.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping, Optional, Protocol, Tuple, Union

import pendulum
from pendulum import DateTime

from ..domain.conflicts import find_appointment_conflicts, find_blocked_conflicts
from ..domain.exceptions import AppointmentNotFoundError, ConflictError, ValidationError
from ..domain.models import (
    ACTIVE_STATUSES,
    Appointment,
    AppointmentPayload,
    AppointmentStatus,
    TimeRange,
    to_datetime,
)
from ..domain.validation import (
    BookingPolicy,
    CustomerInfo,
    parse_customer,
    validate_proposed_interval,
)
from .availability import ScheduleSourceProtocol

logger = logging.getLogger(__name__)

ProposedInterval = Union[TimeRange, Tuple[Any, Any]]

CUSTOMER_FIELDS = ("name", "email", "phone", "notes")


class BookingStoreProtocol(ScheduleSourceProtocol, Protocol):
    """Storage collaborator needed by the conflict guard."""

    async def atomic_check_and_insert_appointment(
        self,
        business_id: str,
        interval: TimeRange,
        payload: AppointmentPayload,
    ) -> Appointment:
        """
        Check for conflicts and insert in one atomic unit for ``business_id``.

        Raises ``AppointmentConflictError`` or ``BlockedConflictError`` and
        leaves no trace when the interval is taken.
        """

    async def update_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        now: DateTime,
    ) -> Appointment:
        """Change the status of an appointment, enforcing the cancellation rule."""

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        """Return an appointment by id, or None."""

    async def get_appointment_by_token(self, booking_token: str) -> Optional[Appointment]:
        """Return an appointment by booking token, or None."""

    async def update_customer_details(
        self,
        appointment_id: str,
        changes: Mapping[str, Any],
        now: DateTime,
    ) -> Appointment:
        """Merge and validate customer detail changes of an appointment."""

    async def list_appointments_by_customer(self, customer_id: str) -> List[Appointment]:
        """Return the appointments of a registered customer, newest first."""


class BookingConflictGuard:
    """
    Accepts or rejects proposed bookings for a business.

    Conflicts are raised as ``AppointmentConflictError`` or
    ``BlockedConflictError`` so that callers can tell the customer why the
    slot is gone. Nothing is retried here.
    """

    def __init__(
        self,
        store: BookingStoreProtocol,
        policy: BookingPolicy | None = None,
        clock: Callable[[], DateTime] | None = None,
    ) -> None:
        self._store = store
        self._policy = policy or BookingPolicy()
        self._clock = clock or pendulum.now

    def _now(self, now: Any = None) -> DateTime:
        return to_datetime(now) if now is not None else self._clock()

    async def try_create_appointment(
        self,
        business_id: str,
        proposed: ProposedInterval,
        customer: CustomerInfo | Mapping[str, Any],
        status: AppointmentStatus | str | None = None,
        now: DateTime | None = None,
    ) -> Appointment:
        """
        Validate a proposed booking and commit it if the interval is free.

        Args:
            business_id: Business to book
            proposed: ``TimeRange`` or ``(start, end)`` pair
            customer: ``CustomerInfo`` or a mapping of its fields
            status: ``pending`` or ``confirmed``; defaults to the policy's status
            now: Current instant; defaults to the guard's clock

        Returns:
            The created appointment, including its booking token

        Raises:
            ValidationError: If the proposal or the customer details are invalid
            AppointmentConflictError: If an appointment already occupies the time
            BlockedConflictError: If the time is blocked
            BusinessNotFoundError: If the business is unknown to the store
        """
        now = self._now(now)

        if isinstance(proposed, TimeRange):
            start, end = proposed.start, proposed.end
        else:
            start, end = proposed

        interval = validate_proposed_interval(start, end, now, self._policy)
        customer_info = parse_customer(customer)

        try:
            status = AppointmentStatus(status or self._policy.default_status)
        except ValueError as exc:
            raise ValidationError(f"Unknown appointment status: {status!r}") from exc
        if status not in ACTIVE_STATUSES:
            raise ValidationError(
                f"New appointments must be pending or confirmed, got {status.value}"
            )

        payload = AppointmentPayload(customer=customer_info, status=status, created_at=now)

        try:
            appointment = await self._store.atomic_check_and_insert_appointment(
                business_id, interval, payload
            )
        except ConflictError as exc:
            logger.info(
                "Rejected booking for business %s at %s: %s conflict",
                business_id,
                interval,
                exc.kind,
            )
            raise

        logger.info(
            "Created appointment %s for business %s at %s (%s)",
            appointment.id,
            business_id,
            interval,
            appointment.status.value,
        )
        return appointment

    async def is_slot_available(
        self,
        business_id: str,
        proposed: ProposedInterval,
    ) -> bool:
        """
        Non-committing pre-check of a proposed interval.

        A ``True`` answer is only a hint; ``try_create_appointment`` re-checks
        atomically.
        """
        interval = proposed if isinstance(proposed, TimeRange) else TimeRange(*proposed)
        appointments = await self._store.fetch_active_appointments(
            business_id, interval.start, interval.end
        )
        blocked_slots = await self._store.fetch_blocked_slots(
            business_id, interval.start, interval.end
        )
        return not (
            find_appointment_conflicts(interval, appointments)
            or find_blocked_conflicts(interval, blocked_slots)
        )

    async def change_status(
        self,
        appointment_id: str,
        status: AppointmentStatus | str,
        now: DateTime | None = None,
    ) -> Appointment:
        """
        Move an appointment to a new status.

        Cancelling stamps ``cancelled_at``; leaving ``cancelled`` clears it.
        Re-activating a cancelled or no-show appointment is conflict checked.
        """
        try:
            status = AppointmentStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown appointment status: {status!r}") from exc

        appointment = await self._store.update_appointment_status(
            appointment_id, status, self._now(now)
        )
        logger.info("Appointment %s is now %s", appointment.id, appointment.status.value)
        return appointment

    async def find_by_token(self, booking_token: str) -> Appointment:
        """
        Look up an appointment by its customer-facing booking token.

        Raises:
            AppointmentNotFoundError: If no appointment has this token
        """
        appointment = await self._store.get_appointment_by_token(booking_token)
        if appointment is None:
            raise AppointmentNotFoundError("No appointment matches this booking token")
        return appointment

    async def cancel_by_token(
        self,
        booking_token: str,
        now: DateTime | None = None,
    ) -> Appointment:
        """Cancel the appointment identified by a booking token."""
        appointment = await self.find_by_token(booking_token)
        return await self.change_status(appointment.id, AppointmentStatus.CANCELLED, now=now)

    async def list_active_appointments(
        self,
        business_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        """Active appointments of a business overlapping ``[start, end)``."""
        appointments = await self._store.fetch_active_appointments(business_id, start, end)
        return sorted(
            (appointment for appointment in appointments if appointment.is_active),
            key=lambda appointment: appointment.start,
        )

    async def update_customer_details(
        self,
        appointment_id: str,
        now: DateTime | None = None,
        **changes: Any,
    ) -> Appointment:
        """
        Change the name, email, phone or notes of an appointment.

        Raises:
            ValidationError: If no field or an unknown field is given, or the
                resulting details are invalid
            AppointmentNotFoundError: If the appointment does not exist
        """
        if not changes:
            raise ValidationError("At least one field must be provided for update")
        unknown = sorted(set(changes) - set(CUSTOMER_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown customer field(s): {', '.join(unknown)}")

        appointment = await self._store.update_customer_details(
            appointment_id, changes, self._now(now)
        )
        logger.info(
            "Updated %s of appointment %s", ", ".join(sorted(changes)), appointment.id
        )
        return appointment

    async def list_appointments_by_customer(self, customer_id: str) -> List[Appointment]:
        """Every appointment of a registered customer, newest first."""
        return await self._store.list_appointments_by_customer(customer_id)
