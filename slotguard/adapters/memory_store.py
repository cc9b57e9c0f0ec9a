"""
In-memory storage adapter.

Implements the storage side of the booking engine for tests, the CLI and
single-process deployments. Writers for the same business are serialised by
one ``threading.Lock`` per business. The conflict check and the write run
synchronously while it is held, so the lock is never held across an
``await``; this makes a store safe to share between event loops and threads.
Different businesses never wait on each other.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional

from pendulum import DateTime

from ..domain.conflicts import ensure_no_conflict
from ..domain.exceptions import (
    AppointmentNotFoundError,
    BusinessNotFoundError,
    SlotguardError,
)
from ..domain.lifecycle import (
    apply_status_change,
    check_cancellation_invariant,
    generate_booking_token,
)
from ..domain.models import (
    Appointment,
    AppointmentPayload,
    AppointmentStatus,
    BlockedSlot,
    BusinessSchedule,
    TimeRange,
    overlaps,
)
from ..domain.validation import parse_customer

if TYPE_CHECKING:
    from ..config import AppConfig

logger = logging.getLogger(__name__)

MAX_TOKEN_ATTEMPTS = 5


class InMemoryBookingStore:
    """
    Dictionary-backed store for schedules, appointments and blocked slots.

    The booking token index is global, so tokens are unique across all
    businesses.
    """

    def __init__(
        self,
        token_factory: Callable[[], str] = generate_booking_token,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._token_factory = token_factory
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._schedules: Dict[str, BusinessSchedule] = {}
        self._appointments: Dict[str, Appointment] = {}
        self._tokens: Dict[str, str] = {}
        self._blocked_slots: Dict[str, BlockedSlot] = {}
        self._locks: Dict[str, threading.Lock] = {}
        # Guards lock creation and the token index
        self._registry_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: "AppConfig") -> "InMemoryBookingStore":
        """Build a store seeded with the businesses, appointments and blocks of a config."""
        store = cls()
        for business in config.businesses:
            store.add_business(business.to_schedule())
        for seed in config.appointments:
            store.seed_appointment(seed.to_appointment())
        for seed in config.blocked_slots:
            store.seed_blocked_slot(seed.to_blocked_slot())
        return store

    # Seeding (synchronous, for fixtures and configuration)

    def add_business(self, schedule: BusinessSchedule) -> None:
        if not schedule.business_id:
            raise ValueError("Stored schedules need a business_id")
        self._schedules[schedule.business_id] = schedule

    def seed_appointment(self, appointment: Appointment) -> Appointment:
        """
        Store an existing appointment, keeping its id, status and timestamps.

        Occupying appointments are conflict checked against the other
        appointments of the business; blocked slots are not consulted.

        Raises:
            AppointmentConflictError: If it overlaps an occupying appointment
        """
        check_cancellation_invariant(appointment)
        with self._lock_for(appointment.business_id):
            if appointment.occupies_time:
                ensure_no_conflict(
                    appointment.business_id,
                    appointment.time_range,
                    self._for_business(self._appointments.values(), appointment.business_id),
                    (),
                    exclude_id=appointment.id,
                )
            if not appointment.booking_token:
                appointment = self._with_token(appointment)
            else:
                with self._registry_lock:
                    owner = self._tokens.get(appointment.booking_token)
                    if owner is not None and owner != appointment.id:
                        raise SlotguardError(
                            f"Duplicate booking token for appointment {appointment.id}"
                        )
                    self._tokens[appointment.booking_token] = appointment.id
            self._write(appointment)
        return appointment

    def seed_blocked_slot(self, blocked: BlockedSlot) -> BlockedSlot:
        with self._lock_for(blocked.business_id):
            self._blocked_slots[blocked.id] = blocked
        return blocked

    def business_ids(self) -> List[str]:
        return sorted(self._schedules)

    # Read side

    async def fetch_business_schedule(self, business_id: str) -> BusinessSchedule:
        try:
            return self._schedules[business_id]
        except KeyError:
            raise BusinessNotFoundError(f"Business not found: {business_id}") from None

    async def fetch_active_appointments(
        self,
        business_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        window = TimeRange(start=start, end=end)
        return sorted(
            (
                appointment
                for appointment in self._for_business(self._appointments.values(), business_id)
                if appointment.is_active and overlaps(window, appointment)
            ),
            key=lambda appointment: appointment.start,
        )

    async def fetch_blocked_slots(
        self,
        business_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[BlockedSlot]:
        window = TimeRange(start=start, end=end)
        return sorted(
            (
                blocked
                for blocked in self._for_business(self._blocked_slots.values(), business_id)
                if overlaps(window, blocked)
            ),
            key=lambda blocked: blocked.start,
        )

    async def get_appointment(self, appointment_id: str) -> Optional[Appointment]:
        return self._appointments.get(appointment_id)

    async def get_appointment_by_token(self, booking_token: str) -> Optional[Appointment]:
        appointment_id = self._tokens.get(booking_token)
        if appointment_id is None:
            return None
        return self._appointments.get(appointment_id)

    async def list_appointments_by_customer(self, customer_id: str) -> List[Appointment]:
        """All appointments of a registered customer, newest first."""
        return sorted(
            (
                appointment
                for appointment in list(self._appointments.values())
                if appointment.customer is not None
                and appointment.customer.customer_id == customer_id
            ),
            key=lambda appointment: appointment.start,
            reverse=True,
        )

    # Write side

    async def atomic_check_and_insert_appointment(
        self,
        business_id: str,
        interval: TimeRange,
        payload: AppointmentPayload,
    ) -> Appointment:
        """
        Insert a new appointment unless ``interval`` is taken.

        The business lock is held from the conflict check until the record
        is stored.
        """
        if business_id not in self._schedules:
            raise BusinessNotFoundError(f"Business not found: {business_id}")

        with self._lock_for(business_id):
            ensure_no_conflict(
                business_id,
                interval,
                self._for_business(self._appointments.values(), business_id),
                self._for_business(self._blocked_slots.values(), business_id),
            )

            appointment = self._with_token(
                Appointment(
                    id=self._id_factory(),
                    business_id=business_id,
                    start=interval.start,
                    end=interval.end,
                    status=payload.status,
                    customer=payload.customer,
                    created_at=payload.created_at,
                    updated_at=payload.created_at,
                )
            )
            check_cancellation_invariant(appointment)
            self._write(appointment)

        logger.debug("Stored appointment %s for business %s", appointment.id, business_id)
        return appointment

    async def update_appointment_status(
        self,
        appointment_id: str,
        status: AppointmentStatus,
        now: DateTime,
    ) -> Appointment:
        current = self._require(appointment_id)

        with self._lock_for(current.business_id):
            # Re-read under the lock
            current = self._appointments[appointment_id]
            updated = apply_status_change(current, status, now)

            if updated.occupies_time and not current.occupies_time:
                ensure_no_conflict(
                    current.business_id,
                    updated.time_range,
                    self._for_business(self._appointments.values(), current.business_id),
                    self._for_business(self._blocked_slots.values(), current.business_id),
                    exclude_id=current.id,
                )

            self._write(updated)

        logger.debug(
            "Appointment %s: %s -> %s",
            appointment_id,
            current.status.value,
            updated.status.value,
        )
        return updated

    async def update_customer_details(
        self,
        appointment_id: str,
        changes: Mapping[str, Any],
        now: DateTime,
    ) -> Appointment:
        """
        Merge ``changes`` into the customer details of an appointment.

        The merged details are validated as a whole; the interval and status
        are untouched.

        Raises:
            ValidationError: If the merged details are invalid
        """
        current = self._require(appointment_id)

        with self._lock_for(current.business_id):
            current = self._appointments[appointment_id]
            existing = current.customer.model_dump() if current.customer else {}
            customer = parse_customer({**existing, **changes})
            updated = dataclasses.replace(current, customer=customer, updated_at=now)
            self._write(updated)

        logger.debug("Updated customer details of appointment %s", appointment_id)
        return updated

    async def add_blocked_slot(self, blocked: BlockedSlot) -> BlockedSlot:
        """Block an interval for a business."""
        if blocked.business_id not in self._schedules:
            raise BusinessNotFoundError(f"Business not found: {blocked.business_id}")
        with self._lock_for(blocked.business_id):
            self._blocked_slots[blocked.id] = blocked
        logger.debug("Blocked %s for business %s", blocked.time_range, blocked.business_id)
        return blocked

    async def remove_blocked_slot(self, blocked_id: str) -> None:
        blocked = self._blocked_slots.get(blocked_id)
        if blocked is None:
            return
        with self._lock_for(blocked.business_id):
            self._blocked_slots.pop(blocked_id, None)

    def _write(self, appointment: Appointment) -> None:
        """Persist a record. Always called with the business lock held."""
        self._appointments[appointment.id] = appointment
        with self._registry_lock:
            self._tokens[appointment.booking_token] = appointment.id

    def _require(self, appointment_id: str) -> Appointment:
        appointment = self._appointments.get(appointment_id)
        if appointment is None:
            raise AppointmentNotFoundError(f"Appointment not found: {appointment_id}")
        return appointment

    def _lock_for(self, business_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(business_id)
            if lock is None:
                lock = self._locks[business_id] = threading.Lock()
            return lock

    def _with_token(self, appointment: Appointment) -> Appointment:
        """Attach a token and reserve it in the global index."""
        with self._registry_lock:
            for _ in range(MAX_TOKEN_ATTEMPTS):
                token = self._token_factory()
                if token not in self._tokens:
                    self._tokens[token] = appointment.id
                    return dataclasses.replace(appointment, booking_token=token)
        raise SlotguardError("Could not generate a unique booking token")

    @staticmethod
    def _for_business(records: Iterable, business_id: str) -> List:
        # Snapshot first; other businesses may be writing concurrently
        return [record for record in list(records) if record.business_id == business_id]
