"""
Application service for listing bookable slots.

The service fetches a business's schedule, appointments and blocks through a
storage adapter and delegates the actual availability calculation to the
domain-level ``SlotCalculator``. Depending on a protocol instead of a concrete
store keeps the service testable with simple stubs.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import List, Protocol

import pendulum
from pendulum import DateTime

from ..domain.models import (
    Appointment,
    AvailableSlot,
    BlockedSlot,
    BusinessSchedule,
    active_only,
    to_datetime,
)
from ..domain.slot_calculator import SlotCalculator

logger = logging.getLogger(__name__)


class ScheduleSourceProtocol(Protocol):
    """Read side of the storage collaborator needed to compute availability."""

    async def fetch_business_schedule(self, business_id: str) -> BusinessSchedule:
        """Return the schedule of a business or raise ``BusinessNotFoundError``."""

    async def fetch_active_appointments(
        self,
        business_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        """Return the business's active appointments overlapping ``[start, end)``."""

    async def fetch_blocked_slots(
        self,
        business_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[BlockedSlot]:
        """Return the business's blocked slots overlapping ``[start, end)``."""


class AvailabilityService:
    """Orchestrates storage reads and slot calculation for one business and date."""

    def __init__(self, store: ScheduleSourceProtocol) -> None:
        self._store = store

    async def find_slots(
        self,
        business_id: str,
        target_date: date,
        now: DateTime | None = None,
    ) -> List[AvailableSlot]:
        """
        Compute the bookable slots of ``business_id`` on ``target_date``.

        Raises:
            BusinessNotFoundError: If the business has no stored schedule
            InvalidScheduleError: If the stored schedule is malformed
        """
        schedule = await self._store.fetch_business_schedule(business_id)
        calculator = SlotCalculator(schedule)

        if not schedule.is_available_day(target_date):
            logger.debug("Business %s is closed on %s", business_id, target_date)
            return []

        day = schedule.anchor_day(target_date)
        day_end = day.add(days=1)

        appointments, blocked_slots = await asyncio.gather(
            self._store.fetch_active_appointments(business_id, day, day_end),
            self._store.fetch_blocked_slots(business_id, day, day_end),
        )

        slots = calculator.generate_available_slots(
            target_date,
            active_appointments=active_only(appointments),
            blocked_slots=blocked_slots,
            now=to_datetime(now) if now is not None else pendulum.now(schedule.timezone),
        )

        logger.debug(
            "Business %s on %s: %d slot(s) available (%d appointment(s), %d block(s))",
            business_id,
            day.to_date_string(),
            len(slots),
            len(appointments),
            len(blocked_slots),
        )
        return slots
