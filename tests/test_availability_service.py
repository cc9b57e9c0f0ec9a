"""
Tests for the AvailabilityService orchestration layer.
"""

import asyncio
from datetime import time
from typing import Dict, List

import pendulum
import pytest

from slotguard.domain.exceptions import BusinessNotFoundError
from slotguard.domain.models import (
    Appointment,
    AppointmentStatus,
    BlockedSlot,
    BusinessSchedule,
    TimeOfDayRange,
)
from slotguard.services.availability import AvailabilityService


TZ = "Europe/Berlin"


def _at(hour: int, minute: int = 0, day: int = 25) -> pendulum.DateTime:
    return pendulum.datetime(2024, 11, day, hour, minute, tz=TZ)


class StubScheduleSource:
    """Minimal stub matching ScheduleSourceProtocol."""

    def __init__(self, schedule, appointments=(), blocked_slots=()):
        self._schedule = schedule
        self._appointments = list(appointments)
        self._blocked_slots = list(blocked_slots)
        self.calls: List[Dict[str, str]] = []

    async def fetch_business_schedule(self, business_id):
        if business_id != self._schedule.business_id:
            raise BusinessNotFoundError(f"Business not found: {business_id}")
        return self._schedule

    async def fetch_active_appointments(self, business_id, start, end):
        self.calls.append(
            {"what": "appointments", "start": start.to_datetime_string(), "end": end.to_datetime_string()}
        )
        return self._appointments

    async def fetch_blocked_slots(self, business_id, start, end):
        self.calls.append(
            {"what": "blocked", "start": start.to_datetime_string(), "end": end.to_datetime_string()}
        )
        return self._blocked_slots


def _schedule() -> BusinessSchedule:
    return BusinessSchedule(
        business_id="salon",
        available_days=frozenset(["monday", "tuesday", "wednesday", "thursday", "friday"]),
        available_hours=TimeOfDayRange(start=time(9), end=time(17)),
        break_times=[TimeOfDayRange(start=time(12), end=time(13))],
        slot_duration_minutes=60,
        timezone=TZ,
    )


def test_find_slots_uses_store_data_and_calculator():
    """End-to-end call should yield calculated slots."""
    source = StubScheduleSource(
        _schedule(),
        appointments=[Appointment(id="a", business_id="salon", start=_at(10), end=_at(11))],
        blocked_slots=[BlockedSlot(id="b", business_id="salon", start=_at(15), end=_at(16))],
    )
    service = AvailabilityService(source)

    slots = asyncio.run(service.find_slots("salon", pendulum.date(2024, 11, 25), now=_at(8)))

    assert [slot.start.hour for slot in slots] == [9, 11, 13, 14, 16]


def test_store_is_queried_for_the_local_day():
    source = StubScheduleSource(_schedule())
    service = AvailabilityService(source)

    asyncio.run(service.find_slots("salon", pendulum.date(2024, 11, 25), now=_at(8)))

    assert sorted(call["what"] for call in source.calls) == ["appointments", "blocked"]
    for call in source.calls:
        assert call["start"] == "2024-11-25 00:00:00"
        assert call["end"] == "2024-11-26 00:00:00"


def test_closed_day_skips_store_reads():
    source = StubScheduleSource(_schedule())
    service = AvailabilityService(source)

    slots = asyncio.run(service.find_slots("salon", pendulum.date(2024, 11, 23), now=_at(8)))

    assert slots == []
    assert source.calls == []


def test_inactive_appointments_from_store_are_ignored():
    """A store returning cancelled records must not hide free slots."""
    source = StubScheduleSource(
        _schedule(),
        appointments=[
            Appointment(
                id="a",
                business_id="salon",
                start=_at(10),
                end=_at(11),
                status=AppointmentStatus.CANCELLED,
                cancelled_at=_at(8),
            )
        ],
    )
    service = AvailabilityService(source)

    slots = asyncio.run(service.find_slots("salon", pendulum.date(2024, 11, 25), now=_at(8)))

    assert len(slots) == 7


def test_unknown_business():
    service = AvailabilityService(StubScheduleSource(_schedule()))

    with pytest.raises(BusinessNotFoundError):
        asyncio.run(service.find_slots("florist", pendulum.date(2024, 11, 25), now=_at(8)))
