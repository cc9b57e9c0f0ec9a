"""
Core business logic for calculating bookable appointment slots.

This is the heart of the application - pure domain logic without any
external dependencies (no storage, no clock reads beyond the injected
``now``, no I/O).
"""

from datetime import date
from typing import List, Sequence

import pendulum
from pendulum import DateTime

from .models import (
    Appointment,
    AvailableSlot,
    BlockedSlot,
    BusinessSchedule,
    TimeRange,
    active_only,
    overlaps,
    to_datetime,
)
from .validation import validate_schedule


class SlotCalculator:
    """
    Calculates bookable slots for one business on one calendar date.

    Algorithm:
    1. Return nothing if the date's weekday is not an available day
    2. Place the opening hours and breaks on the target date
    3. Derive the booking window from ``now`` and the advance-booking policy
    4. Step through the opening hours in slot-duration increments
    5. Drop candidates that are elapsed, outside the booking window, or
       overlap a break, an active appointment or a blocked slot
    6. Return the survivors in chronological order
    """

    def __init__(self, schedule: BusinessSchedule):
        self.schedule = validate_schedule(schedule)

    def generate_available_slots(
        self,
        target_date: date,
        active_appointments: Sequence[Appointment] = (),
        blocked_slots: Sequence[BlockedSlot] = (),
        now: DateTime | None = None,
    ) -> List[AvailableSlot]:
        """
        Generate the bookable slots for ``target_date``.

        Args:
            target_date: Calendar date to generate slots for (time of day ignored)
            active_appointments: Appointments of this business around the date
            blocked_slots: Blocked periods of this business around the date
            now: Current instant; defaults to the wall clock

        Returns:
            List of AvailableSlot objects, sorted chronologically
        """
        schedule = self.schedule

        # Step 1: Day-of-week gate
        if not schedule.is_available_day(target_date):
            return []

        now = to_datetime(now) if now is not None else pendulum.now(schedule.timezone)

        # Step 2: Anchor the daily window and breaks on the target date
        day = schedule.anchor_day(target_date)
        window = schedule.day_window(day)
        breaks = schedule.breaks_for_day(day)

        # Step 3: Booking window
        booking_window_start = now.add(minutes=schedule.min_advance_booking_minutes)
        # Elapsed 24-hour days, not calendar days; differs by an hour across DST
        booking_window_end = now.add(hours=24 * schedule.max_advance_booking_days)

        # Status re-check; callers may pass an unfiltered list
        appointments = active_only(active_appointments)

        # Step 4: Enumerate candidates
        slots: List[AvailableSlot] = []
        step = schedule.slot_duration_minutes
        cursor = window.start

        while cursor < window.end:
            candidate_end = cursor.add(minutes=step)

            # No partial slot hanging past closing time
            if candidate_end <= window.end:
                candidate = TimeRange(start=cursor, end=candidate_end)

                # Step 5: Filter chain
                if self._is_bookable(
                    candidate,
                    now=now,
                    booking_window_start=booking_window_start,
                    booking_window_end=booking_window_end,
                    breaks=breaks,
                    appointments=appointments,
                    blocked_slots=blocked_slots,
                ):
                    slots.append(AvailableSlot(start=candidate.start, end=candidate.end))

            cursor = candidate_end

        return slots

    @staticmethod
    def _is_bookable(
        candidate: TimeRange,
        *,
        now: DateTime,
        booking_window_start: DateTime,
        booking_window_end: DateTime,
        breaks: Sequence[TimeRange],
        appointments: Sequence[Appointment],
        blocked_slots: Sequence[BlockedSlot],
    ) -> bool:
        """Apply every discard rule to a single candidate."""
        if candidate.end <= now:
            return False

        if candidate.start < booking_window_start:
            return False

        if candidate.start > booking_window_end:
            return False

        if any(overlaps(candidate, break_time) for break_time in breaks):
            return False

        if any(overlaps(candidate, appointment) for appointment in appointments):
            return False

        if any(overlaps(candidate, blocked) for blocked in blocked_slots):
            return False

        return True


def generate_available_slots(
    schedule: BusinessSchedule,
    target_date: date,
    active_appointments: Sequence[Appointment] = (),
    blocked_slots: Sequence[BlockedSlot] = (),
    now: DateTime | None = None,
) -> List[AvailableSlot]:
    """Functional shortcut for ``SlotCalculator(schedule).generate_available_slots``."""
    return SlotCalculator(schedule).generate_available_slots(
        target_date,
        active_appointments=active_appointments,
        blocked_slots=blocked_slots,
        now=now,
    )
