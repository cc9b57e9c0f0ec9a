"""
Domain models for schedules, appointments and slot calculations.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import TYPE_CHECKING, Any, FrozenSet, Iterable, List, Tuple

import pendulum
from pendulum import DateTime

if TYPE_CHECKING:
    from .validation import CustomerInfo


WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def weekday_name(day: date) -> str:
    """Return the lower-case weekday name for a date (matches stored schedules)."""
    return WEEKDAY_NAMES[day.weekday()]


def to_datetime(value: Any, tz: str = "UTC") -> DateTime:
    """
    Normalise a datetime-like value to a pendulum ``DateTime``.

    Naive datetimes and ISO strings without an offset are interpreted in ``tz``.
    """
    if isinstance(value, DateTime):
        return value
    if isinstance(value, datetime):
        return pendulum.instance(value, tz=tz)
    if isinstance(value, str):
        parsed = pendulum.parse(value, tz=tz)
        if isinstance(parsed, DateTime):
            return parsed
    raise TypeError(f"Cannot interpret {value!r} as a datetime")


def overlaps(a: Any, b: Any) -> bool:
    """
    Half-open interval overlap test.

    ``[a.start, a.end)`` and ``[b.start, b.end)`` overlap iff
    ``a.start < b.end and b.start < a.end``. Back-to-back intervals
    (``a.end == b.start``) do not overlap.
    """
    return a.start < b.end and b.start < a.end


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable half-open time range ``[start, end)``.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        object.__setattr__(self, "start", to_datetime(self.start))
        object.__setattr__(self, "end", to_datetime(self.end))
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: Any) -> bool:
        """Check if this range overlaps with another."""
        return overlaps(self, other)

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class TimeOfDayRange:
    """A daily ``[start, end)`` window expressed as times of day."""
    start: time
    end: time

    def start_minutes(self) -> int:
        return self.start.hour * 60 + self.start.minute

    def end_minutes(self) -> int:
        return self.end.hour * 60 + self.end.minute

    def anchor(self, day: DateTime) -> TimeRange:
        """Place this window on the civil date of ``day``."""
        return TimeRange(start=at_time(day, self.start), end=at_time(day, self.end))

    def __str__(self) -> str:
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"


def at_time(day: DateTime, moment: time) -> DateTime:
    """Return ``day`` with its time-of-day replaced by ``moment``."""
    return day.set(hour=moment.hour, minute=moment.minute, second=0, microsecond=0)


@dataclass(frozen=True)
class BusinessSchedule:
    """
    Weekly booking configuration of a business.

    The core only reads schedules; validation happens in
    ``slotguard.domain.validation.validate_schedule``.
    """
    available_days: FrozenSet[str]
    available_hours: TimeOfDayRange
    slot_duration_minutes: int
    break_times: Tuple[TimeOfDayRange, ...] = ()
    min_advance_booking_minutes: int = 0
    max_advance_booking_days: int = 90
    business_id: str | None = None
    timezone: str = "UTC"

    def __post_init__(self):
        object.__setattr__(
            self, "available_days", frozenset(day.lower() for day in self.available_days)
        )
        object.__setattr__(self, "break_times", tuple(self.break_times))

    def anchor_day(self, target_date: date) -> DateTime:
        """
        Return midnight of ``target_date``'s civil date.

        A bare date is placed in the schedule's timezone. A datetime is first
        converted to the schedule's timezone (naive ones are taken as local to
        it), then its time-of-day is dropped.
        """
        if isinstance(target_date, datetime):
            local = pendulum.instance(target_date, tz=self.timezone).in_timezone(self.timezone)
            return local.start_of("day")
        return pendulum.datetime(
            target_date.year, target_date.month, target_date.day, tz=self.timezone
        )

    def is_available_day(self, target_date: date) -> bool:
        """Check if bookings are accepted on the weekday of the anchored date."""
        return weekday_name(self.anchor_day(target_date)) in self.available_days

    def day_window(self, day: DateTime) -> TimeRange:
        """Opening hours placed on the civil date of ``day``."""
        return self.available_hours.anchor(day)

    def breaks_for_day(self, day: DateTime) -> List[TimeRange]:
        """Break periods placed on the civil date of ``day``."""
        return [break_time.anchor(day) for break_time in self.break_times]


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Statuses that make a slot unavailable when generating availability.
ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})

# Statuses that never occupy time in conflict checks.
INERT_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW})


@dataclass(frozen=True)
class Appointment:
    """A booking of a business for ``[start, end)``."""
    id: str
    business_id: str
    start: DateTime
    end: DateTime
    status: AppointmentStatus = AppointmentStatus.PENDING
    booking_token: str = ""
    customer: "CustomerInfo | None" = None
    created_at: DateTime | None = None
    updated_at: DateTime | None = None
    cancelled_at: DateTime | None = None

    def __post_init__(self):
        object.__setattr__(self, "start", to_datetime(self.start))
        object.__setattr__(self, "end", to_datetime(self.end))
        object.__setattr__(self, "status", AppointmentStatus(self.status))
        for name in ("created_at", "updated_at", "cancelled_at"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, to_datetime(value))
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)

    @property
    def is_active(self) -> bool:
        """Pending and confirmed appointments block availability."""
        return self.status in ACTIVE_STATUSES

    @property
    def occupies_time(self) -> bool:
        """Everything except cancelled and no-show appointments takes part in conflict checks."""
        return self.status not in INERT_STATUSES

    def duration_minutes(self) -> int:
        return self.time_range.duration_minutes()


@dataclass(frozen=True)
class BlockedSlot:
    """An owner-defined interval during which nothing can be booked."""
    id: str
    business_id: str
    start: DateTime
    end: DateTime
    reason: str | None = None
    created_by: str | None = None
    created_at: DateTime | None = None

    def __post_init__(self):
        object.__setattr__(self, "start", to_datetime(self.start))
        object.__setattr__(self, "end", to_datetime(self.end))
        if self.created_at is not None:
            object.__setattr__(self, "created_at", to_datetime(self.created_at))
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)


@dataclass(frozen=True)
class AvailableSlot:
    """
    Represents a bookable slot produced by the calculator.

    Slots are ephemeral and never persisted.
    """
    start: DateTime
    end: DateTime

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.start, end=self.end)

    def duration_minutes(self) -> int:
        return self.time_range.duration_minutes()

    def to_dict(self) -> dict:
        """Serialise to ISO 8601 strings."""
        return {"start": self.start.to_iso8601_string(), "end": self.end.to_iso8601_string()}

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Weekday, YYYY-MM-DD | HH:MM – HH:MM
        """
        weekday = weekday_name(self.start).capitalize()
        date_str = self.start.format("YYYY-MM-DD")
        time_str = f"{self.start.format('HH:mm')} – {self.end.format('HH:mm')}"
        return f"{weekday}, {date_str} | {time_str} ({self.duration_minutes()} min)"


def active_only(appointments: Iterable[Appointment]) -> List[Appointment]:
    """Keep the appointments whose status blocks availability."""
    return [appointment for appointment in appointments if appointment.is_active]


@dataclass(frozen=True)
class AppointmentPayload:
    """Caller-supplied part of a new appointment; id and token are assigned on insert."""
    customer: "CustomerInfo | None" = None
    status: AppointmentStatus = AppointmentStatus.PENDING
    created_at: DateTime | None = None
