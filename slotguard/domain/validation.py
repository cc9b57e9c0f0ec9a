"""
Input validation for schedules, proposed bookings and customer details.

Schedule problems are configuration bugs and raise ``InvalidScheduleError``.
Booking problems are rejected with ``ValidationError`` before any storage
round-trip is attempted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from itertools import combinations
from typing import Any, Mapping, Optional

from pendulum import DateTime
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import InvalidScheduleError, ValidationError
from .models import (
    WEEKDAY_NAMES,
    AppointmentStatus,
    BusinessSchedule,
    TimeRange,
    to_datetime,
)


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]{7,20}$")


def validate_schedule(schedule: BusinessSchedule) -> BusinessSchedule:
    """
    Fail fast on a schedule that would produce silently wrong availability.

    Raises:
        InvalidScheduleError: If any structural rule is violated
    """
    label = schedule.business_id or "<unnamed>"

    if not schedule.available_days:
        raise InvalidScheduleError(f"Business {label}: at least one available day is required")

    unknown_days = sorted(schedule.available_days - set(WEEKDAY_NAMES))
    if unknown_days:
        raise InvalidScheduleError(f"Business {label}: unknown weekday(s) {unknown_days}")

    hours = schedule.available_hours
    if hours.start_minutes() >= hours.end_minutes():
        raise InvalidScheduleError(
            f"Business {label}: opening time {hours.start} must be before closing time {hours.end}"
        )

    if schedule.slot_duration_minutes <= 0:
        raise InvalidScheduleError(
            f"Business {label}: slot duration must be positive, got {schedule.slot_duration_minutes}"
        )

    if schedule.min_advance_booking_minutes < 0:
        raise InvalidScheduleError(
            f"Business {label}: minimum advance booking cannot be negative"
        )

    if schedule.max_advance_booking_days <= 0:
        raise InvalidScheduleError(
            f"Business {label}: maximum advance booking must be at least one day"
        )

    for break_time in schedule.break_times:
        if break_time.start_minutes() >= break_time.end_minutes():
            raise InvalidScheduleError(f"Business {label}: break {break_time} ends before it starts")
        if (
            break_time.start_minutes() < hours.start_minutes()
            or break_time.end_minutes() > hours.end_minutes()
        ):
            raise InvalidScheduleError(
                f"Business {label}: break {break_time} lies outside opening hours {hours}"
            )

    for first, second in combinations(schedule.break_times, 2):
        if (
            first.start_minutes() < second.end_minutes()
            and second.start_minutes() < first.end_minutes()
        ):
            raise InvalidScheduleError(f"Business {label}: breaks {first} and {second} overlap")

    return schedule


@dataclass(frozen=True)
class BookingPolicy:
    """Limits applied to every proposed booking."""
    clock_skew_tolerance_seconds: int = 60
    min_duration_minutes: int = 1
    max_duration_minutes: int = 1440
    default_status: AppointmentStatus = AppointmentStatus.PENDING


def validate_proposed_interval(
    start: Any,
    end: Any,
    now: DateTime,
    policy: BookingPolicy | None = None,
) -> TimeRange:
    """
    Check the shape of a proposed booking and return it as a ``TimeRange``.

    Args:
        start: Proposed start (datetime or ISO string)
        end: Proposed end (datetime or ISO string)
        now: Current instant
        policy: Duration and clock-skew limits (defaults apply when omitted)

    Raises:
        ValidationError: If the interval is empty, in the past or of an
            unreasonable length
    """
    policy = policy or BookingPolicy()

    try:
        start = to_datetime(start)
        end = to_datetime(end)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid appointment time: {exc}") from exc

    if end <= start:
        raise ValidationError("End time must be after start time")

    earliest = now - timedelta(seconds=policy.clock_skew_tolerance_seconds)
    if start < earliest:
        raise ValidationError("Cannot book appointments in the past")

    duration = (end - start).total_seconds() / 60
    if duration < policy.min_duration_minutes:
        raise ValidationError(
            f"Duration must be at least {policy.min_duration_minutes} minute(s)"
        )
    if duration > policy.max_duration_minutes:
        raise ValidationError(
            f"Duration must not exceed {policy.max_duration_minutes} minutes"
        )

    return TimeRange(start=start, end=end)


class CustomerInfo(BaseModel):
    """Customer details attached to a booking (guest bookings have no customer_id)."""

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    phone: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    customer_id: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        """Lower-case and sanity-check the address."""
        value = value.lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Must be a valid email address")
        return value

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, value: Optional[str]) -> Optional[str]:
        """Allow +, digits, spaces, parentheses and hyphens."""
        if value is None or value == "":
            return None
        if not PHONE_PATTERN.match(value):
            raise ValueError(
                "Phone number must be 7-20 characters and contain only digits, spaces, +, -, or ()"
            )
        return value


def parse_customer(customer: CustomerInfo | Mapping[str, Any]) -> CustomerInfo:
    """
    Coerce a mapping into ``CustomerInfo``.

    Raises:
        ValidationError: If the customer details are invalid
    """
    if isinstance(customer, CustomerInfo):
        return customer
    try:
        return CustomerInfo.model_validate(dict(customer))
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid customer details: {exc}") from exc
