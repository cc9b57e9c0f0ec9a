"""
Configuration management using Pydantic models loaded from YAML.
"""

import re
from datetime import datetime, time
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import (
    WEEKDAY_NAMES,
    Appointment,
    AppointmentStatus,
    BlockedSlot,
    BusinessSchedule,
    TimeOfDayRange,
)
from .domain.conflicts import find_appointment_conflicts
from .domain.validation import BookingPolicy, CustomerInfo

TIME_PATTERN = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")

STANDARD_SLOT_DURATIONS = (5, 10, 15, 20, 30, 45, 60, 90, 120, 180, 240, 480)

MAX_BREAKS = 10


def parse_time_of_day(value: str) -> time:
    """Parse a 24-hour ``HH:mm`` string."""
    if not TIME_PATTERN.match(value):
        raise ValueError(f"Must be in HH:mm format (e.g., 09:00, 17:30), got {value!r}")
    hour, minute = value.split(":")
    return time(hour=int(hour), minute=int(minute))


class TimeWindowConfig(BaseModel):
    """A daily window such as opening hours or a lunch break."""
    start: str
    end: str
    label: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def validate_format(cls, value: str) -> str:
        parse_time_of_day(value)
        return value

    @model_validator(mode="after")
    def validate_order(self) -> "TimeWindowConfig":
        """Ensure the window opens before it closes."""
        if parse_time_of_day(self.end) <= parse_time_of_day(self.start):
            raise ValueError(f"End time {self.end} must be after start time {self.start}")
        return self

    def to_range(self) -> TimeOfDayRange:
        return TimeOfDayRange(start=parse_time_of_day(self.start), end=parse_time_of_day(self.end))


class BusinessConfig(BaseModel):
    """Schedule settings of one business."""
    id: str
    name: str = ""
    timezone: str = "UTC"
    available_days: List[str]
    available_hours: TimeWindowConfig
    break_times: List[TimeWindowConfig] = Field(default_factory=list)
    slot_duration_minutes: int = 30
    min_advance_booking_minutes: int = Field(default=0, ge=0, le=43200)
    max_advance_booking_days: int = Field(default=90, ge=1, le=365)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Must be a valid IANA timezone, got {value!r}") from exc
        return value

    @field_validator("available_days")
    @classmethod
    def validate_available_days(cls, value: List[str]) -> List[str]:
        """Ensure weekdays are known and unique."""
        days = [day.lower() for day in value]
        if not days:
            raise ValueError("At least one available day is required")
        unknown = [day for day in days if day not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"Unknown weekday(s): {unknown}")
        if len(set(days)) != len(days):
            raise ValueError("Available days must be unique")
        return days

    @field_validator("break_times")
    @classmethod
    def validate_break_count(cls, value: List[TimeWindowConfig]) -> List[TimeWindowConfig]:
        if len(value) > MAX_BREAKS:
            raise ValueError(f"Cannot have more than {MAX_BREAKS} break periods")
        return value

    @field_validator("slot_duration_minutes")
    @classmethod
    def validate_slot_duration(cls, value: int) -> int:
        if value not in STANDARD_SLOT_DURATIONS:
            raise ValueError(
                f"Slot duration must be one of {', '.join(map(str, STANDARD_SLOT_DURATIONS))} minutes"
            )
        return value

    @model_validator(mode="after")
    def validate_breaks(self) -> "BusinessConfig":
        """Breaks must fall within opening hours and must not overlap each other."""
        hours = self.available_hours.to_range()
        breaks = sorted((b.to_range() for b in self.break_times), key=lambda b: b.start)

        for break_time in breaks:
            if break_time.start < hours.start or break_time.end > hours.end:
                raise ValueError(f"Break {break_time} must fall within available hours {hours}")

        for previous, current in zip(breaks, breaks[1:]):
            if current.start < previous.end:
                raise ValueError(f"Breaks {previous} and {current} must not overlap")

        return self

    def to_schedule(self) -> BusinessSchedule:
        return BusinessSchedule(
            business_id=self.id,
            timezone=self.timezone,
            available_days=frozenset(self.available_days),
            available_hours=self.available_hours.to_range(),
            break_times=tuple(b.to_range() for b in self.break_times),
            slot_duration_minutes=self.slot_duration_minutes,
            min_advance_booking_minutes=self.min_advance_booking_minutes,
            max_advance_booking_days=self.max_advance_booking_days,
        )


class BookingConfig(BaseModel):
    """Limits applied to proposed bookings."""
    clock_skew_tolerance_seconds: int = Field(default=60, ge=0)
    min_duration_minutes: int = Field(default=1, ge=1)
    max_duration_minutes: int = Field(default=1440, ge=1)
    default_status: AppointmentStatus = AppointmentStatus.PENDING

    @field_validator("default_status")
    @classmethod
    def validate_default_status(cls, value: AppointmentStatus) -> AppointmentStatus:
        if value not in (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED):
            raise ValueError("default_status must be pending or confirmed")
        return value

    @model_validator(mode="after")
    def validate_duration_bounds(self) -> "BookingConfig":
        if self.max_duration_minutes < self.min_duration_minutes:
            raise ValueError("max_duration_minutes must not be below min_duration_minutes")
        return self

    def to_policy(self) -> BookingPolicy:
        return BookingPolicy(
            clock_skew_tolerance_seconds=self.clock_skew_tolerance_seconds,
            min_duration_minutes=self.min_duration_minutes,
            max_duration_minutes=self.max_duration_minutes,
            default_status=self.default_status,
        )


class SeedAppointment(BaseModel):
    """An existing appointment loaded into the in-memory store."""
    id: str
    business_id: str
    start: datetime
    end: datetime
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    booking_token: str = ""
    customer: Optional[CustomerInfo] = None
    cancelled_at: Optional[datetime] = None

    def to_appointment(self) -> Appointment:
        cancelled_at = self.cancelled_at
        if self.status == AppointmentStatus.CANCELLED and cancelled_at is None:
            cancelled_at = self.start
        return Appointment(
            id=self.id,
            business_id=self.business_id,
            start=self.start,
            end=self.end,
            status=self.status,
            booking_token=self.booking_token,
            customer=self.customer,
            cancelled_at=cancelled_at,
        )


class SeedBlockedSlot(BaseModel):
    """An owner-defined block loaded into the in-memory store."""
    id: str
    business_id: str
    start: datetime
    end: datetime
    reason: Optional[str] = None
    created_by: Optional[str] = None

    def to_blocked_slot(self) -> BlockedSlot:
        return BlockedSlot(
            id=self.id,
            business_id=self.business_id,
            start=self.start,
            end=self.end,
            reason=self.reason,
            created_by=self.created_by,
        )


class AppConfig(BaseModel):
    """Application configuration."""
    log_level: str = "INFO"
    booking: BookingConfig = Field(default_factory=BookingConfig)
    businesses: List[BusinessConfig] = Field(default_factory=list)
    appointments: List[SeedAppointment] = Field(default_factory=list)
    blocked_slots: List[SeedBlockedSlot] = Field(default_factory=list)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value

    @field_validator("businesses")
    @classmethod
    def validate_businesses(cls, value: List[BusinessConfig]) -> List[BusinessConfig]:
        """Ensure business ids are unique."""
        seen: set[str] = set()
        for business in value:
            if business.id in seen:
                raise ValueError(f"Duplicate business id detected: {business.id}")
            seen.add(business.id)
        return value

    @model_validator(mode="after")
    def validate_seed_references(self) -> "AppConfig":
        """Seed records must belong to a configured business."""
        known = {business.id for business in self.businesses}
        for record in [*self.appointments, *self.blocked_slots]:
            if record.business_id not in known:
                raise ValueError(
                    f"{type(record).__name__} {record.id} references unknown business {record.business_id}"
                )
        return self

    @model_validator(mode="after")
    def validate_seed_overlaps(self) -> "AppConfig":
        """Occupying seed appointments of one business must not overlap."""
        accepted: List[Appointment] = []
        for seed in self.appointments:
            appointment = seed.to_appointment()
            if not appointment.occupies_time:
                continue
            taken = find_appointment_conflicts(
                appointment.time_range,
                (other for other in accepted if other.business_id == appointment.business_id),
            )
            if taken:
                raise ValueError(
                    f"Appointment {appointment.id} overlaps appointment {taken[0].id} "
                    f"of business {appointment.business_id}"
                )
            accepted.append(appointment)
        return self

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    def find_business(self, business_id: str) -> BusinessConfig | None:
        """Find a business by its id."""
        for business in self.businesses:
            if business.id == business_id:
                return business
        return None


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of slotguard/)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
