"""
Domain-specific exception hierarchy for the booking engine.
"""

from __future__ import annotations

from typing import Any, Sequence


class SlotguardError(Exception):
    """Base class for all application-level errors."""


class ConfigurationError(SlotguardError, ValueError):
    """Raised when a business configuration is malformed."""


class InvalidScheduleError(ConfigurationError):
    """Raised when a business schedule cannot produce meaningful availability."""


class ValidationError(SlotguardError, ValueError):
    """Raised when a proposed booking has an invalid shape."""


class NotFoundError(SlotguardError, LookupError):
    """Raised when a requested record does not exist."""


class BusinessNotFoundError(NotFoundError):
    """Raised when no schedule is stored for a business."""


class AppointmentNotFoundError(NotFoundError):
    """Raised when an appointment id or booking token is unknown."""


class ConflictError(SlotguardError):
    """
    Raised when a proposed interval collides with time that is already taken.

    Conflicts are an expected, user-facing outcome. Callers inspect the
    concrete subclass to decide which message to show.
    """

    kind = "conflict"

    def __init__(
        self,
        message: str,
        *,
        business_id: str,
        interval: Any,
        conflicts: Sequence[Any] = (),
    ) -> None:
        super().__init__(message)
        self.business_id = business_id
        self.interval = interval
        self.conflicts = list(conflicts)


class AppointmentConflictError(ConflictError):
    """The proposed interval overlaps an existing appointment."""

    kind = "appointment"


class BlockedConflictError(ConflictError):
    """The proposed interval overlaps a blocked slot."""

    kind = "blocked"
