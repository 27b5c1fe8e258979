"""Caller-facing failure taxonomy for the reservation engine.

Each exception carries a stable ``kind`` (surfaced to clients in the
``X-Error-Kind`` header) and the HTTP status the controller layer maps it to.
"""

from __future__ import annotations


class ReservationError(Exception):
    """Base for every non-fatal reservation failure."""

    kind = "ReservationError"
    status_code = 400


class ReservationValidationError(ReservationError):
    """Raised for missing or malformed input."""

    kind = "ValidationError"
    status_code = 400


class AmenityInactiveError(ReservationValidationError):
    kind = "AmenityInactive"


class InvalidTimeFormatError(ReservationValidationError):
    kind = "InvalidTimeFormat"


class OutsideOperatingHoursError(ReservationValidationError):
    kind = "OutsideOperatingHours"


class ExceedsMaxDurationError(ReservationValidationError):
    kind = "ExceedsMaxDuration"


class InvalidIntervalError(ReservationValidationError):
    kind = "InvalidInterval"


class ReservationConflictError(ReservationError):
    """Raised when the request collides with already confirmed bookings."""

    kind = "Conflict"
    status_code = 409


class UserTimeConflictError(ReservationConflictError):
    kind = "UserTimeConflict"


class DuplicateDailyBookingError(ReservationConflictError):
    kind = "DuplicateDailyBooking"


class CapacityExceededError(ReservationConflictError):
    kind = "CapacityExceeded"


class NotFoundError(ReservationError):
    kind = "NotFound"
    status_code = 404


class AmenityNotFoundError(NotFoundError):
    kind = "AmenityNotFound"


class ReservationNotFoundError(NotFoundError):
    kind = "ReservationNotFound"


class ForbiddenError(ReservationError):
    kind = "Forbidden"
    status_code = 403


class InvalidStateTransitionError(ReservationError):
    """Raised when a trigger is not legal from the reservation's current status."""

    kind = "InvalidStateTransition"
    status_code = 409

    def __init__(self, message: str, *, current: str, trigger: str) -> None:
        super().__init__(message)
        self.current = current
        self.trigger = trigger
