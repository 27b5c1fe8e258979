"""Domain models for amenities, reservations and their lifecycle."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    FINALIZED = "finalized"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class Amenity:
    amenity_id: int
    name: str
    capacity: int
    max_duration_minutes: int
    open_time: str | None
    close_time: str | None
    is_active: bool
    requires_approval: bool

    @property
    def has_operating_hours(self) -> bool:
        return bool(self.open_time) and bool(self.close_time)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open ``[start, end)`` interval expressed in UTC."""

    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and self.end > other.start


@dataclass(frozen=True)
class Reservation:
    reservation_id: int
    user_id: int
    amenity_id: int
    start_time: datetime
    end_time: datetime
    status: ReservationStatus
    created_at: datetime
    hidden_from_user: bool = False
    amenity_name: str | None = None

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(start=self.start_time, end=self.end_time)


@dataclass(frozen=True)
class UserRecord:
    user_id: int
    name: str
    email: str
    role: UserRole


@dataclass(frozen=True)
class Principal:
    """Caller identity as resolved by the auth collaborator."""

    user_id: int | None
    role: UserRole


class AutoRejectReason(str, Enum):
    """Why a pending request could not be approved."""

    CAPACITY = "capacity"
    OWNER_CONFLICT = "owner_conflict"

    @property
    def description(self) -> str:
        if self is AutoRejectReason.OWNER_CONFLICT:
            return (
                "the owner already holds a confirmed reservation that overlaps it "
                "or books the same amenity that day"
            )
        return "confirmed reservations made while it was pending left no room for it"


@dataclass(frozen=True)
class ApprovalOutcome:
    reservation: Reservation
    rejection_reason: AutoRejectReason | None = None

    @property
    def auto_rejected(self) -> bool:
        return self.rejection_reason is not None
