"""Resident-facing reservation workflow: create, cancel, hide and list."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from fastapi import BackgroundTasks

from backend.domain.constraints import local_day_bounds, validate_time_window
from backend.domain.errors import (
    AmenityNotFoundError,
    ForbiddenError,
    ReservationNotFoundError,
    ReservationValidationError,
)
from backend.domain.models import Amenity, Reservation, ReservationStatus, TimeWindow
from backend.domain.state_machine import TransitionTrigger, initial_status, next_status
from backend.repository.data_repository import DataRepository, ReservationStore
from backend.services.capacity_service import CapacityAllocator
from backend.services.notification_service import EmailKind, NotificationKind, NotificationService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _require_positive_id(value: int, field_name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ReservationValidationError(f"{field_name} must be a positive integer")


def _get_owned_reservation(
    store: ReservationStore,
    reservation_id: int,
    user_id: int,
) -> Reservation:
    reservation = store.get_reservation(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError(f"Reservation {reservation_id} not found")
    if reservation.user_id != user_id:
        raise ForbiddenError("You are not allowed to modify this reservation")
    return reservation


class ReservationService:
    """Creation gate and owner operations for a single resident."""

    def __init__(
        self,
        repository: DataRepository,
        notification_service: NotificationService,
        settings: Optional[Settings] = None,
        allocator: Optional[CapacityAllocator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._notifications = notification_service
        self._building_tz = ZoneInfo(self._settings.building_timezone)
        self._allocator = allocator or CapacityAllocator(self._building_tz)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def list_amenities(self, only_active: bool = True) -> list[Amenity]:
        return self._repository.list_amenities(only_active=only_active)

    def create_reservation(
        self,
        *,
        user_id: int,
        amenity_id: int,
        start_time: datetime | str | None,
        end_time: datetime | str | None,
        background_tasks: BackgroundTasks | None = None,
    ) -> Reservation:
        """Validate, gate on conflicts and capacity, then insert.

        The conflict checks and the insert share one immediate transaction, so
        two concurrent requests for the last slot cannot both succeed.
        """
        _require_positive_id(user_id, "user_id")
        _require_positive_id(amenity_id, "amenity_id")

        amenity = self._repository.get_amenity(amenity_id)
        if amenity is None:
            raise AmenityNotFoundError(f"Amenity {amenity_id} not found")

        window = validate_time_window(amenity, start_time, end_time, self._building_tz)
        status = initial_status(amenity.requires_approval)

        with self._repository.transaction() as store:
            self._allocator.check_creation(store, user_id, amenity, window)
            reservation = store.insert_reservation(
                user_id=user_id,
                amenity_id=amenity.amenity_id,
                window=window,
                status=status,
                created_at=self._clock(),
            )

        logger.info(
            "Reservation %s created user=%s amenity=%s status=%s window=%s/%s",
            reservation.reservation_id,
            user_id,
            amenity.amenity_id,
            reservation.status.value,
            window.start.isoformat(),
            window.end.isoformat(),
        )
        self._announce_creation(reservation, amenity, background_tasks)
        return reservation

    def _announce_creation(
        self,
        reservation: Reservation,
        amenity: Amenity,
        tasks: BackgroundTasks | None,
    ) -> None:
        if reservation.status is ReservationStatus.PENDING:
            self._notifications.notify_user(
                reservation.user_id,
                reservation.reservation_id,
                NotificationKind.RESERVATION_PENDING,
                "Reservation Pending Approval",
                f"Your reservation for {amenity.name} is waiting for administrator approval.",
                tasks=tasks,
            )
            self._notifications.notify_admins(
                NotificationKind.RESERVATION_PENDING,
                reservation.reservation_id,
                tasks=tasks,
            )
            return

        self._notifications.notify_user(
            reservation.user_id,
            reservation.reservation_id,
            NotificationKind.RESERVATION_CONFIRMED,
            "Reservation Confirmed",
            f"Your reservation for {amenity.name} is confirmed.",
            tasks=tasks,
        )
        self._notifications.send_email(EmailKind.CONFIRMATION, reservation, amenity, tasks=tasks)

    def cancel_reservation(
        self,
        *,
        user_id: int,
        reservation_id: int,
        background_tasks: BackgroundTasks | None = None,
    ) -> Reservation:
        """Owner cancellation of a confirmed reservation."""
        _require_positive_id(reservation_id, "reservation_id")

        with self._repository.transaction() as store:
            reservation = _get_owned_reservation(store, reservation_id, user_id)
            target = next_status(reservation.status, TransitionTrigger.USER_CANCEL)
            store.update_status(reservation_id, reservation.status, target)
            updated = store.get_reservation(reservation_id)
            amenity = store.get_amenity(reservation.amenity_id)
        assert updated is not None and amenity is not None

        logger.info("Reservation %s cancelled by owner user=%s", reservation_id, user_id)
        self._notifications.notify_user(
            user_id,
            reservation_id,
            NotificationKind.RESERVATION_CANCELLED,
            "Reservation Cancelled",
            f"You cancelled your reservation for {amenity.name}.",
            tasks=background_tasks,
        )
        self._notifications.send_email(
            EmailKind.CANCELLATION, updated, amenity, tasks=background_tasks
        )
        return updated

    def hide_reservation(self, *, user_id: int, reservation_id: int) -> Reservation:
        """Soft-hide from the owner's listing; status is untouched."""
        _require_positive_id(reservation_id, "reservation_id")

        with self._repository.transaction() as store:
            _get_owned_reservation(store, reservation_id, user_id)
            store.set_hidden_from_user(reservation_id, True)
            updated = store.get_reservation(reservation_id)
        assert updated is not None
        logger.info("Reservation %s hidden by owner user=%s", reservation_id, user_id)
        return updated

    def list_user_reservations(self, user_id: int) -> list[Reservation]:
        with self._repository.reader() as store:
            return store.list_user_reservations(user_id)

    def list_amenity_reservations(
        self,
        amenity_id: int,
        *,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Reservation]:
        """Confirmed reservations touching the given building-local date range."""
        if start_date is not None and end_date is not None and start_date > end_date:
            raise ReservationValidationError("start_date must not be after end_date")

        window: TimeWindow | None = None
        if start_date is not None or end_date is not None:
            lower = (
                local_day_bounds(start_date, self._building_tz).start
                if start_date is not None
                else datetime.min.replace(tzinfo=timezone.utc)
            )
            upper = (
                local_day_bounds(end_date, self._building_tz).end
                if end_date is not None
                else datetime.max.replace(tzinfo=timezone.utc)
            )
            window = TimeWindow(start=lower, end=upper)

        with self._repository.reader() as store:
            if store.get_amenity(amenity_id) is None:
                raise AmenityNotFoundError(f"Amenity {amenity_id} not found")
            return store.list_confirmed_for_amenity(amenity_id, window)
