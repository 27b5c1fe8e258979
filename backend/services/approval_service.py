"""Administrator reservation workflow and approval race resolution."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from fastapi import BackgroundTasks

from backend.domain.errors import ReservationNotFoundError, ReservationValidationError
from backend.domain.models import (
    Amenity,
    ApprovalOutcome,
    AutoRejectReason,
    Reservation,
    ReservationStatus,
)
from backend.domain.state_machine import TransitionTrigger, next_status
from backend.repository.data_repository import DataRepository, ReservationStore
from backend.services.capacity_service import CapacityAllocator
from backend.services.notification_service import EmailKind, NotificationKind, NotificationService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

_AUTO_REJECT_MESSAGES = {
    AutoRejectReason.CAPACITY: (
        "Your reservation for {amenity} was rejected because confirmed "
        "reservations made while your request was pending left no room for it."
    ),
    AutoRejectReason.OWNER_CONFLICT: (
        "Your reservation for {amenity} was rejected because you already hold a "
        "confirmed reservation that overlaps it or books {amenity} on the same day."
    ),
}


def resolve_approval(
    store: ReservationStore,
    allocator: CapacityAllocator,
    reservation: Reservation,
    amenity: Amenity,
) -> AutoRejectReason | None:
    """Decide between approval and auto-rejection and write the outcome.

    Must run inside an immediate transaction: the overlap count and the status
    write are one serialized unit, otherwise two approvals for overlapping
    windows could both see spare capacity.

    The owner's own confirmations made while the request waited are checked
    too, so approval never produces a self-overlap or a second same-day booking.
    Returns ``None`` when the request was approved.
    """
    next_status(reservation.status, TransitionTrigger.APPROVE)
    confirmed_overlaps = allocator.count_confirmed_overlaps(
        store,
        amenity.amenity_id,
        reservation.window,
        exclude_reservation_id=reservation.reservation_id,
    )
    logger.info(
        "Approval capacity check reservation=%s amenity=%s capacity=%s confirmed=%s",
        reservation.reservation_id,
        amenity.amenity_id,
        amenity.capacity,
        confirmed_overlaps,
    )
    owner_conflict = allocator.user_has_overlap(
        store, reservation.user_id, reservation.window
    ) or allocator.user_has_same_amenity_same_day(
        store,
        reservation.user_id,
        amenity.amenity_id,
        allocator.local_date(reservation.start_time),
    )

    reason: AutoRejectReason | None = None
    if owner_conflict:
        reason = AutoRejectReason.OWNER_CONFLICT
    elif confirmed_overlaps >= amenity.capacity:
        reason = AutoRejectReason.CAPACITY

    trigger = TransitionTrigger.APPROVE if reason is None else TransitionTrigger.AUTO_REJECT
    target = next_status(reservation.status, trigger)
    store.update_status(reservation.reservation_id, reservation.status, target)
    return reason


class AdminReservationService:
    """Approve, reject, cancel and inspect reservations on behalf of admins."""

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
        self._allocator = allocator or CapacityAllocator(ZoneInfo(self._settings.building_timezone))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def _load(store: ReservationStore, reservation_id: int) -> tuple[Reservation, Amenity]:
        reservation = store.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(f"Reservation {reservation_id} not found")
        amenity = store.get_amenity(reservation.amenity_id)
        assert amenity is not None
        return reservation, amenity

    def approve_reservation(
        self,
        reservation_id: int,
        background_tasks: BackgroundTasks | None = None,
    ) -> ApprovalOutcome:
        with self._repository.transaction() as store:
            reservation, amenity = self._load(store, reservation_id)
            reason = resolve_approval(store, self._allocator, reservation, amenity)
            updated = store.get_reservation(reservation_id)
        assert updated is not None

        if reason is not None:
            logger.warning(
                "Reservation %s auto-rejected amenity=%s reason=%s",
                reservation_id,
                amenity.amenity_id,
                reason.value,
            )
            self._notifications.notify_user(
                updated.user_id,
                reservation_id,
                NotificationKind.RESERVATION_CANCELLED,
                "Reservation Automatically Rejected",
                _AUTO_REJECT_MESSAGES[reason].format(amenity=amenity.name),
                tasks=background_tasks,
            )
            self._notifications.send_email(
                EmailKind.CANCELLATION,
                updated,
                amenity,
                f"Automatically rejected: {reason.description}",
                tasks=background_tasks,
            )
            return ApprovalOutcome(reservation=updated, rejection_reason=reason)

        logger.info("Reservation %s approved", reservation_id)
        self._notifications.notify_user(
            updated.user_id,
            reservation_id,
            NotificationKind.RESERVATION_CONFIRMED,
            "Reservation Approved",
            f"Your reservation for {amenity.name} has been approved by an administrator.",
            tasks=background_tasks,
        )
        self._notifications.send_email(
            EmailKind.CONFIRMATION, updated, amenity, tasks=background_tasks
        )
        return ApprovalOutcome(reservation=updated)

    def reject_reservation(
        self,
        reservation_id: int,
        reason: str | None = None,
        background_tasks: BackgroundTasks | None = None,
    ) -> Reservation:
        reason = (reason or "").strip() or None
        with self._repository.transaction() as store:
            reservation, amenity = self._load(store, reservation_id)
            target = next_status(reservation.status, TransitionTrigger.REJECT)
            store.update_status(reservation_id, reservation.status, target)
            updated = store.get_reservation(reservation_id)
        assert updated is not None

        logger.info("Reservation %s rejected reason=%s", reservation_id, reason)
        message = (
            f"Your reservation for {amenity.name} has been rejected. Reason: {reason}"
            if reason
            else f"Your reservation for {amenity.name} has been rejected by an administrator."
        )
        self._notifications.notify_user(
            updated.user_id,
            reservation_id,
            NotificationKind.RESERVATION_CANCELLED,
            "Reservation Rejected",
            message,
            tasks=background_tasks,
        )
        self._notifications.send_email(
            EmailKind.CANCELLATION, updated, amenity, reason, tasks=background_tasks
        )
        return updated

    def cancel_reservation(
        self,
        reservation_id: int,
        reason: str | None = None,
        background_tasks: BackgroundTasks | None = None,
    ) -> Reservation:
        reason = (reason or "").strip() or None
        with self._repository.transaction() as store:
            reservation, amenity = self._load(store, reservation_id)
            target = next_status(reservation.status, TransitionTrigger.ADMIN_CANCEL)
            store.update_status(reservation_id, reservation.status, target)
            updated = store.get_reservation(reservation_id)
        assert updated is not None

        logger.info("Reservation %s cancelled by admin reason=%s", reservation_id, reason)
        message = (
            f"Your reservation for {amenity.name} has been cancelled by an administrator. "
            f"Reason: {reason}"
            if reason
            else f"Your reservation for {amenity.name} has been cancelled by an administrator."
        )
        self._notifications.notify_user(
            updated.user_id,
            reservation_id,
            NotificationKind.RESERVATION_CANCELLED,
            "Reservation Cancelled by Administrator",
            message,
            tasks=background_tasks,
        )
        self._notifications.send_email(
            EmailKind.CANCELLATION, updated, amenity, reason, tasks=background_tasks
        )
        return updated

    def list_pending_reservations(self) -> list[Reservation]:
        with self._repository.reader() as store:
            return store.list_reservations(status=ReservationStatus.PENDING)

    def list_reservations(
        self,
        *,
        status: str | None = None,
        amenity_id: int | None = None,
        limit: int | None = None,
    ) -> list[Reservation]:
        parsed_status: ReservationStatus | None = None
        if status:
            try:
                parsed_status = ReservationStatus(status.strip().lower())
            except ValueError as exc:
                allowed = ", ".join(item.value for item in ReservationStatus)
                raise ReservationValidationError(
                    f"status must be one of: {allowed}"
                ) from exc

        effective_limit = limit if limit and limit > 0 else self._settings.reservation_list_default_limit
        effective_limit = min(effective_limit, self._settings.reservation_list_max_limit)

        with self._repository.reader() as store:
            return store.list_reservations(
                status=parsed_status,
                amenity_id=amenity_id,
                limit=effective_limit,
            )
