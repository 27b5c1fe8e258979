"""User and admin notifications for reservation lifecycle events."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from fastapi import BackgroundTasks

from backend.domain.models import Amenity, Reservation
from backend.repository.data_repository import DataRepository
from backend.services.email_service import EmailService
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class NotificationKind(str, Enum):
    RESERVATION_PENDING = "reservation_pending"
    RESERVATION_CONFIRMED = "reservation_confirmed"
    RESERVATION_CANCELLED = "reservation_cancelled"


class EmailKind(str, Enum):
    CONFIRMATION = "confirmation"
    CANCELLATION = "cancellation"


def run_guarded(description: str, func: Callable[..., Any], *args: Any) -> None:
    """Run one side effect; a failure is logged and dropped."""
    try:
        func(*args)
    except Exception:
        logger.exception("Outbound task failed: %s", description)


class NotificationService:
    """Persists notifications and dispatches emails after the transition commits.

    With a ``BackgroundTasks`` collection the work runs once the response has
    been sent; without one it runs inline. Either way a delivery failure never
    reaches the caller.
    """

    def __init__(
        self,
        repository: DataRepository,
        email_service: EmailService,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._email_service = email_service
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def _dispatch(
        tasks: BackgroundTasks | None,
        description: str,
        func: Callable[..., Any],
        *args: Any,
    ) -> None:
        if tasks is None:
            run_guarded(description, func, *args)
        else:
            tasks.add_task(run_guarded, description, func, *args)

    def notify_user(
        self,
        user_id: int,
        reservation_id: int | None,
        kind: NotificationKind,
        title: str,
        message: str,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        self._dispatch(
            tasks,
            f"notify_user user={user_id} reservation={reservation_id} kind={kind.value}",
            self._persist_user_notification,
            user_id,
            reservation_id,
            kind,
            title,
            message,
        )

    def notify_admins(
        self,
        kind: NotificationKind,
        reservation_id: int | None,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        self._dispatch(
            tasks,
            f"notify_admins reservation={reservation_id} kind={kind.value}",
            self._persist_admin_notification,
            kind,
            reservation_id,
        )

    def send_email(
        self,
        email_kind: EmailKind,
        reservation: Reservation,
        amenity: Amenity,
        reason: str | None = None,
        tasks: BackgroundTasks | None = None,
    ) -> None:
        self._dispatch(
            tasks,
            f"email {email_kind.value} reservation={reservation.reservation_id}",
            self._deliver_email,
            email_kind,
            reservation,
            amenity,
            reason,
        )

    def _persist_user_notification(
        self,
        user_id: int,
        reservation_id: int | None,
        kind: NotificationKind,
        title: str,
        message: str,
    ) -> None:
        with self._repository.transaction() as store:
            store.insert_user_notification(
                user_id=user_id,
                reservation_id=reservation_id,
                kind=kind.value,
                title=title,
                message=message,
                created_at=self._clock(),
            )

    def _persist_admin_notification(
        self,
        kind: NotificationKind,
        reservation_id: int | None,
    ) -> None:
        with self._repository.transaction() as store:
            store.insert_admin_notification(
                kind=kind.value,
                reservation_id=reservation_id,
                created_at=self._clock(),
            )

    def _deliver_email(
        self,
        email_kind: EmailKind,
        reservation: Reservation,
        amenity: Amenity,
        reason: str | None,
    ) -> None:
        user = self._repository.get_user(reservation.user_id)
        if user is None:
            logger.warning(
                "Skipping %s email: user %s not found (reservation %s)",
                email_kind.value,
                reservation.user_id,
                reservation.reservation_id,
            )
            return
        if email_kind is EmailKind.CONFIRMATION:
            self._email_service.send_reservation_confirmation(
                user.email,
                user.name,
                amenity.name,
                reservation.start_time,
                reservation.end_time,
            )
        else:
            self._email_service.send_reservation_cancellation(
                user.email,
                user.name,
                amenity.name,
                reservation.start_time,
                reservation.end_time,
                reason,
            )
