"""Tests for admin moderation and the approval race resolver."""

from __future__ import annotations

from dataclasses import replace

import pytest

from backend.domain.errors import (
    InvalidStateTransitionError,
    ReservationNotFoundError,
    ReservationValidationError,
)
from backend.domain.models import AutoRejectReason, ReservationStatus
from backend.repository.data_repository import DataRepository
from backend.services.approval_service import AdminReservationService
from backend.services.email_service import EmailService
from backend.services.notification_service import NotificationService
from backend.services.reservation_service import ReservationService
from backend.utils.config import get_settings


def _build_test_settings(tmp_path):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / "approval.db",
        building_timezone="America/Argentina/Buenos_Aires",
        email_backend="mock",
        smtp_host=None,
        reservation_list_default_limit=50,
        reservation_list_max_limit=200,
    )


def _build_services(tmp_path):
    settings = _build_test_settings(tmp_path)
    repository = DataRepository(settings)
    repository.initialize_database()
    email_service = EmailService(settings=settings)
    notifications = NotificationService(
        repository=repository,
        email_service=email_service,
    )
    reservations = ReservationService(
        repository=repository,
        notification_service=notifications,
        settings=settings,
    )
    admin = AdminReservationService(
        repository=repository,
        notification_service=notifications,
        settings=settings,
    )
    for index in range(1, 4):
        repository.create_user(name=f"Resident {index}", email=f"resident{index}@building.local")
    grill = repository.create_amenity(
        name="Grill",
        capacity=1,
        max_duration_minutes=240,
        open_time=None,
        close_time=None,
        requires_approval=True,
    )
    return repository, email_service, reservations, admin, grill


def _request(reservations: ReservationService, user_id: int, amenity_id: int, start: str, end: str):
    return reservations.create_reservation(
        user_id=user_id,
        amenity_id=amenity_id,
        start_time=f"2030-06-10T{start}:00",
        end_time=f"2030-06-10T{end}:00",
    )


def test_non_overlapping_requests_are_both_approved(tmp_path) -> None:
    repository, _, reservations, admin, grill = _build_services(tmp_path)
    first = _request(reservations, 1, grill.amenity_id, "09:00", "10:00")
    second = _request(reservations, 2, grill.amenity_id, "11:00", "12:00")

    first_outcome = admin.approve_reservation(first.reservation_id)
    second_outcome = admin.approve_reservation(second.reservation_id)

    assert first_outcome.auto_rejected is False
    assert second_outcome.auto_rejected is False
    assert second_outcome.reservation.status is ReservationStatus.CONFIRMED
    assert repository.list_user_notifications(2)[-1]["title"] == "Reservation Approved"


def test_second_overlapping_approval_is_auto_rejected(tmp_path) -> None:
    repository, email_service, reservations, admin, grill = _build_services(tmp_path)
    first = _request(reservations, 1, grill.amenity_id, "09:00", "10:00")
    second = _request(reservations, 2, grill.amenity_id, "09:30", "10:30")

    admin.approve_reservation(first.reservation_id)
    outcome = admin.approve_reservation(second.reservation_id)

    assert outcome.auto_rejected is True
    assert outcome.rejection_reason is AutoRejectReason.CAPACITY
    assert outcome.reservation.status is ReservationStatus.CANCELLED
    assert repository.get_reservation(first.reservation_id).status is ReservationStatus.CONFIRMED
    notification = repository.list_user_notifications(2)[-1]
    assert notification["title"] == "Reservation Automatically Rejected"
    assert "left no room" in notification["message"]
    assert email_service.sent_messages[-1]["Subject"] == "Reservation Cancelled: Grill"


def test_auto_rejection_is_terminal(tmp_path) -> None:
    _, _, reservations, admin, grill = _build_services(tmp_path)
    first = _request(reservations, 1, grill.amenity_id, "09:00", "10:00")
    second = _request(reservations, 2, grill.amenity_id, "09:00", "10:00")
    admin.approve_reservation(first.reservation_id)
    admin.approve_reservation(second.reservation_id)

    with pytest.raises(InvalidStateTransitionError):
        admin.approve_reservation(second.reservation_id)


def test_approval_rechecks_owner_conflicts(tmp_path) -> None:
    repository, _, reservations, admin, grill = _build_services(tmp_path)
    pool = repository.create_amenity(name="Pool", capacity=10, max_duration_minutes=120)
    pending = _request(reservations, 1, grill.amenity_id, "12:00", "14:00")
    # Pending requests do not block the owner's own instant bookings.
    _request(reservations, 1, pool.amenity_id, "13:00", "14:00")

    outcome = admin.approve_reservation(pending.reservation_id)

    assert outcome.auto_rejected is True
    assert outcome.reservation.status is ReservationStatus.CANCELLED
    assert outcome.rejection_reason is AutoRejectReason.OWNER_CONFLICT
    message = repository.list_user_notifications(1)[-1]["message"]
    assert "you already hold a confirmed reservation" in message
    assert "left no room" not in message


def test_approving_confirmed_reservation_fails(tmp_path) -> None:
    _, _, reservations, admin, grill = _build_services(tmp_path)
    pending = _request(reservations, 1, grill.amenity_id, "09:00", "10:00")
    admin.approve_reservation(pending.reservation_id)

    with pytest.raises(InvalidStateTransitionError, match="status: confirmed"):
        admin.approve_reservation(pending.reservation_id)


def test_approving_missing_reservation_raises(tmp_path) -> None:
    _, _, _, admin, _ = _build_services(tmp_path)
    with pytest.raises(ReservationNotFoundError):
        admin.approve_reservation(404)


def test_reject_records_reason(tmp_path) -> None:
    repository, email_service, reservations, admin, grill = _build_services(tmp_path)
    pending = _request(reservations, 1, grill.amenity_id, "09:00", "10:00")

    rejected = admin.reject_reservation(pending.reservation_id, "  Maintenance  ")

    assert rejected.status is ReservationStatus.CANCELLED
    notification = repository.list_user_notifications(1)[-1]
    assert notification["title"] == "Reservation Rejected"
    assert notification["message"].endswith("Reason: Maintenance")
    assert "Reason: Maintenance" in email_service.sent_messages[-1].get_content()


def test_reject_requires_pending(tmp_path) -> None:
    _, _, reservations, admin, grill = _build_services(tmp_path)
    pending = _request(reservations, 1, grill.amenity_id, "09:00", "10:00")
    admin.approve_reservation(pending.reservation_id)

    with pytest.raises(InvalidStateTransitionError):
        admin.reject_reservation(pending.reservation_id)


def test_admin_cancel_only_applies_to_confirmed(tmp_path) -> None:
    repository, _, reservations, admin, grill = _build_services(tmp_path)
    pending = _request(reservations, 1, grill.amenity_id, "09:00", "10:00")

    with pytest.raises(InvalidStateTransitionError):
        admin.cancel_reservation(pending.reservation_id)

    admin.approve_reservation(pending.reservation_id)
    cancelled = admin.cancel_reservation(pending.reservation_id, "Pipe burst")

    assert cancelled.status is ReservationStatus.CANCELLED
    assert repository.list_user_notifications(1)[-1]["title"] == "Reservation Cancelled by Administrator"


def test_pending_listing_and_filters(tmp_path) -> None:
    _, _, reservations, admin, grill = _build_services(tmp_path)
    first = _request(reservations, 1, grill.amenity_id, "09:00", "10:00")
    second = _request(reservations, 2, grill.amenity_id, "11:00", "12:00")
    admin.approve_reservation(first.reservation_id)

    assert [item.reservation_id for item in admin.list_pending_reservations()] == [
        second.reservation_id
    ]
    confirmed = admin.list_reservations(status="CONFIRMED", amenity_id=grill.amenity_id)
    assert [item.reservation_id for item in confirmed] == [first.reservation_id]
    assert len(admin.list_reservations(limit=1)) == 1


def test_listing_rejects_unknown_status(tmp_path) -> None:
    _, _, _, admin, _ = _build_services(tmp_path)
    with pytest.raises(ReservationValidationError, match="status must be one of"):
        admin.list_reservations(status="archived")
