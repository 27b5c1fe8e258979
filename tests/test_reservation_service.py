"""Tests for the resident creation gate and owner operations."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

from backend.domain.errors import (
    AmenityInactiveError,
    AmenityNotFoundError,
    CapacityExceededError,
    DuplicateDailyBookingError,
    ForbiddenError,
    InvalidStateTransitionError,
    OutsideOperatingHoursError,
    ReservationNotFoundError,
    ReservationValidationError,
    UserTimeConflictError,
)
from backend.domain.models import ReservationStatus
from backend.repository.data_repository import DataRepository
from backend.services.email_service import EmailService
from backend.services.notification_service import NotificationService
from backend.services.reservation_service import ReservationService
from backend.utils.config import get_settings


def _build_test_settings(tmp_path):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / "reservations.db",
        building_timezone="America/Argentina/Buenos_Aires",
        email_backend="mock",
        smtp_host=None,
        seed_demo_data=False,
        expiration_sweep_enabled=False,
    )


def _build_service(tmp_path):
    settings = _build_test_settings(tmp_path)
    repository = DataRepository(settings)
    repository.initialize_database()
    email_service = EmailService(settings=settings)
    notifications = NotificationService(
        repository=repository,
        email_service=email_service,
    )
    service = ReservationService(
        repository=repository,
        notification_service=notifications,
        settings=settings,
    )
    for index in range(1, 5):
        repository.create_user(name=f"Resident {index}", email=f"resident{index}@building.local")
    return repository, email_service, service


def _create_pool(repository: DataRepository, **overrides):
    fields = {
        "name": "Pool",
        "capacity": 2,
        "max_duration_minutes": 60,
        "open_time": "08:00",
        "close_time": "22:00",
        "is_active": True,
        "requires_approval": False,
    }
    fields.update(overrides)
    return repository.create_amenity(**fields)


def _book(service: ReservationService, user_id: int, amenity_id: int, start: str, end: str):
    return service.create_reservation(
        user_id=user_id,
        amenity_id=amenity_id,
        start_time=f"2030-06-10T{start}:00",
        end_time=f"2030-06-10T{end}:00",
    )


# --- Creation ---

def test_creation_without_approval_is_confirmed_and_notified(tmp_path) -> None:
    repository, email_service, service = _build_service(tmp_path)
    pool = _create_pool(repository)

    reservation = _book(service, 1, pool.amenity_id, "10:00", "10:30")

    assert reservation.status is ReservationStatus.CONFIRMED
    assert reservation.start_time == datetime(2030, 6, 10, 13, 0, tzinfo=timezone.utc)
    assert reservation.amenity_name == "Pool"

    notifications = repository.list_user_notifications(1)
    assert [item["title"] for item in notifications] == ["Reservation Confirmed"]
    assert [message["Subject"] for message in email_service.sent_messages] == [
        "Reservation Confirmed: Pool"
    ]


def test_creation_with_approval_is_pending_and_alerts_admins(tmp_path) -> None:
    repository, email_service, service = _build_service(tmp_path)
    grill = _create_pool(repository, name="Grill", capacity=1, requires_approval=True)

    reservation = _book(service, 1, grill.amenity_id, "12:00", "13:00")

    assert reservation.status is ReservationStatus.PENDING
    assert [item["kind"] for item in repository.list_admin_notifications()] == [
        "reservation_pending"
    ]
    assert repository.list_user_notifications(1)[0]["title"] == "Reservation Pending Approval"
    assert email_service.sent_messages == []


def test_unknown_amenity_raises_not_found(tmp_path) -> None:
    _, _, service = _build_service(tmp_path)
    with pytest.raises(AmenityNotFoundError):
        _book(service, 1, 999, "10:00", "10:30")


def test_inactive_amenity_is_rejected(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    court = _create_pool(repository, name="Tennis Court", is_active=False)
    with pytest.raises(AmenityInactiveError):
        _book(service, 1, court.amenity_id, "10:00", "10:30")


def test_non_positive_ids_are_validation_errors(tmp_path) -> None:
    _, _, service = _build_service(tmp_path)
    with pytest.raises(ReservationValidationError):
        _book(service, 0, 1, "10:00", "10:30")


def test_window_rejection_writes_nothing(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository, close_time="20:00")
    with pytest.raises(OutsideOperatingHoursError):
        _book(service, 1, pool.amenity_id, "19:30", "20:30")
    assert repository.list_confirmed_reservations() == []


# --- Per-user constraints and capacity ---

def test_user_overlap_across_amenities_is_rejected(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    gym = _create_pool(repository, name="Gym", capacity=5)
    _book(service, 1, gym.amenity_id, "10:00", "11:00")

    with pytest.raises(UserTimeConflictError, match="already have a reservation at this time"):
        _book(service, 1, pool.amenity_id, "10:30", "11:30")


def test_touching_windows_do_not_overlap(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    gym = _create_pool(repository, name="Gym", capacity=5)
    _book(service, 1, gym.amenity_id, "10:00", "11:00")

    reservation = _book(service, 1, pool.amenity_id, "11:00", "12:00")
    assert reservation.status is ReservationStatus.CONFIRMED


def test_same_amenity_same_day_is_rejected(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    _book(service, 1, pool.amenity_id, "10:00", "11:00")

    with pytest.raises(DuplicateDailyBookingError, match="for Pool on this day"):
        _book(service, 1, pool.amenity_id, "15:00", "16:00")


def test_same_amenity_on_another_day_is_allowed(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    _book(service, 1, pool.amenity_id, "10:00", "11:00")

    reservation = service.create_reservation(
        user_id=1,
        amenity_id=pool.amenity_id,
        start_time="2030-06-11T10:00:00",
        end_time="2030-06-11T11:00:00",
    )
    assert reservation.status is ReservationStatus.CONFIRMED


def test_user_overlap_preempts_same_day_check(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    _book(service, 1, pool.amenity_id, "10:00", "11:00")

    with pytest.raises(UserTimeConflictError):
        _book(service, 1, pool.amenity_id, "10:30", "11:30")


def test_capacity_is_enforced_with_half_open_windows(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository, capacity=2)
    _book(service, 1, pool.amenity_id, "10:00", "10:30")
    _book(service, 2, pool.amenity_id, "10:15", "10:45")

    with pytest.raises(CapacityExceededError, match="Pool is fully booked"):
        _book(service, 3, pool.amenity_id, "10:20", "10:40")

    reservation = _book(service, 3, pool.amenity_id, "10:45", "11:15")
    assert reservation.status is ReservationStatus.CONFIRMED


def test_pending_requests_do_not_consume_capacity(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    grill = _create_pool(repository, name="Grill", capacity=1, requires_approval=True)

    first = _book(service, 1, grill.amenity_id, "12:00", "13:00")
    second = _book(service, 2, grill.amenity_id, "12:00", "13:00")

    assert first.status is ReservationStatus.PENDING
    assert second.status is ReservationStatus.PENDING


# --- Owner operations ---

def test_owner_can_cancel_confirmed_reservation(tmp_path) -> None:
    repository, email_service, service = _build_service(tmp_path)
    pool = _create_pool(repository, capacity=1)
    reservation = _book(service, 1, pool.amenity_id, "10:00", "10:30")

    cancelled = service.cancel_reservation(user_id=1, reservation_id=reservation.reservation_id)

    assert cancelled.status is ReservationStatus.CANCELLED
    assert email_service.sent_messages[-1]["Subject"] == "Reservation Cancelled: Pool"
    # Freed capacity is immediately bookable by someone else.
    assert _book(service, 2, pool.amenity_id, "10:00", "10:30").status is ReservationStatus.CONFIRMED


def test_cancelling_someone_elses_reservation_is_forbidden(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    reservation = _book(service, 1, pool.amenity_id, "10:00", "10:30")

    with pytest.raises(ForbiddenError):
        service.cancel_reservation(user_id=2, reservation_id=reservation.reservation_id)


def test_cancelling_missing_reservation_raises_not_found(tmp_path) -> None:
    _, _, service = _build_service(tmp_path)
    with pytest.raises(ReservationNotFoundError):
        service.cancel_reservation(user_id=1, reservation_id=42)


def test_cancelling_twice_is_an_invalid_transition(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    reservation = _book(service, 1, pool.amenity_id, "10:00", "10:30")
    service.cancel_reservation(user_id=1, reservation_id=reservation.reservation_id)

    with pytest.raises(InvalidStateTransitionError):
        service.cancel_reservation(user_id=1, reservation_id=reservation.reservation_id)


def test_hidden_reservations_leave_the_owner_listing_only(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    gym = _create_pool(repository, name="Gym", capacity=5)
    first = _book(service, 1, pool.amenity_id, "10:00", "10:30")
    second = _book(service, 1, gym.amenity_id, "08:00", "09:00")

    hidden = service.hide_reservation(user_id=1, reservation_id=first.reservation_id)

    assert hidden.hidden_from_user is True
    assert hidden.status is ReservationStatus.CONFIRMED
    assert [item.reservation_id for item in service.list_user_reservations(1)] == [
        second.reservation_id
    ]
    # Still counts for capacity and shows in the amenity listing.
    assert [item.reservation_id for item in service.list_amenity_reservations(pool.amenity_id)] == [
        first.reservation_id
    ]


def test_user_listing_is_sorted_by_start(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    gym = _create_pool(repository, name="Gym", capacity=5)
    later = _book(service, 1, pool.amenity_id, "15:00", "15:30")
    earlier = _book(service, 1, gym.amenity_id, "09:00", "10:00")

    assert [item.reservation_id for item in service.list_user_reservations(1)] == [
        earlier.reservation_id,
        later.reservation_id,
    ]


# --- Amenity listing ---

def test_amenity_listing_uses_building_local_days(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository, capacity=5, open_time=None, close_time=None)
    # 22:30 local on the 10th is 01:30 UTC on the 11th.
    late = _book(service, 1, pool.amenity_id, "22:30", "23:00")
    next_day = service.create_reservation(
        user_id=2,
        amenity_id=pool.amenity_id,
        start_time="2030-06-11T09:00:00",
        end_time="2030-06-11T10:00:00",
    )

    tenth = service.list_amenity_reservations(
        pool.amenity_id, start_date=date(2030, 6, 10), end_date=date(2030, 6, 10)
    )
    assert [item.reservation_id for item in tenth] == [late.reservation_id]

    open_ended = service.list_amenity_reservations(pool.amenity_id, start_date=date(2030, 6, 11))
    assert [item.reservation_id for item in open_ended] == [next_day.reservation_id]


def test_amenity_listing_excludes_cancelled(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    reservation = _book(service, 1, pool.amenity_id, "10:00", "10:30")
    service.cancel_reservation(user_id=1, reservation_id=reservation.reservation_id)

    assert service.list_amenity_reservations(pool.amenity_id) == []


def test_amenity_listing_rejects_inverted_range(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    with pytest.raises(ReservationValidationError):
        service.list_amenity_reservations(
            pool.amenity_id, start_date=date(2030, 6, 11), end_date=date(2030, 6, 10)
        )


def test_amenity_listing_rejects_dates_at_the_calendar_edge(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    pool = _create_pool(repository)
    with pytest.raises(ReservationValidationError, match="supported date range"):
        service.list_amenity_reservations(pool.amenity_id, end_date=date.max)


def test_amenity_listing_for_unknown_amenity_raises(tmp_path) -> None:
    _, _, service = _build_service(tmp_path)
    with pytest.raises(AmenityNotFoundError):
        service.list_amenity_reservations(77)


def test_list_amenities_returns_only_active(tmp_path) -> None:
    repository, _, service = _build_service(tmp_path)
    _create_pool(repository)
    _create_pool(repository, name="Tennis Court", is_active=False)
    assert [item.name for item in service.list_amenities()] == ["Pool"]
