"""Capacity accounting and per-user conflict checks.

Every method takes the ``ReservationStore`` of the caller's open transaction:
the counts are only meaningful when read under the same write lock as the
insert or status change that depends on them.
"""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from backend.domain.constraints import local_day_bounds, to_local
from backend.domain.errors import (
    CapacityExceededError,
    DuplicateDailyBookingError,
    UserTimeConflictError,
)
from backend.domain.models import Amenity, TimeWindow
from backend.repository.data_repository import ReservationStore
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class CapacityAllocator:
    def __init__(self, building_tz: ZoneInfo) -> None:
        self._building_tz = building_tz

    def count_confirmed_overlaps(
        self,
        store: ReservationStore,
        amenity_id: int,
        window: TimeWindow,
        exclude_reservation_id: int | None = None,
    ) -> int:
        return store.count_confirmed_overlaps(
            amenity_id,
            window,
            exclude_reservation_id=exclude_reservation_id,
        )

    def has_capacity(
        self,
        store: ReservationStore,
        amenity: Amenity,
        window: TimeWindow,
        exclude_reservation_id: int | None = None,
    ) -> bool:
        count = self.count_confirmed_overlaps(
            store,
            amenity.amenity_id,
            window,
            exclude_reservation_id=exclude_reservation_id,
        )
        logger.debug(
            "Capacity check amenity=%s capacity=%s confirmed_overlaps=%s",
            amenity.amenity_id,
            amenity.capacity,
            count,
        )
        return count < amenity.capacity

    def local_date(self, instant: datetime) -> date:
        return to_local(instant, self._building_tz).date()

    def user_has_overlap(self, store: ReservationStore, user_id: int, window: TimeWindow) -> bool:
        return store.find_user_overlap(user_id, window) is not None

    def user_has_same_amenity_same_day(
        self,
        store: ReservationStore,
        user_id: int,
        amenity_id: int,
        day: date,
    ) -> bool:
        bounds = local_day_bounds(day, self._building_tz)
        return store.find_user_amenity_booking_starting_in(user_id, amenity_id, bounds) is not None

    def check_creation(
        self,
        store: ReservationStore,
        user_id: int,
        amenity: Amenity,
        window: TimeWindow,
    ) -> None:
        """Run the conflict half of the creation gate; first failure wins."""
        if self.user_has_overlap(store, user_id, window):
            raise UserTimeConflictError("You already have a reservation at this time")

        local_day = self.local_date(window.start)
        if self.user_has_same_amenity_same_day(store, user_id, amenity.amenity_id, local_day):
            raise DuplicateDailyBookingError(
                f"You already have a reservation for {amenity.name} on this day"
            )

        if not self.has_capacity(store, amenity, window):
            raise CapacityExceededError(
                f"{amenity.name} is fully booked for the requested time"
            )
