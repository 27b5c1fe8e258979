"""Domain-level validation rules for requested reservation windows."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from backend.domain.errors import (
    AmenityInactiveError,
    ExceedsMaxDurationError,
    InvalidIntervalError,
    InvalidTimeFormatError,
    OutsideOperatingHoursError,
    ReservationValidationError,
)
from backend.domain.models import Amenity, TimeWindow


_CLOCK_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")
MINUTES_PER_DAY = 24 * 60


def parse_clock_minutes(value: str) -> int:
    """Return minutes since midnight for an ``HH:MM`` civil time."""
    match = _CLOCK_PATTERN.fullmatch(value.strip())
    if match is None:
        raise ValueError(f"clock time must follow HH:MM format, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if not 0 <= hours <= 23 or not 0 <= minutes <= 59:
        raise ValueError(f"clock time out of range: {value!r}")
    return hours * 60 + minutes


def parse_instant(value: datetime | str | None, building_tz: ZoneInfo) -> datetime:
    """Parse an ISO-8601 value into an aware UTC datetime.

    Naive values are read as building civil time.
    """
    if value is None:
        raise InvalidTimeFormatError("start_time and end_time are required")
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).strip())
        except ValueError as exc:
            raise InvalidTimeFormatError(
                "start_time and end_time must be valid ISO-8601 date-times"
            ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=building_tz)
    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
        raise InvalidTimeFormatError(
            "start_time and end_time must fall within the supported date range"
        ) from exc


def to_local(instant: datetime, building_tz: ZoneInfo) -> datetime:
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(building_tz)


def local_day_bounds(day: date, building_tz: ZoneInfo) -> TimeWindow:
    """UTC bounds of one building-local calendar day."""
    try:
        local_start = datetime.combine(day, time.min, tzinfo=building_tz)
        local_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=building_tz)
        return TimeWindow(
            start=local_start.astimezone(timezone.utc),
            end=local_end.astimezone(timezone.utc),
        )
    except OverflowError as exc:
        raise ReservationValidationError(
            f"{day.isoformat()} is outside the supported date range"
        ) from exc


def _minutes_since_start_day(local_value: datetime, start_day: date) -> int:
    day_offset = (local_value.date() - start_day).days
    return day_offset * MINUTES_PER_DAY + local_value.hour * 60 + local_value.minute


def validate_time_window(
    amenity: Amenity,
    requested_start: datetime | str | None,
    requested_end: datetime | str | None,
    building_tz: ZoneInfo,
) -> TimeWindow:
    """Check a requested window against the amenity rules.

    Checks run in a fixed order and the first failure wins: active flag,
    parse, operating hours, maximum duration, then interval ordering.
    """
    if not amenity.is_active:
        raise AmenityInactiveError(f"{amenity.name} is not available for reservations")

    start = parse_instant(requested_start, building_tz)
    end = parse_instant(requested_end, building_tz)

    if amenity.has_operating_hours:
        open_minutes = parse_clock_minutes(str(amenity.open_time))
        close_minutes = parse_clock_minutes(str(amenity.close_time))
        local_start = to_local(start, building_tz)
        local_end = to_local(end, building_tz)
        start_minutes = _minutes_since_start_day(local_start, local_start.date())
        end_minutes = _minutes_since_start_day(local_end, local_start.date())
        if start_minutes < open_minutes or end_minutes > close_minutes:
            raise OutsideOperatingHoursError(
                f"{amenity.name} is only available from {amenity.open_time} "
                f"to {amenity.close_time}"
            )

    window = TimeWindow(start=start, end=end)
    if window.duration_minutes > amenity.max_duration_minutes:
        raise ExceedsMaxDurationError(
            f"The maximum duration for {amenity.name} is "
            f"{amenity.max_duration_minutes} minutes"
        )

    if start >= end:
        raise InvalidIntervalError("start_time must be earlier than end_time")

    return window
