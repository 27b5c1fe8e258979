"""HTTP controller layer for resident reservation endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from backend.controllers.dependencies import (
    get_reservation_service,
    require_user,
    to_http_exception,
)
from backend.domain.errors import ReservationError
from backend.domain.models import Amenity, Principal, Reservation
from backend.services.reservation_service import ReservationService
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["reservations"])


class CreateReservationRequest(BaseModel):
    """Times stay as raw strings so the domain layer owns format errors."""

    amenity_id: int = Field(gt=0)
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def strip_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class ReservationResponse(BaseModel):
    id: int = Field(gt=0)
    user_id: int = Field(gt=0)
    amenity_id: int = Field(gt=0)
    amenity_name: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: str
    created_at: datetime
    hidden_from_user: bool = False

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationResponse":
        return cls(
            id=reservation.reservation_id,
            user_id=reservation.user_id,
            amenity_id=reservation.amenity_id,
            amenity_name=reservation.amenity_name,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            status=reservation.status.value,
            created_at=reservation.created_at,
            hidden_from_user=reservation.hidden_from_user,
        )


class AmenityResponse(BaseModel):
    id: int = Field(gt=0)
    name: str
    capacity: int = Field(gt=0)
    max_duration_minutes: int = Field(gt=0)
    open_time: Optional[str] = None
    close_time: Optional[str] = None
    is_active: bool
    requires_approval: bool

    @classmethod
    def from_domain(cls, amenity: Amenity) -> "AmenityResponse":
        return cls(
            id=amenity.amenity_id,
            name=amenity.name,
            capacity=amenity.capacity,
            max_duration_minutes=amenity.max_duration_minutes,
            open_time=amenity.open_time,
            close_time=amenity.close_time,
            is_active=amenity.is_active,
            requires_approval=amenity.requires_approval,
        )


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.get("/amenities", response_model=list[AmenityResponse])
def list_amenities(
    service: ReservationService = Depends(get_reservation_service),
) -> list[AmenityResponse]:
    try:
        return [AmenityResponse.from_domain(item) for item in service.list_amenities()]
    except Exception as exc:  # pragma: no cover
        raise _unexpected("list amenities", exc) from exc


@router.post(
    "/reservations",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_reservation(
    payload: CreateReservationRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    """Create a reservation; amenities that need approval start as pending."""
    try:
        reservation = service.create_reservation(
            user_id=principal.user_id,
            amenity_id=payload.amenity_id,
            start_time=payload.start_time,
            end_time=payload.end_time,
            background_tasks=background_tasks,
        )
        return ReservationResponse.from_domain(reservation)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("create reservation", exc) from exc


@router.get("/reservations", response_model=list[ReservationResponse])
def list_my_reservations(
    principal: Principal = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
) -> list[ReservationResponse]:
    try:
        reservations = service.list_user_reservations(principal.user_id)
        return [ReservationResponse.from_domain(item) for item in reservations]
    except Exception as exc:  # pragma: no cover
        raise _unexpected("list reservations", exc) from exc


@router.patch("/reservations/{reservation_id}/cancel", response_model=ReservationResponse)
def cancel_my_reservation(
    reservation_id: int,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = service.cancel_reservation(
            user_id=principal.user_id,
            reservation_id=reservation_id,
            background_tasks=background_tasks,
        )
        return ReservationResponse.from_domain(reservation)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("cancel reservation", exc) from exc


@router.patch("/reservations/{reservation_id}/hide", response_model=ReservationResponse)
def hide_my_reservation(
    reservation_id: int,
    principal: Principal = Depends(require_user),
    service: ReservationService = Depends(get_reservation_service),
) -> ReservationResponse:
    try:
        reservation = service.hide_reservation(
            user_id=principal.user_id,
            reservation_id=reservation_id,
        )
        return ReservationResponse.from_domain(reservation)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("hide reservation", exc) from exc


@router.get(
    "/reservations/amenity/{amenity_id}",
    response_model=list[ReservationResponse],
    dependencies=[Depends(require_user)],
)
def list_amenity_reservations(
    amenity_id: int,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    service: ReservationService = Depends(get_reservation_service),
) -> list[ReservationResponse]:
    """Confirmed bookings of one amenity between building-local dates."""
    try:
        reservations = service.list_amenity_reservations(
            amenity_id,
            start_date=start_date,
            end_date=end_date,
        )
        return [ReservationResponse.from_domain(item) for item in reservations]
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("list amenity reservations", exc) from exc
