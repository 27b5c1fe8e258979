"""Controller layer for admin login and reservation moderation endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from backend.controllers.dependencies import (
    bearer_scheme,
    get_admin_service,
    get_auth_service,
    require_admin,
    to_http_exception,
)
from backend.controllers.reservation_controller import ReservationResponse
from backend.domain.errors import ReservationError
from backend.services.approval_service import AdminReservationService
from backend.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["admin"])


class LoginRequest(BaseModel):
    admin_token: str = Field(min_length=1)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ReasonRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


def _unexpected(action: str, exc: Exception) -> HTTPException:
    logger.exception("Unexpected admin failure while trying to %s", action)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}",
    )


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    auth_service: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    try:
        token = auth_service.login(payload.admin_token)
    except AdminTokenNotConfiguredError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc
    except InvalidAdminTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    return LoginResponse(access_token=token)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
def logout(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if credentials is not None:
        auth_service.logout(credentials.credentials)


@router.get(
    "/admin/reservations",
    response_model=list[ReservationResponse],
    dependencies=[Depends(require_admin)],
)
def list_reservations(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    amenity_id: Optional[int] = Query(default=None, gt=0),
    limit: Optional[int] = Query(default=None, gt=0),
    service: AdminReservationService = Depends(get_admin_service),
) -> list[ReservationResponse]:
    try:
        reservations = service.list_reservations(
            status=status_filter,
            amenity_id=amenity_id,
            limit=limit,
        )
        return [ReservationResponse.from_domain(item) for item in reservations]
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("list reservations", exc) from exc


@router.get(
    "/admin/reservations/pending",
    response_model=list[ReservationResponse],
    dependencies=[Depends(require_admin)],
)
def list_pending_reservations(
    service: AdminReservationService = Depends(get_admin_service),
) -> list[ReservationResponse]:
    try:
        return [
            ReservationResponse.from_domain(item)
            for item in service.list_pending_reservations()
        ]
    except Exception as exc:  # pragma: no cover
        raise _unexpected("list pending reservations", exc) from exc


@router.put(
    "/admin/reservations/{reservation_id}/approve",
    response_model=ReservationResponse,
    dependencies=[Depends(require_admin)],
)
def approve_reservation(
    reservation_id: int,
    background_tasks: BackgroundTasks,
    service: AdminReservationService = Depends(get_admin_service),
):
    """Approve a pending request, or auto-reject it when it can no longer fit."""
    try:
        outcome = service.approve_reservation(reservation_id, background_tasks)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("approve reservation", exc) from exc

    response = ReservationResponse.from_domain(outcome.reservation)
    if outcome.rejection_reason is not None:
        reason = outcome.rejection_reason
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "detail": f"The reservation was rejected: {reason.description}",
                "auto_rejected": True,
                "reason": reason.value,
                "reservation": response.model_dump(mode="json"),
            },
            headers={"X-Error-Kind": "AutoRejected"},
        )
    return response


@router.put(
    "/admin/reservations/{reservation_id}/reject",
    response_model=ReservationResponse,
    dependencies=[Depends(require_admin)],
)
def reject_reservation(
    reservation_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[ReasonRequest] = None,
    service: AdminReservationService = Depends(get_admin_service),
) -> ReservationResponse:
    try:
        reservation = service.reject_reservation(
            reservation_id,
            payload.reason if payload else None,
            background_tasks,
        )
        return ReservationResponse.from_domain(reservation)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("reject reservation", exc) from exc


@router.delete(
    "/admin/reservations/{reservation_id}/cancel",
    response_model=ReservationResponse,
    dependencies=[Depends(require_admin)],
)
def cancel_reservation(
    reservation_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[ReasonRequest] = None,
    service: AdminReservationService = Depends(get_admin_service),
) -> ReservationResponse:
    try:
        reservation = service.cancel_reservation(
            reservation_id,
            payload.reason if payload else None,
            background_tasks,
        )
        return ReservationResponse.from_domain(reservation)
    except ReservationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover
        raise _unexpected("cancel reservation", exc) from exc
