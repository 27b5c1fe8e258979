"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.domain.errors import ReservationError
from backend.domain.models import Principal
from backend.services.approval_service import AdminReservationService
from backend.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
    MalformedUserIdentityError,
    MissingUserIdentityError,
)
from backend.services.reservation_service import ReservationService
from backend.utils.config import get_settings


bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_reservation_service(request: Request) -> ReservationService:
    service = getattr(request.app.state, "reservation_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Reservation service is not initialized",
        )
    return service


def get_admin_service(request: Request) -> AdminReservationService:
    service = getattr(request.app.state, "admin_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin reservation service is not initialized",
        )
    return service


async def require_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> Principal:
    if not auth_service.auth_enabled:
        return auth_service.validate_bearer_token("")
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        return auth_service.validate_bearer_token(credentials.credentials)
    except (AdminTokenNotConfiguredError, InvalidAdminTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc


async def require_user(
    x_user_id: str | None = Header(default=None),
    auth_service: AuthService = Depends(get_auth_service),
) -> Principal:
    try:
        return auth_service.resolve_user(x_user_id)
    except MissingUserIdentityError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
    except MalformedUserIdentityError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc


def to_http_exception(exc: ReservationError) -> HTTPException:
    """Translate a domain error into its HTTP status and error kind."""
    return HTTPException(
        status_code=exc.status_code,
        detail=str(exc),
        headers={"X-Error-Kind": exc.kind},
    )
