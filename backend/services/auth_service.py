"""Caller identity: admin bearer sessions and resident identification."""

from __future__ import annotations

import secrets
import threading
from typing import Optional

from backend.domain.models import Principal, UserRole
from backend.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class MissingUserIdentityError(AuthenticationError):
    """Raised when a resident request carries no user id."""


class MalformedUserIdentityError(AuthenticationError):
    """Raised when the resident user id is not a positive integer."""


class AuthService:
    """Validates admin login and bearer tokens and resolves resident callers.

    Resident identity is asserted by an upstream gateway through the user id
    header; this service only checks its shape.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._sessions: set[str] = set()
        self._lock = threading.Lock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        session_token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions.add(session_token)
        return session_token

    def logout(self, bearer_token: str) -> None:
        with self._lock:
            self._sessions.discard(bearer_token)

    def validate_bearer_token(self, bearer_token: str) -> Principal:
        admin = Principal(user_id=None, role=UserRole.ADMIN)
        if not self.auth_enabled:
            return admin
        with self._lock:
            if not self._sessions:
                raise InvalidAdminTokenError("No active session. Login first.")
            known = any(secrets.compare_digest(bearer_token, token) for token in self._sessions)
        if not known:
            raise InvalidAdminTokenError("Invalid bearer token")
        return admin

    def resolve_user(self, raw_user_id: str | None) -> Principal:
        if raw_user_id is None or not raw_user_id.strip():
            raise MissingUserIdentityError("X-User-Id header is required")
        try:
            user_id = int(raw_user_id.strip())
        except ValueError as exc:
            raise MalformedUserIdentityError("X-User-Id must be a positive integer") from exc
        if user_id <= 0:
            raise MalformedUserIdentityError("X-User-Id must be a positive integer")
        return Principal(user_id=user_id, role=UserRole.USER)
