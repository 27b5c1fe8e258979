"""Reservation email delivery over SMTP, with a logging mock for development."""

from __future__ import annotations

import smtplib
from collections import deque
from datetime import datetime
from email.message import EmailMessage
from typing import Optional
from zoneinfo import ZoneInfo

from backend.domain.constraints import to_local
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

MOCK_OUTBOX_SIZE = 100


class EmailDeliveryError(Exception):
    """Raised when the SMTP transport rejects or cannot deliver a message."""


class EmailService:
    """Builds and sends reservation emails.

    Falls back to logging the message when ``EMAIL_BACKEND`` is not ``smtp`` or
    the SMTP host is missing, so development never needs a mail server.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._building_tz = ZoneInfo(self._settings.building_timezone)
        self._sent_in_mock: deque[EmailMessage] = deque(maxlen=MOCK_OUTBOX_SIZE)

    @property
    def is_mock_mode(self) -> bool:
        return self._settings.email_backend != "smtp" or not self._settings.smtp_host

    @property
    def sent_messages(self) -> list[EmailMessage]:
        """Most recent messages captured while in mock mode, oldest first."""
        return list(self._sent_in_mock)

    def _format_window(self, start: datetime, end: datetime) -> str:
        local_start = to_local(start, self._building_tz)
        local_end = to_local(end, self._building_tz)
        return (
            f"{local_start.strftime('%A %d/%m/%Y')} from "
            f"{local_start.strftime('%H:%M')} to {local_end.strftime('%H:%M')}"
        )

    def _build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._settings.email_from
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        return message

    def send_email(self, to: str, subject: str, body: str) -> None:
        message = self._build_message(to, subject, body)
        if self.is_mock_mode:
            self._sent_in_mock.append(message)
            logger.info("Mock email to=%s subject=%s", to, subject)
            return

        try:
            with smtplib.SMTP(
                self._settings.smtp_host,
                self._settings.smtp_port,
                timeout=self._settings.smtp_timeout_seconds,
            ) as client:
                if self._settings.smtp_use_tls:
                    client.starttls()
                if self._settings.smtp_username and self._settings.smtp_password:
                    client.login(self._settings.smtp_username, self._settings.smtp_password)
                client.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise EmailDeliveryError(f"Failed to send email to {to}: {exc}") from exc
        logger.info("Email sent to=%s subject=%s", to, subject)

    def send_reservation_confirmation(
        self,
        email: str,
        name: str,
        amenity_name: str,
        start: datetime,
        end: datetime,
    ) -> None:
        body = (
            f"Hello {name},\n\n"
            f"Your reservation for {amenity_name} on {self._format_window(start, end)} "
            "is confirmed.\n\n"
            "Please remember to leave the space as you found it.\n"
        )
        self.send_email(email, f"Reservation Confirmed: {amenity_name}", body)

    def send_reservation_cancellation(
        self,
        email: str,
        name: str,
        amenity_name: str,
        start: datetime,
        end: datetime,
        reason: str | None = None,
    ) -> None:
        lines = [
            f"Hello {name},",
            "",
            f"Your reservation for {amenity_name} on {self._format_window(start, end)} "
            "has been cancelled.",
        ]
        if reason:
            lines.append(f"Reason: {reason}")
        lines.extend(["", "You can request a new time slot at any moment."])
        self.send_email(email, f"Reservation Cancelled: {amenity_name}", "\n".join(lines) + "\n")
