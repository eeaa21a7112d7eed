"""Notification service: account emails via the HTTP email API.

Every send returns a ``DeliveryResult``; a failed delivery never fails the
operation that triggered it.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import pytz
import structlog

from app.config import Settings, get_settings
from app.core.exceptions import NotifierFailure

logger = structlog.get_logger(__name__)

BRAND = "CDC Attendance System"


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message: str


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    text: str
    html: str


class EmailSender(Protocol):
    async def send(self, to: str, subject: str, text: str, html: str) -> dict:
        ...


def _html(title: str, body_lines: list[str]) -> str:
    body = "".join(f"<p>{line}</p>" for line in body_lines)
    return (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
        f"<h2 style=\"color: #2c3e50;\">{title}</h2>{body}"
        f"<p style=\"color: #7f8c8d; font-size: 12px;\">{BRAND}</p></div>"
    )


def _message(subject: str, title: str, lines: list[str]) -> EmailMessage:
    return EmailMessage(subject=subject, text="\n\n".join(lines), html=_html(title, lines))


def teacher_welcome(name: str, email: str, employee_id: str, password: str, department: str, login_url: str) -> EmailMessage:
    return _message(
        f"Welcome to {BRAND} - Your Account Details",
        f"Welcome, {name}!",
        [
            f"Your teacher account for the {department} department has been created.",
            f"Employee ID: {employee_id}",
            f"Email: {email}",
            f"Temporary password: {password}",
            f"Log in at {login_url} with your email or employee ID and change your password right away.",
        ],
    )


def admin_welcome(name: str, email: str, password: str, login_url: str) -> EmailMessage:
    return _message(
        f"Welcome to {BRAND} - Admin Account",
        f"Welcome, {name}!",
        [
            "An administrator account has been created for you.",
            f"Email: {email}",
            f"Temporary password: {password}",
            f"Log in at {login_url} and change your password right away.",
        ],
    )


def _otp_lines(intro: str, otp: str, minutes: int, expires_local: str) -> list[str]:
    return [
        intro,
        f"Your verification code is: {otp}",
        f"This code is valid for {minutes} minutes (until {expires_local}).",
        "If you did not request this, you can ignore this email.",
    ]


def password_change_otp(name: str, otp: str, minutes: int, expires_local: str) -> EmailMessage:
    return _message(
        "Password Change Verification - OTP",
        f"Hello {name},",
        _otp_lines("You asked to change your password.", otp, minutes, expires_local),
    )


def password_reset_otp(name: str, otp: str, minutes: int, expires_local: str) -> EmailMessage:
    return _message(
        "Password Reset Request - OTP",
        f"Hello {name},",
        _otp_lines("You asked to reset your password.", otp, minutes, expires_local),
    )


def password_reset_link(name: str, reset_url: str, minutes: int) -> EmailMessage:
    return _message(
        "Password Reset Request",
        f"Hello {name},",
        [
            "You asked to reset your password.",
            f"Open this link to choose a new one: {reset_url}",
            f"The link expires in {minutes} minutes.",
            "If you did not request this, you can ignore this email.",
        ],
    )


class NotificationService:
    def __init__(self, client: EmailSender, settings: Optional[Settings] = None):
        self.client = client
        self.settings = settings or get_settings()
        self.tz = pytz.timezone(self.settings.TIMEZONE)

    @property
    def login_url(self) -> str:
        return f"{self.settings.FRONTEND_URL.rstrip('/')}/login"

    def _local(self, moment: datetime) -> str:
        return moment.astimezone(self.tz).strftime("%d/%m/%Y %H:%M")

    async def _deliver(self, to: str, message: EmailMessage, kind: str) -> DeliveryResult:
        try:
            await self.client.send(to, message.subject, message.text, message.html)
        except NotifierFailure as e:
            logger.warning("Email delivery failed", kind=kind, error=str(e))
            return DeliveryResult(False, str(e))
        return DeliveryResult(True, "Email sent successfully")

    async def send_teacher_welcome(self, *, name, email, employee_id, password, department) -> DeliveryResult:
        message = teacher_welcome(name, email, employee_id, password, department, self.login_url)
        return await self._deliver(email, message, "teacher_welcome")

    async def send_admin_welcome(self, *, name, email, password) -> DeliveryResult:
        message = admin_welcome(name, email, password, self.login_url)
        return await self._deliver(email, message, "admin_welcome")

    async def send_password_change_otp(self, *, name, email, otp, expires_at: datetime, minutes: int) -> DeliveryResult:
        message = password_change_otp(name, otp, minutes, self._local(expires_at))
        return await self._deliver(email, message, "password_change_otp")

    async def send_password_reset_otp(self, *, name, email, otp, expires_at: datetime, minutes: int) -> DeliveryResult:
        message = password_reset_otp(name, otp, minutes, self._local(expires_at))
        return await self._deliver(email, message, "password_reset_otp")

    async def send_password_reset_link(self, *, name, email, token, minutes: int) -> DeliveryResult:
        reset_url = f"{self.settings.FRONTEND_URL.rstrip('/')}/reset-password/{token}"
        message = password_reset_link(name, reset_url, minutes)
        return await self._deliver(email, message, "password_reset_link")
