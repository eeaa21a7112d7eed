"""
Global exception handling for the application.
Standardizes error responses as {"error": {code, message, details, path}}.
"""

from typing import Any, Dict, Optional

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(AppError):
    """Missing or malformed input."""
    def __init__(self, message: str = "Invalid input", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class ConflictException(AppError):
    """Uniqueness violation on email or employee ID."""
    def __init__(self, message: str = "Resource already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class EntityNotFoundException(AppError):
    """Resource not found error."""
    def __init__(self, message: str = "Entity not found", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class DepartmentCodeUnknownException(AppError):
    """Department name has no employee ID code."""
    def __init__(self, department_name: str):
        super().__init__(
            f"Department code mapping not found for: {department_name}",
            422,
            {"department": department_name},
        )


class UnauthorizedException(AppError):
    """Authentication failure error."""
    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED, details)


class InvalidCredentialsException(UnauthorizedException):
    """Wrong password or unknown account. Deliberately ambiguous."""
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class InvalidOtpException(InvalidCredentialsException):
    """Wrong, expired or already used OTP."""
    def __init__(self, message: str = "Invalid or expired OTP"):
        super().__init__(message)
        self.status_code = status.HTTP_400_BAD_REQUEST


class AccountInactiveException(UnauthorizedException):
    def __init__(self):
        super().__init__("Account is inactive")


class AccountLockedException(AppError):
    """Too many failed logins; carries the remaining lock time."""
    def __init__(self, remaining_minutes: int):
        self.remaining_minutes = remaining_minutes
        super().__init__(
            f"Account is locked. Please try again in {remaining_minutes} minutes.",
            status.HTTP_423_LOCKED,
            {"remaining_minutes": remaining_minutes},
        )


class InvalidRefreshTokenException(UnauthorizedException):
    def __init__(self, message: str = "Invalid refresh token"):
        super().__init__(message)


class InvalidTokenException(UnauthorizedException):
    """Bad signature, audience, issuer, type or expiry."""
    def __init__(self, message: str = "Invalid token", expired: bool = False):
        self.expired = expired
        super().__init__(message)


class ForbiddenException(AppError):
    """Authorization failure error."""
    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status.HTTP_403_FORBIDDEN, details)


class CredentialUnavailableException(AppError):
    """Stored password digest is missing."""
    def __init__(self, message: str = "User password not found in database"):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class NotifierFailure(Exception):
    """Email delivery failed. Never fatal to the operation that triggered it."""


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all uncaught exceptions globally."""

    if isinstance(exc, AppError):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": exc.__class__.__name__,
                    "message": exc.message,
                    "details": exc.details,
                    "path": request.url.path,
                }
            },
        )

    logger.exception("Unexpected error occurred", path=request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "InternalServerError",
                "message": "An unexpected error occurred. Please try again later.",
                "path": request.url.path,
            }
        },
    )
