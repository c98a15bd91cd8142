from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Stable machine-readable codes carried by every service error."""

    AUTH_EMAIL_ALREADY_EXISTS = "AUTH_EMAIL_ALREADY_EXISTS"
    AUTH_USER_NOT_FOUND = "AUTH_USER_NOT_FOUND"
    AUTH_INVALID_TOKEN = "AUTH_INVALID_TOKEN"
    ACCESS_UNAUTHORIZED = "ACCESS_UNAUTHORIZED"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class ServiceError(Exception):
    """Base class for service-layer exceptions.

    Each subclass defines an HTTP-style ``status_code`` and a default
    ``error_code``; a transport layer renders ``to_dict()`` as the error body.
    """

    status_code: int = 400
    error_code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = ErrorCode(error_code)
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {
            "code": self.error_code.value,
            "message": self.message,
            "details": self.detail or None,
        }


class BadRequestError(ServiceError):
    """Client-correctable failure such as a duplicate email (400)."""
    status_code = 400
    error_code = ErrorCode.VALIDATION_ERROR


class UnauthorizedError(ServiceError):
    """Token or session invalid, expired, or missing (401)."""
    status_code = 401
    error_code = ErrorCode.ACCESS_UNAUTHORIZED


__all__ = [
    "ErrorCode",
    "ServiceError",
    "BadRequestError",
    "UnauthorizedError",
]
