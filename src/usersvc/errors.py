"""Typed service errors and the FastAPI handlers that render them.

Every failure the service reports carries an ``ErrorKind``; the HTTP status
is looked up in ``STATUS_CODES`` rather than inferred from message text.
Responses share one envelope::

    {"success": false, "message": "...", "code": "otp_locked", ...}
"""

import logging
from enum import Enum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Machine-readable error categories."""

    VALIDATION = "validation_error"
    INVALID_PHONE = "invalid_phone"
    DUPLICATE = "duplicate"
    AUTH_INVALID = "auth_invalid"
    WRONG_TOKEN_TYPE = "wrong_token_type"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    OTP_NOT_FOUND = "otp_not_found"
    OTP_EXPIRED = "otp_expired"
    OTP_INVALID = "otp_invalid"
    RATE_LIMITED = "rate_limited"
    LOCKED = "otp_locked"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INTERNAL = "internal_error"


STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_PHONE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.DUPLICATE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTH_INVALID: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.WRONG_TOKEN_TYPE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.OTP_NOT_FOUND: status.HTTP_400_BAD_REQUEST,
    ErrorKind.OTP_EXPIRED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.OTP_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.LOCKED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.UPSTREAM_UNAVAILABLE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ServiceError(Exception):
    """Base for all errors the service reports to clients."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: Any | None = None,
        retry_after: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details
        self.retry_after = retry_after
        self.headers = headers

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "message": self.message,
            "code": self.kind.value,
        }
        if self.field is not None:
            payload["field"] = self.field
        if self.details is not None:
            payload["details"] = self.details
        if self.retry_after is not None:
            payload["retryAfter"] = self.retry_after
        return payload

    def response_headers(self) -> dict[str, str] | None:
        headers = dict(self.headers or {})
        if self.retry_after is not None:
            headers.setdefault("Retry-After", str(self.retry_after))
        return headers or None


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION


class InvalidPhone(ServiceError):
    kind = ErrorKind.INVALID_PHONE

    def __init__(self, message: str = "Invalid phone number format", **kwargs: Any) -> None:
        kwargs.setdefault("field", "phone")
        super().__init__(message, **kwargs)


class DuplicateError(ServiceError):
    kind = ErrorKind.DUPLICATE


class AuthInvalid(ServiceError):
    kind = ErrorKind.AUTH_INVALID

    def __init__(self, message: str = "Invalid or expired token", **kwargs: Any) -> None:
        kwargs.setdefault("headers", {"WWW-Authenticate": "Bearer"})
        super().__init__(message, **kwargs)


class WrongTokenType(ServiceError):
    kind = ErrorKind.WRONG_TOKEN_TYPE


class Forbidden(ServiceError):
    kind = ErrorKind.FORBIDDEN


class NotFound(ServiceError):
    kind = ErrorKind.NOT_FOUND


class OtpNotFound(ServiceError):
    kind = ErrorKind.OTP_NOT_FOUND

    def __init__(
        self, message: str = "No active OTP found. Please request a new one.", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class OtpExpired(ServiceError):
    kind = ErrorKind.OTP_EXPIRED

    def __init__(
        self, message: str = "OTP has expired. Please request a new one.", **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)


class InvalidCode(ServiceError):
    kind = ErrorKind.OTP_INVALID

    def __init__(self, attempts_remaining: int, **kwargs: Any) -> None:
        self.attempts_remaining = attempts_remaining
        kwargs.setdefault("details", {"attemptsRemaining": attempts_remaining})
        super().__init__(f"Invalid OTP. {attempts_remaining} attempts remaining.", **kwargs)


class RateLimited(ServiceError):
    kind = ErrorKind.RATE_LIMITED


class Locked(ServiceError):
    kind = ErrorKind.LOCKED


class UpstreamUnavailable(ServiceError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class InternalError(ServiceError):
    kind = ErrorKind.INTERNAL


class SmsConfigurationError(InternalError):
    """The configured SMS provider is missing required settings."""


def _status_to_kind(status_code: int) -> ErrorKind:
    for kind, code in STATUS_CODES.items():
        if code == status_code:
            return kind
    return ErrorKind.INTERNAL if status_code >= 500 else ErrorKind.VALIDATION


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(ServiceError)
    async def service_error_handler(_request: Request, exc: ServiceError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.response_headers(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        _request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "message": str(exc.detail),
                "code": _status_to_kind(exc.status_code).value,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())[1:]) or None,
                "message": err.get("msg", "Invalid value").removeprefix("Value error, "),
            }
            for err in exc.errors()
        ]
        message = errors[0]["message"] if errors else "Validation failed"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "message": message,
                "code": ErrorKind.VALIDATION.value,
                "errors": errors,
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "message": "Internal server error",
                "code": ErrorKind.INTERNAL.value,
            },
        )
