"""
Application error hierarchy and FastAPI exception handlers.

AppError is the base for all typed errors. Every business outcome a caller
must handle (locked account, expired OTP, taken email, ...) has its own
subclass with a stable ``error_code``; the global exception handler converts
them to consistent JSON responses.

Non-AppError exceptions bubble up as 500s (with Sentry reporting in production).
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)


class AppError(Exception):
    """Base application error. All typed errors inherit from this."""

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details

    def to_dict(self) -> dict:
        payload: dict = {"error": self.message, "code": self.error_code}
        if self.field is not None:
            payload["field"] = self.field
        if self.details is not None:
            payload["details"] = self.details
        return payload

    def headers(self) -> Optional[dict[str, str]]:
        return None


class ValidationError(AppError):
    status_code = 400
    error_code = "validation_error"


class InvalidInputError(ValidationError):
    """A required role-specific field or acceptance is missing."""

    error_code = "invalid_input"


class AuthenticationError(AppError):
    status_code = 401
    error_code = "authentication_error"


class InvalidCredentialsError(AuthenticationError):
    """Unknown email and wrong password deliberately share this error."""

    error_code = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class TokenInvalidError(AuthenticationError):
    error_code = "token_invalid"


class TokenExpiredError(AuthenticationError):
    error_code = "token_expired"


class FederatedEmailUnverifiedError(AuthenticationError):
    error_code = "federated_email_unverified"


class ForbiddenError(AppError):
    status_code = 403
    error_code = "forbidden"


class AccountInactiveError(ForbiddenError):
    error_code = "account_inactive"

    def __init__(self, message: str = "Account is deactivated", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class NotFoundError(AppError):
    status_code = 404
    error_code = "not_found"


class ConflictError(AppError):
    status_code = 409
    error_code = "conflict"


class EmailAlreadyRegisteredError(ConflictError):
    error_code = "email_already_registered"

    def __init__(
        self, message: str = "Email is already registered", **kwargs: Any
    ) -> None:
        super().__init__(message, field="email", **kwargs)


class RegistrationAlreadyCompletedError(ConflictError):
    error_code = "registration_completed"


class AccountLockedError(AppError):
    status_code = 423
    error_code = "account_locked"

    def __init__(self, remaining_seconds: int, message: Optional[str] = None) -> None:
        minutes = max(1, -(-remaining_seconds // 60))
        super().__init__(
            message
            or f"Too many failed attempts. Try again in {minutes} minute(s).",
            details={"remaining_seconds": remaining_seconds},
        )
        self.remaining_seconds = remaining_seconds

    def headers(self) -> Optional[dict[str, str]]:
        return {"Retry-After": str(self.remaining_seconds)}


class OtpInvalidError(ValidationError):
    error_code = "otp_invalid"

    def __init__(
        self, message: str = "Invalid or expired verification code", **kwargs: Any
    ) -> None:
        super().__init__(message, field="otp", **kwargs)


class OtpExpiredError(ValidationError):
    error_code = "otp_expired"

    def __init__(
        self, message: str = "Verification code has expired", **kwargs: Any
    ) -> None:
        super().__init__(message, field="otp", **kwargs)


class RateLimitError(AppError):
    status_code = 429
    error_code = "rate_limit_exceeded"


class OtpAttemptsExceededError(RateLimitError):
    error_code = "otp_attempts_exceeded"

    def __init__(
        self,
        message: str = "Too many failed attempts. Please request a new code.",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, field="otp", **kwargs)


class ServiceUnavailableError(AppError):
    """A backing store stayed unreachable after bounded retries."""

    status_code = 503
    error_code = "service_unavailable"

    def __init__(
        self,
        message: str = "Service temporarily unavailable. Please retry shortly.",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        # Sentry integration: if sentry_sdk is initialized it will auto-capture
        # unhandled exceptions before this handler fires.
        log.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "An internal server error occurred.", "code": "internal_error"},
        )
