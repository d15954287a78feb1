"""Custom exception hierarchy and handlers."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    status_code = 400
    code = "app_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundException(AppException):
    """Raised when entity is not found."""

    status_code = 404
    code = "not_found"


class ConflictException(AppException):
    """Raised when entity conflicts with current state."""

    status_code = 409
    code = "conflict"


class UnauthorizedException(AppException):
    """Raised when user has no rights for operation."""

    status_code = 403
    code = "forbidden"


class BusinessRuleException(AppException):
    """Raised when business rule validation fails."""

    status_code = 422
    code = "business_rule_violation"


class UnknownModeError(BusinessRuleException):
    """Raised when a session mode is neither online nor in-person."""

    code = "unknown_session_mode"

    def __init__(self, mode: object) -> None:
        super().__init__(f"Unknown session mode: {mode!r}", details={"mode": str(mode)})


class BookingValidationException(BusinessRuleException):
    """Requested booking times do not fit the availability window."""

    code = "booking_time_invalid"


class SlotUnavailableException(ConflictException):
    """The availability window was consumed by someone else first."""

    code = "slot_unavailable"

    def __init__(self, message: str = "This time slot is no longer available") -> None:
        super().__init__(message)


class OperationFailedException(AppException):
    """Opaque failure; internals are logged under the correlation id."""

    status_code = 500
    code = "operation_failed"

    def __init__(self, correlation_id: str) -> None:
        super().__init__(
            f"The operation could not be completed. Reference: {correlation_id}",
            details={"correlation_id": correlation_id},
        )
        self.correlation_id = correlation_id


class WebhookVerificationException(AppException):
    """Payment provider callback failed signature or payload checks."""

    status_code = 400
    code = "invalid_webhook"


class DuplicatePaymentSessionError(Exception):
    """A booking already carries this external payment session reference."""

    def __init__(self, payment_session_id: str) -> None:
        self.payment_session_id = payment_session_id
        super().__init__(payment_session_id)


async def app_exception_handler(_: Request, exc: AppException) -> JSONResponse:
    """Handle custom domain exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": exc.code, "message": exc.message, **exc.details}},
    )


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions in unified shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "http_error", "message": str(exc.detail)}},
    )


async def unhandled_exception_handler(_: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "Internal server error"}},
    )


def register_exception_handlers(app) -> None:
    """Register global exception handlers."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
