"""
Custom exceptions and error handlers for consistent error responses.

Provides the domain error taxonomy (validation, conflict, not found,
ledger integrity, retryable) and the global exception handlers that map it
to HTTP responses with machine-readable error codes.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("freelance_backend.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised for bad input: invalid quantity/date, submit without entries, unknown export format."""

    def __init__(self, message: str, error_code: str = "invalid_payload", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class ConflictError(AppException):
    """Raised for state-incompatible mutations and uniqueness violations."""

    def __init__(self, message: str, error_code: str = "conflict", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class ReportNotModifiableError(ConflictError):
    """Raised when a report or one of its entries is mutated while the report is not draft."""

    def __init__(self, report_id: Any = None, report_status: Any = None):
        super().__init__(
            message="report is not modifiable",
            error_code="report_not_modifiable",
            details={"report_id": report_id, "status": report_status}
        )


class InvalidTransitionError(ConflictError):
    """Raised for any lifecycle transition other than draft -> submitted -> locked."""

    def __init__(self, from_status: Any, to_status: Any):
        super().__init__(
            message=f"Invalid transition from '{from_status}' to '{to_status}'",
            error_code="invalid_transition",
            details={"from": from_status, "to": to_status}
        )


class NotFoundError(AppException):
    """
    Raised when requested resource is not found.

    Soft-deleted and inaccessible resources raise the same error as resources
    that never existed.
    """

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="not_found",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class LedgerIntegrityError(AppException):
    """Ledger head mismatch or history rewrite. Fatal, never retried, requires operator action."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ledger_integrity",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


class RetryableError(AppException):
    """Transient ledger-store failure. The report stays submitted and the call is safe to retry."""

    retry_after_seconds = 5

    def __init__(self, message: str, error_code: str = "ledger_unavailable", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details
        )


class LedgerTimeoutError(RetryableError):
    """Raised when a ledger store invocation exceeds its timeout."""

    def __init__(self, command: str, timeout: float):
        super().__init__(
            message=f"Ledger command '{command}' timed out after {timeout}s",
            error_code="ledger_timeout",
            details={"command": command, "timeout": timeout}
        )


class LedgerCommandError(RetryableError):
    """Raised when a ledger store invocation exits with a failure status."""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        super().__init__(
            message=f"Ledger command '{command}' failed with exit code {returncode}",
            error_code="ledger_unavailable",
            details={"command": command, "returncode": returncode, "stderr": stderr[-500:]}
        )


class RateLimitExceededError(AppException):
    """Raised when the caller exceeded the request budget of the current window."""

    def __init__(self, retry_after: int):
        super().__init__(
            message="Rate limit exceeded",
            error_code="rate_limited",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"retry_after": retry_after}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    headers = None
    if isinstance(exc, LedgerIntegrityError):
        logger.critical(
            "Ledger integrity failure",
            extra={"path": request.url.path, "error_code": exc.error_code, "details": exc.details}
        )
    elif isinstance(exc, RetryableError):
        logger.warning("Retryable ledger failure: %s", exc.message)
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    elif isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.details["retry_after"])}

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        },
        headers=headers
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "bad_request",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        500: "internal_server_error"
    }

    error_code = error_code_map.get(exc.status_code, "unknown")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "invalid_payload",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "internal_server_error",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
