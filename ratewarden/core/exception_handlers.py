"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → appropriate HTTP status (400, 403, 429, 5xx)
- Throttling errors carry Retry-After and X-RateLimit-* headers
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from ratewarden.core.config import settings
from ratewarden.core.errors import (
    AccessBlockedError,
    AppError,
    AuthenticationAppError,
    CaptchaRequiredError,
    ChallengeProviderError,
    ConfigurationAppError,
    RateLimitExceededError,
    StoreUnavailableError,
)
from ratewarden.core.logging import get_request_id

logger = logging.getLogger(__name__)

# Order matters: first matching type wins
_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (RateLimitExceededError, 429),
    (AccessBlockedError, 429),
    (CaptchaRequiredError, 403),
    (AuthenticationAppError, 403),
    (StoreUnavailableError, 503),
    (ChallengeProviderError, 502),
    (ConfigurationAppError, 500),
)


def status_for(exc: AppError) -> int:
    """Map a domain error to its HTTP status code (400 by default)."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def rate_limit_headers(exc: AppError) -> dict[str, str]:
    """Build throttling headers from the error details.

    Only throttling errors get headers, and only when
    ``APP_RATE_LIMIT_INCLUDE_HEADERS`` is enabled.
    """
    if not isinstance(exc, (RateLimitExceededError, AccessBlockedError)):
        return {}
    if not settings.app.rate_limit_include_headers or not exc.details:
        return {}

    headers: dict[str, str] = {}
    details = exc.details
    if "retry_after" in details:
        headers["Retry-After"] = str(details["retry_after"])
    if "limit" in details:
        headers["X-RateLimit-Limit"] = str(details["limit"])
    if "remaining" in details:
        headers["X-RateLimit-Remaining"] = str(details["remaining"])
    if "reset_at" in details:
        headers["X-RateLimit-Reset"] = str(details["reset_at"])
    return headers


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ValidationAppError → 400 Bad Request (client fault)
    - AuthenticationAppError, CaptchaRequiredError → 403 Forbidden
    - RateLimitExceededError, AccessBlockedError → 429 Too Many Requests
    - StoreUnavailableError → 503, ChallengeProviderError → 502
    - ConfigurationAppError → 500 Internal Server Error

    All responses include:
    - error.code: Machine-readable error code
    - error.message: Human-readable message
    - error.request_id: For distributed tracing
    - error.details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code, error details and headers.
    """
    status_code = status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }

    if exc.details:
        error_content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=rate_limit_headers(exc) or None,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic message,
    so no stack traces or internals leak to the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Must be called during app initialization, before route registration.
    Specific handlers are registered before the general fallback.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
