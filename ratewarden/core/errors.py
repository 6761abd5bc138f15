"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Infrastructure errors (store, challenge provider) are raised by adapters and
absorbed by the services; decision errors are raised by the HTTP adapter and
rendered by the global exception handlers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    policy: str
    pattern: str
    limit: int
    remaining: int
    reset_at: int
    retry_after: int
    requires_captcha: bool
    operation: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class ConfigurationAppError(AppError):
    """Raised at startup when static configuration is invalid."""


class StoreUnavailableError(AppError):
    """Raised when the shared counter store cannot be reached or errors."""


class ChallengeProviderError(AppError):
    """Raised when the challenge verification endpoint fails or replies badly."""


class RateLimitExceededError(AppError):
    """Raised by host adapters when a caller exceeded a policy window."""


class AccessBlockedError(AppError):
    """Raised by host adapters when a caller is blocked by an abuse pattern."""


class CaptchaRequiredError(AppError):
    """Raised by host adapters when a verified challenge token is required."""
