"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
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
    http_status: int
    retry_after: int
    backend: str
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
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when the caller cannot be authenticated (missing/invalid token)."""


class AuthorizationAppError(AppError):
    """Raised when an authenticated caller lacks the required role."""


class AuditStoreError(AppError):
    """Raised when the audit store cannot be read or written."""


class RateLimitExceededError(Exception):
    """Raised by the HTTP layer to turn a rejected admission into a 429.

    Carries everything the handler needs to build the response so that no
    rate limiter state has to be consulted again.
    """

    def __init__(
        self,
        *,
        message: str,
        limit: int,
        reset_time_ms: int,
        retry_after_seconds: int,
        include_headers: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.limit = limit
        self.reset_time_ms = reset_time_ms
        self.retry_after_seconds = retry_after_seconds
        self.include_headers = include_headers
