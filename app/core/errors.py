"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.

Each subclass pins the HTTP status and the stable ``error`` tag clients see;
``message`` is the human-readable text and ``details`` is for logs only.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability.

    Never serialized into responses.
    """

    coin_id: str
    coin_ids: list[str]
    upstream_status: int
    upstream_url: str
    timeout_seconds: float
    retry_after: int
    limit: int
    remaining: int
    reset_at: int
    reason: str
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

    status_code: ClassVar[int] = 500
    error: ClassVar[str] = "Internal server error"

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""

    status_code = 400
    error = "Bad request"


class PriceNotFoundError(AppError):
    """The provider has no price for the requested id."""

    status_code = 404
    error = "Cryptocurrency not found"


class UpstreamRateLimitError(AppError):
    """The provider throttled us (HTTP 429)."""

    status_code = 429
    error = "Rate limit exceeded"


class LocalRateLimitError(AppError):
    """The caller exceeded this service's own per-client quota."""

    status_code = 429
    error = "Rate limit exceeded"


class UpstreamTimeoutError(AppError):
    """The provider did not answer within the configured budget."""

    status_code = 408
    error = "Request timeout"


class UpstreamError(AppError):
    """Any other transport, status or parse failure talking to the provider."""


def price_not_found(coin_id: str) -> PriceNotFoundError:
    return PriceNotFoundError(
        code="price_not_found",
        message="The specified cryptocurrency ID does not exist",
        details={"coin_id": coin_id},
    )
