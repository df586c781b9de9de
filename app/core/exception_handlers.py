"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return small JSON bodies of the form
``{"error": <stable tag>, "message": <human text>}``.

Design:
- AppError subclasses → the status code and tag declared on the class
- LocalRateLimitError → also carries Retry-After / X-RateLimit-* headers
- Unexpected Exception → generic 500 (safety net)
- Error details and upstream messages are logged, never returned
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from app.core.config import Settings, settings_for
from app.core.errors import AppError, LocalRateLimitError
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _rate_limit_headers(exc: LocalRateLimitError, cfg: Settings) -> dict[str, str]:
    if not cfg.app.rate_limit_include_headers or not exc.details:
        return {}

    headers: dict[str, str] = {}
    if "retry_after" in exc.details:
        headers["Retry-After"] = str(exc.details["retry_after"])
    if "limit" in exc.details:
        headers["X-RateLimit-Limit"] = str(exc.details["limit"])
    if "remaining" in exc.details:
        headers["X-RateLimit-Remaining"] = str(exc.details["remaining"])
    if "reset_at" in exc.details:
        headers["X-RateLimit-Reset"] = str(exc.details["reset_at"])
    return headers


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    The HTTP status and ``error`` tag come from the exception class:
    - PriceNotFoundError → 404
    - UpstreamTimeoutError → 408
    - UpstreamRateLimitError / LocalRateLimitError → 429
    - ValidationAppError → 400
    - UpstreamError (and bare AppError) → 500

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the class status code and a ``{error, message}`` body.
    """
    status_code = exc.status_code

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "request_path": request.url.path,
            "details": exc.details or {},
            "request_id": get_request_id(),
        },
    )

    headers = None
    if isinstance(exc, LocalRateLimitError):
        headers = _rate_limit_headers(exc, settings_for(request)) or None

    return JSONResponse(
        status_code=status_code,
        content={"error": exc.error, "message": exc.message},
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic message.
    No stack traces or exception text reach the client.

    Args:
        request: FastAPI request object.
        exc: Exception instance (unexpected).

    Returns:
        JSONResponse with a generic 500 body.
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
            "error": "Internal server error",
            "message": "An unexpected error occurred",
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
