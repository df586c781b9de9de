"""HTTP middleware: request correlation and cross-origin headers.

``request_id_middleware`` accepts an incoming X-Request-ID (header name is
configurable) or generates a UUID, keeps it in contextvars for the lifetime
of the request, echoes it back and reports the request duration.

``cors_middleware`` stamps CORS headers on every response, not only on
requests that carry an ``Origin`` header, and answers preflight ``OPTIONS``
requests directly. It must be the innermost of the two: it renders the
generic 500 for exceptions no handler claimed, so those responses carry the
CORS and request id headers as well.

Usage:
    app.middleware("http")(cors_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from app.core.config import settings_for
from app.core.exception_handlers import general_exception_handler
from app.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Origin, X-Requested-With, Content-Type, Accept, Authorization"


def _allowed_origin(request: Request) -> str:
    allowed = settings_for(request).app.cors_allow_origins
    origins = [o.strip() for o in allowed.split(",") if o.strip()]
    if not origins or "*" in origins:
        return "*"
    origin = request.headers.get("origin")
    return origin if origin in origins else origins[0]


async def cors_middleware(request: Request, call_next) -> Response:
    """Add CORS headers to every response and short-circuit preflights."""

    if request.method == "OPTIONS":
        response: Response = Response(status_code=200, content="OK")
    else:
        try:
            response = await call_next(request)
        except Exception as exc:
            response = await general_exception_handler(request, exc)

    response.headers["Access-Control-Allow-Origin"] = _allowed_origin(request)
    response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
    response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
    return response


async def request_id_middleware(request: Request, call_next) -> Response:
    """Generate or propagate the request id and time the request.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response with ``X-Request-ID`` and
            ``X-Request-Duration-ms`` headers added.
    """

    header_name = settings_for(request).log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
