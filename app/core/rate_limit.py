"""Rate limiting wiring for the HTTP layer.

The limiter itself lives on the ``PriceService``; this module builds it from
settings and derives the per-client key from the incoming request.

Rate limiting strategy:
- Sliding window per client network address.
- Behind a trusted proxy, the first ``X-Forwarded-For`` hop can be used
  instead of the socket peer (``APP_TRUST_FORWARDED_FOR``).
"""

from __future__ import annotations

from typing import Callable

from fastapi import Request

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from app.core.config import AppSettings, settings, settings_for


def build_rate_limiter(
    app_settings: AppSettings | None = None,
    *,
    clock: Callable[[], float] | None = None,
) -> AbstractRateLimiter | None:
    """Create the process-wide limiter, or None when rate limiting is disabled.

    Args:
        app_settings: Application settings; defaults to ``settings.app``.
        clock: Optional time source override.

    Returns:
        Configured limiter instance or None.
    """

    cfg = app_settings or settings.app
    if not cfg.rate_limit_enabled:
        return None

    kwargs = {"clock": clock} if clock is not None else {}
    return InMemorySlidingWindowRateLimiter(
        limit=cfg.rate_limit_requests,
        window_seconds=cfg.rate_limit_window_seconds,
        **kwargs,
    )


def get_client_key(request: Request) -> str:
    """FastAPI dependency returning the limiter key for the current request.

    Args:
        request: FastAPI request.

    Returns:
        str: Namespaced limiter key, e.g. ``ip:203.0.113.7``.
    """

    if settings_for(request).app.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return f"ip:{first_hop}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"
