from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers and
the shared price service) so tests can build isolated instances.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.adapters.pricing.factory import create_price_client
from app.api.routes import health_router, prices_router
from app.core.config import Settings, settings as default_settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import cors_middleware, request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import build_rate_limiter
from app.services.price_service import PriceService
from app.utils.simple_cache import SimpleTTLCache

logger = logging.getLogger(__name__)


def build_price_service(settings: Settings | None = None) -> PriceService:
    """Wire the cache, rate limiter and price client from settings."""

    cfg = settings or default_settings
    return PriceService(
        client=create_price_client(cfg.upstream),
        cache=SimpleTTLCache(
            ttl_seconds=cfg.app.cache_ttl_seconds,
            max_entries=cfg.app.cache_max_entries,
        ),
        limiter=build_rate_limiter(cfg.app),
        request_timeout_seconds=cfg.app.request_timeout_seconds,
    )


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("app.startup", extra={"cache_ttl_s": app.state.price_service.cache.ttl_seconds})
    try:
        yield
    finally:
        await app.state.price_service.client.aclose()
        logger.info("app.shutdown")


def create_app(
    *,
    price_service: PriceService | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        price_service: Pre-built service (tests inject fakes here).
        settings: Settings for the app; defaults to the global ``settings``.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    cfg = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log, debug=cfg.app.debug)

    app = FastAPI(
        title="Cryptocurrency Price API",
        description=(
            "Thin caching façade over CoinGecko. Prices are cached in memory for "
            "five minutes and each client address is limited to a sliding window "
            "of requests."
        ),
        version="1.0.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
        lifespan=_lifespan,
    )

    app.state.settings = cfg
    app.state.price_service = price_service or build_price_service(cfg)
    app.state.started_at = time.monotonic()

    # Middleware (last registered runs first)
    app.middleware("http")(cors_middleware)
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(health_router)
    app.include_router(prices_router)

    apply_openapi_customizations(app)

    return app
