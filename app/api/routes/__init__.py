from __future__ import annotations

from app.api.routes.health import router as health_router
from app.api.routes.prices import router as prices_router

__all__ = ["health_router", "prices_router"]
