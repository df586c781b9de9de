from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from app.api.dependencies import get_price_service
from app.schemas.price import HealthResponse, UsageResponse
from app.services.price_service import PriceService

router = APIRouter(tags=["Health"])


@router.get("/", response_model=UsageResponse)
def usage() -> UsageResponse:
    """Describe the available endpoints."""

    return UsageResponse(
        message="Cryptocurrency Price API",
        usage={
            "single": "GET /price/{id} - Get cryptocurrency price by ID",
            "multiple": "GET /prices/{ids} - Get multiple cryptocurrency prices (comma-separated)",
        },
        examples=[
            "/price/bitcoin",
            "/price/ethereum",
            "/price/cardano",
            "/prices/bitcoin,ethereum,cardano",
        ],
    )


@router.get("/health", response_model=HealthResponse)
def health_check(
    request: Request,
    service: Annotated[PriceService, Depends(get_price_service)],
) -> HealthResponse:
    """Health check endpoint.

    Reports cache size and process uptime; never calls the price provider.
    """

    return HealthResponse(
        status="OK",
        timestamp=datetime.now(timezone.utc).isoformat(),
        cache_size=service.cache_size(),
        uptime=round(time.monotonic() - request.app.state.started_at, 3),
    )
