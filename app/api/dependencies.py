"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from app.services.price_service import PriceService


def get_price_service(request: Request) -> PriceService:
    """Return the PriceService built by the application factory."""
    return request.app.state.price_service
