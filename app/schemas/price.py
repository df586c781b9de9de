"""Pydantic schemas for price lookups and service metadata."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PriceRecord(BaseModel):
    """Resolved price of a single coin in USD.

    Immutable and compared by value, so a cached record and a freshly fetched
    one with the same fields are equal.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Display name, e.g. 'Bitcoin'.")
    symbol: str = Field(..., description="Ticker symbol, always upper case, e.g. 'BTC'.")
    price: float = Field(..., gt=0, allow_inf_nan=False, description="Spot price in USD.")

    @field_validator("symbol")
    @classmethod
    def _uppercase_symbol(cls, value: str) -> str:
        return value.upper()


class ErrorResponse(BaseModel):
    """Body of every non-2xx response."""

    error: str = Field(..., description="Stable error tag, e.g. 'Cryptocurrency not found'.")
    message: str = Field(..., description="Human-readable explanation.")


class HealthResponse(BaseModel):
    status: str = "OK"
    timestamp: str = Field(..., description="Current server time, ISO-8601 UTC.")
    cache_size: int = Field(..., description="Cached entries, fresh or stale.")
    uptime: float = Field(..., description="Seconds since the application started.")


class UsageResponse(BaseModel):
    message: str
    usage: dict[str, str]
    examples: list[str]
