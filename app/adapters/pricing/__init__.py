"""Price provider adapter layer - abstracts over upstream price APIs."""

from app.adapters.pricing.base import AbstractPriceClient
from app.adapters.pricing.coingecko_client import CoinGeckoClient
from app.adapters.pricing.factory import create_price_client

__all__ = [
    "AbstractPriceClient",
    "CoinGeckoClient",
    "create_price_client",
]
