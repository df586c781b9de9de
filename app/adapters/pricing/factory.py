"""Factory pattern for creating price client instances."""

from app.adapters.pricing.base import AbstractPriceClient
from app.adapters.pricing.coingecko_client import CoinGeckoClient
from app.core.config import UpstreamSettings, settings
from app.core.errors import ValidationAppError


def create_price_client(upstream: UpstreamSettings | None = None) -> AbstractPriceClient:
    """Instantiate the price client for the configured provider.

    Args:
        upstream: Provider settings; defaults to ``settings.upstream``.

    Returns:
        AbstractPriceClient: Configured client instance.

    Raises:
        ValidationAppError: If the provider is unknown.
    """
    cfg = upstream or settings.upstream
    provider = cfg.provider.lower()

    if provider == "coingecko":
        return CoinGeckoClient(
            base_url=cfg.base_url,
            vs_currency=cfg.vs_currency,
            timeout_seconds=cfg.timeout_seconds,
            bulk_timeout_seconds=cfg.bulk_timeout_seconds,
            metadata_delay_seconds=cfg.metadata_delay_seconds,
            bulk_metadata_delay_seconds=cfg.bulk_metadata_delay_seconds,
        )

    raise ValidationAppError(
        code="upstream_unknown_provider",
        message=f"Unknown price provider: '{provider}'. Supported providers: coingecko",
    )
