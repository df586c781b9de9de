"""CoinGecko price client adapter."""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Sequence
from urllib.parse import quote

import httpx

from app.adapters.pricing.base import AbstractPriceClient
from app.core.errors import (
    AppError,
    UpstreamError,
    UpstreamRateLimitError,
    UpstreamTimeoutError,
    price_not_found,
)
from app.schemas.price import PriceRecord

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"

# Keep the coin info payload small: we only read name and symbol
_COIN_INFO_PARAMS = {
    "localization": False,
    "tickers": False,
    "market_data": False,
    "community_data": False,
    "developer_data": False,
    "sparkline": False,
}


class CoinGeckoClient(AbstractPriceClient):
    """Client for the CoinGecko public REST API.

    Every coin needs two calls: ``/simple/price`` for the price and
    ``/coins/{id}`` for its name and symbol. A short pause separates them to
    stay under CoinGecko's own request quota. When the info call fails the
    coin id stands in for name and symbol.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        vs_currency: str = "usd",
        timeout_seconds: float = 10.0,
        bulk_timeout_seconds: float = 15.0,
        metadata_delay_seconds: float = 0.2,
        bulk_metadata_delay_seconds: float = 0.3,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the CoinGecko client.

        Args:
            base_url: API root, without trailing slash.
            vs_currency: Quote currency key read from price payloads.
            timeout_seconds: Timeout for single price and info calls.
            bulk_timeout_seconds: Timeout for the combined bulk price call.
            metadata_delay_seconds: Pause before the info call (single).
            bulk_metadata_delay_seconds: Pause before the info calls (bulk).
            transport: Optional httpx transport, mainly for tests.
            sleep: Coroutine used for the pacing pause.
        """
        self.http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self.vs_currency = vs_currency.lower()
        self.timeout_seconds = timeout_seconds
        self.bulk_timeout_seconds = bulk_timeout_seconds
        self.metadata_delay_seconds = metadata_delay_seconds
        self.bulk_metadata_delay_seconds = bulk_metadata_delay_seconds
        self._sleep = sleep

    async def aclose(self) -> None:
        await self.http.aclose()

    def _price_params(self, coin_ids: Sequence[str]) -> dict[str, Any]:
        return {
            "ids": ",".join(coin_ids),
            "vs_currencies": self.vs_currency,
            "include_market_cap": False,
            "include_24hr_vol": False,
            "include_24hr_change": False,
            "include_last_updated_at": False,
        }

    async def _get_json(
        self,
        path: str,
        params: dict[str, Any],
        *,
        timeout: float,
        coin_ids: Sequence[str],
    ) -> Any:
        """GET ``path`` and decode JSON, translating failures to app errors.

        Raises:
            PriceNotFoundError: On HTTP 404.
            UpstreamRateLimitError: On HTTP 429.
            UpstreamTimeoutError: When the call exceeds ``timeout``.
            UpstreamError: On any other transport, status or decode failure.
        """
        details = {"coin_ids": list(coin_ids), "upstream_url": path}

        try:
            response = await self.http.get(path, params=params, timeout=timeout)
        except httpx.TimeoutException as exc:
            logger.warning(
                "upstream.request_failed",
                extra={**details, "reason": "timeout", "timeout_seconds": timeout},
            )
            raise UpstreamTimeoutError(
                code="upstream_timeout",
                message="Request took too long to complete",
                details={**details, "timeout_seconds": timeout},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "upstream.request_failed",
                extra={**details, "reason": type(exc).__name__, "error_msg": str(exc)},
            )
            raise UpstreamError(
                code="upstream_unreachable",
                message="Failed to fetch cryptocurrency data",
                details={**details, "reason": type(exc).__name__},
            ) from exc

        status = response.status_code
        if status == 404:
            raise price_not_found(",".join(coin_ids))
        if status == 429:
            logger.warning("upstream.request_failed", extra={**details, "reason": "rate_limited"})
            raise UpstreamRateLimitError(
                code="upstream_rate_limited",
                message="API rate limit exceeded. Please try again later.",
                details={**details, "upstream_status": status},
            )
        if response.is_error:
            logger.warning(
                "upstream.request_failed",
                extra={**details, "reason": "bad_status", "upstream_status": status},
            )
            raise UpstreamError(
                code="upstream_bad_status",
                message="Failed to fetch cryptocurrency data",
                details={**details, "upstream_status": status},
            )

        try:
            return response.json()
        except ValueError as exc:
            logger.warning("upstream.request_failed", extra={**details, "reason": "invalid_json"})
            raise UpstreamError(
                code="upstream_invalid_json",
                message="Failed to fetch cryptocurrency data",
                details={**details, "reason": "invalid_json"},
            ) from exc

    def _extract_price(self, payload: Any, coin_id: str) -> float | None:
        """Read ``payload[coin_id][vs_currency]``; None unless a finite positive number."""
        if not isinstance(payload, dict):
            return None
        entry = payload.get(coin_id)
        if not isinstance(entry, dict):
            return None
        value = entry.get(self.vs_currency)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        # json.loads accepts NaN and Infinity literals
        if not math.isfinite(value) or value <= 0:
            return None
        return float(value)

    async def _fetch_coin_info(self, coin_id: str) -> tuple[str, str]:
        """Return ``(name, symbol)`` for ``coin_id``, falling back to the id."""
        try:
            payload = await self._get_json(
                f"/coins/{quote(coin_id, safe='')}",
                _COIN_INFO_PARAMS,
                timeout=self.timeout_seconds,
                coin_ids=[coin_id],
            )
        except AppError as exc:
            logger.info(
                "upstream.metadata_fallback",
                extra={"coin_id": coin_id, "error_code": exc.code},
            )
            return coin_id, coin_id

        name = payload.get("name") if isinstance(payload, dict) else None
        symbol = payload.get("symbol") if isinstance(payload, dict) else None
        if not isinstance(name, str) or not name or not isinstance(symbol, str) or not symbol:
            logger.info(
                "upstream.metadata_fallback",
                extra={"coin_id": coin_id, "error_code": "incomplete_metadata"},
            )
            return coin_id, coin_id
        return name, symbol

    async def fetch_one(self, coin_id: str) -> PriceRecord:
        """Resolve one coin: price call, pause, then info call."""
        payload = await self._get_json(
            "/simple/price",
            self._price_params([coin_id]),
            timeout=self.timeout_seconds,
            coin_ids=[coin_id],
        )
        if not isinstance(payload, dict):
            raise UpstreamError(
                code="upstream_invalid_payload",
                message="Failed to fetch cryptocurrency data",
                details={"coin_id": coin_id},
            )

        price = self._extract_price(payload, coin_id)
        if price is None:
            raise price_not_found(coin_id)

        await self._sleep(self.metadata_delay_seconds)
        name, symbol = await self._fetch_coin_info(coin_id)
        return PriceRecord(name=name, symbol=symbol, price=price)

    async def fetch_many(self, coin_ids: Sequence[str]) -> dict[str, PriceRecord]:
        """Resolve several coins with one price call and parallel info calls."""
        ids = list(dict.fromkeys(coin_ids))
        if not ids:
            return {}

        payload = await self._get_json(
            "/simple/price",
            self._price_params(ids),
            timeout=self.bulk_timeout_seconds,
            coin_ids=ids,
        )
        if not isinstance(payload, dict):
            raise UpstreamError(
                code="upstream_invalid_payload",
                message="Failed to fetch cryptocurrency data",
                details={"coin_ids": ids},
            )

        prices: dict[str, float] = {}
        for coin_id in ids:
            price = self._extract_price(payload, coin_id)
            if price is not None:
                prices[coin_id] = price

        if not prices:
            return {}

        await self._sleep(self.bulk_metadata_delay_seconds)
        infos = await asyncio.gather(*(self._fetch_coin_info(coin_id) for coin_id in prices))

        return {
            coin_id: PriceRecord(name=name, symbol=symbol, price=prices[coin_id])
            for coin_id, (name, symbol) in zip(prices, infos)
        }
