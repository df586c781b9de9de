"""Price lookup service orchestrating rate limiting, caching and upstream calls.

This service is the core business logic behind both price endpoints. For
every request it:
- Admits or rejects the caller against the per-client sliding window
- Serves fresh cache entries without touching the provider
- Fetches only what is missing, within an overall time budget
- Writes fetched records back to the cache
- Maps provider failures onto the application error taxonomy
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Iterable

from app.adapters.pricing.base import AbstractPriceClient
from app.adapters.rate_limit.base import AbstractRateLimiter
from app.core.errors import AppError, LocalRateLimitError, UpstreamError, UpstreamTimeoutError
from app.schemas.price import PriceRecord
from app.utils.simple_cache import SimpleTTLCache

logger = logging.getLogger(__name__)


def _hash_client_key(key: str) -> str:
    """Hash the client key for logging without exposing addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def parse_coin_ids(raw: str | Iterable[str]) -> list[str]:
    """Split a comma-separated id list, dropping blanks and duplicates.

    Examples:
        >>> parse_coin_ids("bitcoin, ethereum,,bitcoin")
        ['bitcoin', 'ethereum']
    """
    parts = raw.split(",") if isinstance(raw, str) else raw
    return list(dict.fromkeys(part.strip() for part in parts if part.strip()))


class PriceService:
    """Service resolving coin prices through cache and provider.

    Owns the shared, process-wide state (cache and rate limiter) so tests can
    build isolated instances with fake clocks and fake clients.

    Attributes:
        client: Upstream price client.
        cache: TTL cache of resolved prices keyed by coin id.
        limiter: Per-client rate limiter, or None when rate limiting is off.
        request_timeout_seconds: Overall budget for the upstream part of a request.
    """

    def __init__(
        self,
        client: AbstractPriceClient,
        cache: SimpleTTLCache,
        limiter: AbstractRateLimiter | None = None,
        *,
        request_timeout_seconds: float = 20.0,
    ) -> None:
        self.client = client
        self.cache = cache
        self.limiter = limiter
        self.request_timeout_seconds = request_timeout_seconds

    def cache_size(self) -> int:
        return self.cache.size()

    def _check_rate_limit(self, client_key: str) -> None:
        """Admit the caller or raise before any cache or upstream work.

        Raises:
            LocalRateLimitError: If the caller exhausted its window.
        """
        if self.limiter is None:
            return

        result = self.limiter.consume(client_key)
        key_hash = _hash_client_key(client_key)
        if result.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={"key_hash": key_hash, "limit": result.limit, "remaining": result.remaining},
            )
            return

        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": key_hash,
                "limit": result.limit,
                "remaining": result.remaining,
                "retry_after_s": result.retry_after_seconds,
            },
        )
        raise LocalRateLimitError(
            code="rate_limit_exceeded",
            message="Too many requests. Please try again later.",
            details={
                "retry_after": result.retry_after_seconds or 0,
                "limit": result.limit,
                "remaining": result.remaining,
                "reset_at": result.reset_at,
            },
        )

    async def _with_budget(self, awaitable, *, coin_ids: list[str]):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.request_timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise UpstreamTimeoutError(
                code="request_budget_exceeded",
                message="Request took too long to complete",
                details={"coin_ids": coin_ids, "timeout_seconds": self.request_timeout_seconds},
            ) from exc

    async def get_price(self, coin_id: str, *, client_key: str) -> PriceRecord:
        """Return the price of one coin.

        Args:
            coin_id: Provider coin id.
            client_key: Caller identity for rate limiting (network address).

        Returns:
            PriceRecord, from cache when fresh.

        Raises:
            LocalRateLimitError: Caller over quota.
            PriceNotFoundError: Unknown coin.
            UpstreamRateLimitError: Provider throttled us.
            UpstreamTimeoutError: Provider or overall budget timed out.
            UpstreamError: Any other failure, never carrying raw detail.
        """
        self._check_rate_limit(client_key)

        cached = self.cache.get(coin_id)
        if cached is not None:
            logger.info("price.cache_hit", extra={"coin_id": coin_id})
            return cached

        logger.info("price.cache_miss", extra={"coin_id": coin_id})
        try:
            record = await self._with_budget(self.client.fetch_one(coin_id), coin_ids=[coin_id])
        except AppError:
            raise
        except Exception as exc:
            raise UpstreamError(
                code="price_fetch_failed",
                message="Failed to fetch cryptocurrency data",
                details={"coin_id": coin_id, "reason": type(exc).__name__},
            ) from exc

        self.cache.put(coin_id, record)
        return record

    async def get_prices(
        self, coin_ids: str | Iterable[str], *, client_key: str
    ) -> dict[str, PriceRecord]:
        """Return prices for several coins, fetching only cache misses.

        Coins the provider does not know are left out. A failure of the shared
        upstream call fails the whole request as a generic upstream error.

        Args:
            coin_ids: Coin ids, order preserved and duplicates collapsed.
            client_key: Caller identity for rate limiting.

        Returns:
            Mapping of coin id to PriceRecord, in request order.

        Raises:
            LocalRateLimitError: Caller over quota.
            UpstreamError: The bulk fetch failed.
        """
        self._check_rate_limit(client_key)

        ids = parse_coin_ids(coin_ids)
        cached: dict[str, PriceRecord] = {}
        missing: list[str] = []
        for coin_id in ids:
            record = self.cache.get(coin_id)
            if record is not None:
                cached[coin_id] = record
            else:
                missing.append(coin_id)

        fresh: dict[str, PriceRecord] = {}
        if missing:
            logger.info(
                "prices.fetch_missing",
                extra={"coin_ids": missing, "cached_count": len(cached)},
            )
            try:
                fresh = await self._with_budget(self.client.fetch_many(missing), coin_ids=missing)
            except Exception as exc:
                raise UpstreamError(
                    code="bulk_fetch_failed",
                    message="Failed to fetch cryptocurrency data",
                    details={
                        "coin_ids": missing,
                        "reason": getattr(exc, "code", type(exc).__name__),
                    },
                ) from exc

            for coin_id, record in fresh.items():
                self.cache.put(coin_id, record)

        return {
            coin_id: cached[coin_id] if coin_id in cached else fresh[coin_id]
            for coin_id in ids
            if coin_id in cached or coin_id in fresh
        }
