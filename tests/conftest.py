"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before anything imports ``app.core.config``
so the global settings never pick up a developer's .env file or real
pacing delays.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"

os.environ.setdefault("UPSTREAM_BASE_URL", "https://api.coingecko.com/api/v3")
os.environ.setdefault("UPSTREAM_METADATA_DELAY_SECONDS", "0")
os.environ.setdefault("UPSTREAM_BULK_METADATA_DELAY_SECONDS", "0")
os.environ.setdefault("APP_RATE_LIMIT_REQUESTS", "50")
os.environ.setdefault("APP_RATE_LIMIT_WINDOW_SECONDS", "60")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Callable, Sequence  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402

from app.adapters.pricing.base import AbstractPriceClient  # noqa: E402
from app.core.errors import price_not_found  # noqa: E402
from app.schemas.price import PriceRecord  # noqa: E402


class FakeClock:
    """Deterministic clock used to test expiration and window logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakePriceClient(AbstractPriceClient):
    """In-memory price client recording every upstream call."""

    def __init__(
        self,
        records: dict[str, PriceRecord] | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self.records = dict(records or {})
        self.error = error
        self.fetch_one_calls: list[str] = []
        self.fetch_many_calls: list[list[str]] = []
        self.closed = False

    async def fetch_one(self, coin_id: str) -> PriceRecord:
        self.fetch_one_calls.append(coin_id)
        if self.error is not None:
            raise self.error
        if coin_id not in self.records:
            raise price_not_found(coin_id)
        return self.records[coin_id]

    async def fetch_many(self, coin_ids: Sequence[str]) -> dict[str, PriceRecord]:
        self.fetch_many_calls.append(list(coin_ids))
        if self.error is not None:
            raise self.error
        return {cid: self.records[cid] for cid in coin_ids if cid in self.records}

    async def aclose(self) -> None:
        self.closed = True

    @property
    def total_calls(self) -> int:
        return len(self.fetch_one_calls) + len(self.fetch_many_calls)


BITCOIN = PriceRecord(name="Bitcoin", symbol="btc", price=45000.50)
ETHEREUM = PriceRecord(name="Ethereum", symbol="eth", price=2800.25)
CARDANO = PriceRecord(name="Cardano", symbol="ada", price=0.45)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_client() -> FakePriceClient:
    return FakePriceClient({"bitcoin": BITCOIN, "ethereum": ETHEREUM, "cardano": CARDANO})


Handler = Callable[[httpx.Request], httpx.Response]


class CoinGeckoStub:
    """httpx MockTransport handler emulating the two CoinGecko endpoints.

    ``prices`` maps coin id to USD price; ``infos`` maps coin id to the JSON
    returned by ``/coins/{id}``. Ids missing from ``infos`` answer 404.
    ``price_response`` / ``info_responses`` override the generated replies.
    """

    def __init__(
        self,
        prices: dict[str, float] | None = None,
        infos: dict[str, dict] | None = None,
    ) -> None:
        self.prices = dict(prices or {})
        self.infos = dict(infos or {})
        self.price_response: Handler | None = None
        self.info_responses: dict[str, Handler] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/simple/price"):
            if self.price_response is not None:
                return self.price_response(request)
            ids = request.url.params.get("ids", "").split(",")
            body = {cid: {"usd": self.prices[cid]} for cid in ids if cid in self.prices}
            return httpx.Response(200, json=body)

        coin_id = path.rsplit("/", 1)[-1]
        if coin_id in self.info_responses:
            return self.info_responses[coin_id](request)
        if coin_id in self.infos:
            return httpx.Response(200, json=self.infos[coin_id])
        return httpx.Response(404, json={"error": "coin not found"})

    @property
    def price_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/simple/price")]

    @property
    def info_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if "/coins/" in r.url.path]


@pytest.fixture
def coingecko() -> CoinGeckoStub:
    return CoinGeckoStub(
        prices={"bitcoin": 45000.50, "ethereum": 2800.25},
        infos={
            "bitcoin": {"name": "Bitcoin", "symbol": "btc"},
            "ethereum": {"name": "Ethereum", "symbol": "eth"},
        },
    )

