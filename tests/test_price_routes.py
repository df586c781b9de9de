"""Tests for the HTTP surface: price endpoints, usage, health and CORS.

The full stack is exercised with the real CoinGecko client on top of an
httpx.MockTransport, so no network access is needed.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from app.adapters.pricing.coingecko_client import CoinGeckoClient
from app.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from app.core.app_factory import create_app
from app.core.config import AppSettings, LogSettings, Settings
from app.services.price_service import PriceService
from app.utils.simple_cache import SimpleTTLCache
from conftest import CoinGeckoStub, FakeClock


async def _no_sleep(_seconds: float) -> None:
    return None


def _build_service(
    stub: CoinGeckoStub,
    clock: FakeClock,
    *,
    limit: int = 50,
) -> PriceService:
    return PriceService(
        client=CoinGeckoClient(transport=httpx.MockTransport(stub), sleep=_no_sleep),
        cache=SimpleTTLCache(ttl_seconds=300, clock=clock),
        limiter=InMemorySlidingWindowRateLimiter(limit=limit, window_seconds=60, clock=clock),
    )


@pytest.fixture
def service(coingecko: CoinGeckoStub, clock: FakeClock) -> PriceService:
    return _build_service(coingecko, clock)


@pytest.fixture
def client(service: PriceService) -> TestClient:
    """Create FastAPI test client around an isolated service."""
    return TestClient(create_app(price_service=service))


# ======================== Single price ========================


class TestGetPrice:

    def test_returns_price_for_valid_id(self, client: TestClient):
        response = client.get("/price/bitcoin")

        assert response.status_code == 200
        assert response.json() == {"name": "Bitcoin", "symbol": "BTC", "price": 45000.50}

    def test_unknown_id_returns_404(self, client: TestClient):
        response = client.get("/price/unknown-coin-xyz")

        assert response.status_code == 404
        assert response.json() == {
            "error": "Cryptocurrency not found",
            "message": "The specified cryptocurrency ID does not exist",
        }

    def test_infinite_upstream_price_returns_404(self, client: TestClient, coingecko: CoinGeckoStub):
        coingecko.price_response = lambda request: httpx.Response(
            200, text='{"bitcoin": {"usd": Infinity}}'
        )

        response = client.get("/price/bitcoin")

        assert response.status_code == 404
        assert response.json()["error"] == "Cryptocurrency not found"

    def test_upstream_timeout_returns_408(self, client: TestClient, coingecko: CoinGeckoStub):
        def _timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        coingecko.price_response = _timeout

        response = client.get("/price/bitcoin")

        assert response.status_code == 408
        assert response.json() == {
            "error": "Request timeout",
            "message": "Request took too long to complete",
        }

    def test_upstream_rate_limit_returns_429(self, client: TestClient, coingecko: CoinGeckoStub):
        coingecko.price_response = lambda request: httpx.Response(429, json={"error": "slow down"})

        response = client.get("/price/bitcoin")

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "Rate limit exceeded"
        assert body["message"] == "API rate limit exceeded. Please try again later."
        assert "Retry-After" not in response.headers

    def test_upstream_failure_returns_500_without_leaking_detail(
        self, client: TestClient, coingecko: CoinGeckoStub
    ):
        def _refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connect to 10.0.0.5:443 refused", request=request)

        coingecko.price_response = _refused

        response = client.get("/price/bitcoin")

        assert response.status_code == 500
        assert response.json() == {
            "error": "Internal server error",
            "message": "Failed to fetch cryptocurrency data",
        }
        assert "10.0.0.5" not in response.text

    def test_repeated_request_is_served_from_cache(self, client: TestClient, coingecko: CoinGeckoStub):
        first = client.get("/price/ethereum")
        second = client.get("/price/ethereum")

        assert first.status_code == second.status_code == 200
        assert second.json() == {"name": "Ethereum", "symbol": "ETH", "price": 2800.25}
        assert second.content == first.content
        assert len(coingecko.price_requests) == 1
        assert len(coingecko.info_requests) == 1

    def test_request_after_ttl_refetches(
        self, client: TestClient, coingecko: CoinGeckoStub, clock: FakeClock
    ):
        client.get("/price/bitcoin")
        clock.advance(301)
        client.get("/price/bitcoin")

        assert len(coingecko.price_requests) == 2


# ======================== Bulk prices ========================


class TestGetPrices:

    def test_returns_multiple_prices(self, client: TestClient):
        response = client.get("/prices/bitcoin,ethereum")

        assert response.status_code == 200
        assert response.json() == {
            "bitcoin": {"name": "Bitcoin", "symbol": "BTC", "price": 45000.50},
            "ethereum": {"name": "Ethereum", "symbol": "ETH", "price": 2800.25},
        }

    def test_only_missing_ids_are_requested_upstream(self, client: TestClient, coingecko: CoinGeckoStub):
        coingecko.prices["cardano"] = 0.45
        coingecko.infos["cardano"] = {"name": "Cardano", "symbol": "ada"}
        client.get("/price/bitcoin")

        response = client.get("/prices/bitcoin,ethereum,cardano")

        assert set(response.json()) == {"bitcoin", "ethereum", "cardano"}
        bulk_request = coingecko.price_requests[-1]
        assert bulk_request.url.params["ids"] == "ethereum,cardano"
        assert len(coingecko.price_requests) == 2

    def test_fully_cached_request_makes_no_upstream_calls(
        self, client: TestClient, coingecko: CoinGeckoStub
    ):
        client.get("/price/bitcoin")
        client.get("/price/ethereum")
        calls_before = len(coingecko.requests)

        response = client.get("/prices/bitcoin,ethereum")

        assert response.status_code == 200
        assert set(response.json()) == {"bitcoin", "ethereum"}
        assert len(coingecko.requests) == calls_before

    def test_unknown_ids_are_omitted(self, client: TestClient):
        response = client.get("/prices/bitcoin,unknown-coin-xyz")

        assert response.status_code == 200
        assert list(response.json()) == ["bitcoin"]

    def test_non_finite_price_is_omitted_without_failing_siblings(
        self, client: TestClient, coingecko: CoinGeckoStub
    ):
        coingecko.price_response = lambda request: httpx.Response(
            200, text='{"bitcoin": {"usd": NaN}, "ethereum": {"usd": 2800.25}}'
        )

        response = client.get("/prices/bitcoin,ethereum")

        assert response.status_code == 200
        assert response.json() == {"ethereum": {"name": "Ethereum", "symbol": "ETH", "price": 2800.25}}

    def test_upstream_failure_returns_500(self, client: TestClient, coingecko: CoinGeckoStub):
        coingecko.price_response = lambda request: httpx.Response(429)

        response = client.get("/prices/bitcoin,ethereum")

        assert response.status_code == 500
        assert response.json() == {
            "error": "Internal server error",
            "message": "Failed to fetch cryptocurrency data",
        }


# ======================== Local rate limiting ========================


class TestLocalRateLimit:

    @pytest.fixture
    def limited_client(self, coingecko: CoinGeckoStub, clock: FakeClock) -> TestClient:
        return TestClient(create_app(price_service=_build_service(coingecko, clock, limit=2)))

    def test_rejects_requests_over_quota(self, limited_client: TestClient, coingecko: CoinGeckoStub):
        assert limited_client.get("/price/bitcoin").status_code == 200
        assert limited_client.get("/prices/bitcoin,ethereum").status_code == 200
        requests_before = len(coingecko.requests)

        response = limited_client.get("/price/ethereum")

        assert response.status_code == 429
        assert response.json() == {
            "error": "Rate limit exceeded",
            "message": "Too many requests. Please try again later.",
        }
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert len(coingecko.requests) == requests_before

    def test_admits_again_after_window(self, limited_client: TestClient, clock: FakeClock):
        limited_client.get("/price/bitcoin")
        limited_client.get("/price/bitcoin")
        assert limited_client.get("/price/bitcoin").status_code == 429

        clock.advance(61)

        assert limited_client.get("/price/bitcoin").status_code == 200

    def test_rate_limit_headers_can_be_disabled(self, coingecko: CoinGeckoStub, clock: FakeClock):
        settings = Settings(app=AppSettings(rate_limit_include_headers=False))
        client = TestClient(
            create_app(price_service=_build_service(coingecko, clock, limit=1), settings=settings)
        )
        client.get("/price/bitcoin")

        response = client.get("/price/bitcoin")

        assert response.status_code == 429
        assert "Retry-After" not in response.headers
        assert "X-RateLimit-Limit" not in response.headers

    def test_health_and_usage_are_not_rate_limited(self, limited_client: TestClient):
        for _ in range(5):
            assert limited_client.get("/health").status_code == 200
            assert limited_client.get("/").status_code == 200


# ======================== Usage, health and CORS ========================


class TestServiceEndpoints:

    def test_root_describes_usage(self, client: TestClient):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Cryptocurrency Price API"
        assert set(body["usage"]) == {"single", "multiple"}
        assert "/prices/bitcoin,ethereum,cardano" in body["examples"]

    def test_health_reports_cache_size(self, client: TestClient):
        client.get("/prices/bitcoin,ethereum")

        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "OK"
        assert body["cache_size"] == 2
        assert body["uptime"] >= 0
        assert body["timestamp"].endswith("+00:00")

    def test_health_counts_stale_entries(self, client: TestClient, clock: FakeClock):
        client.get("/price/bitcoin")
        clock.advance(1000)

        assert client.get("/health").json()["cache_size"] == 1

    @pytest.mark.parametrize("path", ["/", "/health", "/price/bitcoin", "/price/unknown-coin-xyz"])
    def test_cors_headers_on_every_response(self, client: TestClient, path: str):
        response = client.get(path)

        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "GET" in response.headers["Access-Control-Allow-Methods"]
        assert "Content-Type" in response.headers["Access-Control-Allow-Headers"]

    def test_unhandled_error_keeps_cors_and_request_id_headers(self, service: PriceService):
        app = create_app(price_service=service)

        @app.get("/crash")
        async def crash():
            raise KeyError("secret-internal-key")

        response = TestClient(app).get("/crash", headers={"X-Request-ID": "crash-1"})

        assert response.status_code == 500
        assert response.json() == {
            "error": "Internal server error",
            "message": "An unexpected error occurred",
        }
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert response.headers["X-Request-ID"] == "crash-1"
        assert "X-Request-Duration-ms" in response.headers

    def test_cors_allow_list_echoes_listed_origin(self, service: PriceService):
        settings = Settings(
            app=AppSettings(cors_allow_origins="https://blog.example, https://shop.example")
        )
        client = TestClient(create_app(price_service=service, settings=settings))

        listed = client.get("/health", headers={"Origin": "https://shop.example"})
        unlisted = client.get("/health", headers={"Origin": "https://evil.example"})
        preflight = client.options("/price/bitcoin", headers={"Origin": "https://blog.example"})

        assert listed.headers["Access-Control-Allow-Origin"] == "https://shop.example"
        assert unlisted.headers["Access-Control-Allow-Origin"] == "https://blog.example"
        assert preflight.headers["Access-Control-Allow-Origin"] == "https://blog.example"

    def test_request_id_header_name_follows_app_settings(self, service: PriceService):
        settings = Settings(log=LogSettings(request_id_header="X-Correlation-ID"))
        client = TestClient(create_app(price_service=service, settings=settings))

        response = client.get("/health", headers={"X-Correlation-ID": "corr-42"})

        assert response.headers["X-Correlation-ID"] == "corr-42"

    def test_preflight_returns_200(self, client: TestClient, coingecko: CoinGeckoStub):
        response = client.options(
            "/price/bitcoin",
            headers={"Origin": "https://blog.example", "Access-Control-Request-Method": "GET"},
        )

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert coingecko.requests == []

    def test_shutdown_closes_upstream_client(self, fake_client):
        service = PriceService(client=fake_client, cache=SimpleTTLCache())

        with TestClient(create_app(price_service=service)) as test_client:
            assert test_client.get("/health").status_code == 200

        assert fake_client.closed is True
