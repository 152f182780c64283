"""
Tests for the HTTP API.

Verifies that:
- Data endpoints return 503 until the first snapshot is published
- Stablecoins can be listed and looked up by uri or symbol
- Source health and freshness are exposed
"""

import httpx
import pytest

from stablecoin_aggregator.api.endpoints import get_coordinator
from stablecoin_aggregator.api.schemas import RawPlatform
from stablecoin_aggregator.main import app
from stablecoin_aggregator.providers.base import FetchError
from stablecoin_aggregator.providers.registry import SourceRegistry
from stablecoin_aggregator.services.health_monitor import HealthMonitor
from stablecoin_aggregator.services.refresh_coordinator import RefreshCoordinator

from conftest import StubFetcher, make_record


def _coordinator():
    return RefreshCoordinator(
        registry=SourceRegistry([
            StubFetcher("cmc", [
                make_record("cmc", "USDT", "Tether", market_cap=1000.0, circulating_supply=1000.0, slug="tether"),
                make_record("cmc", "USDC", "USD Coin", market_cap=500.0, circulating_supply=500.0, slug="usd-coin"),
            ]),
            StubFetcher("defillama", [
                make_record("defillama", "USDT", "Tether", platforms=[
                    RawPlatform(name="Ethereum", circulating_supply=600.0),
                    RawPlatform(name="Tron", circulating_supply=400.0),
                ]),
            ]),
            StubFetcher("coingecko", error=FetchError("down", "coingecko")),
        ]),
        health_monitor=HealthMonitor(failure_threshold=3),
        priority={"cmc": 10, "coingecko": 6, "defillama": 4},
        fetch_timeout=1.0,
        min_healthy_sources=1,
        refresh_interval=3600
    )


@pytest.fixture
def coordinator():
    coordinator = _coordinator()
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    yield coordinator
    app.dependency_overrides.clear()


@pytest.fixture
async def client(coordinator):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client


class TestBeforeFirstPublish:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/v1/stablecoins", "/v1/stablecoins/usdt", "/v1/platforms", "/v1/metrics"])
    async def test_data_unavailable(self, client, path):
        response = await client.get(path)
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_health_reports_stale(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["data_stale"] is True
        assert body["last_data_update"] is None
        assert body["coordinator_state"] == "idle"


class TestAfterPublish:
    @pytest.fixture(autouse=True)
    async def published(self, coordinator):
        result = await coordinator.refresh()
        assert result.published

    @pytest.mark.asyncio
    async def test_list_stablecoins(self, client):
        response = await client.get("/v1/stablecoins")
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [coin["symbol"] for coin in body["stablecoins"]] == ["USDT", "USDC"]
        assert body["metrics"]["total_market_cap"] == pytest.approx(1500.0)
        assert "X-Process-Time" in response.headers

    @pytest.mark.asyncio
    async def test_list_with_limit(self, client):
        body = (await client.get("/v1/stablecoins", params={"limit": 1})).json()
        assert len(body["stablecoins"]) == 1
        assert body["total"] == 2

    @pytest.mark.asyncio
    async def test_lookup_by_uri_and_symbol(self, client):
        by_uri = await client.get("/v1/stablecoins/tether")
        by_symbol = await client.get("/v1/stablecoins/usdt")
        assert by_uri.status_code == 200
        assert by_uri.json() == by_symbol.json()
        assert [p["name"] for p in by_uri.json()["platforms"]] == ["Ethereum", "Tron"]

    @pytest.mark.asyncio
    async def test_unknown_stablecoin(self, client):
        response = await client.get("/v1/stablecoins/nope")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_platforms(self, client):
        body = (await client.get("/v1/platforms")).json()
        names = [entry["name"] for entry in body]
        assert names[0] == "Ethereum"
        assert "Other / Unknown" in names

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        body = (await client.get("/v1/metrics")).json()
        assert body["stablecoin_count"] == 2
        assert body["platform_count"] == 2

    @pytest.mark.asyncio
    async def test_sources(self, client):
        body = (await client.get("/v1/sources")).json()
        assert [entry["source"] for entry in body["sources"]] == ["cmc", "coingecko", "defillama"]
        assert body["system"]["total_sources"] == 3
        assert body["freshness"]["is_stale"] is False

    @pytest.mark.asyncio
    async def test_source_health(self, client):
        body = (await client.get("/v1/sources/coingecko/health")).json()
        assert body["consecutive_failures"] == 1
        assert body["circuit_state"] == "closed"

    @pytest.mark.asyncio
    async def test_unknown_source_health(self, client):
        response = await client.get("/v1/sources/nope/health")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_health(self, client):
        body = (await client.get("/health")).json()
        assert body["status"] in ("healthy", "degraded")
        assert body["data_stale"] is False
        assert set(body["active_circuits"]) == {"cmc", "coingecko", "defillama"}
