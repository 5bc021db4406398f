"""API tests for the Bitcoin data endpoints."""

import time

import pytest
from fastapi.testclient import TestClient

from btc_dashboard.models import Timeframe

from conftest import make_candles, make_market


class TestReadEndpoints:
    """Tests for read-only views."""

    @pytest.mark.asyncio
    async def test_cache_snapshot(self, client, services):
        services.cache.update_market_data(make_market(64000.0), "coincap")

        response = await client.get("/api/bitcoin/cache")

        assert response.status_code == 200
        data = response.json()
        assert data["currentPrice"] == 64000.0
        assert data["dataSource"] == "coincap"
        assert data["currentTimeframe"] == "5M"

    @pytest.mark.asyncio
    async def test_stats(self, client):
        response = await client.get("/api/bitcoin/stats")

        assert response.status_code == 200
        data = response.json()
        assert set(data) >= {"scheduler", "cache", "apiManager", "websocket"}
        assert data["scheduler"]["currentTimeframe"] == "5M"

    @pytest.mark.asyncio
    async def test_adapters(self, client):
        response = await client.get("/api/bitcoin/adapters")

        assert response.status_code == 200
        data = response.json()
        assert set(data["adapters"]) == {"coingecko", "coincap", "binance", "blockstream"}
        assert data["adapters"]["coingecko"]["healthy"] is True

    @pytest.mark.asyncio
    async def test_memory(self, client):
        response = await client.get("/api/bitcoin/memory")

        assert response.status_code == 200
        assert set(response.json()) == {"cache", "apiManager", "scheduler"}


class TestCandles:
    """Tests for the candles endpoint."""

    @pytest.mark.asyncio
    async def test_cached_candles(self, client, services):
        services.cache.update_ohlc_data(Timeframe.H4, make_candles(5), "binance")

        response = await client.get("/api/bitcoin/candles/4H")

        assert response.status_code == 200
        data = response.json()
        assert data["timeframe"] == "4H"
        assert data["count"] == 5
        assert data["candles"][0]["time"] == make_candles(5)[0].time

    @pytest.mark.asyncio
    async def test_lowercase_timeframe(self, client):
        response = await client.get("/api/bitcoin/candles/1d")

        assert response.status_code == 200
        assert response.json()["timeframe"] == "1D"
        assert response.json()["candles"] == []

    @pytest.mark.asyncio
    async def test_invalid_timeframe(self, client):
        response = await client.get("/api/bitcoin/candles/2H")

        assert response.status_code == 400
        assert "Invalid timeframe" in response.json()["detail"]


class TestCleanup:
    """Tests for the manual cleanup endpoint."""

    @pytest.mark.asyncio
    async def test_cleanup(self, client, services):
        services.manager.health["coingecko"].total_requests = 2_000_000
        services.manager.health["coingecko"].successful_requests = 1_000_000

        response = await client.post("/api/bitcoin/cleanup")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert services.manager.health["coingecko"].total_requests == 1000
        assert services.manager.health["coingecko"].successful_requests == 500


class TestWebSocketEndpoint:
    """Tests for the snapshot stream."""

    def test_receives_snapshot_and_pong(self, app, services):
        services.ws_manager._cached_data = {"currentPrice": 65000.0}
        client = TestClient(app)

        with client.websocket_connect("/api/ws") as websocket:
            assert websocket.receive_json() == {"currentPrice": 65000.0}

            websocket.send_json({"action": "ping"})
            assert websocket.receive_json() == {"type": "pong"}

    def test_lifespan_populates_snapshot(self, app, services):
        with TestClient(app) as client:
            data = {}
            for _ in range(50):
                data = client.get("/api/bitcoin/cache").json()
                if data["blockHeight"] is not None:
                    break
                time.sleep(0.05)

            assert data["blockHeight"] == 850000
            assert data["currentPrice"] == 65000.0
            assert services.scheduler.is_running

        assert not services.scheduler.is_running
