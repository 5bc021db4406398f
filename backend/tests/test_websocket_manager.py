"""Tests for the WebSocket broadcast sink."""

import asyncio
import json
from types import MappingProxyType
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import WebSocketDisconnect

from btc_dashboard.services.websocket import WebSocketManager


def create_mock_websocket():
    """Helper to create a mock frontend WebSocket."""
    websocket = Mock()
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock()
    websocket.close = AsyncMock()
    return websocket


class TestClientConnections:
    """Tests for connect/disconnect handling."""

    @pytest.mark.asyncio
    async def test_connect_without_data(self):
        manager = WebSocketManager()
        websocket = create_mock_websocket()

        await manager.connect_client(websocket)

        websocket.accept.assert_awaited_once()
        websocket.send_json.assert_not_awaited()
        assert manager.client_count == 1

    @pytest.mark.asyncio
    async def test_new_client_receives_latest_snapshot(self):
        manager = WebSocketManager()
        await manager.update_data({"currentPrice": 65000.0})
        websocket = create_mock_websocket()

        await manager.connect_client(websocket)

        websocket.send_json.assert_awaited_once_with({"currentPrice": 65000.0})

    @pytest.mark.asyncio
    async def test_disconnect(self):
        manager = WebSocketManager()
        websocket = create_mock_websocket()
        await manager.connect_client(websocket)

        await manager.disconnect_client(websocket)

        assert manager.client_count == 0


class TestUpdateData:
    """Tests for snapshot diffing and fan-out."""

    @pytest.mark.asyncio
    async def test_change_is_broadcast(self):
        manager = WebSocketManager()
        clients = [create_mock_websocket() for _ in range(3)]
        for client in clients:
            await manager.connect_client(client)

        changed = await manager.update_data(MappingProxyType({"currentPrice": 1.0}))

        assert changed is True
        for client in clients:
            client.send_json.assert_awaited_once_with({"currentPrice": 1.0})

    @pytest.mark.asyncio
    async def test_identical_snapshot_not_broadcast(self):
        manager = WebSocketManager()
        websocket = create_mock_websocket()
        await manager.connect_client(websocket)
        await manager.update_data({"currentPrice": 1.0, "ohlcData": {"5M": []}})

        changed = await manager.update_data({"currentPrice": 1.0, "ohlcData": {"5M": []}})

        assert changed is False
        assert websocket.send_json.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_client_is_dropped(self):
        manager = WebSocketManager()
        good = create_mock_websocket()
        bad = create_mock_websocket()
        await manager.connect_client(good)
        await manager.connect_client(bad)
        bad.send_json.side_effect = WebSocketDisconnect()

        sent = await manager.broadcast({"x": 1})

        assert sent == 1
        assert manager.client_count == 1


class TestClientMessages:
    """Tests for client message handling."""

    @pytest.mark.asyncio
    async def test_ping_pong(self):
        manager = WebSocketManager()
        websocket = create_mock_websocket()

        await manager.handle_client_message(websocket, json.dumps({"action": "ping"}))

        websocket.send_json.assert_awaited_once_with({"type": "pong"})

    @pytest.mark.asyncio
    async def test_invalid_json_ignored(self):
        manager = WebSocketManager()
        websocket = create_mock_websocket()

        await manager.handle_client_message(websocket, "not json")

        websocket.send_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_action_ignored(self):
        manager = WebSocketManager()
        websocket = create_mock_websocket()

        await manager.handle_client_message(websocket, json.dumps({"action": "subscribe"}))

        websocket.send_json.assert_not_awaited()


class TestRebroadcast:
    """Tests for the periodic re-broadcast loop."""

    @pytest.mark.asyncio
    async def test_rebroadcasts_latest_snapshot(self):
        manager = WebSocketManager(rebroadcast_interval=0.01)
        websocket = create_mock_websocket()
        await manager.connect_client(websocket)
        await manager.update_data({"currentPrice": 1.0})

        await manager.start()
        await asyncio.sleep(0.05)
        await manager.stop()

        assert websocket.send_json.await_count >= 2
        websocket.close.assert_awaited_once()
        assert manager.client_count == 0

    @pytest.mark.asyncio
    async def test_stats(self):
        manager = WebSocketManager(rebroadcast_interval=5)

        stats = manager.get_stats()

        assert stats == {"clients": 0, "broadcastCount": 0, "hasData": False, "rebroadcastInterval": 5}
