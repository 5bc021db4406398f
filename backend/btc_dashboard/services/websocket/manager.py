"""
WebSocket manager for pushing dashboard snapshots to frontend clients.

Provides:
- Frontend client connection tracking
- Latest snapshot delivery on connect
- Immediate fan-out when the snapshot changes
- Periodic re-broadcast for clients that missed an update
"""
import asyncio
import json
import logging
from typing import Any, Dict, Mapping, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

DEFAULT_REBROADCAST_INTERVAL = 60.0


class WebSocketManager:
    """
    Broadcast sink for dashboard snapshots.

    The scheduler hands every published snapshot to ``update_data``; the
    manager keeps the latest one and forwards it to all connected clients
    when it differs from the previous one.
    """

    def __init__(self, rebroadcast_interval: float = DEFAULT_REBROADCAST_INTERVAL):
        self.rebroadcast_interval = rebroadcast_interval

        # Frontend WebSocket clients
        self._clients: Set[WebSocket] = set()

        # Latest snapshot for new clients
        self._cached_data: Optional[Dict[str, Any]] = None

        # Background tasks
        self._broadcast_task: Optional[asyncio.Task] = None
        self._running = False

        self.broadcast_count = 0

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def cached_data(self) -> Optional[Dict[str, Any]]:
        return self._cached_data

    async def start(self) -> None:
        """Start WebSocket manager."""
        if self._running:
            return

        self._running = True
        self._broadcast_task = asyncio.create_task(self._broadcast_loop())
        logger.info("WebSocketManager started")

    async def stop(self) -> None:
        """Stop WebSocket manager."""
        self._running = False

        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None

        # Close all client connections
        for client in list(self._clients):
            try:
                await client.close()
            except Exception as e:
                logger.debug(f"Error closing client connection: {e}")
        self._clients.clear()

        logger.info("WebSocketManager stopped")

    # Snapshot sink
    async def update_data(self, snapshot: Mapping[str, Any]) -> bool:
        """Store the latest snapshot and broadcast it if it changed.

        Returns True if the snapshot differed from the previous one.
        """
        data = json.loads(json.dumps(dict(snapshot), default=str))
        old_data = self._cached_data
        self._cached_data = data

        if old_data == data:
            return False

        logger.info("Data updated, broadcasting to all clients")
        await self.broadcast(data)
        return True

    # Frontend WebSocket handling
    async def connect_client(self, websocket: WebSocket) -> None:
        """Handle new frontend WebSocket connection."""
        await websocket.accept()
        self._clients.add(websocket)
        logger.info(f"Client connected. Total clients: {len(self._clients)}")

        # Send latest data immediately on connect
        if self._cached_data is not None:
            try:
                await websocket.send_json(self._cached_data)
            except Exception as e:
                logger.error(f"Error sending initial data to client: {e}")
        else:
            logger.warning("No cached data available for new client")

    async def disconnect_client(self, websocket: WebSocket) -> None:
        """Handle frontend WebSocket disconnection."""
        self._clients.discard(websocket)
        logger.info(f"Client disconnected. Total clients: {len(self._clients)}")

    async def handle_client_message(self, websocket: WebSocket, message: str) -> None:
        """Handle message from frontend client."""
        try:
            data = json.loads(message)
            action = data.get("action") if isinstance(data, dict) else None

            if action == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                logger.debug(f"Ignoring client action: {action}")

        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON from client: {message[:100]}")

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Broadcast message to all connected clients. Returns clients reached."""
        if not self._clients:
            return 0

        sent = 0
        disconnected = set()
        for client in list(self._clients):
            try:
                await client.send_json(message)
                sent += 1
            except WebSocketDisconnect:
                disconnected.add(client)
            except Exception as e:
                logger.error(f"Broadcast error: {e}")
                disconnected.add(client)

        # Clean up disconnected clients
        for client in disconnected:
            await self.disconnect_client(client)

        self.broadcast_count += 1
        logger.debug(f"Broadcast complete. Sent to {sent}/{sent + len(disconnected)} clients")
        return sent

    async def _broadcast_loop(self) -> None:
        """Re-broadcast the latest snapshot for clients that missed an update."""
        while self._running:
            try:
                await asyncio.sleep(self.rebroadcast_interval)

                if self._cached_data is not None:
                    logger.debug("Broadcasting data on interval")
                    await self.broadcast(self._cached_data)
                else:
                    logger.warning("No cached data available for broadcast")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Broadcast loop error: {e}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "clients": len(self._clients),
            "broadcastCount": self.broadcast_count,
            "hasData": self._cached_data is not None,
            "rebroadcastInterval": self.rebroadcast_interval,
        }
