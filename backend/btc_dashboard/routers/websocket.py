"""WebSocket router for real-time snapshot updates."""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import logging

from ..services.dashboard import DashboardServices

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Messages from client:
    - {"action": "ping"}

    Messages to client:
    - Full dashboard snapshot (on connect, on change, and periodically)
    - {"type": "pong"}
    """
    services: DashboardServices = websocket.app.state.services
    ws_manager = services.ws_manager
    await ws_manager.connect_client(websocket)

    try:
        while True:
            message = await websocket.receive_text()
            await ws_manager.handle_client_message(websocket, message)

    except WebSocketDisconnect:
        await ws_manager.disconnect_client(websocket)
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        await ws_manager.disconnect_client(websocket)
