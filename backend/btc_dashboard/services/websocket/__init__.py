# WebSocket Services
from .manager import DEFAULT_REBROADCAST_INTERVAL, WebSocketManager

__all__ = [
    "DEFAULT_REBROADCAST_INTERVAL",
    "WebSocketManager",
]
