# API Routers

from . import bitcoin, health, websocket

__all__ = ["bitcoin", "health", "websocket"]
