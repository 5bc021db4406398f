"""Composition root wiring adapters, provider manager, cache, scheduler and sink."""

import logging
from typing import Dict, Optional

from .adapters import BaseAdapter
from .cache import SnapshotCache
from .config import AppSettings
from .provider_manager import ProviderManager
from .scheduler import DataScheduler
from .websocket import WebSocketManager

logger = logging.getLogger(__name__)


class DashboardServices:
    """Owns every long-lived service of one running application."""

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        adapters: Optional[Dict[str, BaseAdapter]] = None,
    ):
        self.settings = settings or AppSettings()
        self.manager = ProviderManager(adapters, self.settings.providers)
        self.cache = SnapshotCache(self.settings.cache)
        self.ws_manager = WebSocketManager(self.settings.rebroadcast_interval_seconds)
        self.scheduler = DataScheduler(
            self.manager, self.cache, self.ws_manager, self.settings.scheduler
        )

    async def start(self) -> None:
        await self.ws_manager.start()
        logger.info("WebSocket manager started")
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.manager.close()
        await self.ws_manager.stop()
        logger.info("Dashboard services stopped")
