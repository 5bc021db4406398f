# Business Logic Services

from .config import (
    AdapterSettings,
    AppSettings,
    CacheSettings,
    ConfigService,
    ConfigValidationError,
    ConfigValidationException,
    ProviderSettings,
    SchedulerSettings,
    config_service,
)
from .adapters import (
    AdapterFailure,
    AdapterId,
    BaseAdapter,
    UnsupportedCategoryError,
    create_adapters,
)
from .provider_manager import (
    AdapterHealth,
    AllProvidersFailedError,
    ProviderManager,
)
from .cache import SnapshotCache, UpdateHistoryEntry
from .scheduler import DataScheduler
from .websocket import WebSocketManager
from .dashboard import DashboardServices

__all__ = [
    # Config
    "AdapterSettings",
    "AppSettings",
    "CacheSettings",
    "ConfigService",
    "ConfigValidationError",
    "ConfigValidationException",
    "ProviderSettings",
    "SchedulerSettings",
    "config_service",
    # Adapters
    "AdapterFailure",
    "AdapterId",
    "BaseAdapter",
    "UnsupportedCategoryError",
    "create_adapters",
    # Provider manager
    "AdapterHealth",
    "AllProvidersFailedError",
    "ProviderManager",
    # Cache
    "SnapshotCache",
    "UpdateHistoryEntry",
    # Scheduler
    "DataScheduler",
    # WebSocket
    "WebSocketManager",
    # Composition root
    "DashboardServices",
]
