"""Provider manager service.

Owns every adapter and routes each data category to them:
- Per-category priority list and round-robin rotation cursor
- Fallback through the full priority list when the preferred adapter fails
- Adapter health tracking (unhealthy after consecutive failures)
- Long-uptime counter hygiene (ratio-preserving rescale) and periodic
  health reset
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..models.market_data import MAX_SAFE_COUNTER, Category, FetchResult
from ..models.timeframes import Timeframe
from .adapters import AdapterFailure, BaseAdapter, UnsupportedCategoryError, create_adapters
from .config import ProviderSettings

logger = logging.getLogger(__name__)

COUNTER_RESET_THRESHOLD = 1_000_000
COUNTER_RESCALE_TARGET = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class AdapterHealth:
    """Health record for one adapter. Mutated only by ProviderManager.record_*."""
    healthy: bool = True
    consecutive_failures: int = 0
    total_requests: int = 0
    successful_requests: int = 0
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    last_error: Optional[str] = None
    last_counter_reset: datetime = field(default_factory=_utcnow)

    @property
    def success_rate(self) -> Optional[float]:
        if self.total_requests <= 0:
            return None
        return self.successful_requests / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        rate = self.success_rate
        return {
            "healthy": self.healthy,
            "consecutive_failures": self.consecutive_failures,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "last_success": _iso(self.last_success),
            "last_failure": _iso(self.last_failure),
            "last_error": self.last_error,
            "success_rate": f"{rate * 100:.1f}%" if rate is not None else "N/A",
            "last_counter_reset": _iso(self.last_counter_reset),
        }


class AllProvidersFailedError(Exception):
    """Every adapter in a category's priority list failed."""

    def __init__(self, category: Union[Category, str], last_error: Optional[BaseException], errors: Optional[List[str]] = None):
        self.category = Category(category)
        self.last_error = last_error
        self.errors = errors or []
        super().__init__(
            f"All adapters failed for {self.category.value}. Last error: {last_error}"
        )


class ProviderManager:
    """Routes category fetches across adapters with rotation and fallback."""

    def __init__(
        self,
        adapters: Optional[Dict[str, BaseAdapter]] = None,
        settings: Optional[ProviderSettings] = None,
    ):
        self.settings = settings or ProviderSettings()
        self.adapters: Dict[str, BaseAdapter] = (
            adapters if adapters is not None else create_adapters(self.settings.adapters)
        )

        self.priorities: Dict[Category, List[str]] = {
            Category(name): [a for a in adapter_names if a in self.adapters]
            for name, adapter_names in self.settings.priorities.items()
        }
        self._cursors: Dict[Category, int] = {category: 0 for category in Category}

        self.health: Dict[str, AdapterHealth] = {}
        self.initialize_health_tracking()

        self.last_cleanup = _utcnow()
        self.last_health_reset = _utcnow()
        self._maintenance_tasks: List[asyncio.Task] = []

    def initialize_health_tracking(self) -> None:
        self.health = {name: AdapterHealth() for name in self.adapters}

    # Rotation
    def _get_priorities(self, category: Category) -> List[str]:
        priorities = self.priorities.get(category)
        if not priorities:
            raise ValueError(f"No adapters configured for data type: {category.value}")
        return priorities

    def get_current_adapter(self, category: Union[Category, str]) -> Tuple[str, BaseAdapter]:
        """Get the adapter at the rotation cursor for a category."""
        category = Category(category)
        priorities = self._get_priorities(category)
        name = priorities[self._cursors[category] % len(priorities)]
        return name, self.adapters[name]

    def rotate_adapter(self, category: Union[Category, str]) -> str:
        """Advance the rotation cursor. Returns the new current adapter name."""
        category = Category(category)
        priorities = self._get_priorities(category)
        old_name = priorities[self._cursors[category] % len(priorities)]
        self._cursors[category] = (self._cursors[category] + 1) % len(priorities)
        new_name = priorities[self._cursors[category]]
        if new_name != old_name:
            logger.debug(f"Rotated {category.value} adapter: {old_name} -> {new_name}")
        return new_name

    def _has_healthy_alternative(self, category: Category, excluded: str) -> bool:
        return any(
            name != excluded
            and self.adapters[name].supports(category)
            and self.is_adapter_healthy(name)
            for name in self._get_priorities(category)
        )

    # Fetching
    async def fetch(self, category: Union[Category, str], *args: Any) -> FetchResult:
        """Fetch a category from the current adapter, falling back on failure.

        Raises:
            AllProvidersFailedError: If every eligible adapter failed.
        """
        category = Category(category)
        name, adapter = self.get_current_adapter(category)

        usable = adapter.supports(category) and (
            self.is_adapter_healthy(name) or not self._has_healthy_alternative(category, name)
        )
        if not usable:
            logger.info(f"Current {category.value} adapter {name} is unavailable, using fallback")
            return await self.execute_with_fallback(category, *args)

        try:
            self.record_attempt(name)
            data = await adapter.fetch(category, *args)
        except Exception as e:
            failure = AdapterFailure(name, category, e)
            logger.warning(f"{name} failed for {category.value}: {e}")
            self.record_failure(name, failure)
            return await self.execute_with_fallback(category, *args, exclude=[name], last_error=failure)

        self.record_success(name)
        self.rotate_adapter(category)
        return FetchResult(data=data, source=name)

    async def execute_with_fallback(
        self,
        category: Union[Category, str],
        *args: Any,
        exclude: Iterable[str] = (),
        last_error: Optional[BaseException] = None,
    ) -> FetchResult:
        """Try every adapter in priority order until one succeeds.

        Unhealthy adapters are skipped unless they are the last remaining
        candidate. Adapters in ``exclude`` were already tried in this call.
        """
        category = Category(category)
        excluded = set(exclude)
        candidates = [
            name for name in self._get_priorities(category)
            if name not in excluded and self.adapters[name].supports(category)
        ]
        errors: List[str] = [str(last_error)] if last_error else []

        for index, name in enumerate(candidates):
            is_last = index == len(candidates) - 1
            if not self.is_adapter_healthy(name) and not is_last:
                logger.info(f"Skipping unhealthy adapter: {name}")
                continue

            adapter = self.adapters[name]
            try:
                logger.info(f"Attempting {category.value} call using {name}")
                self.record_attempt(name)
                data = await adapter.fetch(category, *args)
            except UnsupportedCategoryError as e:
                logger.debug(f"{name} does not support {category.value}: {e}")
                continue
            except Exception as e:
                failure = AdapterFailure(name, category, e)
                logger.warning(f"{name} failed for {category.value}: {e}")
                self.record_failure(name, failure)
                errors.append(str(failure))
                last_error = failure
                continue

            self.record_success(name)
            logger.info(f"Successfully fetched {category.value} data from {name}")
            return FetchResult(data=data, source=name)

        logger.error(f"All adapters failed for {category.value}. Last error: {last_error}")
        raise AllProvidersFailedError(category, last_error, errors)

    async def get_market_data(self) -> FetchResult:
        return await self.fetch(Category.MARKET)

    async def get_ohlc_data(self, timeframe: Timeframe) -> FetchResult:
        return await self.fetch(Category.OHLC, timeframe)

    async def get_blockchain_data(self) -> FetchResult:
        return await self.fetch(Category.BLOCKCHAIN)

    async def get_supply_data(self) -> FetchResult:
        return await self.fetch(Category.SUPPLY)

    async def get_global_market_data(self) -> FetchResult:
        return await self.fetch(Category.GLOBAL)

    # Health recording
    def record_attempt(self, name: str) -> None:
        """Count a request, rescaling first if the counter nears the ceiling."""
        health = self.health.get(name)
        if health is None:
            return
        if health.total_requests >= MAX_SAFE_COUNTER:
            self.rescale_counters(name)
        health.total_requests += 1

    def record_success(self, name: str) -> None:
        health = self.health.get(name)
        if health is None:
            return
        health.successful_requests = min(health.successful_requests + 1, health.total_requests)
        health.consecutive_failures = 0
        health.last_success = _utcnow()
        if not health.healthy:
            logger.info(f"Adapter {name} is healthy again")
        health.healthy = True

    def record_failure(self, name: str, error: BaseException) -> None:
        health = self.health.get(name)
        if health is None:
            return
        health.consecutive_failures += 1
        health.last_failure = _utcnow()
        health.last_error = str(error)[:500]

        if health.healthy and health.consecutive_failures >= self.settings.failure_threshold:
            health.healthy = False
            logger.warning(
                f"Marking {name} as unhealthy after {health.consecutive_failures} consecutive failures"
            )

    def is_adapter_healthy(self, name: str) -> bool:
        health = self.health.get(name)
        return health.healthy if health else True

    def rescale_counters(self, name: str, target: int = COUNTER_RESCALE_TARGET) -> None:
        """Shrink request counters while keeping the observed success ratio."""
        health = self.health.get(name)
        if health is None:
            return
        rate = health.success_rate or 0.0
        health.total_requests = min(target, health.total_requests)
        health.successful_requests = round(health.total_requests * rate)
        health.last_counter_reset = _utcnow()
        logger.info(f"Reset counters for {name} (success rate preserved: {rate * 100:.1f}%)")

    # Maintenance
    def cleanup(self) -> int:
        """Rescale any counter above the reset threshold. Returns adapters rescaled."""
        cleaned = 0
        for name, health in self.health.items():
            if health.total_requests > COUNTER_RESET_THRESHOLD:
                self.rescale_counters(name)
                cleaned += 1

        self.last_cleanup = _utcnow()
        if cleaned:
            logger.info(f"Counter cleanup completed: {cleaned} adapters rescaled")
        return cleaned

    def perform_health_reset(self) -> int:
        """Give adapters whose last failure is old enough a fresh start."""
        now = _utcnow()
        min_age = timedelta(seconds=self.settings.health_reset_min_age_seconds)
        reset = 0
        for name, health in self.health.items():
            if health.last_failure is not None and now - health.last_failure > min_age:
                if not health.healthy or health.consecutive_failures:
                    reset += 1
                health.consecutive_failures = 0
                health.healthy = True

        self.last_health_reset = now
        logger.info(f"Performed periodic health reset ({reset} adapters reset)")
        return reset

    def reset_health(self) -> None:
        self.initialize_health_tracking()
        logger.info("Reset health status for all adapters")

    def force_cleanup(self) -> None:
        self.cleanup()
        self.perform_health_reset()
        logger.info("Forced provider cleanup completed")

    def start_maintenance(self) -> None:
        """Start the hourly counter cleanup and daily health reset tasks."""
        if self._maintenance_tasks:
            return
        self._maintenance_tasks = [
            asyncio.create_task(
                self._maintenance_loop(self.settings.cleanup_interval_seconds, self.cleanup)
            ),
            asyncio.create_task(
                self._maintenance_loop(self.settings.health_reset_interval_seconds, self.perform_health_reset)
            ),
        ]

    async def stop_maintenance(self) -> None:
        for task in self._maintenance_tasks:
            task.cancel()
        for task in self._maintenance_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._maintenance_tasks = []

    async def _maintenance_loop(self, interval: float, action: Callable[[], Any]) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                action()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Provider maintenance error: {e}")

    async def close(self) -> None:
        await self.stop_maintenance()
        for name, adapter in self.adapters.items():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning(f"Error closing adapter {name}: {e}")

    # Reporting
    def get_health_status(self) -> Dict[str, Any]:
        now = _utcnow()
        adapters: Dict[str, Any] = {}
        for name, adapter in self.adapters.items():
            status = adapter.get_health_status()
            status.update(self.health[name].to_dict())
            status["supported_categories"] = sorted(c.value for c in adapter.supported_categories())
            adapters[name] = status

        return {
            "adapters": adapters,
            "priorities": {c.value: list(names) for c, names in self.priorities.items()},
            "current": {
                c.value: self.get_current_adapter(c)[0] for c in self.priorities if self.priorities[c]
            },
            "maintenance": {
                "last_cleanup": _iso(self.last_cleanup),
                "last_health_reset": _iso(self.last_health_reset),
                "cleanup_age_seconds": (now - self.last_cleanup).total_seconds(),
                "health_reset_age_seconds": (now - self.last_health_reset).total_seconds(),
            },
        }
