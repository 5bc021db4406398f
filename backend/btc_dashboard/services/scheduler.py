"""Data scheduler service.

Drives the periodic refresh of every category:
- One timer per category with its own interval
- OHLC ticks walk the timeframes in cyclic order
- Overlapping ticks are skipped, never queued
- Staggered boot fetch, then one snapshot broadcast
- Broadcasts throttled to one per min_broadcast_interval
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Protocol, Set

from ..models.market_data import Category, FetchResult
from ..models.timeframes import DEFAULT_TIMEFRAME, Timeframe, get_next_timeframe
from .cache import SnapshotCache
from .config import SchedulerSettings
from .provider_manager import COUNTER_RESET_THRESHOLD, ProviderManager

logger = logging.getLogger(__name__)

BOOT_ORDER = [
    Category.MARKET,
    Category.OHLC,
    Category.BLOCKCHAIN,
    Category.SUPPLY,
    Category.GLOBAL,
]


class SnapshotSink(Protocol):
    """Receiver of published snapshots (the WebSocket manager)."""

    async def update_data(self, snapshot: Mapping[str, Any]) -> None:
        ...


class DataScheduler:
    """Periodically refreshes the snapshot cache through the provider manager."""

    def __init__(
        self,
        manager: ProviderManager,
        cache: SnapshotCache,
        sink: Optional[SnapshotSink] = None,
        settings: Optional[SchedulerSettings] = None,
    ):
        self.manager = manager
        self.cache = cache
        self.sink = sink
        self.settings = settings or SchedulerSettings()

        self.current_timeframe: Timeframe = DEFAULT_TIMEFRAME
        self.is_running = False
        self.is_updating = False
        self.in_flight: Dict[Category, bool] = {category: False for category in Category}

        self._timers: Dict[Category, asyncio.Task] = {}
        self._updates: Set[asyncio.Task] = set()
        self._boot_task: Optional[asyncio.Task] = None
        self._pending_broadcast: Optional[asyncio.Task] = None

        self.started_at: Optional[float] = None
        self.last_broadcast: Optional[float] = None
        self.broadcast_count = 0
        self.success_count = 0
        self.error_count = 0
        self.skipped_count = 0
        self.category_stats: Dict[Category, Dict[str, Any]] = {
            category: {"success": 0, "errors": 0, "last_success": None, "last_error": None}
            for category in Category
        }

    def interval_for(self, category: Category) -> float:
        return getattr(self.settings, f"{category.value}_interval_seconds")

    # Lifecycle
    async def start(self) -> None:
        """Start the boot fetch, every category timer and maintenance tasks."""
        if self.is_running:
            return

        logger.info("Starting data scheduler...")
        self.is_running = True
        self.started_at = time.monotonic()

        self.cache.start_maintenance()
        self.manager.start_maintenance()

        self._boot_task = asyncio.create_task(self.update_initial_data())
        for category in Category:
            self._timers[category] = asyncio.create_task(self._timer_loop(category))

        logger.info(f"Data scheduler started with {len(self._timers)} update intervals")

    async def stop(self) -> None:
        """Cancel timers, in-flight updates and maintenance tasks."""
        self.is_running = False

        tasks = list(self._timers.values()) + list(self._updates)
        if self._boot_task is not None:
            tasks.append(self._boot_task)
        if self._pending_broadcast is not None:
            tasks.append(self._pending_broadcast)

        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Error stopping scheduler task: {e}")

        for category in self._timers:
            logger.info(f"Stopped {category.value} interval")
        self._timers.clear()
        self._updates.clear()
        self._boot_task = None
        self._pending_broadcast = None

        await self.cache.stop_maintenance()
        await self.manager.stop_maintenance()
        logger.info("Data scheduler stopped")

    async def _timer_loop(self, category: Category) -> None:
        interval = self.interval_for(category)
        while self.is_running:
            try:
                await asyncio.sleep(interval)
                self.tick(category)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in {category.value} timer: {e}")

    def tick(self, category: Category) -> Optional[asyncio.Task]:
        """Launch one periodic update unless the category is busy."""
        if self.is_updating or self.in_flight[category]:
            self.skipped_count += 1
            logger.debug(f"Skipping {category.value} tick, update already in progress")
            return None

        task = asyncio.create_task(self.update_category(category))
        self._updates.add(task)
        task.add_done_callback(self._updates.discard)
        return task

    # Boot
    async def update_initial_data(self) -> None:
        """Fetch every category once, staggered, then broadcast a snapshot."""
        if self.is_updating:
            logger.info("Initial data fetch already in progress")
            return

        self.is_updating = True
        try:
            logger.info(f"Loading initial data for timeframe: {self.current_timeframe.value}...")

            stagger = self.settings.boot_stagger_seconds
            await asyncio.gather(
                *(
                    self._fetch_safe(category, delay=index * stagger)
                    for index, category in enumerate(BOOT_ORDER)
                ),
                return_exceptions=True,
            )

            self.cache.update_current_timeframe(self.current_timeframe)
            await self.broadcast()
            logger.info("Initial data loading completed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in initial data fetch: {e}")
            self.error_count += 1
        finally:
            self.is_updating = False

    async def _fetch_safe(self, category: Category, delay: float = 0.0) -> bool:
        if delay > 0:
            await asyncio.sleep(delay)

        self.in_flight[category] = True
        try:
            timeframe = self.current_timeframe if category == Category.OHLC else None
            changed = await self._fetch_and_store(category, timeframe)
            self._record_success(category)
            return changed
        except Exception as e:
            # Missing categories are filled in by their next tick
            logger.error(f"Initial {category.value} fetch failed: {e}")
            self._record_error(category, e)
            return False
        finally:
            self.in_flight[category] = False

    # Periodic updates
    async def update_category(self, category: Category) -> bool:
        """Refresh one category; broadcast if the cache changed.

        Failures are logged and counted, never raised.
        """
        category = Category(category)
        if self.in_flight[category]:
            self.skipped_count += 1
            return False

        self.in_flight[category] = True
        timeframe = None
        try:
            if category == Category.OHLC:
                self.current_timeframe = get_next_timeframe(self.current_timeframe)
                timeframe = self.current_timeframe
                logger.info(f"Updating OHLC data for timeframe: {timeframe.value}")
            else:
                logger.info(f"Updating {category.value} data...")

            changed = await self._fetch_and_store(category, timeframe)
            self._record_success(category)

            if changed:
                if timeframe is not None:
                    self.cache.update_current_timeframe(timeframe)
                await self.broadcast()
            return changed
        except asyncio.CancelledError:
            raise
        except Exception as e:
            suffix = f" for {timeframe.value}" if timeframe else ""
            logger.error(f"{category.value} data update failed{suffix}: {e}")
            self._record_error(category, e)
            return False
        finally:
            self.in_flight[category] = False

    async def _fetch_and_store(self, category: Category, timeframe: Optional[Timeframe] = None) -> bool:
        if category == Category.OHLC:
            tf = timeframe or self.current_timeframe
            result: FetchResult = await self.manager.get_ohlc_data(tf)
            return self.cache.update_ohlc_data(tf, result.data, result.source)
        if category == Category.MARKET:
            result = await self.manager.get_market_data()
            return self.cache.update_market_data(result.data, result.source)
        if category == Category.BLOCKCHAIN:
            result = await self.manager.get_blockchain_data()
            return self.cache.update_blockchain_data(result.data, result.source)
        if category == Category.SUPPLY:
            result = await self.manager.get_supply_data()
            return self.cache.update_supply_data(result.data, result.source)
        result = await self.manager.get_global_market_data()
        return self.cache.update_global_data(result.data, result.source)

    async def update_market_data(self) -> bool:
        return await self.update_category(Category.MARKET)

    async def update_ohlc_data(self) -> bool:
        return await self.update_category(Category.OHLC)

    async def update_blockchain_data(self) -> bool:
        return await self.update_category(Category.BLOCKCHAIN)

    async def update_supply_data(self) -> bool:
        return await self.update_category(Category.SUPPLY)

    async def update_global_data(self) -> bool:
        return await self.update_category(Category.GLOBAL)

    def _record_success(self, category: Category) -> None:
        self.success_count += 1
        stats = self.category_stats[category]
        stats["success"] += 1
        stats["last_success"] = datetime.now(timezone.utc).isoformat()

    def _record_error(self, category: Category, error: BaseException) -> None:
        self.error_count += 1
        stats = self.category_stats[category]
        stats["errors"] += 1
        stats["last_error"] = str(error)[:500]

    # Broadcasting
    async def broadcast(self) -> bool:
        """Publish the snapshot now, or once the throttle window has passed.

        Returns True if the snapshot was sent immediately.
        """
        if self.sink is None:
            return False

        now = time.monotonic()
        min_interval = self.settings.min_broadcast_interval_seconds
        if self.last_broadcast is not None and now - self.last_broadcast < min_interval:
            if self._pending_broadcast is None or self._pending_broadcast.done():
                remaining = min_interval - (now - self.last_broadcast)
                self._pending_broadcast = asyncio.create_task(self._deferred_broadcast(remaining))
            return False

        await self._send_snapshot()
        return True

    async def _deferred_broadcast(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self._send_snapshot()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Deferred broadcast failed: {e}")

    async def _send_snapshot(self) -> None:
        self.last_broadcast = time.monotonic()
        self.broadcast_count += 1
        await self.sink.update_data(self.cache.get_snapshot())

    # Reporting
    def get_stats(self) -> Dict[str, Any]:
        return {
            "scheduler": {
                "currentTimeframe": self.current_timeframe.value,
                "isRunning": self.is_running,
                "isUpdating": self.is_updating,
                "inFlight": {c.value: busy for c, busy in self.in_flight.items()},
                "successCount": self.success_count,
                "errorCount": self.error_count,
                "skippedCount": self.skipped_count,
                "broadcastCount": self.broadcast_count,
                "intervals": {c.value: self.interval_for(c) for c in self._timers},
                "categories": {c.value: dict(s) for c, s in self.category_stats.items()},
                "uptime": time.monotonic() - self.started_at if self.started_at else 0.0,
            },
            "cache": self.cache.get_stats(),
            "apiManager": self.manager.get_health_status(),
        }

    def get_memory_info(self) -> Dict[str, Any]:
        return {
            "cache": self.cache.get_memory_info(),
            "apiManager": self.manager.get_health_status()["maintenance"],
            "scheduler": {
                "successCount": self.success_count,
                "errorCount": self.error_count,
                "broadcastCount": self.broadcast_count,
                "pendingUpdates": len(self._updates),
            },
        }

    def force_cleanup(self) -> None:
        self.cache.force_cleanup()
        self.manager.force_cleanup()

        if self.broadcast_count > COUNTER_RESET_THRESHOLD:
            self.broadcast_count = 0
        if self.error_count > COUNTER_RESET_THRESHOLD:
            self.error_count = 0
        if self.success_count > COUNTER_RESET_THRESHOLD:
            self.success_count = 0
        if self.skipped_count > COUNTER_RESET_THRESHOLD:
            self.skipped_count = 0

        logger.info("Forced memory cleanup completed")
