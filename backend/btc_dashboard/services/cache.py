"""Snapshot cache service.

Holds the single published snapshot the dashboard renders. Every write goes
through a typed update that validates the payload, writes only the fields
that actually changed and records where the change came from.
"""

import asyncio
import copy
import logging
import math
import tracemalloc
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Deque, Dict, List, Mapping, Optional, Union

from ..models.market_data import (
    FIELD_MAPPINGS,
    MAX_SAFE_COUNTER,
    BlockchainData,
    Candle,
    Category,
    GlobalData,
    MarketData,
    SupplyData,
)
from ..models.timeframes import DEFAULT_TIMEFRAME, TIMEFRAMES, Timeframe, parse_timeframe
from .config import CacheSettings

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _empty_snapshot() -> Dict[str, Any]:
    return {
        # Market data
        "currentPrice": None,
        "priceChange": None,
        "volume": None,
        "marketCap": None,
        # Blockchain data
        "blockHeight": None,
        "marketDominance": None,
        # Supply data
        "totalSupply": {"current": None, "max": None, "percentage": None},
        "extendedSupplyData": {
            "current": None,
            "max": None,
            "percentage": None,
            "circulatingSupply": None,
            "athPrice": None,
            "athDate": None,
            "atlPrice": None,
            "atlDate": None,
            "priceChangePercentageFromAth": None,
            "marketCapRank": None,
            "liquidityScore": None,
        },
        # Global market data
        "globalMarketData": {
            "btcDominance": None,
            "totalMarketCap": None,
            "totalVolume": None,
            "activeCryptocurrencies": None,
            "marketCapChangePercentage": None,
        },
        "ohlcData": {tf.value: [] for tf in TIMEFRAMES},
        "currentTimeframe": DEFAULT_TIMEFRAME.value,
        # Metadata
        "lastUpdate": None,
        "dataSource": None,
    }


def is_number(value: Any) -> bool:
    """True for finite ints and floats. Booleans and strings are not numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _is_optional_number(value: Any) -> bool:
    return value is None or is_number(value)


def _as_dict(data: Any) -> Optional[Dict[str, Any]]:
    if hasattr(data, "to_dict"):
        return data.to_dict()
    if isinstance(data, Mapping):
        return dict(data)
    return None


def validate_market_data(data: Optional[Dict[str, Any]]) -> bool:
    return bool(data) and all(is_number(data.get(f)) for f in FIELD_MAPPINGS[Category.MARKET])


def validate_candle(candle: Optional[Dict[str, Any]]) -> bool:
    if not candle:
        return False
    time_value = candle.get("time")
    if isinstance(time_value, bool) or not isinstance(time_value, int):
        return False
    if not all(is_number(candle.get(f)) for f in ("open", "high", "low", "close")):
        return False
    return _is_optional_number(candle.get("volume"))


def validate_blockchain_data(data: Optional[Dict[str, Any]]) -> bool:
    if not data:
        return False
    height = data.get("blockHeight")
    return isinstance(height, int) and not isinstance(height, bool) and height >= 0


def validate_supply_info(data: Any) -> bool:
    return (
        isinstance(data, Mapping)
        and is_number(data.get("current"))
        and is_number(data.get("max"))
        and isinstance(data.get("percentage"), str)
    )


def validate_global_data(data: Optional[Dict[str, Any]]) -> bool:
    if not data:
        return False
    if not _is_optional_number(data.get("marketDominance")):
        return False
    info = data.get("globalMarketData")
    if info is None:
        return "marketDominance" in data
    if not isinstance(info, Mapping):
        return False
    return all(
        _is_optional_number(info.get(f))
        for f in ("btcDominance", "totalMarketCap", "totalVolume",
                  "activeCryptocurrencies", "marketCapChangePercentage")
    )


@dataclass
class UpdateHistoryEntry:
    """One effective cache update."""
    id: int
    timestamp: str
    category: str
    source: str
    fields: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SnapshotCache:
    """Validated, change-tracking store for the published snapshot."""

    def __init__(self, settings: Optional[CacheSettings] = None):
        self.settings = settings or CacheSettings()
        self._data: Dict[str, Any] = _empty_snapshot()
        self.last_update_times: Dict[str, str] = {}
        self.history: Deque[UpdateHistoryEntry] = deque(maxlen=self.settings.max_history_size)
        self.update_counter = 0
        self.last_cleanup = _utcnow()
        self._maintenance_task: Optional[asyncio.Task] = None

    # Typed updates
    def update_market_data(self, data: Union[MarketData, Mapping[str, Any]], source: str) -> bool:
        """Update price, change, volume and market cap. Returns True if anything changed."""
        payload = _as_dict(data)
        if not validate_market_data(payload):
            logger.warning(f"Invalid market data from {source}: {data!r}")
            return False

        updates = {f: payload[f] for f in FIELD_MAPPINGS[Category.MARKET]}
        return self._apply(Category.MARKET, updates, source)

    def update_ohlc_data(
        self,
        timeframe: Union[Timeframe, str],
        data: List[Union[Candle, Mapping[str, Any]]],
        source: str,
    ) -> bool:
        """Replace the candle series of one timeframe."""
        tf = parse_timeframe(timeframe)
        if tf is None:
            logger.warning(f"Invalid timeframe: {timeframe}")
            return False

        if not isinstance(data, (list, tuple)):
            logger.warning(f"Invalid OHLC data from {source} for {tf.value}: not a list")
            return False
        candles = [_as_dict(c) for c in data]
        if not all(validate_candle(c) for c in candles):
            logger.warning(f"Invalid OHLC data from {source} for {tf.value}: {len(candles)} candles")
            return False

        for candle in candles:
            candle.setdefault("volume", 0.0)

        current = self._data["ohlcData"].get(tf.value, [])
        if current == candles:
            return False

        previous_length = len(current)
        self._data["ohlcData"][tf.value] = copy.deepcopy(candles)
        self._record_update(Category.OHLC, source, [tf.value])
        logger.info(
            f"Updated OHLC data for {tf.value} from {source}: "
            f"{previous_length} -> {len(candles)} candles"
        )
        return True

    def update_blockchain_data(self, data: Union[BlockchainData, Mapping[str, Any]], source: str) -> bool:
        payload = _as_dict(data)
        if not validate_blockchain_data(payload):
            logger.warning(f"Invalid blockchain data from {source}: {data!r}")
            return False
        return self._apply(Category.BLOCKCHAIN, {"blockHeight": payload["blockHeight"]}, source)

    def update_supply_data(self, data: Union[SupplyData, Mapping[str, Any]], source: str) -> bool:
        payload = _as_dict(data)
        if not payload or not validate_supply_info(payload.get("totalSupply")):
            logger.warning(f"Invalid supply data from {source}: {data!r}")
            return False

        extended = payload.get("extendedSupplyData")
        if extended is not None and not isinstance(extended, Mapping):
            logger.warning(f"Invalid extended supply data from {source}: {extended!r}")
            return False

        updates = {"totalSupply": dict(payload["totalSupply"])}
        if extended is not None:
            updates["extendedSupplyData"] = dict(extended)
        return self._apply(Category.SUPPLY, updates, source)

    def update_global_data(self, data: Union[GlobalData, Mapping[str, Any]], source: str) -> bool:
        payload = _as_dict(data)
        if not validate_global_data(payload):
            logger.warning(f"Invalid global data from {source}: {data!r}")
            return False

        updates: Dict[str, Any] = {}
        if "marketDominance" in payload:
            updates["marketDominance"] = payload["marketDominance"]
        if payload.get("globalMarketData") is not None:
            updates["globalMarketData"] = dict(payload["globalMarketData"])
        return self._apply(Category.GLOBAL, updates, source)

    def update_current_timeframe(self, timeframe: Union[Timeframe, str]) -> bool:
        tf = parse_timeframe(timeframe)
        if tf is None:
            logger.warning(f"Invalid timeframe: {timeframe}")
            return False

        if self._data["currentTimeframe"] == tf.value:
            return False
        self._data["currentTimeframe"] = tf.value
        logger.info(f"Updated current timeframe to: {tf.value}")
        return True

    def _apply(self, category: Category, updates: Dict[str, Any], source: str) -> bool:
        changed = [f for f, value in updates.items() if self._data.get(f) != value]
        if not changed:
            return False

        for f in changed:
            self._data[f] = copy.deepcopy(updates[f])
        self._record_update(category, source, changed)
        logger.info(f"Updated {category.value} data from {source}: {changed}")
        return True

    def _record_update(self, category: Category, source: str, fields: List[str]) -> None:
        if self.update_counter >= MAX_SAFE_COUNTER:
            self.rescale_counter()
        self.update_counter += 1

        timestamp = _utcnow().isoformat()
        self.last_update_times[category.value] = timestamp
        self._data["lastUpdate"] = timestamp
        self._data["dataSource"] = source

        self.history.append(UpdateHistoryEntry(
            id=self.update_counter,
            timestamp=timestamp,
            category=category.value,
            source=source,
            fields=list(fields),
        ))

    # Reads
    def get(self, field: str) -> Any:
        return copy.deepcopy(self._data.get(field))

    def get_candles(self, timeframe: Union[Timeframe, str]) -> List[Dict[str, Any]]:
        tf = parse_timeframe(timeframe)
        if tf is None:
            raise ValueError(f"Invalid timeframe: {timeframe}")
        return copy.deepcopy(self._data["ohlcData"].get(tf.value, []))

    def to_dict(self) -> Dict[str, Any]:
        """Deep copy of the snapshot as a plain, JSON-ready dict."""
        snapshot = copy.deepcopy(self._data)
        snapshot["currentTimeframe"] = snapshot.get("currentTimeframe") or DEFAULT_TIMEFRAME.value
        return snapshot

    def get_snapshot(self) -> Mapping[str, Any]:
        """Read-only view of a deep copy of the snapshot."""
        return MappingProxyType(self.to_dict())

    def get_stats(self) -> Dict[str, Any]:
        total_supply = self._data.get("totalSupply") or {}
        memory_usage = None
        if tracemalloc.is_tracing():
            current, peak = tracemalloc.get_traced_memory()
            memory_usage = {"current": current, "peak": peak}

        return {
            "lastUpdate": self._data["lastUpdate"],
            "dataSource": self._data["dataSource"],
            "currentTimeframe": self._data["currentTimeframe"],
            "marketDataAvailable": self._data["currentPrice"] is not None,
            "blockchainDataAvailable": self._data["blockHeight"] is not None,
            "supplyDataAvailable": total_supply.get("current") is not None,
            "globalDataAvailable": self._data["marketDominance"] is not None,
            "ohlcDataAvailable": {
                tf.value: len(self._data["ohlcData"].get(tf.value, [])) for tf in TIMEFRAMES
            },
            "lastUpdateTimes": dict(self.last_update_times),
            "updateHistory": [entry.to_dict() for entry in list(self.history)[-10:]],
            "memoryInfo": self.get_memory_info(memory_usage),
        }

    def get_memory_info(self, memory_usage: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
        return {
            "updateCounter": self.update_counter,
            "historySize": len(self.history),
            "maxHistorySize": self.settings.max_history_size,
            "lastMemoryCleanup": self.last_cleanup.isoformat(),
            "memoryCleanupAge": (_utcnow() - self.last_cleanup).total_seconds(),
            "memoryUsage": memory_usage,
        }

    # Maintenance
    def rescale_counter(self) -> None:
        """Renumber retained history from 1 so ids stay increasing after the reset."""
        for index, entry in enumerate(self.history, start=1):
            entry.id = index
        self.update_counter = len(self.history)
        logger.info(f"Rescaled cache update counter to {self.update_counter}")

    def cleanup(self) -> int:
        """Trim history, drop stale update times, rescale the update counter."""
        now = _utcnow()
        cleaned = 0

        if self.update_counter >= MAX_SAFE_COUNTER:
            self.rescale_counter()
            cleaned += 1

        max_size = self.settings.max_history_size
        if self.history.maxlen != max_size or len(self.history) > max_size:
            self.history = deque(list(self.history)[-max_size:], maxlen=max_size)
            cleaned += 1

        cutoff = now - timedelta(seconds=self.settings.update_time_retention_seconds)
        for category, timestamp in list(self.last_update_times.items()):
            if datetime.fromisoformat(timestamp) < cutoff:
                del self.last_update_times[category]
                cleaned += 1

        self.last_cleanup = now
        if cleaned:
            logger.info(f"Cache cleanup completed: {cleaned} items cleaned")
        return cleaned

    def force_cleanup(self) -> None:
        self.cleanup()
        logger.info("Forced cache cleanup completed")

    def clear(self) -> None:
        self._data = _empty_snapshot()
        self.last_update_times = {}
        self.history.clear()
        logger.info("Cleared all cached data")

    def start_maintenance(self) -> None:
        if self._maintenance_task is None:
            self._maintenance_task = asyncio.create_task(self._maintenance_loop())

    async def stop_maintenance(self) -> None:
        if self._maintenance_task is None:
            return
        self._maintenance_task.cancel()
        try:
            await self._maintenance_task
        except asyncio.CancelledError:
            pass
        self._maintenance_task = None

    async def _maintenance_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.settings.cleanup_interval_seconds)
                self.cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cache maintenance error: {e}")
