"""
Base adapter for provider-agnostic Bitcoin data acquisition.

Every concrete adapter wraps one upstream API and normalizes its payloads
into the canonical shapes in ``models.market_data``. All network calls go
through a per-adapter rate limiter and a retry-with-backoff policy.
"""
import asyncio
import logging
import math
import time
from abc import ABC
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

import aiohttp

from ...models.market_data import (
    BlockchainData,
    Candle,
    Category,
    GlobalData,
    MarketData,
    SupplyData,
)
from ...models.timeframes import Timeframe, get_timeframe_bucket
from ..config import AdapterSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdapterError(Exception):
    """Base class for adapter errors."""

    def __init__(self, adapter: str, message: str):
        self.adapter = adapter
        super().__init__(f"[{adapter}] {message}")


class UnsupportedCategoryError(AdapterError):
    """The adapter does not provide this category. Never retried."""

    def __init__(self, adapter: str, category: Union[Category, str]):
        self.category = Category(category)
        super().__init__(adapter, f"does not support {self.category.value} data")


class TransientError(AdapterError):
    """Network failure, timeout, HTTP 429 or 5xx."""


class ProviderResponseError(AdapterError):
    """Upstream answered, but not with usable data."""


class AdapterFailure(AdapterError):
    """An adapter call failed after exhausting its retries."""

    def __init__(self, adapter: str, category: Union[Category, str], cause: BaseException):
        self.category = Category(category)
        self.cause = cause
        super().__init__(adapter, f"{self.category.value} fetch failed: {cause}")


class RateLimiter:
    """Enforces a minimum spacing between successive requests."""

    def __init__(self, min_interval: float):
        self.min_interval = min_interval
        self._last_request = 0.0
        self.last_request_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Wait until the next request may be sent. Returns seconds waited."""
        async with self._lock:
            waited = 0.0
            elapsed = time.monotonic() - self._last_request
            if elapsed < self.min_interval:
                waited = self.min_interval - elapsed
                await asyncio.sleep(waited)
            self._last_request = time.monotonic()
            self.last_request_at = datetime.now(timezone.utc)
            return waited


@dataclass
class RetryPolicy:
    """Retry with exponential backoff: base delay doubling per attempt, capped."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        name: str = "adapter",
        limiter: Optional[RateLimiter] = None,
        **kwargs: Any,
    ) -> T:
        """Execute ``func`` with rate limiting and retries.

        The final attempt's exception propagates unchanged.
        UnsupportedCategoryError is raised immediately.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                if limiter is not None:
                    waited = await limiter.acquire()
                    if waited > 0:
                        logger.debug(f"[{name}] Rate limiting: waited {waited:.3f}s")
                result = await func(*args, **kwargs)
                logger.debug(f"[{name}] API call successful on attempt {attempt}")
                return result
            except UnsupportedCategoryError:
                raise
            except Exception as e:
                logger.warning(f"[{name}] API call failed on attempt {attempt}/{self.max_attempts}: {e}")
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.info(f"[{name}] Retrying in {delay:.1f}s...")
                await asyncio.sleep(delay)

        # max_attempts < 1
        raise ValueError("RetryPolicy.max_attempts must be at least 1")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value) and not math.isinf(value)


def _candle_fields(item: Union[Candle, Mapping[str, Any]]) -> Optional[Tuple[Any, ...]]:
    if isinstance(item, Candle):
        return (item.time, item.open, item.high, item.low, item.close, item.volume)
    if isinstance(item, Mapping):
        return (
            item.get("time"),
            item.get("open"),
            item.get("high"),
            item.get("low"),
            item.get("close"),
            item.get("volume", 0.0),
        )
    return None


def clean_and_sort(
    data: Optional[Iterable[Union[Candle, Mapping[str, Any]]]],
    max_candles: Optional[int] = None,
) -> List[Candle]:
    """Validate, sort and deduplicate candles.

    Drops records whose time is not a positive number or whose OHLC values
    are not positive numbers, sorts ascending by time, keeps only strictly
    increasing timestamps, and truncates to the most recent ``max_candles``.
    High/low are widened to cover open/close; bad volumes become 0.
    """
    if not data:
        return []

    valid: List[Candle] = []
    for item in data:
        fields = _candle_fields(item)
        if fields is None:
            continue
        ts, o, h, l, c, v = fields
        if not _is_number(ts) or ts <= 0:
            continue
        if not all(_is_number(x) and x > 0 for x in (o, h, l, c)):
            continue
        volume = float(v) if _is_number(v) and v >= 0 else 0.0
        valid.append(Candle(
            time=int(ts),
            open=float(o),
            high=float(max(h, o, c)),
            low=float(min(l, o, c)),
            close=float(c),
            volume=volume,
        ))

    valid.sort(key=lambda candle: candle.time)

    deduplicated: List[Candle] = []
    last_time = -1
    for candle in valid:
        if candle.time > last_time:
            deduplicated.append(candle)
            last_time = candle.time

    if max_candles and len(deduplicated) > max_candles:
        deduplicated = deduplicated[-max_candles:]

    return deduplicated


def build_candles_from_prices(
    points: Iterable[Tuple[int, float, float]],
    timeframe: Timeframe,
) -> List[Candle]:
    """Group (timestamp_seconds, price, volume) points into timeframe candles.

    open is the previous bucket's close (first price for the first bucket),
    close is the last price in the bucket, high/low cover every bucket price
    plus open and close, volume is the bucket sum.
    """
    groups: Dict[int, Tuple[List[float], List[float]]] = {}
    for ts, price, volume in sorted(points, key=lambda p: p[0]):
        bucket = get_timeframe_bucket(ts, timeframe)
        prices, volumes = groups.setdefault(bucket, ([], []))
        prices.append(price)
        volumes.append(volume)

    candles: List[Candle] = []
    previous_close: Optional[float] = None
    for bucket in sorted(groups):
        prices, volumes = groups[bucket]
        if not prices:
            continue
        open_ = previous_close if previous_close is not None else prices[0]
        close = prices[-1]
        candles.append(Candle(
            time=bucket,
            open=open_,
            high=max(max(prices), open_, close),
            low=min(min(prices), open_, close),
            close=close,
            volume=sum(volumes),
        ))
        previous_close = close

    return candles


class BaseAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Provides:
    - One coroutine per category; unimplemented ones raise
      UnsupportedCategoryError
    - Table-driven dispatch via ``fetch(category, ...)``
    - Rate limiting and retry with exponential backoff
    - A lazily created aiohttp session
    """

    name: str = "base"
    display_name: str = "Base"
    SUPPORTED_CATEGORIES: FrozenSet[Category] = frozenset()

    def __init__(
        self,
        settings: Optional[AdapterSettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings or AdapterSettings()
        self.rate_limiter = RateLimiter(self.settings.rate_limit_delay_seconds)
        self.retry_policy = RetryPolicy(
            max_attempts=self.settings.max_retries,
            base_delay=self.settings.base_backoff_seconds,
            max_delay=self.settings.max_backoff_seconds,
        )
        self._session = session
        self._owns_session = session is None

    # Category support
    def supported_categories(self) -> FrozenSet[Category]:
        return self.SUPPORTED_CATEGORIES

    def supports(self, category: Union[Category, str]) -> bool:
        return Category(category) in self.SUPPORTED_CATEGORIES

    async def fetch(self, category: Union[Category, str], *args: Any) -> Any:
        """Dispatch to the coroutine for ``category``."""
        category = Category(category)
        if not self.supports(category):
            raise UnsupportedCategoryError(self.name, category)

        dispatch: Dict[Category, Callable[..., Awaitable[Any]]] = {
            Category.MARKET: self.get_market_data,
            Category.OHLC: self.get_ohlc_data,
            Category.BLOCKCHAIN: self.get_blockchain_data,
            Category.SUPPLY: self.get_supply_data,
            Category.GLOBAL: self.get_global_market_data,
        }
        return await dispatch[category](*args)

    # Category operations
    async def get_market_data(self) -> MarketData:
        raise UnsupportedCategoryError(self.name, Category.MARKET)

    async def get_ohlc_data(self, timeframe: Timeframe) -> List[Candle]:
        raise UnsupportedCategoryError(self.name, Category.OHLC)

    async def get_blockchain_data(self) -> BlockchainData:
        raise UnsupportedCategoryError(self.name, Category.BLOCKCHAIN)

    async def get_supply_data(self) -> SupplyData:
        raise UnsupportedCategoryError(self.name, Category.SUPPLY)

    async def get_global_market_data(self) -> GlobalData:
        raise UnsupportedCategoryError(self.name, Category.GLOBAL)

    # Call plumbing
    async def execute_with_retry(self, api_call: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Run ``api_call`` under this adapter's rate limiter and retry policy."""
        return await self.retry_policy.run(
            api_call, *args, name=self.display_name, limiter=self.rate_limiter
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            )
            self._owns_session = True
        return self._session

    async def _request(self, method: str, url: str, as_text: bool = False, **kwargs: Any) -> Any:
        session = await self._get_session()
        try:
            async with session.request(method, url, **kwargs) as resp:
                if resp.status == 429 or resp.status >= 500:
                    raise TransientError(self.display_name, f"{url} returned {resp.status}")
                if resp.status != 200:
                    raise ProviderResponseError(self.display_name, f"{url} returned {resp.status}")
                if as_text:
                    return await resp.text()
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientError(self.display_name, f"{method} {url} failed: {e!r}") from e

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", url, params=params)

    async def _get_text(self, url: str) -> str:
        return await self._request("GET", url, as_text=True)

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> Any:
        return await self._request(
            "POST", url, json=payload, headers={"Content-Type": "application/json"}
        )

    async def close(self) -> None:
        """Release the HTTP session if this adapter created it."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def get_health_status(self) -> Dict[str, Any]:
        """Static adapter status; live health is tracked by the provider manager."""
        last = self.rate_limiter.last_request_at
        return {
            "name": self.display_name,
            "last_request_time": last.isoformat() if last else None,
            "rate_limit_delay_seconds": self.rate_limiter.min_interval,
            "max_retries": self.retry_policy.max_attempts,
        }
