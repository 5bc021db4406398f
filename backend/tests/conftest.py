"""Pytest configuration and fixtures."""

from typing import Any, Dict, Iterable, Optional

import pytest
from httpx import AsyncClient, ASGITransport

from btc_dashboard.main import create_app
from btc_dashboard.models import (
    BlockchainData,
    Candle,
    Category,
    GlobalData,
    GlobalMarketInfo,
    MarketData,
    SupplyData,
    SupplyInfo,
)
from btc_dashboard.services.adapters import BaseAdapter
from btc_dashboard.services.cache import SnapshotCache
from btc_dashboard.services.config import (
    AdapterSettings,
    AppSettings,
    CacheSettings,
    ProviderSettings,
    SchedulerSettings,
)
from btc_dashboard.services.dashboard import DashboardServices
from btc_dashboard.services.provider_manager import ProviderManager


def fast_adapter_settings(max_retries: int = 1) -> AdapterSettings:
    """Adapter settings with no rate limiting or backoff."""
    return AdapterSettings(
        rate_limit_delay_seconds=0.0,
        max_retries=max_retries,
        base_backoff_seconds=0.0,
        max_backoff_seconds=0.0,
        timeout_seconds=1.0,
    )


class FakeAdapter(BaseAdapter):
    """In-memory adapter returning canned responses per category.

    A response may be a value, an exception instance (raised) or a
    callable receiving the call arguments.
    """

    def __init__(self, name: str, categories: Iterable[Category], responses: Optional[Dict[Category, Any]] = None):
        super().__init__(fast_adapter_settings())
        self.name = name
        self.display_name = name
        self.SUPPORTED_CATEGORIES = frozenset(categories)
        self.responses: Dict[Category, Any] = responses or {}
        self.calls = []
        self.closed = False

    async def _respond(self, category: Category, *args: Any) -> Any:
        self.calls.append((category, args))
        response = self.responses.get(category)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(*args)
        return response

    async def get_market_data(self):
        return await self.execute_with_retry(self._respond, Category.MARKET)

    async def get_ohlc_data(self, timeframe):
        return await self.execute_with_retry(self._respond, Category.OHLC, timeframe)

    async def get_blockchain_data(self):
        return await self.execute_with_retry(self._respond, Category.BLOCKCHAIN)

    async def get_supply_data(self):
        return await self.execute_with_retry(self._respond, Category.SUPPLY)

    async def get_global_market_data(self):
        return await self.execute_with_retry(self._respond, Category.GLOBAL)

    async def close(self) -> None:
        self.closed = True


def make_market(price: float = 65000.0) -> MarketData:
    return MarketData(current_price=price, price_change=2.5, volume=3.1e10, market_cap=1.28e12)


def make_candles(count: int = 3, start: int = 1_700_000_100, step: int = 300, base: float = 65000.0):
    return [
        Candle(
            time=start + i * step,
            open=base + i,
            high=base + i + 50,
            low=base + i - 50,
            close=base + i + 10,
            volume=1.5,
        )
        for i in range(count)
    ]


def make_supply(current: float = 19_700_000.0) -> SupplyData:
    return SupplyData(
        total_supply=SupplyInfo(current=current, max=21_000_000.0, percentage=f"{current / 21_000_000 * 100:.2f}")
    )


def make_global(dominance: float = 54.3) -> GlobalData:
    return GlobalData(
        market_dominance=dominance,
        global_market_data=GlobalMarketInfo(
            btc_dominance=dominance,
            total_market_cap=2.4e12,
            total_volume=9.0e10,
            active_cryptocurrencies=10000,
            market_cap_change_percentage=1.2,
        ),
    )


@pytest.fixture
def fake_adapters():
    """One fake per real adapter id, all answering successfully."""
    return {
        "coingecko": FakeAdapter(
            "coingecko",
            [Category.MARKET, Category.OHLC, Category.SUPPLY, Category.GLOBAL],
            {
                Category.MARKET: make_market(65000.0),
                Category.OHLC: lambda tf: make_candles(),
                Category.SUPPLY: make_supply(),
                Category.GLOBAL: make_global(),
            },
        ),
        "coincap": FakeAdapter(
            "coincap",
            [Category.MARKET, Category.SUPPLY],
            {
                Category.MARKET: make_market(65010.0),
                Category.SUPPLY: make_supply(19_700_100.0),
            },
        ),
        "binance": FakeAdapter(
            "binance",
            [Category.MARKET, Category.OHLC],
            {
                Category.MARKET: make_market(65020.0),
                Category.OHLC: lambda tf: make_candles(base=66000.0),
            },
        ),
        "blockstream": FakeAdapter(
            "blockstream",
            [Category.BLOCKCHAIN],
            {Category.BLOCKCHAIN: BlockchainData(block_height=850000)},
        ),
    }


@pytest.fixture
def manager(fake_adapters):
    """Provider manager over the fake adapters with default priorities."""
    return ProviderManager(fake_adapters, ProviderSettings())


@pytest.fixture
def cache():
    return SnapshotCache(CacheSettings())


@pytest.fixture
def app_settings():
    """Settings with no boot stagger or broadcast throttle."""
    return AppSettings(
        scheduler=SchedulerSettings(boot_stagger_seconds=0.0, min_broadcast_interval_seconds=0.0),
        cache=CacheSettings(),
        providers=ProviderSettings(),
    )


@pytest.fixture
def services(app_settings, fake_adapters):
    return DashboardServices(app_settings, fake_adapters)


@pytest.fixture
def app(services):
    return create_app(services=services)


@pytest.fixture(scope="function")
async def client(app):
    """Create test client over the application (lifespan not started)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
