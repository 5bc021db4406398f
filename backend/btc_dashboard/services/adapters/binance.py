"""Binance adapter (via ccxt): market ticker and klines."""
import logging
from typing import Any, List, Optional

import ccxt.async_support as ccxt

from ...models.market_data import Candle, Category, MarketData
from ...models.timeframes import Timeframe, get_timeframe_config
from ..config import AdapterSettings
from .base import BaseAdapter, ProviderResponseError, clean_and_sort

logger = logging.getLogger(__name__)


class BinanceAdapter(BaseAdapter):
    """Binance public spot API through ccxt.

    Binance reports no market cap; it is published as 0.
    """

    name = "binance"
    display_name = "Binance"
    SUPPORTED_CATEGORIES = frozenset({Category.MARKET, Category.OHLC})

    SYMBOL = "BTC/USDT"

    def __init__(self, settings: Optional[AdapterSettings] = None, exchange: Any = None):
        super().__init__(settings)
        self.exchange = exchange

    def _get_exchange(self) -> Any:
        if self.exchange is None:
            # Spacing is enforced by our own RateLimiter
            self.exchange = ccxt.binance({
                "enableRateLimit": False,
                "timeout": int(self.settings.timeout_seconds * 1000),
                "options": {"defaultType": "spot"},
            })
        return self.exchange

    async def get_market_data(self) -> MarketData:
        async def _fetch() -> MarketData:
            ticker = await self._get_exchange().fetch_ticker(self.SYMBOL)
            if not ticker or ticker.get("last") is None:
                raise ProviderResponseError(self.display_name, "No ticker received for BTC/USDT")

            return MarketData(
                current_price=float(ticker.get("last") or 0),
                price_change=float(ticker.get("percentage") or 0),
                volume=float(ticker.get("baseVolume") or 0),
                market_cap=0.0,
            )

        return await self.execute_with_retry(_fetch)

    async def get_ohlc_data(self, timeframe: Timeframe) -> List[Candle]:
        config = get_timeframe_config(timeframe)

        async def _fetch() -> List[Candle]:
            klines = await self._get_exchange().fetch_ohlcv(
                self.SYMBOL, timeframe=config.binance_interval, limit=config.max_candles
            )

            # [open_time_ms, open, high, low, close, volume]
            candles = []
            for kline in klines or []:
                try:
                    candles.append(Candle(
                        time=int(kline[0] // 1000),
                        open=float(kline[1]),
                        high=float(kline[2]),
                        low=float(kline[3]),
                        close=float(kline[4]),
                        volume=float(kline[5]),
                    ))
                except (TypeError, ValueError, IndexError):
                    continue

            return clean_and_sort(candles, config.max_candles)

        return await self.execute_with_retry(_fetch)

    async def close(self) -> None:
        if self.exchange is not None:
            await self.exchange.close()
            self.exchange = None
        await super().close()
