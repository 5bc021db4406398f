"""CoinGecko REST adapter: market, OHLC, supply and global data."""
import logging
from typing import Any, List, Optional

from ...models.market_data import (
    Candle,
    Category,
    ExtendedSupplyInfo,
    GlobalData,
    GlobalMarketInfo,
    MarketData,
    SupplyData,
    SupplyInfo,
    supply_percentage,
)
from ...models.timeframes import Timeframe, get_timeframe_config, parse_timeframe
from .base import BaseAdapter, ProviderResponseError, build_candles_from_prices, clean_and_sort

logger = logging.getLogger(__name__)


def _round_or_none(value: Any, digits: int) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return round(float(value), digits)
    return None


class CoinGeckoAdapter(BaseAdapter):
    """CoinGecko public API v3.

    OHLC is derived from ``market_chart`` price points, grouped into
    timeframe buckets; CoinGecko's own OHLC endpoint is too coarse for the
    short timeframes.
    """

    name = "coingecko"
    display_name = "CoinGecko"
    SUPPORTED_CATEGORIES = frozenset({
        Category.MARKET, Category.OHLC, Category.SUPPLY, Category.GLOBAL,
    })

    BASE_URL = "https://api.coingecko.com/api/v3"
    COIN_ID = "bitcoin"

    async def get_market_data(self) -> MarketData:
        async def _fetch() -> MarketData:
            params = {
                "ids": self.COIN_ID,
                "vs_currencies": "usd",
                "include_market_cap": "true",
                "include_24hr_vol": "true",
                "include_24hr_change": "true",
            }
            data = await self._get_json(f"{self.BASE_URL}/simple/price", params=params)
            coin = (data or {}).get(self.COIN_ID)
            if not coin:
                raise ProviderResponseError(self.display_name, "No market data received for Bitcoin")

            return MarketData(
                current_price=float(coin.get("usd") or 0),
                price_change=float(coin.get("usd_24h_change") or 0),
                volume=float(coin.get("usd_24h_vol") or 0),
                market_cap=float(coin.get("usd_market_cap") or 0),
            )

        return await self.execute_with_retry(_fetch)

    async def get_ohlc_data(self, timeframe: Timeframe) -> List[Candle]:
        tf = parse_timeframe(timeframe)
        config = get_timeframe_config(timeframe)

        async def _fetch() -> List[Candle]:
            params = {"vs_currency": "usd", "days": config.coingecko_days}
            data = await self._get_json(
                f"{self.BASE_URL}/coins/{self.COIN_ID}/market_chart", params=params
            )
            prices = (data or {}).get("prices") or []
            volumes = (data or {}).get("total_volumes") or []

            points = []
            for index, entry in enumerate(prices):
                try:
                    ts = int(entry[0] // 1000)
                    price = float(entry[1])
                except (TypeError, ValueError, IndexError):
                    continue
                volume = 0.0
                if index < len(volumes):
                    try:
                        volume = float(volumes[index][1])
                    except (TypeError, ValueError, IndexError):
                        volume = 0.0
                points.append((ts, price, volume))

            candles = build_candles_from_prices(points, tf)
            return clean_and_sort(candles, config.max_candles)

        return await self.execute_with_retry(_fetch)

    async def get_supply_data(self) -> SupplyData:
        async def _fetch() -> SupplyData:
            params = {
                "localization": "false",
                "tickers": "false",
                "market_data": "true",
                "community_data": "false",
                "developer_data": "false",
                "sparkline": "false",
            }
            data = await self._get_json(f"{self.BASE_URL}/coins/{self.COIN_ID}", params=params)
            market = (data or {}).get("market_data")
            if not market:
                raise ProviderResponseError(self.display_name, "No supply data received for Bitcoin")

            total = market.get("total_supply")
            maximum = market.get("max_supply")
            if total is None or maximum is None:
                raise ProviderResponseError(self.display_name, "Supply figures missing from response")
            total = float(total)
            maximum = float(maximum)
            percentage = supply_percentage(total, maximum)

            ath_change = (market.get("ath_change_percentage") or {}).get("usd")
            return SupplyData(
                total_supply=SupplyInfo(current=total, max=maximum, percentage=percentage),
                extended_supply_data=ExtendedSupplyInfo(
                    current=total,
                    max=maximum,
                    percentage=percentage,
                    circulating_supply=market.get("circulating_supply"),
                    ath_price=(market.get("ath") or {}).get("usd"),
                    ath_date=(market.get("ath_date") or {}).get("usd"),
                    atl_price=(market.get("atl") or {}).get("usd"),
                    atl_date=(market.get("atl_date") or {}).get("usd"),
                    price_change_percentage_from_ath=(
                        f"{ath_change:.2f}" if isinstance(ath_change, (int, float)) else None
                    ),
                    market_cap_rank=data.get("market_cap_rank"),
                    liquidity_score=data.get("liquidity_score"),
                ),
            )

        return await self.execute_with_retry(_fetch)

    async def get_global_market_data(self) -> GlobalData:
        async def _fetch() -> GlobalData:
            data = await self._get_json(f"{self.BASE_URL}/global")
            global_data = (data or {}).get("data")
            if not global_data:
                raise ProviderResponseError(self.display_name, "No global market data received")

            dominance = _round_or_none(
                (global_data.get("market_cap_percentage") or {}).get("btc"), 1
            )
            return GlobalData(
                market_dominance=dominance,
                global_market_data=GlobalMarketInfo(
                    btc_dominance=dominance,
                    total_market_cap=float((global_data.get("total_market_cap") or {}).get("usd") or 0),
                    total_volume=float((global_data.get("total_volume") or {}).get("usd") or 0),
                    active_cryptocurrencies=int(global_data.get("active_cryptocurrencies") or 0),
                    market_cap_change_percentage=float(
                        global_data.get("market_cap_change_percentage_24h_usd") or 0
                    ),
                ),
            )

        return await self.execute_with_retry(_fetch)
