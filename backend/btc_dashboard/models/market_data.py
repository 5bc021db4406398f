"""Canonical market data shapes.

Adapters normalize every provider payload into these dataclasses. The
snapshot cache publishes them under the camelCase field names the
dashboard frontend consumes, so each shape knows how to render itself
with ``to_dict()``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


# Bitcoin's hard-capped supply, used when a provider omits max supply
BITCOIN_MAX_SUPPLY = 21_000_000.0

# Long-running counters wrap or rescale before losing integer precision
MAX_SAFE_COUNTER = 2 ** 53 - 10000


class Category(str, Enum):
    """Independently fetched and cached data categories."""
    MARKET = "market"
    OHLC = "ohlc"
    BLOCKCHAIN = "blockchain"
    SUPPLY = "supply"
    GLOBAL = "global"


@dataclass
class Candle:
    """OHLC candle. ``time`` is unix seconds at the bucket start."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass
class MarketData:
    """Current price, 24h change (%), 24h volume and market cap."""
    current_price: float
    price_change: float
    volume: float
    market_cap: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentPrice": self.current_price,
            "priceChange": self.price_change,
            "volume": self.volume,
            "marketCap": self.market_cap,
        }


@dataclass
class BlockchainData:
    """Chain tip information."""
    block_height: int

    def to_dict(self) -> Dict[str, Any]:
        return {"blockHeight": self.block_height}


@dataclass
class SupplyInfo:
    """Issued vs. maximum supply. ``percentage`` has two decimals."""
    current: float
    max: float
    percentage: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "max": self.max,
            "percentage": self.percentage,
        }


@dataclass
class ExtendedSupplyInfo:
    """Supply info plus price extremes and ranking, where the provider has them."""
    current: Optional[float] = None
    max: Optional[float] = None
    percentage: Optional[str] = None
    circulating_supply: Optional[float] = None
    ath_price: Optional[float] = None
    ath_date: Optional[str] = None
    atl_price: Optional[float] = None
    atl_date: Optional[str] = None
    price_change_percentage_from_ath: Optional[str] = None
    market_cap_rank: Optional[int] = None
    liquidity_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "max": self.max,
            "percentage": self.percentage,
            "circulatingSupply": self.circulating_supply,
            "athPrice": self.ath_price,
            "athDate": self.ath_date,
            "atlPrice": self.atl_price,
            "atlDate": self.atl_date,
            "priceChangePercentageFromAth": self.price_change_percentage_from_ath,
            "marketCapRank": self.market_cap_rank,
            "liquidityScore": self.liquidity_score,
        }


@dataclass
class SupplyData:
    """Result of a supply fetch."""
    total_supply: SupplyInfo
    extended_supply_data: Optional[ExtendedSupplyInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"totalSupply": self.total_supply.to_dict()}
        if self.extended_supply_data is not None:
            result["extendedSupplyData"] = self.extended_supply_data.to_dict()
        return result


@dataclass
class GlobalMarketInfo:
    """Whole-market aggregates."""
    btc_dominance: Optional[float]
    total_market_cap: float
    total_volume: float
    active_cryptocurrencies: int
    market_cap_change_percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "btcDominance": self.btc_dominance,
            "totalMarketCap": self.total_market_cap,
            "totalVolume": self.total_volume,
            "activeCryptocurrencies": self.active_cryptocurrencies,
            "marketCapChangePercentage": self.market_cap_change_percentage,
        }


@dataclass
class GlobalData:
    """Result of a global market fetch.

    ``market_dominance`` mirrors ``global_market_data.btc_dominance`` as a
    top-level field for older clients.
    """
    market_dominance: Optional[float]
    global_market_data: GlobalMarketInfo

    def to_dict(self) -> Dict[str, Any]:
        return {
            "marketDominance": self.market_dominance,
            "globalMarketData": self.global_market_data.to_dict(),
        }


@dataclass
class FetchResult:
    """Normalized data together with the adapter that produced it."""
    data: Any
    source: str


def supply_percentage(current: float, maximum: float) -> Optional[str]:
    """Format current/max as a percentage string with two decimals."""
    if not maximum:
        return None
    return f"{(current / maximum) * 100:.2f}"


# Published cache fields touched by each category
FIELD_MAPPINGS: Dict[Category, List[str]] = {
    Category.MARKET: ["currentPrice", "priceChange", "volume", "marketCap"],
    Category.OHLC: ["ohlcData"],
    Category.BLOCKCHAIN: ["blockHeight"],
    Category.SUPPLY: ["totalSupply", "extendedSupplyData"],
    Category.GLOBAL: ["marketDominance", "globalMarketData"],
}
