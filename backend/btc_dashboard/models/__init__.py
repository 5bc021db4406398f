# Data Models

from .market_data import (
    BITCOIN_MAX_SUPPLY,
    FIELD_MAPPINGS,
    MAX_SAFE_COUNTER,
    BlockchainData,
    Candle,
    Category,
    ExtendedSupplyInfo,
    FetchResult,
    GlobalData,
    GlobalMarketInfo,
    MarketData,
    SupplyData,
    SupplyInfo,
    supply_percentage,
)
from .timeframes import (
    DEFAULT_TIMEFRAME,
    TIMEFRAME_CONFIG,
    TIMEFRAMES,
    Timeframe,
    TimeframeConfig,
    get_next_timeframe,
    get_timeframe_bucket,
    get_timeframe_config,
    is_valid_timeframe,
    parse_timeframe,
)

__all__ = [
    "BITCOIN_MAX_SUPPLY",
    "FIELD_MAPPINGS",
    "MAX_SAFE_COUNTER",
    "BlockchainData",
    "Candle",
    "Category",
    "ExtendedSupplyInfo",
    "FetchResult",
    "GlobalData",
    "GlobalMarketInfo",
    "MarketData",
    "SupplyData",
    "SupplyInfo",
    "supply_percentage",
    "DEFAULT_TIMEFRAME",
    "TIMEFRAME_CONFIG",
    "TIMEFRAMES",
    "Timeframe",
    "TimeframeConfig",
    "get_next_timeframe",
    "get_timeframe_bucket",
    "get_timeframe_config",
    "is_valid_timeframe",
    "parse_timeframe",
]
