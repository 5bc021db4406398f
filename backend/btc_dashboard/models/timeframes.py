"""Candle timeframe configuration.

All timeframe-related constants live here: bucket widths, per-provider
request parameters, and the fixed rotation order used by the scheduler.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union


class Timeframe(str, Enum):
    """Supported candle timeframes, in rotation order."""
    M5 = "5M"
    H1 = "1H"
    H4 = "4H"
    D1 = "1D"
    W1 = "1W"


@dataclass(frozen=True)
class TimeframeConfig:
    """Static configuration for a single timeframe."""
    label: str
    interval_seconds: int
    max_candles: int
    coingecko_days: float
    binance_interval: str


# Ordered list used for rotation
TIMEFRAMES = [Timeframe.M5, Timeframe.H1, Timeframe.H4, Timeframe.D1, Timeframe.W1]

DEFAULT_TIMEFRAME = Timeframe.M5

TIMEFRAME_CONFIG: Dict[Timeframe, TimeframeConfig] = {
    # CoinGecko market_chart returns raw price points; "days" is chosen so
    # grouping yields at least max_candles buckets at that granularity.
    Timeframe.M5: TimeframeConfig(
        label="5 Minutes",
        interval_seconds=300,
        max_candles=50,
        coingecko_days=0.5,
        binance_interval="5m",
    ),
    Timeframe.H1: TimeframeConfig(
        label="1 Hour",
        interval_seconds=3600,
        max_candles=50,
        coingecko_days=3,
        binance_interval="1h",
    ),
    Timeframe.H4: TimeframeConfig(
        label="4 Hours",
        interval_seconds=14400,
        max_candles=50,
        coingecko_days=10,
        binance_interval="4h",
    ),
    Timeframe.D1: TimeframeConfig(
        label="1 Day",
        interval_seconds=86400,
        max_candles=50,
        coingecko_days=60,
        binance_interval="1d",
    ),
    Timeframe.W1: TimeframeConfig(
        label="1 Week",
        interval_seconds=604800,
        max_candles=50,
        coingecko_days=365,
        binance_interval="1w",
    ),
}


def parse_timeframe(value: Union[str, Timeframe]) -> Optional[Timeframe]:
    """Return the Timeframe for a value such as "1H" or "1h", or None."""
    if isinstance(value, Timeframe):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Timeframe(value.upper())
    except ValueError:
        return None


def is_valid_timeframe(value: Union[str, Timeframe]) -> bool:
    return parse_timeframe(value) is not None


def get_timeframe_config(timeframe: Union[str, Timeframe]) -> TimeframeConfig:
    """Get the configuration for a timeframe.

    Raises:
        ValueError: If the timeframe is unknown.
    """
    tf = parse_timeframe(timeframe)
    if tf is None:
        raise ValueError(f"Invalid timeframe: {timeframe}")
    return TIMEFRAME_CONFIG[tf]


def get_timeframe_bucket(timestamp: int, timeframe: Union[str, Timeframe]) -> int:
    """Floor a unix timestamp (seconds) to the start of its timeframe bucket."""
    interval = get_timeframe_config(timeframe).interval_seconds
    return (int(timestamp) // interval) * interval


def get_next_timeframe(current: Union[str, Timeframe, None]) -> Timeframe:
    """Get the next timeframe in the fixed cyclic order.

    Unknown values rotate back to the default timeframe.
    """
    tf = parse_timeframe(current) if current is not None else None
    if tf is None:
        return DEFAULT_TIMEFRAME
    index = TIMEFRAMES.index(tf)
    return TIMEFRAMES[(index + 1) % len(TIMEFRAMES)]
