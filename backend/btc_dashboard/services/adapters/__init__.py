# Provider Adapters
from enum import Enum
from typing import Dict, Optional

from ..config import DEFAULT_RATE_LIMITS, AdapterSettings
from .base import (
    AdapterError,
    AdapterFailure,
    BaseAdapter,
    ProviderResponseError,
    RateLimiter,
    RetryPolicy,
    TransientError,
    UnsupportedCategoryError,
    build_candles_from_prices,
    clean_and_sort,
)
from .binance import BinanceAdapter
from .blockstream import BlockstreamAdapter
from .coincap import CoinCapAdapter
from .coingecko import CoinGeckoAdapter


class AdapterId(str, Enum):
    """The fixed set of adapter variants."""
    COINGECKO = "coingecko"
    COINCAP = "coincap"
    BINANCE = "binance"
    BLOCKSTREAM = "blockstream"


ADAPTER_CLASSES = {
    AdapterId.COINGECKO: CoinGeckoAdapter,
    AdapterId.COINCAP: CoinCapAdapter,
    AdapterId.BINANCE: BinanceAdapter,
    AdapterId.BLOCKSTREAM: BlockstreamAdapter,
}


def create_adapters(settings: Optional[Dict[str, AdapterSettings]] = None) -> Dict[str, BaseAdapter]:
    """Instantiate every adapter variant, keyed by adapter id."""
    settings = settings or {}
    return {
        adapter_id.value: adapter_class(
            settings.get(adapter_id.value)
            or AdapterSettings(rate_limit_delay_seconds=DEFAULT_RATE_LIMITS[adapter_id.value])
        )
        for adapter_id, adapter_class in ADAPTER_CLASSES.items()
    }


__all__ = [
    # Base
    "AdapterError",
    "AdapterFailure",
    "BaseAdapter",
    "ProviderResponseError",
    "RateLimiter",
    "RetryPolicy",
    "TransientError",
    "UnsupportedCategoryError",
    "build_candles_from_prices",
    "clean_and_sort",
    # Variants
    "AdapterId",
    "ADAPTER_CLASSES",
    "BinanceAdapter",
    "BlockstreamAdapter",
    "CoinCapAdapter",
    "CoinGeckoAdapter",
    "create_adapters",
]
