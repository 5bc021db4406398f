"""CoinCap GraphQL adapter: market and supply data."""
import logging
from typing import Any, Dict

from ...models.market_data import (
    BITCOIN_MAX_SUPPLY,
    Category,
    ExtendedSupplyInfo,
    MarketData,
    SupplyData,
    SupplyInfo,
    supply_percentage,
)
from .base import BaseAdapter, ProviderResponseError

logger = logging.getLogger(__name__)


MARKET_QUERY = """{
  assets(first: 10) {
    edges {
      node {
        id
        name
        symbol
        priceUsd
        changePercent24Hr
        volumeUsd24Hr
        marketCapUsd
      }
    }
  }
}"""

SUPPLY_QUERY = """{
  assets(first: 10) {
    edges {
      node {
        id
        name
        symbol
        supply
        rank
      }
    }
  }
}"""


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class CoinCapAdapter(BaseAdapter):
    """CoinCap GraphQL API.

    CoinCap has no historical candles in its GraphQL API and reports only
    circulating supply, so max supply is Bitcoin's fixed cap.
    """

    name = "coincap"
    display_name = "CoinCap"
    SUPPORTED_CATEGORIES = frozenset({Category.MARKET, Category.SUPPLY})

    GRAPHQL_URL = "https://graphql.coincap.io"
    ASSET_ID = "bitcoin"

    async def _find_bitcoin(self, query: str) -> Dict[str, Any]:
        data = await self._post_json(self.GRAPHQL_URL, {"query": query})
        edges = (((data or {}).get("data") or {}).get("assets") or {}).get("edges") or []
        for edge in edges:
            node = (edge or {}).get("node") or {}
            if node.get("id") == self.ASSET_ID:
                return node
        raise ProviderResponseError(self.display_name, "Bitcoin not found in CoinCap assets")

    async def get_market_data(self) -> MarketData:
        async def _fetch() -> MarketData:
            node = await self._find_bitcoin(MARKET_QUERY)
            return MarketData(
                current_price=_to_float(node.get("priceUsd")),
                price_change=_to_float(node.get("changePercent24Hr")),
                volume=_to_float(node.get("volumeUsd24Hr")),
                market_cap=_to_float(node.get("marketCapUsd")),
            )

        return await self.execute_with_retry(_fetch)

    async def get_supply_data(self) -> SupplyData:
        async def _fetch() -> SupplyData:
            node = await self._find_bitcoin(SUPPLY_QUERY)
            current = _to_float(node.get("supply"))
            if current <= 0:
                raise ProviderResponseError(self.display_name, "Supply missing from CoinCap response")
            percentage = supply_percentage(current, BITCOIN_MAX_SUPPLY)

            try:
                rank = int(node.get("rank"))
            except (TypeError, ValueError):
                rank = None

            return SupplyData(
                total_supply=SupplyInfo(current=current, max=BITCOIN_MAX_SUPPLY, percentage=percentage),
                extended_supply_data=ExtendedSupplyInfo(
                    current=current,
                    max=BITCOIN_MAX_SUPPLY,
                    percentage=percentage,
                    circulating_supply=current,
                    market_cap_rank=rank,
                ),
            )

        return await self.execute_with_retry(_fetch)
