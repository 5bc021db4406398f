"""Blockstream Esplora adapter: chain tip height."""
import logging

from ...models.market_data import BlockchainData, Category
from .base import BaseAdapter, ProviderResponseError

logger = logging.getLogger(__name__)


class BlockstreamAdapter(BaseAdapter):
    """Blockstream Esplora API. The only source of block height."""

    name = "blockstream"
    display_name = "Blockstream"
    SUPPORTED_CATEGORIES = frozenset({Category.BLOCKCHAIN})

    BASE_URL = "https://blockstream.info/api"

    async def get_blockchain_data(self) -> BlockchainData:
        async def _fetch() -> BlockchainData:
            text = await self._get_text(f"{self.BASE_URL}/blocks/tip/height")
            try:
                height = int(str(text).strip())
            except ValueError:
                raise ProviderResponseError(self.display_name, f"Unexpected block height: {text!r}")
            return BlockchainData(block_height=height)

        return await self.execute_with_retry(_fetch)
