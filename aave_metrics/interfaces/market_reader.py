"""Market reader protocol: one block of raw lending market state."""
from typing import Protocol

from ..models import BlockId, RawMarketData


class MarketReader(Protocol):
    """Abstract interface for reading a lending market at a given block."""

    async def latest_block_number(self) -> int: ...

    async def fetch(self, block_id: BlockId = "latest") -> RawMarketData: ...
