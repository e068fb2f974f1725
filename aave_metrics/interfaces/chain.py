"""Chain client protocol: blockchain RPC abstraction."""
from typing import Any, Protocol


class ChainClient(Protocol):
    """Abstract interface for EVM JSON-RPC interactions."""

    async def get_block_number(self) -> int: ...

    async def get_block(self, block_id: int | str) -> dict[str, Any] | None: ...

    async def call(self, to: str, data: bytes, block_number: int) -> bytes: ...
