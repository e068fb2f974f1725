"""EVM JSON-RPC client with fallback support."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig
from ...errors import ChainUnavailable

logger = logging.getLogger(__name__)


def to_block_tag(block_id: int | str) -> str:
    """Render a block identifier the way JSON-RPC expects it."""
    if isinstance(block_id, int):
        return hex(block_id)
    return block_id


class EvmClient:
    """EVM blockchain RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        if not self.endpoints:
            raise ChainUnavailable("No RPC endpoints configured")

        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RuntimeError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed on %s: %s", rpc_url, method, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise ChainUnavailable(
            f"All RPC endpoints failed for {method}. Last error: {last_error}"
        ) from last_error

    async def get_block_number(self) -> int:
        """Current chain head."""
        result = await self.rpc_call("eth_blockNumber", [])
        return int(result, 16)

    async def get_block(self, block_id: int | str) -> dict[str, Any] | None:
        """Block header (without transactions), or None when it does not exist."""
        return await self.rpc_call(
            "eth_getBlockByNumber", [to_block_tag(block_id), False]
        )

    async def call(self, to: str, data: bytes, block_number: int) -> bytes:
        """Execute a read-only contract call pinned to ``block_number``."""
        result = await self.rpc_call(
            "eth_call",
            [{"to": to, "data": "0x" + data.hex()}, to_block_tag(block_number)],
        )
        if not isinstance(result, str):
            raise ChainUnavailable(f"Unexpected eth_call result: {result!r}")
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)
