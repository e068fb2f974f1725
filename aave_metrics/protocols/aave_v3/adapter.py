"""Aave V3 market reader: resolves the pool registry and pulls reserve data."""
from __future__ import annotations

import logging
from typing import Any

from eth_abi import encode
from web3 import Web3

from ...config import NetworkConfig, ProtocolConfig
from ...errors import BlockNotFound, ChainUnavailable
from ...interfaces.chain import ChainClient
from ...models import BlockId, RawMarketData
from . import abi, parser

logger = logging.getLogger(__name__)


def validate_block_id(block_id: BlockId) -> BlockId:
    """Accept "latest" or a non-negative integer block number."""
    if block_id == "latest":
        return block_id
    if isinstance(block_id, bool) or not isinstance(block_id, int) or block_id < 0:
        raise ValueError(f"Invalid block identifier: {block_id!r}")
    return block_id


class AaveV3Reader:
    """Read one block's worth of Aave V3 market state."""

    def __init__(
        self,
        chain_client: ChainClient,
        config: ProtocolConfig,
        network: NetworkConfig,
    ) -> None:
        self._client = chain_client
        self._config = config
        self._network = network
        self._provider = Web3.to_checksum_address(config.addresses_provider)
        self._ui_pool = Web3.to_checksum_address(config.ui_pool_data_provider)
        self._ui_incentives = Web3.to_checksum_address(
            config.ui_incentive_data_provider
        )

    async def latest_block_number(self) -> int:
        return await self._client.get_block_number()

    async def _resolve_block(self, block_id: BlockId) -> tuple[int, int]:
        """Pin ``block_id`` to a concrete (number, timestamp) pair."""
        block = await self._client.get_block(block_id)
        if not block:
            raise BlockNotFound(block_id)
        return int(block["number"], 16), int(block["timestamp"], 16)

    async def _call(self, to: str, signature: str, block_number: int, *args: Any) -> bytes:
        data = abi.selector(signature)
        if args:
            data += encode(["address"] * len(args), list(args))
        result = await self._client.call(to, data, block_number)
        if not result:
            raise ChainUnavailable(
                f"Empty result for {signature} on {to} at block {block_number}"
            )
        return result

    async def _get_reserves_list(self, block_number: int) -> list[str]:
        pool = parser.decode_address(
            await self._call(self._provider, abi.GET_POOL, block_number)
        )
        logger.debug("Aave pool address: %s", pool)
        reserves_list = parser.decode_address_list(
            await self._call(pool, abi.GET_RESERVES_LIST, block_number)
        )
        logger.info("Found %d reserves at block %d", len(reserves_list), block_number)
        return reserves_list

    async def fetch(self, block_id: BlockId = "latest") -> RawMarketData:
        """Fetch humanized reserve and incentive data for a single block.

        Every contract call is pinned to the resolved block number so that
        reserves and incentives describe the same state.
        """
        validate_block_id(block_id)
        block_number, timestamp = await self._resolve_block(block_id)
        logger.info("Processing %s block %d", self._network.name, block_number)

        reserves_list = await self._get_reserves_list(block_number)

        reserves_raw, base_currency = parser.decode_reserves_data(
            await self._call(
                self._ui_pool, abi.GET_RESERVES_DATA, block_number, self._provider
            )
        )
        incentives = parser.decode_incentives_data(
            await self._call(
                self._ui_incentives,
                abi.GET_RESERVES_INCENTIVES_DATA,
                block_number,
                self._provider,
            )
        )

        reserves = parser.order_by_reserves_list(
            [parser.humanize_reserve(r, timestamp) for r in reserves_raw],
            reserves_list,
        )
        if len(reserves) != len(reserves_raw):
            logger.warning(
                "Dropped %d reserves not listed by the pool",
                len(reserves_raw) - len(reserves),
            )

        return RawMarketData(
            network=self._network.name,
            chain_id=self._network.chain_id,
            block_number=block_number,
            timestamp=timestamp,
            market_reference_currency_unit=int(
                base_currency["marketReferenceCurrencyUnit"]
            ),
            market_reference_price_usd=int(
                base_currency["marketReferenceCurrencyPriceInUsd"]
            ),
            reserves=tuple(reserves),
            incentives=tuple(incentives),
        )
