"""Integration tests for the EVM client: RPC fallback and error handling."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from aave_metrics.chains.evm.client import EvmClient, to_block_tag
from aave_metrics.config import ChainConfig
from aave_metrics.errors import ChainUnavailable

SESSION = "aave_metrics.chains.evm.client.aiohttp.ClientSession"
CONNECTOR = "aave_metrics.chains.evm.client.aiohttp.TCPConnector"


@pytest.fixture()
def client() -> EvmClient:
    return EvmClient(
        ChainConfig(
            rpc_endpoints=(
                "https://rpc1.example.com",
                "https://rpc2.example.com",
                "https://rpc3.example.com",
            ),
            rpc_timeout=5,
        )
    )


def _mock_session(response_data: dict | None = None, error: Exception | None = None):
    """Create a mock aiohttp session that returns given data or raises error."""
    mock_response = AsyncMock()
    if error:
        mock_response.json = AsyncMock(side_effect=error)
    else:
        mock_response.json = AsyncMock(return_value=response_data or {})
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)

    mock_session = AsyncMock()
    if error:
        mock_session.post = MagicMock(side_effect=error)
    else:
        mock_session.post = MagicMock(return_value=mock_response)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)

    return mock_session


class TestBlockTag:
    def test_int_is_hex(self) -> None:
        assert to_block_tag(27_000_000) == "0x19bfcc0"

    def test_latest_passthrough(self) -> None:
        assert to_block_tag("latest") == "latest"


class TestRpcCall:
    @pytest.mark.asyncio
    async def test_successful_call(self, client: EvmClient) -> None:
        mock_session = _mock_session({"jsonrpc": "2.0", "result": "0x1"})

        with patch(SESSION, return_value=mock_session):
            with patch(CONNECTOR):
                result = await client.rpc_call("eth_chainId", [])

        assert result == "0x1"
        payload = mock_session.post.call_args.kwargs["json"]
        assert payload["method"] == "eth_chainId"

    @pytest.mark.asyncio
    async def test_rpc_error_raises(self, client: EvmClient) -> None:
        mock_session = _mock_session(
            {"jsonrpc": "2.0", "error": {"code": -32000, "message": "bad"}}
        )

        with patch(SESSION, return_value=mock_session):
            with patch(CONNECTOR):
                with pytest.raises(ChainUnavailable, match="All RPC endpoints failed"):
                    await client.rpc_call("eth_call", [])

    @pytest.mark.asyncio
    async def test_fallback_on_connection_error(self, client: EvmClient) -> None:
        """When first endpoint fails, should try the next one."""
        call_count = 0

        success_response = AsyncMock()
        success_response.json = AsyncMock(
            return_value={"jsonrpc": "2.0", "result": "0x10"}
        )
        success_response.__aenter__ = AsyncMock(return_value=success_response)
        success_response.__aexit__ = AsyncMock(return_value=None)

        def side_effect(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                raise ConnectionError("first endpoint down")
            return success_response

        mock_session = AsyncMock()
        mock_session.post = MagicMock(side_effect=side_effect)
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=None)

        with patch(SESSION, return_value=mock_session):
            with patch(CONNECTOR):
                result = await client.rpc_call("eth_blockNumber", [])

        assert result == "0x10"
        assert client.current_rpc_index == 1

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self, client: EvmClient) -> None:
        mock_session = _mock_session(error=ConnectionError("down"))

        with patch(SESSION, return_value=mock_session):
            with patch(CONNECTOR):
                with pytest.raises(ChainUnavailable, match="All RPC endpoints failed"):
                    await client.rpc_call("eth_blockNumber", [])
        assert mock_session.post.call_count == 3

    @pytest.mark.asyncio
    async def test_no_endpoints(self) -> None:
        with pytest.raises(ChainUnavailable, match="No RPC endpoints"):
            await EvmClient(ChainConfig()).rpc_call("eth_blockNumber", [])


class TestHelpers:
    @pytest.mark.asyncio
    async def test_get_block_number(self, client: EvmClient) -> None:
        client.rpc_call = AsyncMock(return_value="0x64")
        assert await client.get_block_number() == 100
        client.rpc_call.assert_awaited_once_with("eth_blockNumber", [])

    @pytest.mark.asyncio
    async def test_get_block_pins_number(self, client: EvmClient) -> None:
        client.rpc_call = AsyncMock(return_value={"number": "0x64"})
        assert await client.get_block(100) == {"number": "0x64"}
        client.rpc_call.assert_awaited_once_with("eth_getBlockByNumber", ["0x64", False])

    @pytest.mark.asyncio
    async def test_get_block_missing(self, client: EvmClient) -> None:
        client.rpc_call = AsyncMock(return_value=None)
        assert await client.get_block(10**9) is None

    @pytest.mark.asyncio
    async def test_call_decodes_hex(self, client: EvmClient) -> None:
        client.rpc_call = AsyncMock(return_value="0x00ff")
        result = await client.call("0xabc", b"\x12\x34", 100)
        assert result == b"\x00\xff"
        client.rpc_call.assert_awaited_once_with(
            "eth_call", [{"to": "0xabc", "data": "0x1234"}, "0x64"]
        )

    @pytest.mark.asyncio
    async def test_call_unexpected_result(self, client: EvmClient) -> None:
        client.rpc_call = AsyncMock(return_value=None)
        with pytest.raises(ChainUnavailable, match="Unexpected eth_call result"):
            await client.call("0xabc", b"", 100)
