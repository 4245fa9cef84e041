"""Integration tests for the JSON-RPC gateway client: fallback and errors."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from yield_allocator.config import GatewayConfig
from yield_allocator.rpc import JsonRpcClient, RpcError, RpcVault

SESSION = "yield_allocator.rpc.client.aiohttp.ClientSession"
CONNECTOR = "yield_allocator.rpc.client.aiohttp.TCPConnector"


@pytest.fixture()
def client() -> JsonRpcClient:
    return JsonRpcClient(
        GatewayConfig(
            rpc_endpoints=(
                "https://rpc1.example.com",
                "https://rpc2.example.com",
                "https://rpc3.example.com",
            ),
            rpc_timeout=5,
        )
    )


def _response(data: dict) -> AsyncMock:
    response = AsyncMock()
    response.json = AsyncMock(return_value=data)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


def _mock_session(post: MagicMock) -> AsyncMock:
    session = AsyncMock()
    session.post = post
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)
    return session


class TestCall:
    @pytest.mark.asyncio
    async def test_successful_call(self, client: JsonRpcClient) -> None:
        post = MagicMock(return_value=_response({"jsonrpc": "2.0", "result": "42"}))

        with patch(SESSION, return_value=_mock_session(post)):
            with patch(CONNECTOR):
                result = await client.call("vault_totalAssets", ["0xV"])

        assert result == "42"
        payload = post.call_args.kwargs["json"]
        assert payload["method"] == "vault_totalAssets"
        assert payload["params"] == ["0xV"]

    @pytest.mark.asyncio
    async def test_rpc_error_is_not_retried(self, client: JsonRpcClient) -> None:
        post = MagicMock(
            return_value=_response(
                {"jsonrpc": "2.0", "error": {"code": 3, "message": "reverted"}}
            )
        )

        with patch(SESSION, return_value=_mock_session(post)):
            with patch(CONNECTOR):
                with pytest.raises(RpcError, match="reverted"):
                    await client.call("vault_deposit", [])

        assert post.call_count == 1

    @pytest.mark.asyncio
    async def test_fallback_on_connection_error(self, client: JsonRpcClient) -> None:
        post = MagicMock(
            side_effect=[
                aiohttp.ClientConnectionError("refused"),
                _response({"jsonrpc": "2.0", "result": {"ok": True}}),
            ]
        )

        with patch(SESSION, return_value=_mock_session(post)):
            with patch(CONNECTOR):
                result = await client.call("lending_getAccountData", [])

        assert result == {"ok": True}
        assert client.current_rpc_index == 1
        assert post.call_args_list[1][0][0] == "https://rpc2.example.com"

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self, client: JsonRpcClient) -> None:
        post = MagicMock(side_effect=aiohttp.ClientConnectionError("down"))

        with patch(SESSION, return_value=_mock_session(post)):
            with patch(CONNECTOR):
                with pytest.raises(RuntimeError, match="All RPC endpoints failed"):
                    await client.call("vault_totalAssets", [])

        assert post.call_count == 3

    @pytest.mark.asyncio
    async def test_no_endpoints(self) -> None:
        with pytest.raises(RuntimeError, match="No RPC endpoints"):
            await JsonRpcClient(GatewayConfig()).call("x", [])

    @pytest.mark.asyncio
    async def test_vault_over_gateway(self, client: JsonRpcClient) -> None:
        post = MagicMock(return_value=_response({"jsonrpc": "2.0", "result": "1000000"}))

        with patch(SESSION, return_value=_mock_session(post)):
            with patch(CONNECTOR):
                assert await RpcVault(client, "0xVAULT").max_withdraw("0xME") == 1_000_000
