"""JSON-RPC gateway client with endpoint fallback."""
import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import GatewayConfig

logger = logging.getLogger(__name__)


class RpcError(RuntimeError):
    """The gateway answered with a JSON-RPC error object."""

    def __init__(self, error: Any) -> None:
        if isinstance(error, dict):
            message = error.get("message", str(error))
            self.code = error.get("code")
            self.data = error.get("data")
        else:
            message = str(error)
            self.code = None
            self.data = None
        super().__init__(f"RPC Error: {message}")


class JsonRpcClient:
    """Venue gateway client; rotates to the next endpoint when one fails.

    A JSON-RPC error object is a definitive answer from the gateway (the
    venue rejected the call) and is raised immediately as ``RpcError``.
    """

    def __init__(self, config: GatewayConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0
        self._request_id = 0

    async def call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        if not self.endpoints:
            raise RuntimeError("No RPC endpoints configured")

        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

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
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            if "error" in result:
                raise RpcError(result["error"])
            return result.get("result")

        raise RuntimeError(f"All RPC endpoints failed. Last error: {last_error}")
