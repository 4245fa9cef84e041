"""Lending pool and vault venues reached through the JSON-RPC gateway.

Amounts travel as decimal strings so 256-bit values survive JSON.
"""
from __future__ import annotations

import logging
from typing import Any

from ..errors import VenueError
from ..models import AccountData
from .client import JsonRpcClient, RpcError

logger = logging.getLogger(__name__)


def _reason(error: RpcError) -> str:
    if isinstance(error.data, dict):
        return str(error.data.get("reason", ""))
    return ""


def parse_account_data(raw: dict[str, Any]) -> AccountData:
    """Parse a ``lending_getAccountData`` result."""
    return AccountData(
        total_collateral=int(raw.get("totalCollateral", 0)),
        total_debt=int(raw.get("totalDebt", 0)),
        available_borrow=int(raw.get("availableBorrows", 0)),
        liquidation_threshold_bps=int(raw.get("currentLiquidationThreshold", 0)),
        ltv_bps=int(raw.get("ltv", 0)),
        health_factor=int(raw.get("healthFactor", 0)),
    )


class _GatewayVenue:
    def __init__(self, client: JsonRpcClient, address: str) -> None:
        self._client = client
        self.address = address

    async def _call(self, method: str, *params: Any) -> Any:
        try:
            return await self._client.call(method, [self.address, *params])
        except RpcError as e:
            raise VenueError(f"{method} rejected: {e}", reason=_reason(e)) from e
        except RuntimeError as e:
            raise VenueError(f"{method} failed: {e}", reason="gateway") from e

    async def _call_int(self, method: str, *params: Any) -> int:
        return int(await self._call(method, *params))


class RpcLendingPool(_GatewayVenue):
    """``LendingPool`` over gateway methods ``lending_*``."""

    async def supply(self, amount: int, on_behalf_of: str) -> None:
        await self._call("lending_supply", str(amount), on_behalf_of)

    async def withdraw(self, amount: int, to: str) -> int:
        return await self._call_int("lending_withdraw", str(amount), to)

    async def borrow(self, amount: int, rate_mode: int, on_behalf_of: str) -> None:
        await self._call("lending_borrow", str(amount), rate_mode, on_behalf_of)

    async def repay(self, amount: int, rate_mode: int, on_behalf_of: str) -> int:
        return await self._call_int("lending_repay", str(amount), rate_mode, on_behalf_of)

    async def get_account_data(self, account: str) -> AccountData:
        raw = await self._call("lending_getAccountData", account)
        if not isinstance(raw, dict):
            raise VenueError("Malformed account data", reason="gateway")
        return parse_account_data(raw)

    async def available_liquidity(self) -> int:
        return await self._call_int("lending_availableLiquidity")


class RpcVault(_GatewayVenue):
    """``Vault`` over gateway methods ``vault_*``."""

    async def deposit(self, amount: int, receiver: str) -> int:
        return await self._call_int("vault_deposit", str(amount), receiver)

    async def withdraw(self, amount: int, receiver: str, owner: str) -> int:
        return await self._call_int("vault_withdraw", str(amount), receiver, owner)

    async def redeem(self, units: int, receiver: str, owner: str) -> int:
        return await self._call_int("vault_redeem", str(units), receiver, owner)

    async def convert_to_assets(self, units: int) -> int:
        return await self._call_int("vault_convertToAssets", str(units))

    async def max_deposit(self, receiver: str) -> int:
        return await self._call_int("vault_maxDeposit", receiver)

    async def max_withdraw(self, owner: str) -> int:
        return await self._call_int("vault_maxWithdraw", owner)

    async def total_assets(self) -> int:
        return await self._call_int("vault_totalAssets")
