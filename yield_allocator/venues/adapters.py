"""Allocation targets: plain vaults and the leveraged lending position."""
from __future__ import annotations

import logging

from ..core.calc import mul_div_up
from ..core.leverage import LeverageController
from ..interfaces.vault import Vault
from ..models import MAX_UINT256, WAD

logger = logging.getLogger(__name__)


class VaultVenue:
    """Holds units of one ERC-4626 style vault on behalf of ``account``."""

    def __init__(self, name: str, vault: Vault, account: str) -> None:
        self._name = name
        self._vault = vault
        self._account = account

    @property
    def name(self) -> str:
        return self._name

    async def deposit(self, amount: int) -> int:
        return await self._vault.deposit(amount, self._account)

    async def withdraw(self, amount: int) -> tuple[int, int]:
        burned = await self._vault.withdraw(amount, self._account, self._account)
        return burned, amount

    async def redeem(self, units: int) -> int:
        return await self._vault.redeem(units, self._account, self._account)

    async def convert_to_assets(self, units: int) -> int:
        return await self._vault.convert_to_assets(units)

    async def max_deposit(self) -> int:
        return await self._vault.max_deposit(self._account)

    async def max_withdraw(self, units: int) -> int:
        owned = await self._vault.convert_to_assets(units)
        return min(owned, await self._vault.max_withdraw(self._account))

    async def exchange_rate(self) -> int:
        return await self._vault.convert_to_assets(WAD)


class LeveragedVenue:
    """Presents a ``LeverageController`` position as a vault.

    Units are internal bookkeeping over the controller's net value
    (collateral - debt + idle), so the exchange rate carries supply yield
    net of borrow cost, amplified by leverage.
    """

    def __init__(self, name: str, controller: LeverageController) -> None:
        self._name = name
        self._controller = controller
        self.total_units = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def controller(self) -> LeverageController:
        return self._controller

    async def deposit(self, amount: int) -> int:
        net_before = await self._controller.net_value()
        await self._controller.deploy(amount)
        if self.total_units == 0 or net_before <= 0:
            units = amount
        else:
            units = amount * self.total_units // net_before
        self.total_units += units
        return units

    async def withdraw(self, amount: int) -> tuple[int, int]:
        net = await self._controller.net_value()
        units = min(self.total_units, mul_div_up(amount, self.total_units, max(net, 1)))
        received = await self._controller.free(amount)
        self.total_units -= units
        return units, received

    async def redeem(self, units: int) -> int:
        units = min(units, self.total_units)
        if units == self.total_units:
            amount = await self._controller.net_value()
        else:
            amount = await self.convert_to_assets(units)
        received = await self._controller.free(amount)
        self.total_units -= units
        return received

    async def convert_to_assets(self, units: int) -> int:
        if self.total_units == 0:
            return 0
        return units * await self._controller.net_value() // self.total_units

    async def max_deposit(self) -> int:
        return MAX_UINT256

    async def max_withdraw(self, units: int) -> int:
        owned = await self.convert_to_assets(units)
        return min(owned, await self._controller.max_withdrawable())

    async def exchange_rate(self) -> int:
        if self.total_units == 0:
            return WAD
        return await self._controller.net_value() * WAD // self.total_units
