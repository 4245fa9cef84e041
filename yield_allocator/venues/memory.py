"""In-memory lending pool and vault — integer-exact simulated venues.

Used by the ``simulate`` command and the test suite. Both follow the same
rejection rules as their on-chain counterparts and raise ``VenueError``.
"""
from __future__ import annotations

import logging

from ..core.calc import SECONDS_PER_YEAR, calc_health_factor, mul_div_up
from ..errors import VenueError
from ..models import BPS, MAX_UINT256, WAD, AccountData

logger = logging.getLogger(__name__)


def _interest(balance: int, apy: float, seconds: float) -> int:
    return int(balance * apy * seconds / SECONDS_PER_YEAR)


class InMemoryLendingPool:
    """Single-asset Aave-style pool with per-account collateral and debt."""

    def __init__(
        self,
        ltv_bps: int = 8000,
        liquidation_threshold_bps: int = 8500,
        cash: int = 0,
        supply_apy: float = 0.0,
        borrow_apy: float = 0.0,
    ) -> None:
        self.ltv_bps = ltv_bps
        self.liquidation_threshold_bps = liquidation_threshold_bps
        self.cash = cash
        self.supply_apy = supply_apy
        self.borrow_apy = borrow_apy
        self.paused = False
        self._collateral: dict[str, int] = {}
        self._debt: dict[str, int] = {}

    def _check_active(self) -> None:
        if self.paused:
            raise VenueError("Lending pool is paused", reason="paused")

    def collateral_of(self, account: str) -> int:
        return self._collateral.get(account, 0)

    def debt_of(self, account: str) -> int:
        return self._debt.get(account, 0)

    def set_position(self, account: str, collateral: int, debt: int) -> None:
        """Force a position, e.g. to simulate a price shock in tests."""
        self._collateral[account] = collateral
        self._debt[account] = debt

    def accrue(self, seconds: float) -> None:
        """Grow every collateral and debt balance by its rate.

        Supply interest is treated as paid in by outside borrowers, so it
        arrives as cash.
        """
        for account, balance in self._collateral.items():
            earned = _interest(balance, self.supply_apy, seconds)
            self._collateral[account] = balance + earned
            self.cash += earned
        for account, balance in self._debt.items():
            self._debt[account] = balance + _interest(balance, self.borrow_apy, seconds)

    async def supply(self, amount: int, on_behalf_of: str) -> None:
        self._check_active()
        if amount <= 0:
            raise VenueError("Supply amount must be positive", reason="amount")
        self._collateral[on_behalf_of] = self.collateral_of(on_behalf_of) + amount
        self.cash += amount

    async def withdraw(self, amount: int, to: str) -> int:
        self._check_active()
        collateral = self.collateral_of(to)
        if amount == MAX_UINT256:
            amount = collateral
        if amount > collateral:
            raise VenueError("Withdraw exceeds collateral", reason="balance")
        if amount > self.cash:
            raise VenueError("Not enough pool liquidity", reason="liquidity")

        debt = self.debt_of(to)
        if debt and calc_health_factor(
            collateral - amount, debt, self.liquidation_threshold_bps
        ) < WAD:
            raise VenueError("Withdraw would make position liquidatable", reason="health")

        self._collateral[to] = collateral - amount
        self.cash -= amount
        return amount

    async def borrow(self, amount: int, rate_mode: int, on_behalf_of: str) -> None:
        self._check_active()
        if amount <= 0:
            raise VenueError("Borrow amount must be positive", reason="amount")
        if amount > self.cash:
            raise VenueError("Not enough pool liquidity", reason="liquidity")
        collateral = self.collateral_of(on_behalf_of)
        debt = self.debt_of(on_behalf_of)
        if debt + amount > collateral * self.ltv_bps // BPS:
            raise VenueError("Borrow exceeds loan-to-value", reason="ltv")
        self._debt[on_behalf_of] = debt + amount
        self.cash -= amount

    async def repay(self, amount: int, rate_mode: int, on_behalf_of: str) -> int:
        self._check_active()
        debt = self.debt_of(on_behalf_of)
        actual = min(amount, debt)
        self._debt[on_behalf_of] = debt - actual
        self.cash += actual
        return actual

    async def get_account_data(self, account: str) -> AccountData:
        collateral = self.collateral_of(account)
        debt = self.debt_of(account)
        return AccountData(
            total_collateral=collateral,
            total_debt=debt,
            available_borrow=max(0, collateral * self.ltv_bps // BPS - debt),
            liquidation_threshold_bps=self.liquidation_threshold_bps,
            ltv_bps=self.ltv_bps,
            health_factor=calc_health_factor(
                collateral, debt, self.liquidation_threshold_bps
            ),
        )

    async def available_liquidity(self) -> int:
        return 0 if self.paused else self.cash


class InMemoryVault:
    """ERC-4626 style vault with optional deposit cap and liquidity limit.

    ``liquidity`` of ``None`` means withdrawals are never liquidity-bound.
    ``initial_assets`` seeds the vault with third-party deposits.
    """

    SEED_OWNER = "0xSEED"

    def __init__(
        self,
        deposit_cap: int | None = None,
        liquidity: int | None = None,
        apy: float = 0.0,
        initial_assets: int = 0,
    ) -> None:
        self.deposit_cap = deposit_cap
        self.liquidity = liquidity
        self.apy = apy
        self.paused = False
        self.total_units = 0
        self._total_assets = 0
        self._balances: dict[str, int] = {}
        if initial_assets:
            self._mint(self.SEED_OWNER, initial_assets, initial_assets)

    def _check_active(self) -> None:
        if self.paused:
            raise VenueError("Vault is paused", reason="paused")

    def _mint(self, owner: str, units: int, assets: int) -> None:
        self._balances[owner] = self._balances.get(owner, 0) + units
        self.total_units += units
        self._total_assets += assets
        if self.liquidity is not None:
            self.liquidity += assets

    def _burn(self, owner: str, units: int, assets: int) -> None:
        balance = self._balances.get(owner, 0)
        if units > balance:
            raise VenueError("Burn exceeds unit balance", reason="balance")
        if self.liquidity is not None and assets > self.liquidity:
            raise VenueError("Not enough vault liquidity", reason="liquidity")
        self._balances[owner] = balance - units
        self.total_units -= units
        self._total_assets -= assets
        if self.liquidity is not None:
            self.liquidity -= assets

    def balance_of(self, owner: str) -> int:
        return self._balances.get(owner, 0)

    def add_yield(self, amount: int) -> None:
        """Raise the exchange rate by crediting ``amount`` to total assets."""
        self._total_assets += amount
        if self.liquidity is not None:
            self.liquidity += amount

    def accrue(self, seconds: float) -> None:
        self.add_yield(_interest(self._total_assets, self.apy, seconds))

    def _to_units(self, assets: int, round_up: bool = False) -> int:
        if self.total_units == 0 or self._total_assets == 0:
            return assets
        if round_up:
            return mul_div_up(assets, self.total_units, self._total_assets)
        return assets * self.total_units // self._total_assets

    async def deposit(self, amount: int, receiver: str) -> int:
        self._check_active()
        if amount <= 0:
            raise VenueError("Deposit amount must be positive", reason="amount")
        if amount > await self.max_deposit(receiver):
            raise VenueError("Deposit exceeds vault capacity", reason="capacity")
        units = self._to_units(amount)
        if units == 0:
            raise VenueError("Deposit rounds to zero units", reason="amount")
        self._mint(receiver, units, amount)
        return units

    async def withdraw(self, amount: int, receiver: str, owner: str) -> int:
        self._check_active()
        units = self._to_units(amount, round_up=True)
        self._burn(owner, units, amount)
        return units

    async def redeem(self, units: int, receiver: str, owner: str) -> int:
        self._check_active()
        assets = await self.convert_to_assets(units)
        self._burn(owner, units, assets)
        return assets

    async def convert_to_assets(self, units: int) -> int:
        if self.total_units == 0:
            return units
        return units * self._total_assets // self.total_units

    async def max_deposit(self, receiver: str) -> int:
        if self.paused:
            return 0
        if self.deposit_cap is None:
            return MAX_UINT256
        return max(0, self.deposit_cap - self._total_assets)

    async def max_withdraw(self, owner: str) -> int:
        if self.paused:
            return 0
        owned = await self.convert_to_assets(self.balance_of(owner))
        if self.liquidity is None:
            return owned
        return min(owned, self.liquidity)

    async def total_assets(self) -> int:
        return self._total_assets
