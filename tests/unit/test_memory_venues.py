"""Unit tests for the in-memory lending pool and vault."""
from __future__ import annotations

import pytest

from yield_allocator.errors import VenueError
from yield_allocator.models import MAX_UINT256, WAD
from yield_allocator.venues import InMemoryLendingPool, InMemoryVault


class TestInMemoryLendingPool:
    @pytest.mark.asyncio
    async def test_account_data(self) -> None:
        pool = InMemoryLendingPool(cash=10_000)
        await pool.supply(1000, "0xA")
        await pool.borrow(500, 2, "0xA")

        data = await pool.get_account_data("0xA")
        assert data.total_collateral == 1000
        assert data.total_debt == 500
        assert data.available_borrow == 300
        assert data.health_factor == 17 * WAD // 10

    @pytest.mark.asyncio
    async def test_borrow_over_ltv_rejected(self) -> None:
        pool = InMemoryLendingPool(cash=10_000)
        await pool.supply(1000, "0xA")
        with pytest.raises(VenueError) as exc:
            await pool.borrow(801, 2, "0xA")
        assert exc.value.reason == "ltv"

    @pytest.mark.asyncio
    async def test_withdraw_that_liquidates_rejected(self) -> None:
        pool = InMemoryLendingPool(cash=10_000)
        pool.set_position("0xA", 1000, 800)
        with pytest.raises(VenueError) as exc:
            await pool.withdraw(100, "0xA")
        assert exc.value.reason == "health"

    @pytest.mark.asyncio
    async def test_withdraw_all_sentinel(self) -> None:
        pool = InMemoryLendingPool()
        await pool.supply(700, "0xA")
        assert await pool.withdraw(MAX_UINT256, "0xA") == 700
        assert pool.collateral_of("0xA") == 0

    @pytest.mark.asyncio
    async def test_repay_caps_at_debt(self) -> None:
        pool = InMemoryLendingPool(cash=10_000)
        pool.set_position("0xA", 1000, 200)
        assert await pool.repay(500, 2, "0xA") == 200
        assert pool.debt_of("0xA") == 0

    @pytest.mark.asyncio
    async def test_paused(self) -> None:
        pool = InMemoryLendingPool()
        pool.paused = True
        with pytest.raises(VenueError) as exc:
            await pool.supply(1, "0xA")
        assert exc.value.reason == "paused"
        assert await pool.available_liquidity() == 0

    def test_accrue(self) -> None:
        pool = InMemoryLendingPool(supply_apy=0.10, borrow_apy=0.20)
        pool.set_position("0xA", 1_000_000, 500_000)
        pool.accrue(365 * 24 * 3600)
        assert pool.collateral_of("0xA") == 1_100_000
        assert pool.debt_of("0xA") == 600_000


class TestInMemoryVault:
    @pytest.mark.asyncio
    async def test_deposit_and_yield(self) -> None:
        vault = InMemoryVault()
        units = await vault.deposit(1000, "0xA")
        vault.add_yield(100)

        assert units == 1000
        assert await vault.convert_to_assets(units) == 1100
        assert await vault.total_assets() == 1100

    @pytest.mark.asyncio
    async def test_exchange_rate_applies_to_new_deposits(self) -> None:
        vault = InMemoryVault(initial_assets=1000)
        vault.add_yield(1000)
        assert await vault.deposit(500, "0xA") == 250

    @pytest.mark.asyncio
    async def test_deposit_cap(self) -> None:
        vault = InMemoryVault(deposit_cap=1000)
        await vault.deposit(800, "0xA")
        assert await vault.max_deposit("0xA") == 200
        with pytest.raises(VenueError) as exc:
            await vault.deposit(201, "0xA")
        assert exc.value.reason == "capacity"

    @pytest.mark.asyncio
    async def test_withdraw_rounds_units_up(self) -> None:
        vault = InMemoryVault()
        await vault.deposit(3, "0xA")
        vault.add_yield(1)
        # 1 asset at 4/3 per unit needs ceil(0.75) units
        assert await vault.withdraw(1, "0xA", "0xA") == 1
        assert vault.balance_of("0xA") == 2

    @pytest.mark.asyncio
    async def test_liquidity_limits_withdrawals(self) -> None:
        vault = InMemoryVault(liquidity=0)
        await vault.deposit(1000, "0xA")
        vault.liquidity = 100

        assert await vault.max_withdraw("0xA") == 100
        with pytest.raises(VenueError) as exc:
            await vault.redeem(1000, "0xA", "0xA")
        assert exc.value.reason == "liquidity"

    @pytest.mark.asyncio
    async def test_paused_has_no_capacity(self) -> None:
        vault = InMemoryVault()
        vault.paused = True
        assert await vault.max_deposit("0xA") == 0
        assert await vault.max_withdraw("0xA") == 0
