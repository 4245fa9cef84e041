"""Unit tests for the leverage & health-factor controller."""
from __future__ import annotations

import math
from unittest.mock import AsyncMock

import pytest

from yield_allocator.config import LeverageConfig
from yield_allocator.core.leverage import LeverageController
from yield_allocator.errors import (
    ExternalCallFailure,
    InsufficientLiquidity,
    InvalidConfiguration,
    VenueError,
)
from yield_allocator.models import MaintenanceAction, PositionState, WAD
from yield_allocator.venues import InMemoryLendingPool

UNIT = 10**6


class TestDeploy:
    @pytest.mark.asyncio
    async def test_two_x_reaches_target(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        await controller.deploy(1000 * UNIT)

        account = controller.account
        assert pool.collateral_of(account) == 2000 * UNIT
        assert pool.debt_of(account) == 1000 * UNIT
        assert await controller.health_factor() == pytest.approx(1.7)
        assert await controller.state() is PositionState.LEVERAGED

    @pytest.mark.asyncio
    async def test_high_minimum_halts_early(self, pool: InMemoryLendingPool) -> None:
        """60% steps at 80% LTV stop once the next tranche would breach the minimum."""
        cfg = LeverageConfig(
            enabled=True,
            multiplier=2.0,
            target_health_factor=2.0,
            min_health_factor=1.75,
        )
        controller = LeverageController(pool, "0xA", cfg)
        await controller.deploy(1000 * UNIT)

        supplied = pool.collateral_of("0xA")
        assert 1556 * UNIT <= supplied <= 1800 * UNIT
        assert supplied == 1600 * UNIT
        assert await controller.health_factor() >= 1.75

    @pytest.mark.asyncio
    @pytest.mark.parametrize("multiplier", [1.0, 1.5, 2.0, 2.5, 3.0])
    async def test_health_factor_above_minimum_across_range(
        self, pool: InMemoryLendingPool, multiplier: float
    ) -> None:
        cfg = LeverageConfig(enabled=True, multiplier=multiplier)
        controller = LeverageController(pool, "0xA", cfg)
        await controller.deploy(1000 * UNIT)

        data = await controller.account_data()
        if data.has_debt:
            assert data.health_factor >= int(1.1 * WAD)
        assert data.total_collateral <= multiplier * 1000 * UNIT + 1
        assert await controller.net_value() == 1000 * UNIT

    @pytest.mark.asyncio
    async def test_disabled_only_supplies(self, pool: InMemoryLendingPool) -> None:
        cfg = LeverageConfig(enabled=False, multiplier=2.0)
        controller = LeverageController(pool, "0xA", cfg)
        await controller.deploy(500)

        assert pool.collateral_of("0xA") == 500
        assert pool.debt_of("0xA") == 0
        assert await controller.health_factor() == math.inf
        assert await controller.state() is PositionState.UNLEVERAGED

    @pytest.mark.asyncio
    async def test_refused_borrow_halts_safely(
        self, pool: InMemoryLendingPool, leverage_config: LeverageConfig
    ) -> None:
        pool.borrow = AsyncMock(side_effect=VenueError("Paused", reason="paused"))
        controller = LeverageController(pool, "0xA", leverage_config)
        await controller.deploy(1000)

        assert pool.collateral_of("0xA") == 1000

    @pytest.mark.asyncio
    async def test_stalled_repay_raises(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        await controller.deploy(1000 * UNIT)
        pool.repay = AsyncMock(return_value=0)

        with pytest.raises(InsufficientLiquidity, match="debt outstanding"):
            await controller.free(500 * UNIT)
        assert pool.debt_of(controller.account) == 1000 * UNIT

    @pytest.mark.asyncio
    async def test_max_withdrawable_bounded_by_cash(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        await controller.deploy(1000 * UNIT)
        assert await controller.max_withdrawable() == 1000 * UNIT

        pool.cash = 10
        assert await controller.max_withdrawable() == 10
        assert pool.debt_of("0xA") == 0

    @pytest.mark.asyncio
    async def test_paused_pool_raises(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        pool.paused = True
        with pytest.raises(ExternalCallFailure):
            await controller.deploy(1000)


class TestFree:
    @pytest.mark.asyncio
    async def test_proportional_deleverage_keeps_ratio(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        await controller.deploy(1000 * UNIT)
        received = await controller.free(500 * UNIT)

        assert received == 500 * UNIT
        assert pool.collateral_of(controller.account) == 1000 * UNIT
        assert pool.debt_of(controller.account) == 500 * UNIT
        assert await controller.health_factor() == pytest.approx(1.7)

    @pytest.mark.asyncio
    async def test_free_everything(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        await controller.deploy(1000 * UNIT)
        received = await controller.free(1000 * UNIT)

        assert received == 1000 * UNIT
        assert pool.collateral_of(controller.account) == 0
        assert pool.debt_of(controller.account) == 0
        assert controller.idle == 0

    @pytest.mark.asyncio
    async def test_more_than_net_value(self, controller: LeverageController) -> None:
        await controller.deploy(1000)
        with pytest.raises(InsufficientLiquidity) as exc:
            await controller.free(1001)
        assert exc.value.available == 1000

    @pytest.mark.asyncio
    async def test_pool_out_of_cash(self) -> None:
        pool = InMemoryLendingPool(cash=0)
        controller = LeverageController(pool, "0xA", LeverageConfig(enabled=False))
        await controller.deploy(1000)
        pool.cash = 10
        with pytest.raises(InsufficientLiquidity):
            await controller.free(500)
        assert pool.collateral_of("0xA") == 1000


class TestMaintain:
    @pytest.mark.asyncio
    async def test_emergency_at_exact_minimum(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        account = controller.account
        pool.set_position(account, 1100, 850)
        assert await controller.health_factor() == pytest.approx(1.1)
        assert await controller.state() is PositionState.EMERGENCY

        action = await controller.maintain()

        assert action is MaintenanceAction.EMERGENCY_DELEVERAGE
        assert pool.debt_of(account) == 0
        assert pool.collateral_of(account) == 250
        assert controller.enabled is False

    @pytest.mark.asyncio
    async def test_emergency_then_idle(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        pool.set_position(controller.account, 1100, 850)
        await controller.maintain()
        assert await controller.maintain() is MaintenanceAction.NONE

    @pytest.mark.asyncio
    async def test_lever_up_to_target(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        pool.set_position(controller.account, 1000 * UNIT, 0)

        assert await controller.maintain() is MaintenanceAction.LEVER_UP
        assert pool.collateral_of(controller.account) == 2000 * UNIT
        assert pool.debt_of(controller.account) == 1000 * UNIT

        assert await controller.maintain() is MaintenanceAction.NONE
        assert pool.debt_of(controller.account) == 1000 * UNIT

    @pytest.mark.asyncio
    async def test_lever_down_when_below_band(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        pool.set_position(controller.account, 2000 * UNIT, 1200 * UNIT)
        assert await controller.health_factor() == pytest.approx(1.41666, rel=1e-4)

        assert await controller.maintain() is MaintenanceAction.LEVER_DOWN
        assert pool.collateral_of(controller.account) == 1600 * UNIT
        assert pool.debt_of(controller.account) == 800 * UNIT
        assert await controller.health_factor() == pytest.approx(1.7)
        assert await controller.needs_maintenance() is False

    @pytest.mark.asyncio
    async def test_disabled_with_debt_deleverages(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        await controller.deploy(1000 * UNIT)
        controller.enabled = False

        assert await controller.maintain() is MaintenanceAction.DELEVERAGE
        assert pool.debt_of(controller.account) == 0
        assert await controller.net_value() == 1000 * UNIT

    @pytest.mark.asyncio
    async def test_inside_band_is_noop(
        self, controller: LeverageController, pool: InMemoryLendingPool
    ) -> None:
        await controller.deploy(1000 * UNIT)
        assert await controller.plan_maintenance() == (MaintenanceAction.NONE, 0)
        assert await controller.maintain() is MaintenanceAction.NONE


class TestManagement:
    def test_multiplier_bounds(self, controller: LeverageController) -> None:
        controller.set_multiplier(3.0)
        assert controller.multiplier == 3.0
        with pytest.raises(InvalidConfiguration):
            controller.set_multiplier(3.5)
        with pytest.raises(InvalidConfiguration):
            controller.set_multiplier(0.9)

    def test_target_must_exceed_minimum(self, controller: LeverageController) -> None:
        controller.set_target_health_factor(2.0)
        assert controller.target_health_factor == 2.0
        with pytest.raises(InvalidConfiguration):
            controller.set_target_health_factor(1.1)

    def test_invalid_config_rejected(self, pool: InMemoryLendingPool) -> None:
        with pytest.raises(InvalidConfiguration):
            LeverageController(pool, "0xA", LeverageConfig(multiplier=4.0))
