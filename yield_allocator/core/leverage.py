"""Leverage & health-factor controller for a single lending position.

Amplifies supply yield by looping borrow -> re-supply against the position's
own collateral while keeping the health factor above a configured minimum.
Position balances grow on their own at the venue, so every decision reads
fresh ``AccountData`` instead of caching it.
"""
from __future__ import annotations

import logging

from ..config import LeverageConfig, validate_leverage
from ..errors import (
    ExternalCallFailure,
    HealthFactorViolation,
    InsufficientLiquidity,
    InvalidConfiguration,
    VenueError,
)
from ..interfaces.lending_pool import LendingPool
from ..models import (
    BPS,
    MAX_UINT256,
    WAD,
    AccountData,
    MaintenanceAction,
    PositionState,
    StepOutcome,
)
from .calc import (
    calc_health_factor,
    calc_leverage,
    max_withdraw_keeping,
    mul_div_up,
    to_wad,
    wad_to_float,
)

logger = logging.getLogger(__name__)

# Health factor kept on every collateral withdrawal made to repay debt.
UNWIND_FLOOR_WAD = to_wad(1.001)
MAX_UNWIND_STEPS = 64
# Leverage overshoot (in bps of collateral) tolerated before maintain() trims it.
LEVERAGE_TOLERANCE_BPS = 100


class LeverageController:
    """Owns one account's position at a lending pool."""

    def __init__(self, pool: LendingPool, account: str, config: LeverageConfig) -> None:
        validate_leverage(config)
        self._pool = pool
        self._account = account
        self._borrow_fraction_bps = config.borrow_fraction_bps
        self._max_loops = config.max_loops
        self._rate_mode = config.rate_mode
        self.enabled = config.enabled
        self.multiplier = config.multiplier
        self.max_multiplier = config.max_multiplier
        self.target_health_factor = config.target_health_factor
        self.min_health_factor = config.min_health_factor
        self.health_factor_band = config.health_factor_band
        # Funds withdrawn from the pool and not yet repaid or paid out.
        self.idle = 0

    @property
    def account(self) -> str:
        return self._account

    @property
    def is_leveraged(self) -> bool:
        return self.enabled and self.multiplier > 1.0

    @property
    def _min_wad(self) -> int:
        return to_wad(self.min_health_factor)

    @property
    def _target_wad(self) -> int:
        return to_wad(self.target_health_factor)

    @property
    def _band_wad(self) -> int:
        return to_wad(self.health_factor_band)

    # ------------------------------------------------------------------
    # Management surface
    # ------------------------------------------------------------------

    def set_multiplier(self, multiplier: float) -> None:
        if not 1.0 <= multiplier <= self.max_multiplier:
            raise InvalidConfiguration(
                f"Leverage multiplier {multiplier} outside 1.0-{self.max_multiplier}"
            )
        self.multiplier = multiplier

    def set_target_health_factor(self, target: float) -> None:
        if target <= self.min_health_factor:
            raise InvalidConfiguration(
                f"Target health factor {target} must be above "
                f"minimum {self.min_health_factor}"
            )
        self.target_health_factor = target

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def account_data(self) -> AccountData:
        try:
            return await self._pool.get_account_data(self._account)
        except VenueError as e:
            raise ExternalCallFailure(f"Lending pool account read failed: {e}") from e

    async def health_factor(self) -> float:
        """Current health factor; ``math.inf`` when there is no debt."""
        data = await self.account_data()
        if not data.has_debt:
            return wad_to_float(MAX_UINT256)
        return wad_to_float(data.health_factor)

    async def state(self) -> PositionState:
        data = await self.account_data()
        if not data.has_debt:
            return PositionState.UNLEVERAGED
        if data.health_factor <= self._min_wad:
            return PositionState.EMERGENCY
        return PositionState.LEVERAGED

    async def net_value(self) -> int:
        data = await self.account_data()
        return data.total_collateral - data.total_debt + self.idle

    async def max_withdrawable(self) -> int:
        """Net value the pool can pay out now, bounded by its free cash."""
        data = await self.account_data()
        try:
            cash = await self._pool.available_liquidity()
        except VenueError as e:
            raise ExternalCallFailure(f"Lending pool liquidity read failed: {e}") from e
        net = data.total_collateral - data.total_debt + self.idle
        return max(0, min(net, self.idle + cash))

    # ------------------------------------------------------------------
    # Pool calls and their failure paths
    # ------------------------------------------------------------------

    async def _supply(self, amount: int) -> None:
        try:
            await self._pool.supply(amount, self._account)
        except VenueError as e:
            raise ExternalCallFailure(f"Supply of {amount} rejected: {e}") from e

    async def _withdraw(self, amount: int) -> int:
        try:
            return await self._pool.withdraw(amount, self._account)
        except VenueError as e:
            if e.reason in ("liquidity", "balance"):
                raise InsufficientLiquidity(
                    f"Withdraw of {amount} rejected: {e}", requested=amount
                ) from e
            if e.reason == "health":
                raise HealthFactorViolation(f"Withdraw of {amount} rejected: {e}") from e
            raise ExternalCallFailure(f"Withdraw of {amount} rejected: {e}") from e

    async def _repay(self, amount: int) -> int:
        try:
            return await self._pool.repay(amount, self._rate_mode, self._account)
        except VenueError as e:
            raise ExternalCallFailure(f"Repay of {amount} rejected: {e}") from e

    async def _borrow_and_supply(self, amount: int) -> bool:
        """One borrow -> re-supply tranche. False when the pool refused the borrow."""
        try:
            await self._pool.borrow(amount, self._rate_mode, self._account)
        except VenueError as e:
            logger.warning("Borrow of %d rejected, halting leverage: %s", amount, e)
            return False

        try:
            await self._pool.supply(amount, self._account)
        except VenueError as e:
            logger.warning("Re-supply of %d rejected, repaying tranche: %s", amount, e)
            self.idle += amount
            repaid = await self._repay(amount)
            self.idle -= repaid
            return False
        return True

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def _leverage_step(self, last_tranche: int, remaining: int) -> tuple[StepOutcome, int]:
        if remaining <= 0:
            return StepOutcome.HALT_TARGET_REACHED, 0

        data = await self.account_data()
        tranche = min(
            last_tranche * self._borrow_fraction_bps // BPS,
            remaining,
            data.available_borrow,
        )
        if tranche <= 0:
            return StepOutcome.HALT_SAFE, 0

        predicted = calc_health_factor(
            data.total_collateral + tranche,
            data.total_debt + tranche,
            data.liquidation_threshold_bps,
        )
        if predicted <= self._min_wad:
            logger.debug(
                "Tranche %d would bring health factor to %.4f, halting",
                tranche, wad_to_float(predicted),
            )
            return StepOutcome.HALT_SAFE, 0

        if not await self._borrow_and_supply(tranche):
            return StepOutcome.HALT_SAFE, 0
        return StepOutcome.CONTINUE, tranche

    async def deploy(self, amount: int) -> int:
        """Supply ``amount`` and, when leverage is on, loop it toward the multiplier."""
        if amount <= 0:
            return 0

        await self._supply(amount)
        if not self.is_leveraged:
            return amount

        target_borrow = amount * to_wad(self.multiplier) // WAD - amount
        borrowed = 0
        last_tranche = amount
        outcome = StepOutcome.CONTINUE
        # The principal is already at the pool; from here on it must be reported
        # as deployed, so lost reads halt the loop instead of failing the call.
        try:
            for _ in range(self._max_loops):
                outcome, tranche = await self._leverage_step(
                    last_tranche, target_borrow - borrowed
                )
                if outcome is not StepOutcome.CONTINUE:
                    break
                borrowed += tranche
                last_tranche = tranche
            data = await self.account_data()
        except ExternalCallFailure as e:
            logger.warning(
                "Pool call failed after supplying %d, leverage halted at %d borrowed: %s",
                amount, borrowed, e,
            )
            return amount

        logger.info(
            "Leveraged %d -> supplied %d, debt %d, HF %.4f (%s)",
            amount, data.total_collateral, data.total_debt,
            data.health_factor_float, outcome.value,
        )

        if data.has_debt and data.health_factor < self._min_wad:
            await self._unwind(borrowed, amount)
            raise HealthFactorViolation(
                f"Health factor {data.health_factor_float:.4f} below minimum "
                f"{self.min_health_factor} after deploy",
                health_factor=data.health_factor_float,
            )
        return amount

    async def _unwind(self, borrowed: int, principal: int) -> None:
        """Reverse what one ``deploy`` committed: its borrows, then its principal."""
        if borrowed:
            await self._deleverage(borrowed)
        from_idle = min(self.idle, principal)
        self.idle -= from_idle
        if principal > from_idle:
            await self._withdraw(principal - from_idle)

    # ------------------------------------------------------------------
    # Free
    # ------------------------------------------------------------------

    async def _deleverage(self, target_repay: int) -> int:
        """Repay up to ``target_repay`` of debt: idle funds first, then
        collateral withdrawn specifically to cover each repayment."""
        remaining = target_repay
        repaid = 0

        for _ in range(MAX_UNWIND_STEPS):
            if remaining <= 0:
                break

            if self.idle == 0:
                data = await self.account_data()
                if not data.has_debt:
                    break
                remaining = min(remaining, data.total_debt)
                room = max_withdraw_keeping(
                    data.total_collateral,
                    data.total_debt,
                    data.liquidation_threshold_bps,
                    UNWIND_FLOOR_WAD,
                )
                step = min(remaining, room)
                if step <= 0:
                    raise HealthFactorViolation(
                        "Position cannot release collateral to repay debt",
                        health_factor=data.health_factor_float,
                    )
                self.idle += await self._withdraw(step)

            actual = await self._repay(min(self.idle, remaining))
            self.idle -= actual
            remaining -= actual
            repaid += actual
            if actual == 0:
                break

        if remaining > 0:
            outstanding = min(remaining, (await self.account_data()).total_debt)
            if outstanding > 0:
                raise InsufficientLiquidity(
                    f"Deleverage stopped with {outstanding} debt outstanding",
                    requested=target_repay,
                    available=repaid,
                )

        logger.info("Repaid %d of debt", repaid)
        return repaid

    async def free(self, amount: int) -> int:
        """Release ``amount`` of net value, deleveraging proportionally first."""
        if amount <= 0:
            return 0

        data = await self.account_data()
        net = data.total_collateral - data.total_debt + self.idle
        if amount > net:
            raise InsufficientLiquidity(
                f"Requested {amount} exceeds position value {net}",
                requested=amount,
                available=net,
            )

        if data.has_debt:
            await self._deleverage(min(data.total_debt, mul_div_up(data.total_debt, amount, net)))

        from_idle = min(self.idle, amount)
        self.idle -= from_idle
        received = 0
        if amount > from_idle:
            received = await self._withdraw(amount - from_idle)
        return from_idle + received

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _lever_up_amount(self, data: AccountData) -> int:
        """Borrow that moves the health factor to target, bounded by the
        multiplier and the pool's available borrow."""
        lt = data.liquidation_threshold_bps
        target = self._target_wad
        denominator = target * BPS - lt * WAD
        if denominator <= 0:
            return 0
        to_target = (data.total_collateral * lt * WAD - target * data.total_debt * BPS) // denominator
        net = data.total_collateral - data.total_debt
        cap = min(to_wad(self.multiplier), to_wad(self.max_multiplier)) * net // WAD - data.total_collateral
        return max(0, min(to_target, cap, data.available_borrow))

    def _lever_down_amount(self, data: AccountData) -> int:
        """Debt to repay so the health factor returns to target and leverage
        to the multiplier, bounded by what one withdrawal can release."""
        lt = data.liquidation_threshold_bps
        target = self._target_wad
        needed = 0

        if data.health_factor < target - self._band_wad:
            denominator = target * BPS - lt * WAD
            needed = mul_div_up(target * data.total_debt * BPS - data.total_collateral * lt * WAD, 1, denominator)

        net = data.total_collateral - data.total_debt
        over_leverage = data.total_collateral - to_wad(self.multiplier) * net // WAD
        if over_leverage * BPS > data.total_collateral * LEVERAGE_TOLERANCE_BPS:
            needed = max(needed, over_leverage)

        room = max_withdraw_keeping(data.total_collateral, data.total_debt, lt, UNWIND_FLOOR_WAD)
        return max(0, min(needed, data.total_debt, room))

    async def plan_maintenance(self) -> tuple[MaintenanceAction, int]:
        """Decide what ``maintain`` would do without touching the position."""
        data = await self.account_data()

        if data.has_debt and data.health_factor <= self._min_wad:
            return MaintenanceAction.EMERGENCY_DELEVERAGE, data.total_debt
        if data.has_debt and not self.is_leveraged:
            return MaintenanceAction.DELEVERAGE, data.total_debt
        if not self.is_leveraged or data.total_collateral == 0:
            return MaintenanceAction.NONE, 0

        upper = self._target_wad + self._band_wad
        if not data.has_debt or data.health_factor > upper:
            amount = self._lever_up_amount(data)
            if amount > 0:
                return MaintenanceAction.LEVER_UP, amount
            return MaintenanceAction.NONE, 0

        amount = self._lever_down_amount(data)
        if amount > 0:
            return MaintenanceAction.LEVER_DOWN, amount
        return MaintenanceAction.NONE, 0

    async def needs_maintenance(self) -> bool:
        action, _ = await self.plan_maintenance()
        return action is not MaintenanceAction.NONE

    async def maintain(self) -> MaintenanceAction:
        """Periodic health check.

        Lever-up and lever-down repeat bounded steps (at most ``max_loops``)
        until the position is back inside the band. An emergency deleverage
        repays everything and switches leverage off until re-enabled.
        """
        action, amount = await self.plan_maintenance()

        if action is MaintenanceAction.EMERGENCY_DELEVERAGE:
            hf = await self.health_factor()
            logger.warning(
                "Health factor %.4f at or below minimum %.4f, emergency deleverage",
                hf, self.min_health_factor,
            )
            await self._deleverage(MAX_UINT256)
            self.enabled = False
        elif action is MaintenanceAction.DELEVERAGE:
            logger.info("Leverage disabled, repaying %d of debt", amount)
            await self._deleverage(MAX_UINT256)
        elif action is not MaintenanceAction.NONE:
            moved = 0
            step_action, step = action, amount
            for _ in range(self._max_loops):
                if step_action is not action or step <= 0:
                    break
                if action is MaintenanceAction.LEVER_UP:
                    if not await self._borrow_and_supply(step):
                        break
                else:
                    await self._deleverage(step)
                moved += step
                step_action, step = await self.plan_maintenance()
            if moved == 0:
                return MaintenanceAction.NONE
            logger.info("%s by %d", action.value, moved)

        if action is not MaintenanceAction.NONE:
            data = await self.account_data()
            if data.has_debt and data.health_factor < self._min_wad:
                raise HealthFactorViolation(
                    f"Health factor {data.health_factor_float:.4f} still below "
                    f"minimum after {action.value}",
                    health_factor=data.health_factor_float,
                )
            logger.info(
                "Position after %s: collateral %d, debt %d, leverage %.3fx",
                action.value, data.total_collateral, data.total_debt,
                calc_leverage(data.total_collateral, data.total_debt),
            )
        return action
