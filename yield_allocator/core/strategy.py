"""Strategy facade — the surface the outer accounting wrapper calls.

Every entry point runs under one ``asyncio.Lock`` so capital movements never
interleave; each call completes (or fails) before the next begins.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable, Sequence

from ..errors import InvalidConfiguration
from ..models import (
    HarvestReport,
    MaintenanceAction,
    RebalanceReport,
    TendReport,
    WithdrawalResult,
)
from .allocation import AllocationEngine
from .leverage import LeverageController

logger = logging.getLogger(__name__)


class YieldStrategy:
    """Composes the allocation engine with an optional leveraged position."""

    def __init__(
        self,
        allocation: AllocationEngine,
        controller: LeverageController | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.allocation = allocation
        self.controller = controller
        self._clock = clock
        self._lock = asyncio.Lock()
        self.last_report: HarvestReport | None = None

    # ------------------------------------------------------------------
    # Accounting wrapper surface
    # ------------------------------------------------------------------

    async def deploy_funds(self, amount: int) -> int:
        async with self._lock:
            return await self.allocation.deploy(amount)

    async def free_funds(self, amount: int, strict: bool = False) -> WithdrawalResult:
        async with self._lock:
            return await self.allocation.free(amount, strict=strict)

    async def harvest_and_report(self) -> int:
        """Total managed value: venue holdings plus idle."""
        async with self._lock:
            report = await self.allocation.harvest(self._clock())
            self.last_report = report
            logger.info(
                "Harvest: total %d (idle %d) across %d venues",
                report.total_value, report.idle, len(report.venues),
            )
            return report.total_value

    async def tend(self, idle_amount: int | None = None) -> TendReport:
        """Maintenance pass: health check, rebalance if due, deploy idle."""
        async with self._lock:
            now = self._clock()
            action = MaintenanceAction.NONE
            notes: list[str] = []

            if self.controller is not None:
                action = await self.controller.maintain()
                if action is not MaintenanceAction.NONE:
                    notes.append(f"leverage: {action.value}")

            rebalance: RebalanceReport | None = None
            reason = await self.allocation.rebalance_trigger(now)
            if reason:
                rebalance = await self.allocation.rebalance(reason, now)
                notes.append(f"rebalance: {reason}")

            deployed = await self.allocation.deploy_idle(idle_amount)
            if deployed:
                notes.append(f"deployed idle: {deployed}")

            health_factor = math.inf
            if self.controller is not None:
                health_factor = await self.controller.health_factor()

            return TendReport(
                maintenance=action,
                rebalance=rebalance,
                deployed_idle=deployed,
                health_factor=health_factor,
                notes=tuple(notes),
            )

    async def tend_trigger(self) -> bool:
        async with self._lock:
            if self.controller is not None and await self.controller.needs_maintenance():
                return True
            return await self.allocation.rebalance_trigger(self._clock()) is not None

    # ------------------------------------------------------------------
    # Management surface
    # ------------------------------------------------------------------

    def _require_controller(self) -> LeverageController:
        if self.controller is None:
            raise InvalidConfiguration("No lending venue is configured for leverage")
        return self.controller

    async def set_leverage_enabled(self, enabled: bool) -> None:
        async with self._lock:
            self._require_controller().enabled = enabled
            logger.info("Leverage %s", "enabled" if enabled else "disabled")

    async def set_leverage_multiplier(self, multiplier: float) -> None:
        async with self._lock:
            self._require_controller().set_multiplier(multiplier)
            logger.info("Leverage multiplier set to %.2fx", multiplier)

    async def set_target_health_factor(self, target: float) -> None:
        async with self._lock:
            self._require_controller().set_target_health_factor(target)
            logger.info("Target health factor set to %.3f", target)

    async def set_target_weights(self, weights_bps: Sequence[int]) -> None:
        async with self._lock:
            self.allocation.set_target_weights(weights_bps)

    async def rebalance_now(self) -> RebalanceReport:
        async with self._lock:
            return await self.allocation.rebalance("manual", self._clock())
