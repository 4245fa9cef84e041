"""Keeper orchestration: builds the strategy from config and tends it."""
from __future__ import annotations

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Callable

from ..config import AppConfig, VenueConfig
from ..core import AllocationEngine, LeverageController, YieldStrategy
from ..errors import AllocatorError, InvalidConfiguration
from ..interfaces.notifier import Notifier
from ..interfaces.venue import Venue
from ..models import (
    HarvestReport,
    MaintenanceAction,
    SimulationResult,
    TendReport,
    WithdrawalResult,
)
from ..notifications import TelegramNotifier
from ..rpc import JsonRpcClient, RpcLendingPool, RpcVault
from ..venues import InMemoryLendingPool, InMemoryVault, LeveragedVenue, VaultVenue

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400

# Registry of backend factories keyed by (source, kind).
_VENUE_FACTORIES: dict[tuple[str, str], Any] = {
    ("memory", "vault"): lambda cfg, client: InMemoryVault(
        deposit_cap=cfg.deposit_cap,
        apy=cfg.apy,
        initial_assets=cfg.initial_assets,
    ),
    ("memory", "lending"): lambda cfg, client: InMemoryLendingPool(
        ltv_bps=cfg.ltv_bps,
        liquidation_threshold_bps=cfg.liquidation_threshold_bps,
        cash=cfg.initial_assets,
        supply_apy=cfg.apy,
        borrow_apy=cfg.borrow_apy,
    ),
    ("rpc", "vault"): lambda cfg, client: RpcVault(client, cfg.address),
    ("rpc", "lending"): lambda cfg, client: RpcLendingPool(client, cfg.address),
}


class Keeper:
    """Runs tend/harvest passes and reports them through the notifiers."""

    def __init__(
        self, config: AppConfig, clock: Callable[[], float] = time.time
    ) -> None:
        self._config = config
        self._clock = clock
        # Simulated time added on top of the wall clock by ``simulate``.
        self._elapsed = 0.0

        self._client: JsonRpcClient | None = None
        if any(v.source == "rpc" for v in config.venues):
            self._client = JsonRpcClient(config.gateway)

        self._backends: dict[str, Any] = {}
        self.controller: LeverageController | None = None
        venues: list[Venue] = []
        for venue_cfg in config.venues:
            venues.append(self._build_venue(venue_cfg))

        self.engine = AllocationEngine(venues, config.allocation, clock=self._now)
        self.strategy = YieldStrategy(self.engine, self.controller, clock=self._now)

        self._notifiers: list[Notifier] = []
        if config.notifications.telegram.enabled:
            self._notifiers.append(TelegramNotifier(config.notifications.telegram))

    def _now(self) -> float:
        return self._clock() + self._elapsed

    def _build_venue(self, venue_cfg: VenueConfig) -> Venue:
        factory = _VENUE_FACTORIES.get((venue_cfg.source, venue_cfg.kind))
        if factory is None:
            raise InvalidConfiguration(
                f"No backend for {venue_cfg.source} {venue_cfg.kind} "
                f"'{venue_cfg.name}'"
            )
        backend = factory(venue_cfg, self._client)
        self._backends[venue_cfg.name] = backend

        account = self._config.strategy.account
        if venue_cfg.kind == "lending":
            self.controller = LeverageController(
                backend, account, self._config.leverage
            )
            return LeveragedVenue(venue_cfg.name, self.controller)
        return VaultVenue(venue_cfg.name, backend, account)

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    def _fmt(self, amount: int) -> str:
        decimals = self._config.strategy.decimals
        return f"{amount / 10**decimals:,.2f} {self._config.strategy.asset}"

    @staticmethod
    def _fmt_hf(health_factor: float) -> str:
        return "∞" if math.isinf(health_factor) else f"{health_factor:.3f}"

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    def _build_tend_message(self, report: TendReport | None, total: int) -> str:
        if report is None:
            actions = "No action needed"
        else:
            actions = "\n".join(report.notes) if report.notes else "No changes"
        lines = [
            "🔧 Tend",
            "",
            actions,
            "",
            f"Total value: {self._fmt(total)}",
        ]
        if report is not None and self.controller is not None:
            lines.append(f"Health factor: {self._fmt_hf(report.health_factor)}")
        lines += ["", f"{self._now_str()} UTC"]
        return "\n".join(lines)

    def _build_report_message(
        self, harvest: HarvestReport, health_factor: float | None
    ) -> str:
        venue_lines = [
            f"{v.name}\n"
            f"  Value: {self._fmt(v.value)}\n"
            f"  Weight: {v.weight_bps / 100:.2f}% (target {v.target_weight_bps / 100:.2f}%)\n"
            f"  APY: {v.apy:.2%} · Yield: {self._fmt(v.yield_since_last)}"
            for v in harvest.venues
        ]
        body = "\n\n".join(venue_lines) if venue_lines else "No venues."
        lines = [
            "📋 Allocation Report",
            "",
            body,
            "",
            f"Idle: {self._fmt(harvest.idle)}",
            f"Total: {self._fmt(harvest.total_value)}",
        ]
        if health_factor is not None:
            lines.append(
                f"Leverage: {self.controller.multiplier:.2f}x target · "
                f"HF {self._fmt_hf(health_factor)}"
            )
        lines += ["", f"{self._now_str()} UTC"]
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    # ------------------------------------------------------------------
    # Core workflows
    # ------------------------------------------------------------------

    async def deposit(self, amount: int) -> int:
        return await self.strategy.deploy_funds(amount)

    async def withdraw(self, amount: int, strict: bool = False) -> WithdrawalResult:
        """Free funds; a degraded withdrawal raises an alert."""
        result = await self.strategy.free_funds(amount, strict=strict)
        if result.is_partial:
            await self._send_alert(
                f"Requested: {self._fmt(result.requested)}\n"
                f"Freed: {self._fmt(result.withdrawn)}\n"
                f"Shortfall: {self._fmt(result.shortfall)}",
                subject="⚠️ Partial withdrawal",
            )
        return result

    async def run_once(self) -> TendReport | None:
        """One keeper pass: tend when due, then harvest and report."""
        report: TendReport | None = None
        try:
            if await self.strategy.tend_trigger():
                report = await self.strategy.tend()
            total = await self.strategy.harvest_and_report()
        except AllocatorError as e:
            logger.error("Keeper pass failed: %s", e)
            await self._send_alert(str(e), subject="🚨 Keeper pass failed")
            raise

        logger.info(
            "Keeper pass: %s, total %d",
            ", ".join(report.notes) if report and report.notes else "no action",
            total,
        )
        await self._send_log(self._build_tend_message(report, total))

        if report is not None and (
            report.maintenance is MaintenanceAction.EMERGENCY_DELEVERAGE
        ):
            await self._send_alert(
                f"Health factor fell to the {self.controller.min_health_factor} "
                f"minimum and the position was deleveraged.\n"
                f"Health factor now: {self._fmt_hf(report.health_factor)}",
                subject="🚨 CRITICAL: Emergency deleverage",
            )
        return report

    async def generate_report(self) -> str:
        """Build and send the per-venue allocation report."""
        await self.strategy.harvest_and_report()
        harvest = self.strategy.last_report
        health_factor = None
        if self.controller is not None:
            health_factor = await self.controller.health_factor()

        message = self._build_report_message(harvest, health_factor)
        await self._send_alert(message)
        logger.info("Allocation report sent")
        return message

    async def run_continuous(self, check_interval_minutes: int | None = None) -> None:
        interval = check_interval_minutes or self._config.keeper.check_interval_minutes
        logger.info("Starting keeper (tending every %d minutes)", interval)

        while True:
            try:
                await self.run_once()
                await asyncio.sleep(interval * 60)
            except Exception as e:
                logger.error("Error in keeper loop: %s", e)
                await asyncio.sleep(60)

    async def simulate(self, deposit: int, days: int) -> SimulationResult:
        """Deposit, accrue ``days`` of venue yield with a daily keeper pass,
        then withdraw everything. In-memory venues only."""
        rpc = [v.name for v in self._config.venues if v.source != "memory"]
        if rpc:
            raise InvalidConfiguration(
                f"Simulation needs in-memory venues; {', '.join(rpc)} use rpc"
            )

        await self.deposit(deposit)
        daily: list[HarvestReport] = []
        for day in range(days):
            for backend in self._backends.values():
                backend.accrue(SECONDS_PER_DAY)
            self._elapsed += SECONDS_PER_DAY
            await self.run_once()
            daily.append(self.strategy.last_report)
            logger.debug("Day %d: total %d", day + 1, self.strategy.last_report.total_value)

        final_value = await self.strategy.harvest_and_report()
        withdrawal = await self.withdraw(final_value)
        return SimulationResult(
            deposit=deposit,
            days=days,
            final_value=final_value,
            withdrawal=withdrawal,
            daily=tuple(daily),
        )
