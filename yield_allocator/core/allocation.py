"""Multi-venue allocation & rebalancing engine.

Splits capital movements across a fixed, ordered set of venues by target
weight and re-derives those weights from each venue's observed exchange-rate
growth.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from ..config import AllocationConfig
from ..errors import (
    ExternalCallFailure,
    HealthFactorViolation,
    InsufficientLiquidity,
    InvalidConfiguration,
    VenueError,
)
from ..interfaces.venue import Venue
from ..models import HarvestReport, RebalanceReport, VenueReport, WithdrawalResult
from .calc import annualize, current_weights, split_by_weights
from .weights import (
    apy_spread_bps,
    compute_target_weights,
    equal_weights,
    max_drift_bps,
    normalize_weights,
    validate_weights,
)

logger = logging.getLogger(__name__)

# Venue refusals that degrade an operation instead of aborting it.
_DEGRADABLE = (VenueError, InsufficientLiquidity, ExternalCallFailure)


@dataclass
class VenueAllocation:
    """Engine-side bookkeeping for one venue."""

    venue: Venue
    target_weight_bps: int
    owned_units: int = 0
    last_recorded_value: int = 0
    last_observed_apy: float = 0.0
    last_exchange_rate: int = 0
    last_update: float = 0.0
    last_yield: int = 0

    @property
    def name(self) -> str:
        return self.venue.name


class AllocationEngine:
    """Spreads capital over venues and keeps the spread near target weights."""

    def __init__(
        self,
        venues: Sequence[Venue],
        config: AllocationConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not venues:
            raise InvalidConfiguration("At least one venue is required")
        self._config = config
        self._clock = clock
        weights = normalize_weights(equal_weights(len(venues)), config.min_weight_bps)
        self.allocations = [VenueAllocation(v, w) for v, w in zip(venues, weights)]
        self.idle = 0
        self._last_rebalance = clock()
        self._last_sample = 0.0

    @property
    def target_weights(self) -> list[int]:
        return [a.target_weight_bps for a in self.allocations]

    @property
    def last_rebalance(self) -> float:
        return self._last_rebalance

    def set_target_weights(self, weights_bps: Sequence[int]) -> None:
        if len(weights_bps) != len(self.allocations):
            raise InvalidConfiguration(
                f"Expected {len(self.allocations)} weights, got {len(weights_bps)}"
            )
        validate_weights(weights_bps, self._config.min_weight_bps)
        for alloc, weight in zip(self.allocations, weights_bps):
            alloc.target_weight_bps = int(weight)
        logger.info("Target weights set to %s", list(weights_bps))

    # ------------------------------------------------------------------
    # Valuation & performance
    # ------------------------------------------------------------------

    async def venue_values(self) -> list[int]:
        values: list[int] = []
        for alloc in self.allocations:
            if alloc.owned_units == 0:
                values.append(0)
                continue
            try:
                values.append(await alloc.venue.convert_to_assets(alloc.owned_units))
            except VenueError as e:
                raise ExternalCallFailure(
                    f"Valuation of venue '{alloc.name}' failed: {e}"
                ) from e
        return values

    async def total_value(self) -> int:
        return sum(await self.venue_values()) + self.idle

    async def sample_performance(self, now: float | None = None) -> list[float]:
        """Annualise each venue's exchange-rate growth since its last sample."""
        now = self._clock() if now is None else now
        for alloc in self.allocations:
            try:
                rate = await alloc.venue.exchange_rate()
            except _DEGRADABLE as e:
                logger.warning("Exchange rate of '%s' unavailable: %s", alloc.name, e)
                continue

            if alloc.last_exchange_rate > 0 and now > alloc.last_update:
                alloc.last_observed_apy = annualize(
                    alloc.last_exchange_rate, rate, now - alloc.last_update
                )
            if alloc.last_exchange_rate == 0 or now > alloc.last_update:
                alloc.last_exchange_rate = rate
                alloc.last_update = now

        self._last_sample = now
        return [a.last_observed_apy for a in self.allocations]

    async def compute_weights(self, now: float | None = None) -> list[int]:
        apys = await self.sample_performance(now)
        weights = compute_target_weights(
            apys,
            min_weight_bps=self._config.min_weight_bps,
            baseline_weight_bps=self._config.baseline_weight_bps,
        )
        for alloc, weight in zip(self.allocations, weights):
            alloc.target_weight_bps = weight
        logger.info(
            "Target weights %s from APYs %s",
            weights, ", ".join(f"{apy:.2%}" for apy in apys),
        )
        return weights

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    async def _deposit_into(
        self, index: int, amount: int, journal: list[tuple[int, int, int]] | None = None
    ) -> int:
        """Deposit up to ``amount`` of idle into one venue; returns what went in."""
        alloc = self.allocations[index]
        try:
            capacity = await alloc.venue.max_deposit()
        except _DEGRADABLE as e:
            logger.warning("Capacity read of '%s' failed: %s", alloc.name, e)
            return 0

        take = min(amount, capacity, self.idle)
        if take <= 0:
            logger.info("Venue '%s' has no deposit capacity", alloc.name)
            return 0

        try:
            units = await alloc.venue.deposit(take)
        except _DEGRADABLE as e:
            logger.warning("Deposit of %d into '%s' failed: %s", take, alloc.name, e)
            return 0

        alloc.owned_units += units
        alloc.last_recorded_value += take
        self.idle -= take
        if journal is not None:
            journal.append((index, units, take))
        logger.debug("Deposited %d into '%s' for %d units", take, alloc.name, units)
        return take

    async def _compensate(self, journal: list[tuple[int, int, int]]) -> None:
        """Redeem the deposits of an aborted operation back to idle."""
        for index, units, amount in reversed(journal):
            alloc = self.allocations[index]
            try:
                received = await alloc.venue.redeem(units)
            except _DEGRADABLE as e:
                logger.error(
                    "Could not reverse deposit into '%s'; %d units stay accounted: %s",
                    alloc.name, units, e,
                )
                continue
            alloc.owned_units -= units
            alloc.last_recorded_value = max(0, alloc.last_recorded_value - amount)
            self.idle += received

    async def _distribute(self, amount: int, weights: Sequence[int]) -> int:
        """Deploy ``amount`` of idle by weight, rerouting refused shares."""
        active = [i for i, w in enumerate(weights) if w > 0]
        journal: list[tuple[int, int, int]] = []
        pending = min(amount, self.idle)
        deployed = 0

        try:
            for _ in range(len(self.allocations) + 1):
                if pending <= 0 or not active:
                    break
                shares = split_by_weights(pending, [weights[i] for i in active])
                shortfall = 0
                still_active: list[int] = []
                for index, share in zip(active, shares):
                    if share == 0:
                        still_active.append(index)
                        continue
                    placed = await self._deposit_into(index, share, journal)
                    deployed += placed
                    shortfall += share - placed
                    if placed == share:
                        still_active.append(index)
                pending = shortfall
                active = still_active
        except HealthFactorViolation:
            logger.error("Deploy aborted on health factor violation, reversing deposits")
            await self._compensate(journal)
            raise

        if pending > 0:
            logger.warning("%d could not be placed and stays idle", pending)
        return deployed

    async def deploy(self, amount: int) -> int:
        """Take in ``amount`` and spread it by target weight."""
        if amount <= 0:
            return 0
        self.idle += amount
        deployed = await self._distribute(amount, self.target_weights)
        logger.info("Deployed %d of %d (idle %d)", deployed, amount, self.idle)
        return deployed

    async def deploy_idle(self, amount: int | None = None) -> int:
        amount = self.idle if amount is None else min(amount, self.idle)
        if amount <= 0:
            return 0
        return await self._distribute(amount, self.target_weights)

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    async def _withdraw_from(self, index: int, amount: int) -> int:
        """Withdraw up to ``amount`` from one venue; 0 when it refuses."""
        alloc = self.allocations[index]
        if alloc.owned_units == 0 or amount <= 0:
            return 0

        try:
            available = await alloc.venue.max_withdraw(alloc.owned_units)
            take = min(amount, available)
            if take <= 0:
                return 0
            value = await alloc.venue.convert_to_assets(alloc.owned_units)
            if take >= value:
                burned = alloc.owned_units
                received = await alloc.venue.redeem(burned)
            else:
                burned, received = await alloc.venue.withdraw(take)
        except _DEGRADABLE as e:
            logger.warning("Withdrawal of %d from '%s' failed: %s", amount, alloc.name, e)
            return 0

        alloc.owned_units -= min(burned, alloc.owned_units)
        alloc.last_recorded_value = max(0, alloc.last_recorded_value - received)
        return received

    async def withdrawable(self) -> int:
        total = self.idle
        for alloc in self.allocations:
            if alloc.owned_units == 0:
                continue
            try:
                total += await alloc.venue.max_withdraw(alloc.owned_units)
            except _DEGRADABLE as e:
                logger.warning("Liquidity read of '%s' failed: %s", alloc.name, e)
        return total

    async def _free_from_venues(self, need: int, per_venue: list[int]) -> None:
        """Withdraw ``need`` pro rata, recording receipts in ``per_venue`` as they land."""
        values = await self.venue_values()
        shares = split_by_weights(min(need, sum(values)), values)
        for index, share in enumerate(shares):
            per_venue[index] += await self._withdraw_from(index, share)

        gap = need - sum(per_venue)
        if gap > 0:
            logger.info("Retrying %d shortfall against other venues", gap)
            for index in sorted(range(len(values)), key=lambda i: -values[i]):
                got = await self._withdraw_from(index, gap)
                per_venue[index] += got
                gap -= got
                if gap <= 0:
                    break

    async def free(self, amount: int, strict: bool = False) -> WithdrawalResult:
        """Free ``amount``: idle first, then pro rata to venue value.

        A venue that cannot pay its share has the gap retried against the
        others; whatever remains is reported as ``shortfall``. With
        ``strict`` the call raises ``InsufficientLiquidity`` up front instead.
        """
        if amount <= 0:
            return WithdrawalResult(requested=0, withdrawn=0)

        if strict:
            available = await self.withdrawable()
            if available < amount:
                raise InsufficientLiquidity(
                    f"Only {available} of {amount} can be withdrawn",
                    requested=amount,
                    available=available,
                )

        from_idle = min(self.idle, amount)
        self.idle -= from_idle
        need = amount - from_idle
        per_venue = [0] * len(self.allocations)

        try:
            if need > 0:
                await self._free_from_venues(need, per_venue)
        except HealthFactorViolation:
            recovered = from_idle + sum(per_venue)
            self.idle += recovered
            logger.error(
                "Withdrawal aborted on health factor violation, %d returned to idle",
                recovered,
            )
            raise

        # A redeem can return a hair more than asked; the surplus stays idle.
        withdrawn = from_idle + sum(per_venue)
        if withdrawn > amount:
            self.idle += withdrawn - amount
            withdrawn = amount

        result = WithdrawalResult(
            requested=amount,
            withdrawn=withdrawn,
            shortfall=amount - withdrawn,
            per_venue=tuple(
                (a.name, got) for a, got in zip(self.allocations, per_venue) if got
            ),
        )
        if result.is_partial:
            logger.warning(
                "Partial withdrawal: %d of %d freed, shortfall %d",
                result.withdrawn, amount, result.shortfall,
            )
        return result

    # ------------------------------------------------------------------
    # Rebalancing
    # ------------------------------------------------------------------

    async def rebalance_trigger(self, now: float | None = None) -> str | None:
        """Return why a rebalance is due, or ``None``."""
        now = self._clock() if now is None else now
        values = await self.venue_values()
        if sum(values) == 0 and self.idle == 0:
            return None

        if now - self._last_rebalance >= self._config.rebalance_interval_hours * 3600:
            return "interval"

        if self._last_sample > self._last_rebalance:
            spread = apy_spread_bps([a.last_observed_apy for a in self.allocations])
            if spread > self._config.apy_spread_threshold_bps:
                return "apy_spread"

        if sum(values) > 0:
            drift = max_drift_bps(current_weights(values), self.target_weights)
            if drift > self._config.drift_tolerance_bps:
                return "drift"
        return None

    async def rebalance(self, reason: str = "manual", now: float | None = None) -> RebalanceReport:
        """Recompute targets, pull excess from over-weight venues and place
        it (plus idle) into under-weight ones."""
        now = self._clock() if now is None else now
        targets = await self.compute_weights(now)
        values = await self.venue_values()
        goals = split_by_weights(sum(values) + self.idle, targets)
        min_move = self._config.min_rebalance_amount

        withdrawn: list[tuple[str, int]] = []
        for index, (value, goal) in enumerate(zip(values, goals)):
            excess = value - goal
            if excess > min_move:
                got = await self._withdraw_from(index, excess)
                if got:
                    self.idle += got
                    withdrawn.append((self.allocations[index].name, got))

        deposited: list[tuple[str, int]] = []
        deficits = sorted(
            ((goal - value, index) for index, (value, goal) in enumerate(zip(values, goals))),
            reverse=True,
        )
        for deficit, index in deficits:
            if deficit <= min_move or self.idle <= 0:
                continue
            placed = await self._deposit_into(index, min(deficit, self.idle))
            if placed:
                deposited.append((self.allocations[index].name, placed))

        self._last_rebalance = now
        report = RebalanceReport(
            reason=reason,
            target_weights_bps=tuple(targets),
            withdrawn=tuple(withdrawn),
            deposited=tuple(deposited),
            left_idle=self.idle,
        )
        logger.info(
            "Rebalanced (%s): moved %d, idle %d", reason, report.moved, report.left_idle
        )
        return report

    # ------------------------------------------------------------------
    # Harvest
    # ------------------------------------------------------------------

    async def harvest(self, now: float | None = None) -> HarvestReport:
        """Total managed value; per-venue yield is kept for weighting only."""
        values = await self.venue_values()
        await self.sample_performance(now)
        weights = current_weights(values)

        venues: list[VenueReport] = []
        for alloc, value, weight in zip(self.allocations, values, weights):
            alloc.last_yield = value - alloc.last_recorded_value
            alloc.last_recorded_value = value
            venues.append(
                VenueReport(
                    name=alloc.name,
                    value=value,
                    weight_bps=weight,
                    target_weight_bps=alloc.target_weight_bps,
                    apy=alloc.last_observed_apy,
                    yield_since_last=alloc.last_yield,
                )
            )

        return HarvestReport(
            total_value=sum(values) + self.idle,
            idle=self.idle,
            venues=tuple(venues),
        )
