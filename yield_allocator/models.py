"""Data models — reports and snapshots are frozen (immutable)."""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field

WAD = 10**18
BPS = 10_000
MAX_UINT256 = 2**256 - 1


class StepOutcome(enum.Enum):
    """Result of one borrow -> re-supply iteration."""

    CONTINUE = "continue"
    HALT_SAFE = "halt_safe"
    HALT_TARGET_REACHED = "halt_target_reached"


class PositionState(enum.Enum):
    UNLEVERAGED = "unleveraged"
    LEVERAGED = "leveraged"
    EMERGENCY = "emergency"


class MaintenanceAction(enum.Enum):
    NONE = "none"
    LEVER_UP = "lever_up"
    LEVER_DOWN = "lever_down"
    DELEVERAGE = "deleverage"
    EMERGENCY_DELEVERAGE = "emergency_deleverage"


@dataclass(frozen=True)
class AccountData:
    """Lending venue view of one account, in the asset's smallest unit.

    ``health_factor`` is WAD-scaled; ``MAX_UINT256`` means "no debt".
    """

    total_collateral: int
    total_debt: int
    available_borrow: int
    liquidation_threshold_bps: int
    ltv_bps: int
    health_factor: int

    @property
    def has_debt(self) -> bool:
        return self.total_debt > 0

    @property
    def health_factor_float(self) -> float:
        if self.total_debt == 0 or self.health_factor >= MAX_UINT256:
            return math.inf
        return self.health_factor / WAD


@dataclass(frozen=True)
class WithdrawalResult:
    """Outcome of a withdrawal; ``shortfall`` is what could not be freed."""

    requested: int
    withdrawn: int
    shortfall: int = 0
    per_venue: tuple[tuple[str, int], ...] = ()

    @property
    def is_partial(self) -> bool:
        return self.shortfall > 0


@dataclass(frozen=True)
class VenueReport:
    name: str
    value: int
    weight_bps: int
    target_weight_bps: int
    apy: float
    yield_since_last: int


@dataclass(frozen=True)
class HarvestReport:
    total_value: int
    idle: int
    venues: tuple[VenueReport, ...] = ()


@dataclass(frozen=True)
class RebalanceReport:
    reason: str
    target_weights_bps: tuple[int, ...]
    withdrawn: tuple[tuple[str, int], ...] = ()
    deposited: tuple[tuple[str, int], ...] = ()
    left_idle: int = 0

    @property
    def moved(self) -> int:
        return sum(amount for _, amount in self.deposited)


@dataclass(frozen=True)
class TendReport:
    maintenance: MaintenanceAction = MaintenanceAction.NONE
    rebalance: RebalanceReport | None = None
    deployed_idle: int = 0
    health_factor: float = math.inf
    notes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def mutated(self) -> bool:
        return (
            self.maintenance is not MaintenanceAction.NONE
            or (self.rebalance is not None and self.rebalance.moved > 0)
            or self.deployed_idle > 0
        )


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of a simulated deposit -> accrue -> withdraw run."""

    deposit: int
    days: int
    final_value: int
    withdrawal: WithdrawalResult
    daily: tuple[HarvestReport, ...] = ()

    @property
    def profit(self) -> int:
        return self.withdrawal.withdrawn - self.deposit
