"""Pure arithmetic helpers — no I/O.

All amounts are integers in the asset's smallest unit. Ratios that cross the
venue boundary (health factors) are WAD-scaled integers; weights are basis
points.
"""
from __future__ import annotations

import math
from decimal import Decimal
from typing import Sequence

from ..models import BPS, MAX_UINT256, WAD

SECONDS_PER_YEAR = 365 * 24 * 60 * 60


def to_wad(value: float) -> int:
    """Convert a decimal ratio to WAD without binary float noise.

    Examples:
        1.1 → 1_100_000_000_000_000_000
    """
    return int(Decimal(str(value)) * WAD)


def wad_to_float(value: int) -> float:
    """WAD → float, mapping the no-debt sentinel to ``math.inf``."""
    if value >= MAX_UINT256:
        return math.inf
    return value / WAD


def mul_div_up(a: int, b: int, denominator: int) -> int:
    return -(-a * b // denominator)


def calc_health_factor(collateral: int, debt: int, liquidation_threshold_bps: int) -> int:
    """Calculate the WAD health factor.

    health_factor = (collateral * liquidation_threshold) / debt
    """
    if debt <= 0:
        return MAX_UINT256
    return collateral * liquidation_threshold_bps * WAD // (BPS * debt)


def calc_leverage(collateral: int, debt: int) -> float:
    """Supplied collateral / net equity (1.0 when unleveraged)."""
    net = collateral - debt
    if net <= 0:
        return math.inf if collateral > 0 else 1.0
    return collateral / net


def max_withdraw_keeping(
    collateral: int, debt: int, liquidation_threshold_bps: int, floor_wad: int
) -> int:
    """Largest collateral withdrawal that keeps the health factor ≥ ``floor_wad``."""
    if debt <= 0:
        return collateral
    required = mul_div_up(debt * floor_wad, BPS, liquidation_threshold_bps * WAD)
    return max(0, collateral - required)


def annualize(previous_rate: int, current_rate: int, elapsed_seconds: float) -> float:
    """Simple (non-compounded) APY from exchange-rate growth."""
    if previous_rate <= 0 or elapsed_seconds <= 0:
        return 0.0
    growth = (current_rate - previous_rate) / previous_rate
    return growth * SECONDS_PER_YEAR / elapsed_seconds


def split_by_weights(amount: int, weights_bps: Sequence[int]) -> list[int]:
    """Split ``amount`` by weight with largest-remainder rounding.

    The parts always sum to ``amount``; zero-weight entries receive nothing.
    """
    total_weight = sum(weights_bps)
    if amount <= 0 or total_weight <= 0:
        return [0] * len(weights_bps)

    parts: list[int] = []
    remainders: list[tuple[int, int]] = []
    for index, weight in enumerate(weights_bps):
        numerator = amount * weight
        parts.append(numerator // total_weight)
        remainders.append((numerator % total_weight, index))

    leftover = amount - sum(parts)
    for _, index in sorted(remainders, key=lambda r: (-r[0], r[1]))[:leftover]:
        parts[index] += 1
    return parts


def current_weights(values: Sequence[int]) -> list[int]:
    """Observed weights in bps; all zeros when nothing is deployed."""
    total = sum(values)
    if total <= 0:
        return [0] * len(values)
    return [value * BPS // total for value in values]
