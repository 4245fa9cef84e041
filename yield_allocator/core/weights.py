"""Performance-weighted target allocation — pure functions, no I/O."""
from __future__ import annotations

from typing import Sequence

from ..errors import InvalidConfiguration
from ..models import BPS


def equal_weights(count: int) -> list[int]:
    """Equal split of 10000 bps; the remainder goes to the first venues."""
    if count <= 0:
        raise InvalidConfiguration("At least one venue is required")
    base, remainder = divmod(BPS, count)
    return [base + (1 if index < remainder else 0) for index in range(count)]


def validate_weights(weights_bps: Sequence[int], min_weight_bps: int = 0) -> None:
    """Raise ``InvalidConfiguration`` unless weights sum to 10000 above the floor."""
    if not weights_bps:
        raise InvalidConfiguration("Weights must not be empty")
    if sum(weights_bps) != BPS:
        raise InvalidConfiguration(
            f"Weights must sum to {BPS} bps, got {sum(weights_bps)}"
        )
    for weight in weights_bps:
        if weight < min_weight_bps:
            raise InvalidConfiguration(
                f"Weight {weight} bps is below the {min_weight_bps} bps floor"
            )


def normalize_weights(weights_bps: Sequence[int], min_weight_bps: int) -> list[int]:
    """Clamp to the floor, then force the sum to exactly 10000.

    Excess created by the clamp is taken only from headroom above the floor,
    so a clamped venue is never pushed back under it.
    """
    if len(weights_bps) * min_weight_bps > BPS:
        raise InvalidConfiguration(
            f"{len(weights_bps)} venues x {min_weight_bps} bps floor exceeds {BPS} bps"
        )

    weights = [max(int(w), min_weight_bps) for w in weights_bps]
    excess = sum(weights) - BPS

    if excess > 0:
        headroom = [w - min_weight_bps for w in weights]
        room = sum(headroom)
        cuts = [excess * h // room for h in headroom]
        weights = [w - c for w, c in zip(weights, cuts)]

    # Rounding residue, one bp at a time, largest weights first.
    residual = BPS - sum(weights)
    order = sorted(range(len(weights)), key=lambda i: (-weights[i], i))
    step = 1 if residual > 0 else -1
    cursor = 0
    while residual:
        index = order[cursor % len(order)]
        if step > 0 or weights[index] > min_weight_bps:
            weights[index] += step
            residual -= step
        cursor += 1
    return weights


def compute_target_weights(
    apys: Sequence[float],
    min_weight_bps: int = 1000,
    baseline_weight_bps: int = 5000,
) -> list[int]:
    """Score venues by APY relative to the cross-venue mean.

    Each venue's share is ``baseline + (1 - baseline) * apy / mean_apy``,
    so a zero-yield venue keeps the baseline portion of an equal share.
    """
    count = len(apys)
    if count == 0:
        raise InvalidConfiguration("At least one venue is required")

    positive = [max(apy, 0.0) for apy in apys]
    mean_apy = sum(positive) / count
    if mean_apy <= 0:
        return normalize_weights(equal_weights(count), min_weight_bps)

    baseline = baseline_weight_bps / BPS
    raw = [
        (baseline + (1 - baseline) * apy / mean_apy) / count * BPS
        for apy in positive
    ]
    return normalize_weights([int(w) for w in raw], min_weight_bps)


def apy_spread_bps(apys: Sequence[float]) -> int:
    """Highest minus lowest APY, in bps."""
    if len(apys) < 2:
        return 0
    return int(round((max(apys) - min(apys)) * BPS))


def max_drift_bps(current_bps: Sequence[int], target_bps: Sequence[int]) -> int:
    return max((abs(c - t) for c, t in zip(current_bps, target_bps)), default=0)
