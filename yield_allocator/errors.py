"""Error taxonomy for the allocator."""
from __future__ import annotations


class AllocatorError(Exception):
    """Base class for every error raised by the allocator."""


class HealthFactorViolation(AllocatorError):
    """A lending position breached (or would breach) the minimum health factor."""

    def __init__(self, message: str, health_factor: float | None = None) -> None:
        super().__init__(message)
        self.health_factor = health_factor


class InsufficientLiquidity(AllocatorError):
    """A venue cannot honor a withdrawal or borrow of the requested size."""

    def __init__(self, message: str, requested: int = 0, available: int = 0) -> None:
        super().__init__(message)
        self.requested = requested
        self.available = available


class InvalidConfiguration(AllocatorError, ValueError):
    """Rejected configuration: bad weights, leverage bounds, venue wiring."""


class ExternalCallFailure(AllocatorError):
    """A venue reverted unexpectedly (paused, gateway down, ...)."""


class VenueError(Exception):
    """Raised by venue implementations when a call is rejected.

    ``reason`` is a short machine-readable tag such as ``"paused"``,
    ``"liquidity"``, ``"capacity"`` or ``"health"``.
    """

    def __init__(self, message: str, reason: str = "") -> None:
        super().__init__(message)
        self.reason = reason
