"""Core engine: leverage control, allocation, and the strategy facade."""
from .allocation import AllocationEngine, VenueAllocation
from .leverage import LeverageController
from .strategy import YieldStrategy

__all__ = ["AllocationEngine", "LeverageController", "VenueAllocation", "YieldStrategy"]
