"""Venue implementations and allocation adapters."""
from .adapters import LeveragedVenue, VaultVenue
from .memory import InMemoryLendingPool, InMemoryVault

__all__ = ["InMemoryLendingPool", "InMemoryVault", "LeveragedVenue", "VaultVenue"]
