from .keeper import Keeper

__all__ = ["Keeper"]
