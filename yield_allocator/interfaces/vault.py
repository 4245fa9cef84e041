"""Vault protocol — tokenized yield venue abstraction."""
from typing import Protocol


class Vault(Protocol):
    """ERC-4626 style vault. ``convert_to_assets`` is the yield signal."""

    async def deposit(self, amount: int, receiver: str) -> int: ...

    async def withdraw(self, amount: int, receiver: str, owner: str) -> int: ...

    async def redeem(self, units: int, receiver: str, owner: str) -> int: ...

    async def convert_to_assets(self, units: int) -> int: ...

    async def max_deposit(self, receiver: str) -> int: ...

    async def max_withdraw(self, owner: str) -> int: ...

    async def total_assets(self) -> int: ...
