"""Venue protocol — the uniform allocation target the engine spreads capital over."""
from typing import Protocol


class Venue(Protocol):
    """One allocation target, measured in its own ownership units.

    ``withdraw`` returns ``(units_burned, assets_received)``.
    """

    @property
    def name(self) -> str: ...

    async def deposit(self, amount: int) -> int: ...

    async def withdraw(self, amount: int) -> tuple[int, int]: ...

    async def redeem(self, units: int) -> int: ...

    async def convert_to_assets(self, units: int) -> int: ...

    async def max_deposit(self) -> int: ...

    async def max_withdraw(self, units: int) -> int: ...

    async def exchange_rate(self) -> int: ...
