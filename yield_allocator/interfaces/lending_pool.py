"""Lending pool protocol — supply/borrow venue abstraction."""
from typing import Protocol

from ..models import AccountData


class LendingPool(Protocol):
    """Single-asset lending venue (Aave-style pool).

    Implementations raise ``VenueError`` when a call is rejected.
    """

    async def supply(self, amount: int, on_behalf_of: str) -> None: ...

    async def withdraw(self, amount: int, to: str) -> int: ...

    async def borrow(self, amount: int, rate_mode: int, on_behalf_of: str) -> None: ...

    async def repay(self, amount: int, rate_mode: int, on_behalf_of: str) -> int: ...

    async def get_account_data(self, account: str) -> AccountData: ...

    async def available_liquidity(self) -> int: ...
