"""Protocol interfaces for external venues and notification channels."""
from .lending_pool import LendingPool
from .notifier import Notifier
from .vault import Vault
from .venue import Venue

__all__ = ["LendingPool", "Notifier", "Vault", "Venue"]
