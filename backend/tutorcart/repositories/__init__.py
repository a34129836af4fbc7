"""
Repository layer: data access separated from business logic.

Repositories flush but never commit; services own the transaction boundary.
"""

from .base_repository import BaseRepository
from .cart_repository import CartRepository
from .catalog_repository import CatalogRepository
from .checkout_snapshot_repository import CheckoutSnapshotRepository
from .conflict_checker_repository import ConflictCheckerRepository
from .coupon_repository import CouponRepository
from .factory import RepositoryFactory
from .slot_hold_repository import SlotHoldRepository

__all__ = [
    "BaseRepository",
    "CartRepository",
    "CatalogRepository",
    "CheckoutSnapshotRepository",
    "ConflictCheckerRepository",
    "CouponRepository",
    "RepositoryFactory",
    "SlotHoldRepository",
]
