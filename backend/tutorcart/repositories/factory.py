# backend/tutorcart/repositories/factory.py
"""
Repository Factory

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .cart_repository import CartRepository
    from .catalog_repository import CatalogRepository
    from .checkout_snapshot_repository import CheckoutSnapshotRepository
    from .conflict_checker_repository import ConflictCheckerRepository
    from .coupon_repository import CouponRepository
    from .slot_hold_repository import SlotHoldRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_slot_hold_repository(db: Session) -> "SlotHoldRepository":
        """Create repository for slot hold operations."""
        from .slot_hold_repository import SlotHoldRepository

        return SlotHoldRepository(db)

    @staticmethod
    def create_conflict_checker_repository(db: Session) -> "ConflictCheckerRepository":
        """Create repository for appointment overlap queries."""
        from .conflict_checker_repository import ConflictCheckerRepository

        return ConflictCheckerRepository(db)

    @staticmethod
    def create_cart_repository(db: Session) -> "CartRepository":
        from .cart_repository import CartRepository

        return CartRepository(db)

    @staticmethod
    def create_catalog_repository(db: Session) -> "CatalogRepository":
        from .catalog_repository import CatalogRepository

        return CatalogRepository(db)

    @staticmethod
    def create_coupon_repository(db: Session) -> "CouponRepository":
        from .coupon_repository import CouponRepository

        return CouponRepository(db)

    @staticmethod
    def create_checkout_snapshot_repository(db: Session) -> "CheckoutSnapshotRepository":
        from .checkout_snapshot_repository import CheckoutSnapshotRepository

        return CheckoutSnapshotRepository(db)
