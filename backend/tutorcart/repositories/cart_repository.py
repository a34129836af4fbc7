"""
Cart Repository

Owner-scoped carts and their line items. Carts are created lazily; a
concurrent first access by the same owner resolves to the single row allowed
by the ``(owner_type, owner_id)`` unique constraint.
"""

from datetime import datetime
from decimal import Decimal
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ..core.identity import Owner
from ..models.cart import Cart, CartItem
from ..models.coupon import Coupon
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CartRepository(BaseRepository[Cart]):
    def __init__(self, db: Session):
        super().__init__(db, Cart)

    def get_for_owner(self, owner: Owner) -> Optional[Cart]:
        return (
            self.db.query(Cart)
            .options(selectinload(Cart.items), selectinload(Cart.coupon))
            .filter_by(**owner.as_filter())
            .first()
        )

    def get_or_create(self, owner: Owner) -> Cart:
        cart = self.get_for_owner(owner)
        if cart is not None:
            return cart
        cart = Cart(owner_type=owner.kind.value, owner_id=owner.id)
        try:
            with self.db.begin_nested():
                self.db.add(cart)
                self.db.flush()
        except IntegrityError:
            # Another request created it first
            existing = self.get_for_owner(owner)
            if existing is None:
                raise
            return existing
        self.logger.debug("cart.created", extra={"owner": owner.key, "cart_id": cart.id})
        return cart

    def get_item(self, item_id: str) -> Optional[CartItem]:
        return self.db.get(CartItem, item_id)

    def add_item(
        self,
        cart: Cart,
        *,
        course_id: str,
        tutor_id: str,
        start_at: datetime,
        duration_min: int,
        unit_price: Decimal,
    ) -> CartItem:
        item = CartItem(
            course_id=course_id,
            tutor_id=tutor_id,
            start_at=start_at,
            duration_min=duration_min,
            unit_price_cad=unit_price,
            line_total_cad=unit_price,
        )
        cart.items.append(item)
        self.db.flush()
        return item

    def remove_item(self, cart: Cart, item: CartItem) -> None:
        if item in cart.items:
            cart.items.remove(item)
        else:
            self.db.delete(item)
        self.db.flush()

    def set_coupon(self, cart: Cart, coupon: Optional[Coupon]) -> None:
        cart.coupon = coupon
        self.db.flush()

    def delete_cart(self, cart: Cart) -> None:
        self.db.delete(cart)
        self.db.flush()
