"""
Shopping cart and its line items.

Every cart item is shadowed by exactly one live ``SlotHold`` for the same
tutor and start time; the hold is created and removed in the same transaction
as the item.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.identity import Owner
from ..database import Base
from .types import UTCDateTime


class Cart(Base):
    __tablename__ = "carts"
    __table_args__ = (
        UniqueConstraint("owner_type", "owner_id", name="uq_carts_owner"),
        CheckConstraint("owner_type IN ('user', 'session')", name="ck_carts_owner_type"),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    owner_type = Column(String(10), nullable=False)
    owner_id = Column(String(64), nullable=False)
    coupon_id = Column(String(26), ForeignKey("coupons.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now())

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.start_at",
    )
    coupon = relationship("Coupon")

    @property
    def owner(self) -> Owner:
        return Owner(self.owner_type, self.owner_id)

    def __repr__(self) -> str:
        return f"<Cart {self.owner_type}:{self.owner_id} items={len(self.items)}>"


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint(
            "cart_id", "tutor_id", "start_at", "duration_min", name="uq_cart_items_slot"
        ),
        CheckConstraint("duration_min IN (60, 90, 120)", name="ck_cart_items_duration"),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    cart_id = Column(String(26), ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False)
    tutor_id = Column(String(26), ForeignKey("tutors.id"), nullable=False)

    start_at = Column(UTCDateTime, nullable=False)
    duration_min = Column(Integer, nullable=False)

    # Quote captured when the item was added; checkout decides whether to honor it
    unit_price_cad = Column(Numeric(10, 2), nullable=False)
    line_total_cad = Column(Numeric(10, 2), nullable=False)

    created_at = Column(UTCDateTime, server_default=func.now())

    cart = relationship("Cart", back_populates="items")
    course = relationship("Course")
    tutor = relationship("Tutor")

    @property
    def end_at(self) -> datetime:
        return self.start_at + timedelta(minutes=self.duration_min)

    def __repr__(self) -> str:
        return f"<CartItem tutor={self.tutor_id} start={self.start_at} {self.duration_min}min>"
