"""Discount codes applied at the order level."""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, Numeric, String
from sqlalchemy.sql import func
import ulid

from ..database import Base
from .types import UTCDateTime


def normalize_coupon_code(code: str) -> str:
    return (code or "").strip().upper()


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("type IN ('percent', 'fixed')", name="ck_coupons_type"),
        CheckConstraint("value >= 0", name="ck_coupons_value_non_negative"),
        CheckConstraint("redemption_count >= 0", name="ck_coupons_redemptions_non_negative"),
    )

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    code = Column(String(64), nullable=False, unique=True, index=True)
    type = Column(String(10), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    starts_at = Column(UTCDateTime, nullable=True)
    ends_at = Column(UTCDateTime, nullable=True)

    redemption_count = Column(Integer, nullable=False, default=0)
    max_redemptions = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, server_default=func.now())

    def __init__(self, **kwargs):
        if "code" in kwargs:
            kwargs["code"] = normalize_coupon_code(kwargs["code"])
        super().__init__(**kwargs)

    def __repr__(self) -> str:
        return f"<Coupon {self.code} {self.type}={self.value} active={self.active}>"
