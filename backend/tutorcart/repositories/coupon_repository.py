"""Coupon lookups."""

from typing import Optional

from sqlalchemy.orm import Session

from ..models.coupon import Coupon, normalize_coupon_code
from .base_repository import BaseRepository


class CouponRepository(BaseRepository[Coupon]):
    def __init__(self, db: Session):
        super().__init__(db, Coupon)

    def get_by_code(self, code: str) -> Optional[Coupon]:
        normalized = normalize_coupon_code(code)
        if not normalized:
            return None
        return self.find_one_by(code=normalized)

    def deactivate(self, coupon: Coupon) -> None:
        coupon.active = False
        self.db.flush()
