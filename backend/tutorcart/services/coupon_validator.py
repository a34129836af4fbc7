# backend/tutorcart/services/coupon_validator.py
"""
Coupon Validator

Checks a coupon's active flag, validity window, and redemption ceiling.
Expired coupons flip themselves to inactive the first time they are checked,
so no separate sweep is needed.
"""

from datetime import datetime
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.enums import CouponRejection
from ..models.coupon import Coupon
from ..models.types import ensure_utc
from ..repositories import RepositoryFactory
from ..repositories.coupon_repository import CouponRepository
from .base import BaseService

logger = logging.getLogger(__name__)


def check_coupon(coupon: Optional[Coupon], now: datetime) -> Optional[CouponRejection]:
    """
    Return the first rule the coupon breaks, or None when it is usable.

    Order matters: an inactive coupon is reported as inactive even if it has
    also expired.
    """
    if coupon is None:
        return CouponRejection.UNKNOWN_CODE
    if not coupon.active:
        return CouponRejection.INACTIVE
    now = ensure_utc(now)
    if coupon.starts_at is not None and ensure_utc(coupon.starts_at) > now:
        return CouponRejection.NOT_YET_VALID
    if coupon.ends_at is not None and ensure_utc(coupon.ends_at) <= now:
        return CouponRejection.EXPIRED
    if coupon.max_redemptions is not None and (coupon.redemption_count or 0) >= coupon.max_redemptions:
        return CouponRejection.REDEMPTION_LIMIT_REACHED
    return None


class CouponValidator(BaseService):
    """Stateful wrapper around ``check_coupon`` that persists self-deactivation."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        repository: Optional[CouponRepository] = None,
    ):
        super().__init__(db, clock)
        self.repository = repository or RepositoryFactory.create_coupon_repository(db)

    def validate(self, coupon: Optional[Coupon]) -> Optional[CouponRejection]:
        """
        Validate inside the caller's transaction.

        When the coupon turns out to be expired it is deactivated through the
        repository; the caller's commit makes that flip durable even when the
        surrounding operation is rejected.
        """
        reason = check_coupon(coupon, self.clock.now())
        if reason is CouponRejection.EXPIRED and coupon is not None:
            self.repository.deactivate(coupon)
            self.logger.info(
                "coupon.auto_deactivated",
                extra={"coupon_code": coupon.code, "coupon_id": coupon.id},
            )
        return reason

    def lookup_and_validate(self, code: str) -> tuple[Optional[Coupon], Optional[CouponRejection]]:
        coupon = self.repository.get_by_code(code)
        return coupon, self.validate(coupon)
