"""
Reservation snapshot handed to the settlement boundary.

The snapshot is self-contained: the settlement step rebuilds appointments and
order records from it without reading cart state, which may have changed or
expired by the time the payment completes.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from ..core.enums import CouponType, OwnerType
from ._strict_base import StrictModel

SNAPSHOT_SCHEMA_VERSION = 1


class SnapshotItem(StrictModel):
    cart_item_id: str
    tutor_id: str
    course_id: str
    start_at: datetime
    end_at: datetime
    duration_min: int
    quoted_price: Decimal = Field(..., description="Price captured at add-to-cart time")
    price: Decimal = Field(..., description="Price charged for this session")
    repriced: bool = Field(..., description="True when price differs from the quote")
    tutor_earnings: Decimal
    margin: Decimal
    margin_pct: Decimal


class SnapshotCoupon(StrictModel):
    code: str
    type: CouponType
    value: Decimal
    discount: Decimal


class ReservationSnapshot(StrictModel):
    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    payment_reference: str
    owner_type: OwnerType
    owner_id: str
    currency: str
    price_policy: str
    items: List[SnapshotItem]
    coupon: Optional[SnapshotCoupon] = None
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    total_cents: int
    tutor_earnings_total: Decimal
    margin_total: Decimal
    created_at: datetime


class CheckoutSessionResponse(StrictModel):
    """Result of starting checkout: where the client completes payment."""

    payment_reference: str
    client_secret: Optional[str] = None
    status: str
    snapshot: ReservationSnapshot


class SnapshotItemHoldState(StrictModel):
    cart_item_id: str
    tutor_id: str
    start_at: datetime
    hold_live: bool
    hold_expires_at: Optional[datetime] = None


class SnapshotHoldReport(StrictModel):
    payment_reference: str
    all_live: bool
    items: List[SnapshotItemHoldState]
