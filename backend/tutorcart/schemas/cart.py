"""
Pydantic schemas for the cart API.

Money is exposed as ``Decimal`` and serialized as a string so that clients
never round through binary floats.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator

from ..core.enums import CouponRejection, CouponType, OwnerType
from ._strict_base import StrictModel, StrictRequestModel

ULID_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


class CartItemCreate(StrictRequestModel):
    """Add one session to the cart."""

    course_id: str = Field(..., pattern=ULID_PATTERN, description="Course ULID")
    tutor_id: str = Field(..., pattern=ULID_PATTERN, description="Tutor ULID")
    start_at: datetime = Field(..., description="Session start (timezone-aware)")
    duration_min: int = Field(..., description="60, 90 or 120")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "course_id": "01K2K8CVN3A55280PFKJD9YHKV",
                "tutor_id": "01K2K8CVN3A55280PFKJD9YHKW",
                "start_at": "2026-03-02T15:00:00Z",
                "duration_min": 90,
            }
        }
    )

    @field_validator("start_at")
    @classmethod
    def require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("start_at must include a timezone offset")
        return value


class BatchSession(StrictRequestModel):
    tutor_id: str = Field(..., pattern=ULID_PATTERN)
    start_at: datetime
    duration_min: int

    @field_validator("start_at")
    @classmethod
    def require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("start_at must include a timezone offset")
        return value


class CartItemsBatchCreate(StrictRequestModel):
    """Add several sessions of one course; best-effort."""

    course_id: str = Field(..., pattern=ULID_PATTERN)
    sessions: List[BatchSession] = Field(..., min_length=1, max_length=50)


class CouponApply(StrictRequestModel):
    code: str = Field(..., min_length=1, max_length=64)


class CartItemResponse(StrictModel):
    id: str
    course_id: str
    tutor_id: str
    start_at: datetime
    end_at: datetime
    duration_min: int
    duration_label: str
    unit_price: Decimal
    line_total: Decimal
    hold_expires_at: Optional[datetime] = None


class CartCouponResponse(StrictModel):
    code: str
    type: CouponType
    value: Decimal
    rejection: Optional[CouponRejection] = Field(
        None, description="Why the coupon currently gives no discount, if it does not"
    )


class CartResponse(StrictModel):
    """Cart after lazy repair, with totals computed from the stored quotes."""

    cart_id: Optional[str] = None
    owner_type: OwnerType
    items: List[CartItemResponse] = Field(default_factory=list)
    coupon: Optional[CartCouponResponse] = None
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    currency: str
    repaired_count: int = Field(0, description="Items purged because their slot is gone")


class SkippedSession(StrictModel):
    tutor_id: str
    start_at: datetime
    duration_min: int
    reason: str


class CartBatchResponse(StrictModel):
    added_count: int
    skipped_count: int
    added_item_ids: List[str] = Field(default_factory=list)
    skipped: List[SkippedSession] = Field(default_factory=list)


class HoldsExtendedResponse(StrictModel):
    extended_count: int
    expires_at: datetime


class CartMergeResponse(StrictModel):
    added_count: int
    skipped_count: int


class CartItemRemovedResponse(StrictModel):
    success: bool = True
    message: str
    item_id: str
