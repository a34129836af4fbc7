"""
Dual-rate pricing calculator.

Pure functions: the course rate drives what the student pays, the tutor rate
drives what the tutor earns, and the platform margin is the difference. All
money is ``Decimal`` quantized to cents; floats are never used for amounts.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from ..core.enums import CouponType
from ..core.exceptions import InvalidDurationException, ValidationException

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# Session length in minutes -> multiple of the hourly rate
DURATION_MULTIPLIERS: dict[int, Decimal] = {
    60: Decimal("1"),
    90: Decimal("1.5"),
    120: Decimal("2"),
}

SUPPORTED_DURATIONS = tuple(DURATION_MULTIPLIERS)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount: Decimal
    total: Decimal

    @property
    def total_cents(self) -> int:
        return to_minor_units(self.total)


def to_money(value: Any) -> Decimal:
    """Coerce a rate or amount to a cent-quantized Decimal."""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(value)
        except InvalidOperation as exc:
            raise ValidationException(
                "Invalid monetary amount", code="INVALID_AMOUNT", details={"value": value}
            ) from exc
    elif isinstance(value, float):
        # Go through str so 0.1 stays 0.1
        amount = Decimal(str(value))
    else:
        raise ValidationException(
            "Invalid monetary amount", code="INVALID_AMOUNT", details={"value": repr(value)}
        )
    if not amount.is_finite():
        raise ValidationException(
            "Invalid monetary amount", code="INVALID_AMOUNT", details={"value": str(value)}
        )
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Dollars to cents for the payment processor."""
    return int((to_money(amount) * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))


def is_valid_duration(duration_min: Any) -> bool:
    return isinstance(duration_min, int) and not isinstance(duration_min, bool) and (
        duration_min in DURATION_MULTIPLIERS
    )


def duration_multiplier(duration_min: Any) -> Decimal:
    if not is_valid_duration(duration_min):
        raise InvalidDurationException(duration_min, SUPPORTED_DURATIONS)
    return DURATION_MULTIPLIERS[duration_min]


def duration_label(duration_min: int) -> str:
    labels = {60: "1 hour", 90: "1h30", 120: "2 hours"}
    duration_multiplier(duration_min)
    return labels[duration_min]


def student_price(course_rate: Any, duration_min: int) -> Decimal:
    """What the student pays for one session at the course's hourly rate."""
    return to_money(to_money(course_rate) * duration_multiplier(duration_min))


def tutor_earnings(tutor_rate: Any, duration_min: int) -> Decimal:
    """What the tutor earns for one session at the tutor's own hourly rate."""
    return to_money(to_money(tutor_rate) * duration_multiplier(duration_min))


def margin(price: Decimal, earnings: Decimal) -> Decimal:
    return to_money(price) - to_money(earnings)


def margin_percentage(price: Decimal, earnings: Decimal) -> Decimal:
    price = to_money(price)
    if price == 0:
        return Decimal("0.00")
    return to_money((price - to_money(earnings)) / price * HUNDRED)


def coupon_discount(
    subtotal: Decimal, coupon_type: Optional[CouponType | str], coupon_value: Any
) -> Decimal:
    """Order-level discount, capped so the total never goes below zero."""
    subtotal = to_money(subtotal)
    if coupon_type is None or coupon_value is None:
        return Decimal("0.00")
    kind = CouponType(coupon_type)
    value = to_money(coupon_value)
    if value <= 0:
        return Decimal("0.00")
    if kind is CouponType.PERCENT:
        discount = to_money(subtotal * value / HUNDRED)
    else:
        discount = value
    return min(discount, subtotal)


def order_total(
    line_totals: Iterable[Any],
    coupon_type: Optional[CouponType | str] = None,
    coupon_value: Any = None,
) -> OrderTotals:
    subtotal = sum((to_money(line) for line in line_totals), Decimal("0.00"))
    discount = coupon_discount(subtotal, coupon_type, coupon_value)
    return OrderTotals(subtotal=subtotal, discount=discount, total=subtotal - discount)
