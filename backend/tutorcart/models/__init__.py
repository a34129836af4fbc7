"""
Database models for the reservation engine.

- Catalog: courses (student rate) and tutors (payout rate), read-only here
- Appointment: confirmed bookings written by the settlement step
- SlotHold: ephemeral claims on a tutor timeslot
- Cart / CartItem: owner-scoped line items backed 1:1 by holds
- Coupon: order-level discount codes
- CheckoutSnapshot: serialized cart handed to payment settlement
"""

from .appointment import Appointment
from .cart import Cart, CartItem
from .catalog import Course, Tutor
from .checkout import CheckoutSnapshot
from .coupon import Coupon
from .slot_hold import SlotHold

__all__ = [
    "Appointment",
    "Cart",
    "CartItem",
    "CheckoutSnapshot",
    "Coupon",
    "Course",
    "SlotHold",
    "Tutor",
]
