"""Enumerations shared by models, services and schemas."""

from enum import Enum


class OwnerType(str, Enum):
    """Who owns a cart or a slot hold."""

    USER = "user"
    SESSION = "session"


class CouponType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class CouponRejection(str, Enum):
    """Reasons a coupon cannot be applied."""

    UNKNOWN_CODE = "UNKNOWN_CODE"
    INACTIVE = "INACTIVE"
    NOT_YET_VALID = "NOT_YET_VALID"
    EXPIRED = "EXPIRED"
    REDEMPTION_LIMIT_REACHED = "REDEMPTION_LIMIT_REACHED"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle statuses (written by the settlement step)."""

    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    REFUNDED = "refunded"


# Appointments in these statuses block any overlapping hold or cart item
BLOCKING_APPOINTMENT_STATUSES = (AppointmentStatus.SCHEDULED, AppointmentStatus.COMPLETED)


class HoldConflictReason(str, Enum):
    """Why a slot hold could not be granted."""

    HELD_ELSEWHERE = "held_elsewhere"
    BOOKED = "booked"
