# backend/tutorcart/core/exceptions.py
"""
Domain-specific exceptions for the reservation and pricing engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional, Sequence

from fastapi import HTTPException, status

from .enums import CouponRejection

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when the caller has no resolved identity."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class SlotUnavailableException(ConflictException):
    """Raised when a slot is held by another owner or already booked."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot is no longer available",
            code="SLOT_UNAVAILABLE",
            details=details or {},
        )


class DuplicateItemException(ConflictException):
    """Raised when the same slot is already in the caller's cart."""

    def __init__(self, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message="This session is already in your cart",
            code="DUPLICATE_ITEM",
            details=details or {},
        )


class InvalidDurationException(ValidationException):
    """Raised for a session length outside the supported set."""

    def __init__(self, duration_min: Any, supported: Sequence[int]):
        allowed = ", ".join(str(minutes) for minutes in supported)
        super().__init__(
            message=f"Duration must be one of {allowed} minutes",
            code="INVALID_DURATION",
            details={"duration_min": duration_min, "supported": list(supported)},
        )


class CatalogNotFoundException(NotFoundException):
    """Raised when a course or tutor lookup misses."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            message=f"{entity.capitalize()} not found",
            code=f"{entity.upper()}_NOT_FOUND",
            details={f"{entity}_id": entity_id},
        )


class InactiveEntityException(BusinessRuleException):
    """Raised when a course or tutor exists but is not bookable."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            message=f"{entity.capitalize()} is not currently available",
            code="INACTIVE",
            details={"entity": entity, f"{entity}_id": entity_id},
        )


_COUPON_MESSAGES = {
    CouponRejection.UNKNOWN_CODE: "Invalid promo code",
    CouponRejection.INACTIVE: "This promo code is no longer active",
    CouponRejection.NOT_YET_VALID: "This promo code is not valid yet",
    CouponRejection.EXPIRED: "This promo code has expired",
    CouponRejection.REDEMPTION_LIMIT_REACHED: "This promo code has reached its usage limit",
}


class CouponInvalidException(BusinessRuleException):
    """Raised when a coupon fails validation; the reason is surfaced verbatim."""

    def __init__(self, reason: CouponRejection, code: Optional[str] = None):
        self.reason = reason
        details: Dict[str, Any] = {"reason": reason.value}
        if code:
            details["coupon_code"] = code
        super().__init__(
            message=_COUPON_MESSAGES[reason],
            code="COUPON_INVALID",
            details=details,
        )


class EmptyCartException(BusinessRuleException):
    """Raised when checkout is attempted on an empty cart."""

    def __init__(self) -> None:
        super().__init__(message="Your cart is empty", code="EMPTY_CART")


class CartItemNotFoundException(NotFoundException):
    """
    Raised when a cart item is missing or belongs to another owner.

    Both cases share one response so that item ids of other shoppers
    cannot be probed.
    """

    def __init__(self, item_id: str):
        super().__init__(
            message="Cart item not found",
            code="CART_ITEM_NOT_FOUND",
            details={"item_id": item_id},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
