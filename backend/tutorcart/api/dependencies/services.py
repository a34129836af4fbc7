# backend/tutorcart/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.clock import Clock, system_clock
from ...services.cart_service import CartService
from ...services.checkout_service import CheckoutService
from ...services.payment_processor import PaymentProcessor, StripePaymentProcessor
from .database import get_db

logger = logging.getLogger(__name__)


def get_clock() -> Clock:
    """Time source; tests override this with a fixed clock."""
    return system_clock


@lru_cache(maxsize=1)
def get_payment_processor() -> PaymentProcessor:
    """Get singleton payment processor instance."""
    return StripePaymentProcessor()


def get_cart_service(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> CartService:
    """Get CartService instance with proper dependencies."""
    return CartService(db, clock)


def get_checkout_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    payment_processor: PaymentProcessor = Depends(get_payment_processor),
) -> CheckoutService:
    """
    Get checkout service instance.

    Args:
        db: Database session
        clock: Time source shared with the cart it snapshots
        payment_processor: Processor used to open payment intents

    Returns:
        CheckoutService instance
    """
    return CheckoutService(db, clock, payment_processor=payment_processor)
