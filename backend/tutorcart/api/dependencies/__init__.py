# backend/tutorcart/api/dependencies/__init__.py
"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from .database import get_db
from .identity import get_merge_owners, get_owner
from .services import (
    get_cart_service,
    get_checkout_service,
    get_clock,
    get_payment_processor,
)

__all__ = [
    # Identity
    "get_owner",
    "get_merge_owners",
    # Database
    "get_db",
    # Services
    "get_clock",
    "get_payment_processor",
    "get_cart_service",
    "get_checkout_service",
]
