"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import cart, checkout

__all__ = ["cart", "checkout"]
