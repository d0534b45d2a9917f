"""
API endpoints module
"""

from . import bookings, admin, health, payment

__all__ = [
    "bookings",
    "admin",
    "health",
    "payment"
]
