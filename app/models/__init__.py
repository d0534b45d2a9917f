"""
Database models
"""

from app.models.user import User
from app.models.property import Property, Room
from app.models.booking import Booking
from app.models.payment import Payment

__all__ = [
    "User",
    "Property",
    "Room",
    "Booking",
    "Payment",
]
