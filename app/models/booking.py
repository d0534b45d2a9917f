"""
Booking model
"""

from sqlalchemy import Column, String, ForeignKey, Enum, Numeric, Date, DateTime, Boolean, JSON, Text, Uuid
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# A payment must never move a booking out of these
TERMINAL_BOOKING_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})


class Booking(BaseModel):
    """
    Room booking held by a customer
    """
    __tablename__ = "bookings"

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    room_id = Column(Uuid(as_uuid=True), ForeignKey("rooms.id"), nullable=False, index=True)
    status = Column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )
    price = Column(Numeric(10, 2), nullable=False)
    food_included = Column(Boolean, default=False, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    room_snapshot = Column(JSON)
    confirmed_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(Text)

    # Relationships
    customer = relationship("User", back_populates="bookings")
    room = relationship("Room", back_populates="bookings")
    payments = relationship("Payment", back_populates="booking")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BOOKING_STATUSES

    def __repr__(self):
        return f"<Booking(id={self.id}, status={self.status}, price={self.price})>"
