"""
Property and Room models
"""

from sqlalchemy import Column, String, Integer, ForeignKey, Enum, Numeric, Boolean, Text, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship
import enum

from app.models.base import BaseModel


class PropertyType(str, enum.Enum):
    PG = "pg"
    HOSTEL = "hostel"
    APARTMENT = "apartment"


class Property(BaseModel):
    """
    Rentable property listed on the site
    """
    __tablename__ = "properties"

    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    property_type = Column(Enum(PropertyType), default=PropertyType.PG, nullable=False)
    address = Column(Text)
    city = Column(String(100), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    rooms = relationship("Room", back_populates="property", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Property(id={self.id}, slug={self.slug}, type={self.property_type})>"


class Room(BaseModel):
    """
    Room within a property, rented per month
    """
    __tablename__ = "rooms"
    __table_args__ = (
        UniqueConstraint('property_id', 'room_number', name='uq_property_room'),
    )

    property_id = Column(Uuid(as_uuid=True), ForeignKey("properties.id"), nullable=False, index=True)
    room_number = Column(String(20), nullable=False)
    sharing = Column(Integer, default=1, nullable=False)
    monthly_rent = Column(Numeric(10, 2), nullable=False)
    food_available = Column(Boolean, default=False, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    # Relationships
    property = relationship("Property", back_populates="rooms")
    bookings = relationship("Booking", back_populates="room")

    def __repr__(self):
        return f"<Room(id={self.id}, number={self.room_number}, rent={self.monthly_rent})>"
