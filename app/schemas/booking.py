"""
Booking schemas
"""

from pydantic import Field, model_validator
from typing import List, Optional, Dict, Any
from uuid import UUID
from datetime import date, datetime
from decimal import Decimal

from app.schemas.base import BaseSchema, IDSchema, TimestampSchema
from app.models.booking import BookingStatus


class BookingCreate(BaseSchema):
    """Booking creation schema"""
    room_id: UUID
    start_date: date
    end_date: date
    food_included: bool = False

    @model_validator(mode="after")
    def validate_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class BookingCancel(BaseSchema):
    reason: Optional[str] = Field(None, max_length=500)


class BookingResponse(IDSchema, TimestampSchema):
    """Booking response schema"""
    customer_id: UUID
    room_id: UUID
    status: BookingStatus
    price: Decimal
    food_included: bool
    start_date: date
    end_date: date
    room_snapshot: Optional[Dict[str, Any]] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class BookingListResponse(BaseSchema):
    bookings: List[BookingResponse]
    total: int
