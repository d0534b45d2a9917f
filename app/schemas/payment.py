"""
Payment schemas for request/response models
"""

from typing import Optional, Dict, Any
from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field
import uuid

from app.models.payment import PaymentMethod, PaymentStatus
from app.schemas.base import BaseSchema, IDSchema, TimestampSchema


class PaymentInitiate(BaseSchema):
    booking_id: uuid.UUID
    # Positivity is checked by the service so it reports a 400
    amount: Decimal = Field(..., max_digits=10, decimal_places=2)
    period: Optional[date] = Field(None, description="Any day in the billing month; defaults to the current month")
    payment_method: PaymentMethod = PaymentMethod.UPI
    notes: Optional[str] = Field(None, max_length=500)


class CheckoutResponse(BaseModel):
    payment_id: uuid.UUID
    status: PaymentStatus
    redirect_url: Optional[str] = None


class PaymentResponse(IDSchema, TimestampSchema):
    """Customer view of a payment; no gateway internals"""
    booking_id: Optional[uuid.UUID] = None
    retry_of_id: Optional[uuid.UUID] = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    payment_method: PaymentMethod
    period_start: date
    due_date: date
    merchant_transaction_id: Optional[str] = None
    notes: Optional[str] = None
    initiated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None


class AdminPaymentResponse(PaymentResponse):
    customer_id: uuid.UUID
    gateway: str
    gateway_last_code: Optional[str] = None
    gateway_last_state: Optional[str] = None
    gateway_last_raw: Optional[Dict[str, Any]] = None
    booking_snapshot: Optional[Dict[str, Any]] = None
    resolution_notes: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    """Result of polling the gateway for a payment"""
    success: bool
    state: Optional[str] = None
    status: PaymentStatus


class AdminPaymentStatusResponse(PaymentStatusResponse):
    code: Optional[str] = None
    booking_confirmed: bool = False
    raw: Dict[str, Any] = Field(default_factory=dict)


class ManualResolution(BaseModel):
    note: str = Field(..., min_length=3, max_length=500)


class ReconcileResponse(BaseModel):
    payment_id: uuid.UUID
    previous_status: PaymentStatus
    status: PaymentStatus
    changed: bool
    booking_confirmed: bool = False
