"""
Pydantic schemas for request and response validation
"""

from app.schemas.booking import (
    BookingCreate,
    BookingCancel,
    BookingResponse,
    BookingListResponse
)
from app.schemas.payment import (
    PaymentInitiate,
    CheckoutResponse,
    PaymentResponse,
    AdminPaymentResponse,
    PaymentStatusResponse,
    AdminPaymentStatusResponse,
    ManualResolution,
    ReconcileResponse
)
from app.schemas.response import (
    ErrorDetail,
    ErrorResponse,
    GatewayAck,
    HealthResponse
)

__all__ = [
    "BookingCreate",
    "BookingCancel",
    "BookingResponse",
    "BookingListResponse",
    "PaymentInitiate",
    "CheckoutResponse",
    "PaymentResponse",
    "AdminPaymentResponse",
    "PaymentStatusResponse",
    "AdminPaymentStatusResponse",
    "ManualResolution",
    "ReconcileResponse",
    "ErrorDetail",
    "ErrorResponse",
    "GatewayAck",
    "HealthResponse"
]
