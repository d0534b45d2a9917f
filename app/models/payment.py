"""
Payment model for rent and booking collections
"""

from sqlalchemy import Column, String, Numeric, Enum, Date, DateTime, ForeignKey, JSON, Text, Uuid
from sqlalchemy.orm import relationship, validates
import enum

from app.models.base import BaseModel


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    INITIATED = "initiated"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED})


class PaymentMethod(str, enum.Enum):
    UPI = "upi"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    NET_BANKING = "net_banking"
    WALLET = "wallet"
    CASH = "cash"


class Payment(BaseModel):
    """
    Payment record; never deleted, it is the financial audit trail
    """
    __tablename__ = "payments"

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(Uuid(as_uuid=True), ForeignKey("bookings.id"), nullable=True, index=True)
    retry_of_id = Column(Uuid(as_uuid=True), ForeignKey("payments.id"), nullable=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="INR", nullable=False)
    status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True
    )
    payment_method = Column(Enum(PaymentMethod), default=PaymentMethod.UPI, nullable=False)

    # Billing period
    period_start = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    booking_snapshot = Column(JSON)
    notes = Column(Text)
    # Gateway decline reasons and admin resolutions; admin tooling only
    resolution_notes = Column(Text)

    # Gateway tracking
    gateway = Column(String(50), default="phonepe", nullable=False)
    merchant_transaction_id = Column(String(64), unique=True, index=True)
    gateway_last_code = Column(String(64))
    gateway_last_state = Column(String(64))
    gateway_last_raw = Column(JSON)

    # Timestamps
    initiated_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    failed_at = Column(DateTime(timezone=True))

    # Relationships
    customer = relationship("User", back_populates="payments")
    booking = relationship("Booking", back_populates="payments")

    @validates("amount", "booking_snapshot")
    def _validate_immutable(self, key, value):
        if getattr(self, key) is not None:
            raise ValueError(f"Payment.{key} cannot be changed after creation")
        if key == "amount" and value is not None and value <= 0:
            raise ValueError("Payment amount must be positive")
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES

    @property
    def amount_minor_units(self) -> int:
        """Amount in paise, as the gateway expects it"""
        return int((self.amount * 100).to_integral_value())

    def __repr__(self):
        return f"<Payment(id={self.id}, booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"
