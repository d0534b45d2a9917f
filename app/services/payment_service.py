"""
Payment Service with PhonePe Integration
Handles rent and booking payment creation, checkout and retries
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_session
from app.core.exceptions import (
    AuthorizationError,
    BookingError,
    ConflictError,
    GatewayRejectedError,
    NotFoundError,
    ValidationError,
)
from app.core.locks import get_reconciliation_lock
from app.models.booking import Booking
from app.models.payment import Payment, PaymentMethod, PaymentStatus
from app.models.user import User
from app.services.gateway_client import PhonePeClient, get_gateway_client
from app.services.reconciler import PaymentReconciler

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    payment: Payment
    redirect_url: str


def new_correlation_id(payment_id: uuid.UUID) -> str:
    """
    Merchant transaction id for one checkout attempt; unique per attempt
    """
    return f"PAY{payment_id.hex[:12].upper()}{secrets.token_hex(4).upper()}"


def billing_period(period: Optional[date] = None) -> date:
    return (period or date.today()).replace(day=1)


def due_date_for(period_start: date) -> date:
    return period_start.replace(day=settings.PAYMENT_DUE_DAY)


def booking_snapshot(booking: Booking) -> Dict[str, Any]:
    """Booking details as they were when the payment was created"""
    return {
        "booking_id": str(booking.id),
        "room_id": str(booking.room_id),
        "status": booking.status.value,
        "price": str(booking.price),
        "food_included": booking.food_included,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "room": booking.room_snapshot,
    }


class PaymentService:
    """Service for handling payment operations"""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PhonePeClient,
        reconciler: PaymentReconciler
    ):
        self.session = session
        self.gateway = gateway
        self.reconciler = reconciler

    async def _open_payment_for_period(
        self,
        booking_id: uuid.UUID,
        period_start: date
    ) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment).where(
                Payment.booking_id == booking_id,
                Payment.period_start == period_start,
                Payment.status != PaymentStatus.FAILED
            )
        )
        return result.scalars().first()

    async def create_payment(
        self,
        customer: User,
        booking_id: uuid.UUID,
        amount: Decimal,
        period: Optional[date] = None,
        method: Union[PaymentMethod, str] = PaymentMethod.UPI,
        notes: Optional[str] = None
    ) -> Payment:
        """Create a pending payment for a booking and billing month"""
        if amount is None or amount <= 0:
            raise ValidationError("Amount must be greater than zero", field="amount")

        booking = await self.session.get(Booking, booking_id)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        if booking.customer_id != customer.id:
            raise AuthorizationError("You can only pay for your own bookings")
        if booking.is_terminal:
            raise BookingError(f"Cannot take payment for a {booking.status.value} booking")

        period_start = billing_period(period)
        existing = await self._open_payment_for_period(booking.id, period_start)
        if existing:
            raise ConflictError(
                f"A payment for {period_start:%B %Y} already exists",
                details={"payment_id": str(existing.id), "status": existing.status.value}
            )

        payment = Payment(
            customer_id=customer.id,
            booking_id=booking.id,
            amount=amount,
            currency=settings.PAYMENT_CURRENCY,
            status=PaymentStatus.PENDING,
            payment_method=PaymentMethod(method),
            period_start=period_start,
            due_date=due_date_for(period_start),
            booking_snapshot=booking_snapshot(booking),
            notes=notes,
        )
        self.session.add(payment)
        await self.session.commit()
        await self.session.refresh(payment)

        logger.info(f"Payment {payment.id} created for booking {booking.id}, period {period_start}")
        return payment

    async def start_checkout(self, payment: Payment) -> CheckoutSession:
        """
        Ask the gateway for a checkout page and mark the payment initiated

        Rejections and transport failures leave the payment pending so the
        customer can simply try again.
        """
        if payment.status != PaymentStatus.PENDING:
            raise ConflictError(
                f"Only pending payments can be checked out (status: {payment.status.value})"
            )

        correlation_id = new_correlation_id(payment.id)
        return_url = f"{settings.SITE_URL}/dashboard/rent/payments/{payment.id}"

        result = await self.gateway.create_checkout(
            correlation_id,
            payment.amount_minor_units,
            return_url,
            merchant_user_id=f"MU{payment.customer_id.hex[:20]}",
        )

        if not result.success:
            payment.gateway_last_raw = result.raw_response
            code = result.raw_response.get("code")
            if code:
                payment.gateway_last_code = str(code)[:64]
            await self.session.commit()
            raise GatewayRejectedError(details={"code": code})

        payment = await self.reconciler.record_checkout(payment, correlation_id, result.raw_response)
        return CheckoutSession(payment=payment, redirect_url=result.redirect_url)

    async def retry_payment(self, payment: Payment) -> CheckoutSession:
        """Start a fresh attempt for a failed payment; the failed record is kept"""
        if payment.status != PaymentStatus.FAILED:
            raise ConflictError("Only failed payments can be retried")

        if payment.booking_id:
            existing = await self._open_payment_for_period(payment.booking_id, payment.period_start)
            if existing:
                raise ConflictError(
                    "This payment has already been retried",
                    details={"payment_id": str(existing.id), "status": existing.status.value}
                )

        retry = Payment(
            customer_id=payment.customer_id,
            booking_id=payment.booking_id,
            retry_of_id=payment.id,
            amount=payment.amount,
            currency=payment.currency,
            status=PaymentStatus.PENDING,
            payment_method=payment.payment_method,
            period_start=payment.period_start,
            due_date=payment.due_date,
            booking_snapshot=dict(payment.booking_snapshot or {}),
            notes=f"Retry of payment {payment.id}",
        )
        self.session.add(retry)
        await self.session.commit()
        await self.session.refresh(retry)

        logger.info(f"Payment {retry.id} created as retry of {payment.id}")
        return await self.start_checkout(retry)


def get_payment_service(
    session: AsyncSession = Depends(get_session),
    gateway: PhonePeClient = Depends(get_gateway_client)
) -> PaymentService:
    """
    FastAPI dependency
    """
    return PaymentService(session, gateway, PaymentReconciler(session, get_reconciliation_lock()))
