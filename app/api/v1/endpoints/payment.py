"""
Payment API Endpoints
Customer checkout, status polling and the gateway's server-to-server notifications
"""

import json
import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_session
from app.core.exceptions import (
    ExternalServiceError,
    GatewayRejectedError,
    InvalidSignatureError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from app.core.metrics import SIGNATURE_REJECTIONS
from app.core.security import get_current_user
from app.models.payment import Payment, PaymentStatus
from app.models.user import User
from app.schemas.payment import (
    CheckoutResponse,
    PaymentInitiate,
    PaymentResponse,
    PaymentStatusResponse,
)
from app.schemas.response import GatewayAck
from app.services.gateway_client import PhonePeClient, get_gateway_client
from app.services.gateway_events import parse_gateway_event
from app.services.payment_service import PaymentService, get_payment_service
from app.services.reconciler import PaymentReconciler, get_payment_reconciler
from app.services.signature import SignatureVerifier, get_signature_verifier

logger = logging.getLogger(__name__)
router = APIRouter()


async def _get_owned_payment(db: AsyncSession, payment_id: UUID, user: User) -> Payment:
    result = await db.execute(
        select(Payment).where(Payment.id == payment_id, Payment.customer_id == user.id)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise NotFoundError("Payment", payment_id)
    return payment


@router.post("/initiate", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def initiate_payment(
    payment_data: PaymentInitiate,
    current_user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service)
):
    """Create a payment for a booking and start the gateway checkout"""
    payment = await service.create_payment(
        current_user,
        payment_data.booking_id,
        payment_data.amount,
        period=payment_data.period,
        method=payment_data.payment_method,
        notes=payment_data.notes,
    )
    payment_id = payment.id

    try:
        checkout = await service.start_checkout(payment)
    except (GatewayRejectedError, ExternalServiceError) as e:
        # The pending record stays; the client retries via /{payment_id}/checkout
        e.details["payment_id"] = str(payment_id)
        raise

    return CheckoutResponse(
        payment_id=checkout.payment.id,
        status=checkout.payment.status,
        redirect_url=checkout.redirect_url
    )


@router.post("/{payment_id}/checkout", response_model=CheckoutResponse)
async def checkout_payment(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: PaymentService = Depends(get_payment_service)
):
    """Start (or restart) the gateway checkout for a pending payment"""
    payment = await _get_owned_payment(db, payment_id, current_user)
    checkout = await service.start_checkout(payment)
    return CheckoutResponse(
        payment_id=checkout.payment.id,
        status=checkout.payment.status,
        redirect_url=checkout.redirect_url
    )


@router.post("/{payment_id}/retry", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def retry_payment(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    service: PaymentService = Depends(get_payment_service)
):
    """Create a fresh attempt for a failed payment"""
    payment = await _get_owned_payment(db, payment_id, current_user)
    checkout = await service.retry_payment(payment)
    return CheckoutResponse(
        payment_id=checkout.payment.id,
        status=checkout.payment.status,
        redirect_url=checkout.redirect_url
    )


@router.get("", response_model=List[PaymentResponse])
async def list_payments(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
):
    """List the current user's payments, newest first"""
    query = select(Payment).where(Payment.customer_id == current_user.id)
    if status_filter:
        query = query.where(Payment.status == status_filter)
    query = query.order_by(Payment.created_at.desc()).offset(skip).limit(limit)

    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session)
):
    """Get payment details"""
    return await _get_owned_payment(db, payment_id, current_user)


@router.get("/{payment_id}/status", response_model=PaymentStatusResponse)
async def get_payment_status(
    payment_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    gateway: PhonePeClient = Depends(get_gateway_client),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """Ask the gateway where the payment stands and reconcile"""
    payment = await _get_owned_payment(db, payment_id, current_user)
    if not payment.merchant_transaction_id:
        raise ValidationError("Payment has not been sent to the gateway yet")

    result, gateway_status = await reconciler.reconcile_with_gateway(
        payment.id,
        payment.merchant_transaction_id,
        gateway
    )
    return PaymentStatusResponse(
        success=gateway_status.success,
        state=gateway_status.state,
        status=result.status
    )


async def _handle_gateway_notification(
    request: Request,
    source: str,
    signature: Optional[str],
    verifier: SignatureVerifier,
    reconciler: PaymentReconciler
) -> GatewayAck:
    # Verify against the bytes as received; never a re-serialized body
    raw_body = await request.body()

    if not verifier.verify(raw_body, signature, settings.PAYMENT_CALLBACK_CONTEXT_PATH):
        SIGNATURE_REJECTIONS.labels(endpoint=source).inc()
        client_host = request.client.host if request.client else "unknown"
        logger.warning(f"Rejected {source} from {client_host}: invalid or missing signature")
        raise InvalidSignatureError()

    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    event = parse_gateway_event(payload, source=source)
    if not event.correlation_id:
        logger.warning(f"{source} without a merchant transaction id: {str(payload)[:200]}")
        raise ValidationError("Missing merchant transaction id", field="merchantTransactionId")

    try:
        await reconciler.apply_event(event)
    except SQLAlchemyError as e:
        logger.error(f"Store failure while applying {source} for {event.correlation_id}: {e}", exc_info=True)
        raise StoreError() from e

    return GatewayAck()


@router.post("/gateway/callback", response_model=GatewayAck)
async def gateway_callback(
    request: Request,
    x_verify: Optional[str] = Header(None, alias="X-VERIFY"),
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """Server-to-server callback from the payment gateway"""
    return await _handle_gateway_notification(request, "callback", x_verify, verifier, reconciler)


@router.post("/webhook", response_model=GatewayAck)
async def gateway_webhook(
    request: Request,
    x_verify: Optional[str] = Header(None, alias="X-VERIFY"),
    x_webhook_signature: Optional[str] = Header(None, alias="X-Webhook-Signature"),
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """Webhook delivery from the payment gateway"""
    return await _handle_gateway_notification(
        request,
        "webhook",
        x_verify or x_webhook_signature,
        verifier,
        reconciler
    )
