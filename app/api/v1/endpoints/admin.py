"""
Admin payment endpoints
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.exceptions import NotFoundError, ValidationError
from app.core.security import require_admin
from app.models.payment import Payment
from app.models.user import User
from app.schemas.payment import (
    AdminPaymentResponse,
    AdminPaymentStatusResponse,
    ManualResolution,
    ReconcileResponse,
)
from app.services.gateway_client import PhonePeClient, get_gateway_client
from app.services.gateway_events import GatewayOutcome
from app.services.reconciler import PaymentReconciler, ReconcileResult, get_payment_reconciler

logger = logging.getLogger(__name__)
router = APIRouter()


async def _get_payment(db: AsyncSession, payment_id: UUID) -> Payment:
    payment = await db.get(Payment, payment_id)
    if not payment:
        raise NotFoundError("Payment", payment_id)
    return payment


def _reconcile_response(result: ReconcileResult) -> ReconcileResponse:
    return ReconcileResponse(
        payment_id=result.payment_id,
        previous_status=result.previous_status,
        status=result.status,
        changed=result.changed,
        booking_confirmed=result.booking_confirmed
    )


@router.get("/payments/{payment_id}", response_model=AdminPaymentResponse)
async def get_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(get_session),
    admin_user: User = Depends(require_admin)
):
    """
    Payment details including the last raw gateway response
    """
    return await _get_payment(db, payment_id)


@router.get("/payments/{payment_id}/status", response_model=AdminPaymentStatusResponse)
async def poll_payment_status(
    payment_id: UUID,
    db: AsyncSession = Depends(get_session),
    admin_user: User = Depends(require_admin),
    gateway: PhonePeClient = Depends(get_gateway_client),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """
    Poll the gateway for a payment and reconcile what it reports
    """
    actor = admin_user.email
    payment = await _get_payment(db, payment_id)
    if not payment.merchant_transaction_id:
        raise ValidationError("Payment has not been sent to the gateway yet")

    result, gateway_status = await reconciler.reconcile_with_gateway(
        payment.id,
        payment.merchant_transaction_id,
        gateway
    )
    logger.info(f"Admin {actor} polled payment {payment_id}: {result.status.value}")

    return AdminPaymentStatusResponse(
        success=gateway_status.success,
        state=gateway_status.state,
        code=gateway_status.code,
        status=result.status,
        booking_confirmed=result.booking_confirmed,
        raw=gateway_status.raw_response
    )


@router.post("/payments/{payment_id}/mark-completed", response_model=ReconcileResponse)
async def mark_payment_completed(
    payment_id: UUID,
    resolution: ManualResolution,
    admin_user: User = Depends(require_admin),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """
    Record a payment settled outside the gateway flow
    """
    actor = admin_user.email
    result = await reconciler.resolve_manually(
        payment_id,
        GatewayOutcome.SUCCESS,
        actor=actor,
        note=resolution.note
    )
    logger.info(f"Admin {actor} marked payment {payment_id} completed (changed={result.changed})")
    return _reconcile_response(result)


@router.post("/payments/{payment_id}/mark-failed", response_model=ReconcileResponse)
async def mark_payment_failed(
    payment_id: UUID,
    resolution: ManualResolution,
    admin_user: User = Depends(require_admin),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """
    Close out a payment the gateway will never settle
    """
    actor = admin_user.email
    result = await reconciler.resolve_manually(
        payment_id,
        GatewayOutcome.FAILURE,
        actor=actor,
        note=resolution.note
    )
    logger.info(f"Admin {actor} marked payment {payment_id} failed (changed={result.changed})")
    return _reconcile_response(result)
