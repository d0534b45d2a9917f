"""
Payment reconciliation state machine

    pending --checkout--> initiated --success--> completed
                                    --failure--> failed

Callbacks, webhooks, status polls and admin resolutions all flow through
``PaymentReconciler``. Every status write is a compare-and-set on the status
that was read, performed while holding the per-payment reconciliation lock,
so duplicated or racing events can never move a payment out of a terminal
state. The payment write is committed before the linked booking is touched;
a failed booking update is reported for manual reconciliation and never
undoes the payment.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConcurrencyError, ConflictError, NotFoundError, ValidationError
from app.core.database import get_session
from app.core.locks import ReconciliationLock, get_reconciliation_lock
from app.core.logging import get_alert_logger, log_context
from app.core.metrics import (
    BOOKING_CONFIRMATIONS,
    BOOKING_SYNC_FAILURES,
    PAYMENT_CORRELATION_MISSES,
    PAYMENT_EVENTS,
    PAYMENT_IDEMPOTENT_REPLAYS,
    PAYMENT_TRANSITIONS,
)
from app.models.booking import Booking, BookingStatus, TERMINAL_BOOKING_STATUSES
from app.models.payment import Payment, PaymentStatus, TERMINAL_PAYMENT_STATUSES
from app.services.gateway_client import PhonePeClient, StatusResult
from app.services.gateway_events import GatewayEvent, GatewayOutcome, parse_gateway_event

logger = logging.getLogger(__name__)
alert_logger = get_alert_logger()

MANUAL_SOURCE = "admin"
MAX_TRANSITION_ATTEMPTS = 3


@dataclass
class ReconcileResult:
    payment_id: uuid.UUID
    previous_status: PaymentStatus
    status: PaymentStatus
    outcome: GatewayOutcome
    changed: bool
    booking_confirmed: bool = False


def resolve_transition(current: PaymentStatus, outcome: GatewayOutcome) -> PaymentStatus:
    """
    Next payment status for an outcome; terminal statuses never move
    """
    if current in TERMINAL_PAYMENT_STATUSES:
        return current
    if outcome == GatewayOutcome.SUCCESS:
        return PaymentStatus.COMPLETED
    if outcome == GatewayOutcome.FAILURE:
        return PaymentStatus.FAILED
    return current


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _append_note(existing: Optional[str], line: str) -> str:
    return f"{existing or ''}\n\n{line}".strip()


class PaymentReconciler:
    """
    Applies gateway-reported outcomes to payment and booking records
    """

    def __init__(self, session: AsyncSession, lock: ReconciliationLock):
        self.session = session
        self.lock = lock

    @staticmethod
    def lock_key(payment_id: uuid.UUID) -> str:
        return f"payment:{payment_id}"

    async def _load(self, payment_id: uuid.UUID) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _load_by_correlation(self, correlation_id: str) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.merchant_transaction_id == correlation_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _compare_and_set(
        self,
        payment_id: uuid.UUID,
        expected: PaymentStatus,
        values: Dict[str, Any]
    ) -> bool:
        """
        Write ``values`` only if the payment still has status ``expected``
        """
        stmt = (
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def _audit_values(event: GatewayEvent) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if event.raw:
            values["gateway_last_raw"] = event.raw
        if event.code is not None:
            values["gateway_last_code"] = event.code[:64]
        if event.state is not None:
            values["gateway_last_state"] = event.state[:64]
        return values

    async def record_checkout(
        self,
        payment: Payment,
        correlation_id: str,
        raw_response: Dict[str, Any]
    ) -> Payment:
        """
        pending -> initiated once the gateway has accepted a checkout
        """
        async with self.lock.hold(self.lock_key(payment.id)):
            values = {
                "status": PaymentStatus.INITIATED,
                "merchant_transaction_id": correlation_id,
                "initiated_at": _utcnow(),
                "gateway_last_raw": raw_response,
            }
            code = raw_response.get("code")
            if code:
                values["gateway_last_code"] = str(code)[:64]

            applied = await self._compare_and_set(payment.id, PaymentStatus.PENDING, values)
            await self.session.commit()
            if not applied:
                logger.warning(f"Payment {payment.id} left pending before checkout {correlation_id} was recorded")
                raise ConflictError("Payment is no longer pending", details={"payment_id": str(payment.id)})

        PAYMENT_TRANSITIONS.labels(
            from_status=PaymentStatus.PENDING.value,
            to_status=PaymentStatus.INITIATED.value,
            source="checkout"
        ).inc()
        logger.info(f"Payment {payment.id} initiated with transaction {correlation_id}")

        await self.session.refresh(payment)
        return payment

    async def apply_event(self, event: GatewayEvent) -> ReconcileResult:
        """
        Apply a callback or webhook event, matched by correlation id
        """
        if not event.correlation_id:
            raise ValidationError("Missing merchant transaction id", field="merchantTransactionId")

        PAYMENT_EVENTS.labels(source=event.source, outcome=event.outcome.value).inc()

        payment = await self._load_by_correlation(event.correlation_id)
        if payment is None:
            PAYMENT_CORRELATION_MISSES.labels(source=event.source).inc()
            logger.warning(
                f"No payment matches gateway transaction {event.correlation_id} ({event.source}); "
                "possible misconfiguration or probe",
                extra=log_context(correlation_id=event.correlation_id, source=event.source)
            )
            raise NotFoundError("Payment", event.correlation_id)

        payment_id = payment.id
        await self.session.commit()
        return await self._apply_locked(payment_id, event)

    async def reconcile_with_gateway(
        self,
        payment_id: uuid.UUID,
        correlation_id: str,
        gateway: PhonePeClient
    ) -> Tuple[ReconcileResult, StatusResult]:
        """
        Poll the gateway for a payment and apply whatever it reports
        """
        status_result = await gateway.check_status(correlation_id)
        event = parse_gateway_event(
            status_result.raw_response,
            source="poll",
            correlation_id=correlation_id
        )
        PAYMENT_EVENTS.labels(source=event.source, outcome=event.outcome.value).inc()
        result = await self._apply_locked(payment_id, event)
        return result, status_result

    async def resolve_manually(
        self,
        payment_id: uuid.UUID,
        outcome: GatewayOutcome,
        actor: str,
        note: Optional[str] = None
    ) -> ReconcileResult:
        """
        Admin resolution, subject to the same transition rules as the gateway
        """
        if outcome not in (GatewayOutcome.SUCCESS, GatewayOutcome.FAILURE):
            raise ValidationError("Manual resolution must be a success or a failure")

        event = GatewayEvent(
            source=MANUAL_SOURCE,
            correlation_id=None,
            outcome=outcome,
            reason=f"{note} (by {actor})" if note else f"resolved by {actor}",
        )
        PAYMENT_EVENTS.labels(source=event.source, outcome=event.outcome.value).inc()
        return await self._apply_locked(payment_id, event)

    async def _apply_locked(self, payment_id: uuid.UUID, event: GatewayEvent) -> ReconcileResult:
        async with self.lock.hold(self.lock_key(payment_id)):
            return await self._apply(payment_id, event)

    async def _apply(self, payment_id: uuid.UUID, event: GatewayEvent) -> ReconcileResult:
        for attempt in range(MAX_TRANSITION_ATTEMPTS):
            payment = await self._load(payment_id)
            if payment is None:
                raise NotFoundError("Payment", payment_id)

            current = payment.status
            if current in TERMINAL_PAYMENT_STATUSES:
                return await self._apply_to_terminal(payment, event)

            target = resolve_transition(current, event.outcome)
            values = self._audit_values(event)

            if target == current:
                # Still pending on the gateway side, or an outcome we do not recognise
                if values and not await self._compare_and_set(payment_id, current, values):
                    await self.session.commit()
                    continue
                await self.session.commit()
                if values:
                    await self.session.refresh(payment)
                logger.info(
                    f"Payment {payment_id} stays {current.value}: "
                    f"{event.source} reported {event.code or event.state or 'no outcome'}"
                )
                return ReconcileResult(payment_id, current, current, event.outcome, changed=False)

            values["status"] = target
            if target == PaymentStatus.COMPLETED:
                values["completed_at"] = _utcnow()
                if event.source == MANUAL_SOURCE:
                    values["resolution_notes"] = _append_note(
                        payment.resolution_notes, f"Marked completed: {event.reason}"
                    )
            else:
                values["failed_at"] = _utcnow()
                reason = event.reason or event.code or event.state or "declined by gateway"
                values["resolution_notes"] = _append_note(payment.resolution_notes, f"Payment failed: {reason}")

            booking_id = payment.booking_id
            expected_minor = payment.amount_minor_units

            applied = await self._compare_and_set(payment_id, current, values)
            await self.session.commit()
            if not applied:
                logger.info(f"Payment {payment_id} changed concurrently (attempt {attempt + 1}); re-reading")
                continue
            await self.session.refresh(payment)

            PAYMENT_TRANSITIONS.labels(
                from_status=current.value,
                to_status=target.value,
                source=event.source
            ).inc()
            logger.info(
                f"Payment {payment_id} {current.value} -> {target.value} via {event.source}",
                extra=log_context(payment_id=str(payment_id), status=target.value, source=event.source)
            )

            booking_confirmed = False
            if target == PaymentStatus.COMPLETED:
                self._check_amount(payment_id, expected_minor, event)
                booking_confirmed = await self._sync_booking(payment_id, booking_id)

            return ReconcileResult(payment_id, current, target, event.outcome, changed=True,
                                   booking_confirmed=booking_confirmed)

        raise ConcurrencyError(f"Payment {payment_id} kept changing while being reconciled")

    async def _apply_to_terminal(self, payment: Payment, event: GatewayEvent) -> ReconcileResult:
        """
        Duplicate or late event for a payment that already reached a terminal state
        """
        PAYMENT_IDEMPOTENT_REPLAYS.labels(status=payment.status.value, source=event.source).inc()

        if payment.status == PaymentStatus.COMPLETED:
            values = self._audit_values(event)
            if values and await self._compare_and_set(payment.id, PaymentStatus.COMPLETED, values):
                await self.session.commit()
                await self.session.refresh(payment)
            else:
                await self.session.commit()
            if event.outcome == GatewayOutcome.FAILURE:
                alert_logger.warning(
                    f"Gateway reported {event.code or event.state} for completed payment {payment.id}; "
                    "status kept, needs review",
                    extra=log_context(payment_id=str(payment.id), source=event.source, code=event.code)
                )
        else:
            await self.session.commit()

        logger.info(f"Ignoring {event.source} event for {payment.status.value} payment {payment.id}")
        return ReconcileResult(payment.id, payment.status, payment.status, event.outcome, changed=False)

    @staticmethod
    def _check_amount(payment_id: uuid.UUID, expected_minor: int, event: GatewayEvent) -> None:
        reported = event.reported_amount
        if reported is not None and reported != expected_minor:
            alert_logger.warning(
                f"Payment {payment_id} completed with amount {reported} but {expected_minor} was requested",
                extra=log_context(payment_id=str(payment_id), expected=expected_minor, reported=reported)
            )

    async def _sync_booking(self, payment_id: uuid.UUID, booking_id: Optional[uuid.UUID]) -> bool:
        """
        Best-effort booking confirmation after the payment write has committed
        """
        if booking_id is None:
            return False

        try:
            return await self._confirm_booking(payment_id, booking_id)
        except SQLAlchemyError:
            await self.session.rollback()
            BOOKING_SYNC_FAILURES.inc()
            alert_logger.error(
                f"Booking {booking_id} was not confirmed after payment {payment_id} completed; "
                "reconcile manually",
                exc_info=True,
                extra=log_context(payment_id=str(payment_id), booking_id=str(booking_id), action="confirm_booking")
            )
            return False

    async def _confirm_booking(self, payment_id: uuid.UUID, booking_id: uuid.UUID) -> bool:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING)
            .values(status=BookingStatus.CONFIRMED, confirmed_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 1:
            await self.session.commit()
            BOOKING_CONFIRMATIONS.inc()
            logger.info(f"Booking {booking_id} confirmed by payment {payment_id}")
            return True

        current = (
            await self.session.execute(select(Booking.status).where(Booking.id == booking_id))
        ).scalar_one_or_none()
        await self.session.commit()

        if current is None:
            alert_logger.error(
                f"Payment {payment_id} references missing booking {booking_id}",
                extra=log_context(payment_id=str(payment_id), booking_id=str(booking_id))
            )
        elif current in TERMINAL_BOOKING_STATUSES:
            alert_logger.warning(
                f"Payment {payment_id} completed for {current.value} booking {booking_id}; booking left untouched",
                extra=log_context(payment_id=str(payment_id), booking_id=str(booking_id), booking_status=current.value)
            )
        else:
            logger.info(f"Booking {booking_id} already {current.value}; nothing to confirm")
        return False


def get_payment_reconciler(session: AsyncSession = Depends(get_session)) -> PaymentReconciler:
    """
    FastAPI dependency
    """
    return PaymentReconciler(session, get_reconciliation_lock())
