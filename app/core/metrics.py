"""
Prometheus metrics for the payment lifecycle
"""

import time
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


PAYMENT_TRANSITIONS = Counter(
    "payment_transitions_total",
    "Payment status transitions applied",
    ["from_status", "to_status", "source"]
)

PAYMENT_EVENTS = Counter(
    "payment_gateway_events_total",
    "Gateway outcome events received, by source and normalized outcome",
    ["source", "outcome"]
)

PAYMENT_IDEMPOTENT_REPLAYS = Counter(
    "payment_idempotent_replays_total",
    "Events that arrived for a payment already in a terminal state",
    ["status", "source"]
)

PAYMENT_CORRELATION_MISSES = Counter(
    "payment_correlation_misses_total",
    "Gateway events whose correlation id matched no payment",
    ["source"]
)

SIGNATURE_REJECTIONS = Counter(
    "payment_signature_rejections_total",
    "Inbound gateway notifications rejected by signature verification",
    ["endpoint"]
)

BOOKING_CONFIRMATIONS = Counter(
    "payment_booking_confirmations",
    "Bookings moved to confirmed by a completed payment"
)

BOOKING_SYNC_FAILURES = Counter(
    "payment_booking_sync_failures",
    "Booking updates that failed after the payment was completed"
)

GATEWAY_REQUESTS = Counter(
    "payment_gateway_requests_total",
    "Outbound gateway calls by operation and result",
    ["operation", "result"]
)

GATEWAY_REQUEST_DURATION = Histogram(
    "payment_gateway_request_duration_seconds",
    "Outbound gateway call latency",
    ["operation"]
)


@asynccontextmanager
async def track_gateway_call(operation: str) -> AsyncIterator[None]:
    """
    Time an outbound gateway call; failures are counted by the caller
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        GATEWAY_REQUEST_DURATION.labels(operation=operation).observe(duration)
        logger.debug(f"Gateway {operation} took {duration:.3f}s")
