"""
PhonePe pay-page gateway client

Talks to the network and nothing else: builds signed checkout and status
requests and returns the gateway's answer in a normalized shape. Persisting
what the answer means is the reconciler's job.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from app.core.exceptions import ExternalServiceError, GatewayTimeoutError, GatewayTransportError
from app.core.metrics import GATEWAY_REQUESTS, track_gateway_call
from app.services.gateway_events import field_path, first_present
from app.services.signature import (
    build_path_checksum,
    build_payload_checksum,
    encode_payload,
    format_x_verify,
)

logger = logging.getLogger(__name__)

PAY_ENDPOINT = "/pg/v1/pay"
STATUS_ENDPOINT = "/pg/v1/status"

REDIRECT_URL = field_path("data", "instrumentResponse", "redirectInfo", "url")


@dataclass
class CheckoutResult:
    success: bool
    redirect_url: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusResult:
    success: bool
    state: Optional[str] = None
    code: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


class PhonePeClient:
    """
    Async client for the PhonePe PG API
    """

    def __init__(
        self,
        merchant_id: str,
        salt_key: str,
        key_index: str = "1",
        base_url: str = "https://api-preprod.phonepe.com/apis/pg-sandbox",
        callback_url: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.merchant_id = merchant_id
        self.salt_key = salt_key
        self.key_index = key_index
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, config, transport: Optional[httpx.AsyncBaseTransport] = None) -> "PhonePeClient":
        if not config.phonepe_configured:
            raise ExternalServiceError(
                "payment_gateway",
                "Payment gateway is not configured (PHONEPE_MERCHANT_ID, PHONEPE_SALT_KEY)"
            )
        return cls(
            merchant_id=config.PHONEPE_MERCHANT_ID,
            salt_key=config.PHONEPE_SALT_KEY,
            key_index=config.PHONEPE_KEY_INDEX,
            base_url=config.PHONEPE_BASE_URL,
            callback_url=config.PHONEPE_CALLBACK_URL,
            timeout=config.PHONEPE_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _headers(self, x_verify: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-VERIFY": x_verify,
            "X-MERCHANT-ID": self.merchant_id,
        }

    async def _send(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        async with track_gateway_call(operation):
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    transport=self.transport,
                ) as client:
                    return await client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                GATEWAY_REQUESTS.labels(operation=operation, result="timeout").inc()
                logger.error(f"Gateway {operation} timed out after {self.timeout}s: {e}")
                raise GatewayTimeoutError() from e
            except httpx.TransportError as e:
                GATEWAY_REQUESTS.labels(operation=operation, result="transport_error").inc()
                logger.error(f"Gateway {operation} transport failure: {e}")
                raise GatewayTransportError() from e

    @staticmethod
    def _parse_body(operation: str, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            GATEWAY_REQUESTS.labels(operation=operation, result="malformed").inc()
            logger.error(
                f"Gateway {operation} returned unreadable body "
                f"(HTTP {response.status_code}): {response.text[:200]!r}"
            )
            raise GatewayTransportError("Payment gateway returned a malformed response") from e

        if not isinstance(body, dict):
            GATEWAY_REQUESTS.labels(operation=operation, result="malformed").inc()
            raise GatewayTransportError("Payment gateway returned a malformed response")

        result = "ok" if response.is_success else f"http_{response.status_code}"
        GATEWAY_REQUESTS.labels(operation=operation, result=result).inc()
        return body

    async def create_checkout(
        self,
        order_ref: str,
        amount_minor_units: int,
        redirect_url: str,
        merchant_user_id: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Create a pay-page checkout and return the URL to send the customer to

        Gateway error responses come back as ``success=False``; only transport
        failures and unreadable bodies raise.
        """
        if not order_ref:
            raise ValueError("order_ref is required")
        if isinstance(amount_minor_units, bool) or not isinstance(amount_minor_units, int) or amount_minor_units <= 0:
            raise ValueError("amount_minor_units must be a positive integer")

        request_payload = {
            "merchantId": self.merchant_id,
            "merchantTransactionId": order_ref,
            "merchantUserId": merchant_user_id or f"MU{order_ref}",
            "amount": amount_minor_units,
            "redirectUrl": redirect_url,
            "redirectMode": "REDIRECT",
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        if self.callback_url:
            request_payload["callbackUrl"] = self.callback_url

        encoded = encode_payload(json.dumps(request_payload, separators=(",", ":")))
        x_verify = format_x_verify(
            build_payload_checksum(encoded, PAY_ENDPOINT, self.salt_key),
            self.key_index
        )

        logger.info(f"Creating gateway checkout {order_ref} for {amount_minor_units} paise")
        response = await self._send(
            "create_checkout",
            "POST",
            PAY_ENDPOINT,
            json={"request": encoded},
            headers=self._headers(x_verify),
        )
        raw = self._parse_body("create_checkout", response)

        redirect = REDIRECT_URL(raw)

        success = raw.get("success") is True and bool(redirect)
        if not success:
            logger.warning(
                f"Gateway refused checkout {order_ref}: HTTP {response.status_code}, code={raw.get('code')}"
            )
        return CheckoutResult(success=success, redirect_url=redirect if success else None, raw_response=raw)

    async def check_status(self, order_ref: str) -> StatusResult:
        """
        Ask the gateway for the current state of a transaction
        """
        if not order_ref:
            raise ValueError("order_ref is required")

        path = f"{STATUS_ENDPOINT}/{self.merchant_id}/{order_ref}"
        x_verify = format_x_verify(build_path_checksum(path, self.salt_key), self.key_index)

        response = await self._send("check_status", "GET", path, headers=self._headers(x_verify))
        raw = self._parse_body("check_status", response)

        code = first_present((field_path("code"), field_path("data", "state")), raw)
        state = first_present((field_path("data", "state"), field_path("code")), raw)

        logger.info(f"Gateway status for {order_ref}: code={code}, state={state}")
        return StatusResult(success=raw.get("success") is True, state=state, code=code, raw_response=raw)


def get_gateway_client() -> PhonePeClient:
    """
    FastAPI dependency
    """
    from app.config import settings

    return PhonePeClient.from_settings(settings)
