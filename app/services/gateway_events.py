"""
Normalization of gateway callback, webhook and status-poll payloads

The gateway reports the same logical values under different field names and
nesting depending on the channel. Each value is read through an ordered tuple
of extractors; the first one that yields a value wins. Outcome tokens are
mapped through a single table so every channel agrees on what counts as a
success or a failure.
"""

import base64
import binascii
import enum
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

Extractor = Callable[[Mapping[str, Any]], Optional[Any]]


class GatewayOutcome(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    UNKNOWN = "unknown"


OUTCOME_TOKENS: Dict[str, GatewayOutcome] = {
    "PAYMENT_SUCCESS": GatewayOutcome.SUCCESS,
    "SUCCESS": GatewayOutcome.SUCCESS,
    "COMPLETED": GatewayOutcome.SUCCESS,
    "PAYMENT_ERROR": GatewayOutcome.FAILURE,
    "PAYMENT_DECLINED": GatewayOutcome.FAILURE,
    "PAYMENT_CANCELLED": GatewayOutcome.FAILURE,
    "AUTHORIZATION_FAILED": GatewayOutcome.FAILURE,
    "TIMED_OUT": GatewayOutcome.FAILURE,
    "FAILED": GatewayOutcome.FAILURE,
    "PAYMENT_PENDING": GatewayOutcome.PENDING,
    "PENDING": GatewayOutcome.PENDING,
    "PAYMENT_INITIATED": GatewayOutcome.PENDING,
}


def field_path(*keys: str) -> Extractor:
    """
    Extractor reading a nested key path; empty strings count as absent
    """
    def extract(payload: Mapping[str, Any]) -> Optional[Any]:
        current: Any = payload
        for key in keys:
            if not isinstance(current, Mapping) or key not in current:
                return None
            current = current[key]
        if current is None or current == "":
            return None
        return current

    extract.__name__ = "field_path(" + ".".join(keys) + ")"
    return extract


CORRELATION_ID_EXTRACTORS: Sequence[Extractor] = (
    field_path("data", "merchantTransactionId"),
    field_path("merchantTransactionId"),
    field_path("data", "merchantOrderId"),
    field_path("merchantOrderId"),
)

OUTCOME_EXTRACTORS: Sequence[Extractor] = (
    field_path("code"),
    field_path("data", "state"),
    field_path("data", "code"),
    field_path("state"),
    field_path("status"),
)

CODE_EXTRACTORS: Sequence[Extractor] = (
    field_path("code"),
    field_path("data", "code"),
    field_path("responseCode"),
    field_path("data", "responseCode"),
)

STATE_EXTRACTORS: Sequence[Extractor] = (
    field_path("data", "state"),
    field_path("state"),
    field_path("status"),
)

AMOUNT_EXTRACTORS: Sequence[Extractor] = (
    field_path("data", "amount"),
    field_path("amount"),
)

REASON_EXTRACTORS: Sequence[Extractor] = (
    field_path("data", "responseCodeDescription"),
    field_path("responseMessage"),
    field_path("message"),
    field_path("data", "responseCode"),
    field_path("responseCode"),
)


def first_present(extractors: Sequence[Extractor], payload: Mapping[str, Any]) -> Optional[Any]:
    for extractor in extractors:
        value = extractor(payload)
        if value is not None:
            return value
    return None


def classify_outcome(token: Optional[Any]) -> GatewayOutcome:
    """
    Map a raw outcome token to the canonical outcome

    Booleans (the gateway's ``success`` API flag) are never outcome tokens.
    """
    if token is None or isinstance(token, bool):
        return GatewayOutcome.UNKNOWN
    return OUTCOME_TOKENS.get(str(token).strip().upper(), GatewayOutcome.UNKNOWN)


def unwrap_envelope(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Decode ``{"response": "<base64 json>"}`` server-to-server callbacks

    Anything that does not decode to a JSON object is returned unchanged.
    """
    encoded = payload.get("response") if isinstance(payload, Mapping) else None
    if isinstance(encoded, str):
        try:
            decoded = json.loads(base64.b64decode(encoded, validate=True))
        except (binascii.Error, ValueError) as e:
            logger.debug(f"Callback response field is not a base64 JSON envelope: {e}")
        else:
            if isinstance(decoded, dict):
                return decoded
    return dict(payload)


def _reported_amount(value: Any) -> Optional[Decimal]:
    """Amount exactly as reported, in paise; fractions are kept so they fail the amount check"""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


@dataclass(frozen=True)
class GatewayEvent:
    """
    One gateway-reported outcome, normalized; never persisted on its own
    """
    source: str
    correlation_id: Optional[str]
    outcome: GatewayOutcome
    code: Optional[str] = None
    state: Optional[str] = None
    reported_amount: Optional[Decimal] = None
    reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def amount_minor_units(self) -> Optional[int]:
        """Reported amount in paise, None when absent or not a whole number"""
        if self.reported_amount is None or self.reported_amount != self.reported_amount.to_integral_value():
            return None
        return int(self.reported_amount)


def parse_gateway_event(
    payload: Mapping[str, Any],
    source: str,
    correlation_id: Optional[str] = None
) -> GatewayEvent:
    """
    Build a GatewayEvent from any callback, webhook or status-poll body

    ``correlation_id`` overrides extraction for polls, where the caller
    already knows which transaction it asked about.
    """
    body = unwrap_envelope(payload)

    extracted_id = first_present(CORRELATION_ID_EXTRACTORS, body)
    token = first_present(OUTCOME_EXTRACTORS, body)
    code = first_present(CODE_EXTRACTORS, body)
    state = first_present(STATE_EXTRACTORS, body)
    reason = first_present(REASON_EXTRACTORS, body)

    return GatewayEvent(
        source=source,
        correlation_id=correlation_id or (str(extracted_id) if extracted_id is not None else None),
        outcome=classify_outcome(token),
        code=str(code) if code is not None else None,
        state=str(state) if state is not None else None,
        reported_amount=_reported_amount(first_present(AMOUNT_EXTRACTORS, body)),
        reason=str(reason) if reason is not None else None,
        raw=dict(payload),
    )
