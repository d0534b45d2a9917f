"""
Unit tests for gateway payload normalization
"""

import base64
import json
import pytest
from decimal import Decimal

from app.services.gateway_events import (
    GatewayOutcome,
    classify_outcome,
    parse_gateway_event,
    unwrap_envelope,
)


@pytest.mark.unit
class TestClassifyOutcome:
    """Test the outcome token table"""

    @pytest.mark.parametrize("token", ["PAYMENT_SUCCESS", "SUCCESS", "COMPLETED", "completed"])
    def test_success_tokens(self, token):
        """Test every success spelling maps to success"""
        assert classify_outcome(token) == GatewayOutcome.SUCCESS

    @pytest.mark.parametrize("token", [
        "PAYMENT_ERROR", "PAYMENT_DECLINED", "PAYMENT_CANCELLED",
        "AUTHORIZATION_FAILED", "TIMED_OUT", "FAILED",
    ])
    def test_failure_tokens(self, token):
        """Test every failure spelling maps to failure"""
        assert classify_outcome(token) == GatewayOutcome.FAILURE

    @pytest.mark.parametrize("token", ["PAYMENT_PENDING", "PENDING", "PAYMENT_INITIATED"])
    def test_pending_tokens(self, token):
        """Test pending spellings"""
        assert classify_outcome(token) == GatewayOutcome.PENDING

    @pytest.mark.parametrize("token", [None, True, False, "INTERNAL_SERVER_ERROR", "BAD_REQUEST", ""])
    def test_unknown_tokens(self, token):
        """Test anything else, including booleans, is unknown"""
        assert classify_outcome(token) == GatewayOutcome.UNKNOWN


@pytest.mark.unit
class TestParseGatewayEvent:
    """Test field extraction across callback, webhook and poll shapes"""

    def test_status_response_shape(self):
        """Test the documented status response"""
        event = parse_gateway_event({
            "success": True,
            "code": "PAYMENT_SUCCESS",
            "data": {
                "merchantTransactionId": "PAY123",
                "amount": 10000,
                "state": "COMPLETED",
                "responseCode": "SUCCESS",
            }
        }, source="callback")

        assert event.correlation_id == "PAY123"
        assert event.outcome == GatewayOutcome.SUCCESS
        assert event.code == "PAYMENT_SUCCESS"
        assert event.state == "COMPLETED"
        assert event.amount_minor_units == 10000
        assert event.source == "callback"

    def test_nested_state_only(self):
        """Test outcome nested under data.state when no top-level code exists"""
        event = parse_gateway_event(
            {"data": {"merchantTransactionId": "PAY9", "state": "FAILED"}},
            source="webhook"
        )

        assert event.outcome == GatewayOutcome.FAILURE

    def test_nested_code_only(self):
        """Test outcome nested under data.code"""
        event = parse_gateway_event(
            {"data": {"merchantOrderId": "PAY8", "code": "PAYMENT_DECLINED"}},
            source="webhook"
        )

        assert event.correlation_id == "PAY8"
        assert event.outcome == GatewayOutcome.FAILURE

    def test_top_level_code_wins_over_nested_state(self):
        """Test priority order: top-level code is read first"""
        event = parse_gateway_event(
            {"code": "PAYMENT_PENDING", "data": {"merchantTransactionId": "PAY7", "state": "COMPLETED"}},
            source="poll"
        )

        assert event.outcome == GatewayOutcome.PENDING

    def test_bare_success_flag_is_not_an_outcome(self):
        """Test {"success": true} alone leaves the outcome unknown"""
        event = parse_gateway_event({"success": True, "merchantTransactionId": "PAY6"}, source="webhook")

        assert event.outcome == GatewayOutcome.UNKNOWN

    def test_unrecognised_token_is_unknown(self):
        """Test a token outside the table is never guessed"""
        event = parse_gateway_event({"code": "SOMETHING_NEW", "merchantTransactionId": "PAY5"}, source="callback")

        assert event.outcome == GatewayOutcome.UNKNOWN
        assert event.code == "SOMETHING_NEW"

    def test_correlation_override_for_polls(self):
        """Test polls keep the id they asked about"""
        event = parse_gateway_event({"code": "PAYMENT_PENDING"}, source="poll", correlation_id="PAY4")

        assert event.correlation_id == "PAY4"

    def test_missing_correlation_id(self):
        """Test absent identifiers stay None"""
        event = parse_gateway_event({"code": "PAYMENT_SUCCESS", "data": {"merchantTransactionId": ""}}, source="webhook")

        assert event.correlation_id is None

    def test_failure_reason(self):
        """Test the decline reason is captured"""
        event = parse_gateway_event({
            "code": "PAYMENT_ERROR",
            "data": {"merchantTransactionId": "PAY3", "responseCodeDescription": "Insufficient funds"}
        }, source="callback")

        assert event.reason == "Insufficient funds"

    def test_fractional_amount_kept_exact(self):
        """Test a fractional amount is not truncated to a whole number of paise"""
        event = parse_gateway_event({"code": "PAYMENT_SUCCESS", "amount": 100.99, "merchantTransactionId": "P"}, source="webhook")

        assert event.reported_amount == Decimal("100.99")
        assert event.amount_minor_units is None

    def test_string_amount(self):
        """Test whole amounts sent as strings are read"""
        event = parse_gateway_event({"code": "PAYMENT_SUCCESS", "amount": "10000", "merchantTransactionId": "P"}, source="webhook")

        assert event.amount_minor_units == 10000

    def test_non_numeric_amount_ignored(self):
        """Test an unreadable amount is dropped, not raised"""
        event = parse_gateway_event({"code": "PAYMENT_SUCCESS", "amount": "lots", "merchantTransactionId": "P"}, source="webhook")

        assert event.amount_minor_units is None

    def test_raw_payload_kept_verbatim(self):
        """Test the original body is kept for audit"""
        payload = {"code": "PAYMENT_SUCCESS", "data": {"merchantTransactionId": "PAY2"}}

        assert parse_gateway_event(payload, source="callback").raw == payload


@pytest.mark.unit
class TestUnwrapEnvelope:
    """Test base64 server-to-server envelopes"""

    def test_base64_envelope_decoded(self):
        """Test {"response": base64(json)} is decoded before extraction"""
        inner = {"code": "PAYMENT_SUCCESS", "data": {"merchantTransactionId": "PAY1"}}
        envelope = {"response": base64.b64encode(json.dumps(inner).encode()).decode()}

        assert unwrap_envelope(envelope) == inner

        event = parse_gateway_event(envelope, source="callback")
        assert event.correlation_id == "PAY1"
        assert event.outcome == GatewayOutcome.SUCCESS
        assert event.raw == envelope

    def test_plain_response_field_left_alone(self):
        """Test a response field that is not base64 JSON is not decoded"""
        payload = {"response": "not base64 !!", "code": "PAYMENT_PENDING"}

        assert unwrap_envelope(payload) == payload
