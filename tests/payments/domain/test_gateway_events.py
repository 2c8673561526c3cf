"""Tests for normalising gateway webhook envelopes."""

import json

import pytest
from payments.errors import GatewayRejected, ReconciliationMismatch
from payments.gateway.fake_adapter import FakeGateway
from payments.gateway.port import GatewayEvent, WebhookEventType, order_state_from_payload, parse_money
from payments.payment.outcome import AlreadyApplied, Applied, Rejected, outcome_to_dict
from protean.exceptions import ValidationError


class TestParseMoney:
    def test_major_string_becomes_minor_units(self):
        assert parse_money({"value": "50.00", "currency_code": "usd"}) == (5000, "USD")

    def test_zero_decimal_currency(self):
        assert parse_money({"value": "1200", "currency_code": "JPY"}) == (1200, "JPY")

    @pytest.mark.parametrize("money", [None, {}, {"currency_code": "USD"}])
    def test_missing_amount(self, money):
        assert parse_money(money) == (None, None)


class TestGatewayEvent:
    def test_capture_completed(self, bodies):
        event = GatewayEvent.from_payload(bodies.capture_completed("E1", "CAP-1", "GW-1", "19.99"))

        assert event.known_type == WebhookEventType.CAPTURE_COMPLETED
        assert event.capture_id == "CAP-1"
        assert event.gateway_order_id == "GW-1"
        assert (event.amount, event.currency) == (1999, "USD")
        assert event.refund_id is None

    def test_capture_denied_carries_reason(self, bodies):
        event = GatewayEvent.from_payload(bodies.capture_denied("E2", "CAP-1", "GW-1", reason="PAYER_CANNOT_PAY"))
        assert event.status_reason == "PAYER_CANNOT_PAY"
        assert event.amount is None

    def test_refund_resource_is_the_refund(self, bodies):
        event = GatewayEvent.from_payload(bodies.capture_refunded("E3", "REF-1", "CAP-1", "20.00"))

        assert event.refund_id == "REF-1"
        assert event.capture_id == "CAP-1"
        assert event.amount == 2000

    def test_checkout_order_event(self, bodies):
        event = GatewayEvent.from_payload(
            bodies.order_event("E4", "GW-9", "CHECKOUT.ORDER.COMPLETED", capture_id="CAP-9", value="12.50")
        )

        assert event.gateway_order_id == "GW-9"
        assert event.capture_id == "CAP-9"
        assert event.amount == 1250

    def test_unknown_type_is_kept(self):
        event = GatewayEvent.from_payload({"id": "E5", "event_type": "CUSTOMER.DISPUTE.CREATED", "resource": {}})
        assert event.known_type is None

    @pytest.mark.parametrize(
        "resource",
        [{"amount": "10.00"}, {"amount": {"value": "NaN"}}, {"supplementary_data": "x"}, "not-a-resource", None],
    )
    def test_unknown_type_resource_is_not_parsed(self, resource):
        payload = {"id": "WH-X", "event_type": "PAYMENT.SALE.COMPLETED", "resource": resource}

        event = GatewayEvent.from_payload(payload)

        assert event.known_type is None
        assert event.event_id == "WH-X"
        assert event.amount is None and event.capture_id is None
        assert event.payload == payload

    @pytest.mark.parametrize(
        "amount",
        ["10.00", {"value": "NaN", "currency_code": "USD"}, {"value": "1", "currency_code": 7}],
    )
    def test_known_type_with_bad_amount_is_a_validation_error(self, bodies, amount):
        payload = bodies.capture_completed("E8", "CAP-8", "GW-8")
        payload["resource"]["amount"] = amount

        with pytest.raises(ValidationError):
            GatewayEvent.from_payload(payload)

    def test_malformed_nested_lists_are_tolerated(self):
        payload = {
            "id": "E9",
            "event_type": "CHECKOUT.ORDER.APPROVED",
            "resource": {"id": "GW-9", "purchase_units": "none", "supplementary_data": []},
        }

        event = GatewayEvent.from_payload(payload)

        assert event.gateway_order_id == "GW-9"
        assert event.amount is None

    @pytest.mark.parametrize(
        "payload",
        [{}, {"id": "E6"}, {"event_type": "PAYMENT.CAPTURE.COMPLETED"}, {"id": "E6", "event_type": 5}, []],
    )
    def test_envelope_needs_id_and_type(self, payload):
        with pytest.raises(ValidationError):
            GatewayEvent.from_payload(payload)

    def test_malformed_body(self):
        with pytest.raises(ValidationError):
            FakeGateway().parse_webhook(b"{not json")

    def test_parse_webhook_round_trips_payload(self, bodies):
        payload = bodies.capture_completed("E7", "CAP-7", "GW-7")
        event = FakeGateway().parse_webhook(json.dumps(payload).encode())
        assert event.payload == payload


class TestOrderState:
    def test_order_state_reads_first_capture(self):
        state = order_state_from_payload(
            {
                "id": "GW-1",
                "status": "COMPLETED",
                "purchase_units": [
                    {
                        "amount": {"value": "50.00", "currency_code": "USD"},
                        "payments": {"captures": [{"id": "CAP-1", "status": "COMPLETED"}]},
                    }
                ],
            }
        )
        assert (state.status, state.amount, state.capture_id, state.capture_status) == (
            "COMPLETED",
            5000,
            "CAP-1",
            "COMPLETED",
        )

    def test_order_without_units(self):
        state = order_state_from_payload({"id": "GW-2", "status": "CREATED"})
        assert state.amount is None
        assert state.capture_id is None


class TestErrorsAndOutcomes:
    def test_already_captured_issue(self):
        assert GatewayRejected("dup", 422, issue="ORDER_ALREADY_CAPTURED").already_captured
        assert not GatewayRejected("nope", 422, issue="INSTRUMENT_DECLINED").already_captured

    def test_mismatch_to_dict(self):
        data = ReconciliationMismatch("ord-1", "amount_mismatch", "5000 USD", "4999 USD").to_dict()
        assert data["kind"] == "amount_mismatch"
        assert data["code"] == "reconciliation_mismatch"
        assert data["expected"] == "5000 USD"

    def test_outcome_to_dict(self):
        assert outcome_to_dict(Applied("ord-1", "paid", {"capture_id": "CAP-1"})) == {
            "outcome": "applied",
            "order_id": "ord-1",
            "capture_id": "CAP-1",
            "status": "paid",
        }
        assert outcome_to_dict(AlreadyApplied("ord-1"))["outcome"] == "already_applied"
        assert outcome_to_dict(Rejected("order is cancelled", "ord-1"))["reason"] == "order is cancelled"
