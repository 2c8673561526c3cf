import json

import pytest


class WebhookBodies:
    """Builders for gateway webhook envelopes."""

    @staticmethod
    def capture_completed(event_id, capture_id, gateway_order_id, value="50.00", currency="USD"):
        return {
            "id": event_id,
            "event_type": "PAYMENT.CAPTURE.COMPLETED",
            "resource": {
                "id": capture_id,
                "status": "COMPLETED",
                "amount": {"value": value, "currency_code": currency},
                "supplementary_data": {"related_ids": {"order_id": gateway_order_id}},
            },
        }

    @staticmethod
    def capture_denied(event_id, capture_id, gateway_order_id, reason="INSTRUMENT_DECLINED"):
        return {
            "id": event_id,
            "event_type": "PAYMENT.CAPTURE.DENIED",
            "resource": {
                "id": capture_id,
                "status": "DECLINED",
                "status_details": {"reason": reason},
                "supplementary_data": {"related_ids": {"order_id": gateway_order_id}},
            },
        }

    @staticmethod
    def capture_refunded(event_id, refund_id, capture_id, value="50.00", currency="USD"):
        return {
            "id": event_id,
            "event_type": "PAYMENT.CAPTURE.REFUNDED",
            "resource": {
                "id": refund_id,
                "status": "COMPLETED",
                "amount": {"value": value, "currency_code": currency},
                "supplementary_data": {"related_ids": {"capture_id": capture_id}},
            },
        }

    @staticmethod
    def order_event(event_id, gateway_order_id, event_type="CHECKOUT.ORDER.APPROVED", capture_id=None, value="50.00"):
        unit = {"amount": {"value": value, "currency_code": "USD"}}
        if capture_id:
            unit["payments"] = {"captures": [{"id": capture_id, "status": "COMPLETED"}]}
        return {
            "id": event_id,
            "event_type": event_type,
            "resource": {"id": gateway_order_id, "status": "APPROVED", "purchase_units": [unit]},
        }


@pytest.fixture()
def bodies():
    return WebhookBodies


@pytest.fixture()
def deliver(reconciliation, gateway):
    """Deliver a webhook body with a valid signature and return the outcome."""

    def _deliver(payload, signature=None):
        headers = {"PayPal-Transmission-Sig": signature or gateway.webhook_secret}
        return reconciliation.ingest_webhook("paypal", headers, json.dumps(payload).encode())

    return _deliver


@pytest.fixture()
def pending_order(make_order, gateway):
    """A pending local order linked to an approved gateway order ``GW-1`` for 50.00 USD."""
    order_id = make_order(gateway_order_id="GW-1", stock=10)
    gateway.register_order("GW-1", 5000)
    return order_id


@pytest.fixture()
def paid_order(pending_order, reconciliation, lifecycle):
    """``(order_id, capture_id)`` for an order captured through the gateway."""
    reconciliation.reconcile_capture("GW-1")
    return pending_order, lifecycle.load(pending_order).gateway_capture_id
