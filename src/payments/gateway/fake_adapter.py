"""Configurable fake payment gateway for development and testing.

This adapter simulates the gateway without any external calls. It keeps
gateway orders, captures and refunds in memory, honours request ids the
way the real gateway does (a repeated id returns the first result) and can
be told to fail the next N calls with any gateway error, making it useful
for:
- Automated tests with predictable outcomes
- Development without real gateway credentials
"""

import threading
from datetime import timedelta
from uuid import uuid4

from payments.errors import GatewayRejected
from payments.gateway.port import (
    AccessToken,
    CaptureResult,
    CaptureState,
    GatewayOrderState,
    PaymentGateway,
    RefundResult,
)
from shared.clock import utcnow

SIGNATURE_HEADER = "paypal-transmission-sig"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self, name: str = "paypal", webhook_secret: str = "test-signature") -> None:
        self.name = name
        self.webhook_secret = webhook_secret
        self.should_succeed: bool = True
        self.failure_reason: str = "Payment declined"
        self.calls: list[dict] = []
        self.orders: dict[str, dict] = {}
        self.captures: dict[str, dict] = {}
        self._responses: dict[str, object] = {}
        self._failures: list[tuple[str | None, Exception]] = []
        self._lock = threading.Lock()

    # -------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------
    def configure(self, should_succeed: bool, failure_reason: str = "Payment declined") -> None:
        """Make every capture/refund fail with a 422 rejection (or succeed again)."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def fail_next(self, error: Exception, method: str | None = None, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` calls (to ``method`` only, if given)."""
        with self._lock:
            self._failures.extend([(method, error)] * times)

    def register_order(
        self,
        gateway_order_id: str,
        amount: int,
        currency: str = "USD",
        status: str = "APPROVED",
    ) -> None:
        with self._lock:
            self.orders[gateway_order_id] = {
                "status": status,
                "amount": amount,
                "currency": currency,
                "capture_id": None,
            }

    def set_order_status(self, gateway_order_id: str, status: str) -> None:
        with self._lock:
            self.orders[gateway_order_id]["status"] = status

    # -------------------------------------------------------------------
    # Port
    # -------------------------------------------------------------------
    def exchange_credentials_for_token(self) -> AccessToken:
        self._record("exchange_credentials_for_token")
        return AccessToken(value=f"fake-token-{uuid4().hex[:8]}", expires_at=utcnow() + timedelta(hours=8))

    def capture_order(self, gateway_order_id: str, request_id: str) -> CaptureResult:
        self._record("capture_order", gateway_order_id=gateway_order_id, request_id=request_id)
        with self._lock:
            if request_id in self._responses:
                return self._responses[request_id]
            if not self.should_succeed:
                raise GatewayRejected(self.failure_reason, 422, issue="INSTRUMENT_DECLINED")

            order = self.orders.get(gateway_order_id)
            if order is None:
                raise GatewayRejected("Order not found", 404, issue="RESOURCE_NOT_FOUND")
            if order["capture_id"] is not None:
                raise GatewayRejected("Order already captured", 422, issue="ORDER_ALREADY_CAPTURED")

            capture_id = f"fake_cap_{uuid4().hex[:12]}"
            order["capture_id"] = capture_id
            order["status"] = "COMPLETED"
            self.captures[capture_id] = {
                "status": "COMPLETED",
                "amount": order["amount"],
                "currency": order["currency"],
                "gateway_order_id": gateway_order_id,
                "refunded": 0,
            }
            result = CaptureResult(
                gateway_order_id=gateway_order_id,
                capture_id=capture_id,
                status="COMPLETED",
                amount=order["amount"],
                currency=order["currency"],
            )
            self._responses[request_id] = result
            return result

    def refund_capture(
        self,
        capture_id: str,
        amount: int | None,
        currency: str,
        request_id: str,
        note: str | None = None,
    ) -> RefundResult:
        self._record("refund_capture", capture_id=capture_id, amount=amount, request_id=request_id, note=note)
        with self._lock:
            if request_id in self._responses:
                return self._responses[request_id]
            if not self.should_succeed:
                raise GatewayRejected(self.failure_reason, 422, issue="REFUND_FAILED_INSUFFICIENT_FUNDS")

            capture = self.captures.get(capture_id)
            if capture is None:
                raise GatewayRejected("Capture not found", 404, issue="RESOURCE_NOT_FOUND")
            remaining = capture["amount"] - capture["refunded"]
            refund_amount = remaining if amount is None else amount
            if refund_amount > remaining:
                raise GatewayRejected("Refund exceeds captured amount", 422, issue="REFUND_AMOUNT_EXCEEDED")

            capture["refunded"] += refund_amount
            capture["status"] = "REFUNDED" if capture["refunded"] >= capture["amount"] else "PARTIALLY_REFUNDED"
            result = RefundResult(
                refund_id=f"fake_ref_{uuid4().hex[:12]}",
                capture_id=capture_id,
                status="COMPLETED",
                amount=refund_amount,
                currency=currency,
            )
            self._responses[request_id] = result
            return result

    def get_order(self, gateway_order_id: str) -> GatewayOrderState:
        self._record("get_order", gateway_order_id=gateway_order_id)
        with self._lock:
            order = self.orders.get(gateway_order_id)
            if order is None:
                raise GatewayRejected("Order not found", 404, issue="RESOURCE_NOT_FOUND")
            capture = self.captures.get(order["capture_id"]) if order["capture_id"] else None
            return GatewayOrderState(
                gateway_order_id=gateway_order_id,
                status=order["status"],
                amount=order["amount"],
                currency=order["currency"],
                capture_id=order["capture_id"],
                capture_status=capture["status"] if capture else None,
            )

    def get_capture(self, capture_id: str) -> CaptureState:
        self._record("get_capture", capture_id=capture_id)
        with self._lock:
            capture = self.captures.get(capture_id)
            if capture is None:
                raise GatewayRejected("Capture not found", 404, issue="RESOURCE_NOT_FOUND")
            return CaptureState(
                capture_id=capture_id,
                status=capture["status"],
                amount=capture["amount"],
                currency=capture["currency"],
                gateway_order_id=capture["gateway_order_id"],
            )

    def verify_webhook_signature(self, headers: dict, body: bytes) -> bool:  # noqa: ARG002
        self._record("verify_webhook_signature")
        lowered = {key.lower(): value for key, value in headers.items()}
        return lowered.get(SIGNATURE_HEADER) == self.webhook_secret

    def _record(self, method: str, **kwargs) -> None:
        with self._lock:
            self.calls.append({"method": method, **kwargs})
            for index, (target, error) in enumerate(self._failures):
                if target is None or target == method:
                    del self._failures[index]
                    raise error

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]
