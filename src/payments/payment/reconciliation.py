"""Single entry point for payment reconciliation.

Wires one gateway, one retry budget and the order lifecycle into the
capture, refund, verification and webhook handlers.
"""

import time
from collections.abc import Callable
from datetime import timedelta

from protean.utils.globals import current_domain

from ordering.order.lifecycle import OrderLifecycle
from payments.gateway.port import PaymentGateway
from payments.payment.calls import GatewayCaller
from payments.payment.capture import CaptureHandler
from payments.payment.outcome import Outcome
from payments.payment.records import ReconciliationAnomaly
from payments.payment.refund import RefundHandler
from payments.payment.verification import VerificationHandler, VerificationResult
from payments.payment.webhook import WebhookHandler
from shared.domain import transaction


class PaymentReconciliation:
    def __init__(
        self,
        lifecycle: OrderLifecycle,
        gateway: PaymentGateway,
        max_attempts: int = 3,
        backoff_base_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.lifecycle = lifecycle
        self.gateway = gateway
        caller = GatewayCaller(gateway, max_attempts, backoff_base_seconds, sleep)
        self.captures = CaptureHandler(lifecycle, caller)
        self.refunds = RefundHandler(lifecycle, caller)
        self.verifications = VerificationHandler(lifecycle, caller)
        self.webhooks = WebhookHandler(lifecycle, gateway, self.captures, self.refunds)

    def reconcile_capture(self, gateway_order_id: str, actor: str = "buyer") -> Outcome:
        return self.captures.capture(gateway_order_id, actor=actor)

    def reconcile_refund(
        self,
        capture_id: str,
        amount: int | None = None,
        reason: str = "",
        actor: str = "system",
    ) -> Outcome:
        return self.refunds.refund(capture_id, amount=amount, reason=reason, actor=actor)

    def verify_order(self, order_id: str) -> VerificationResult:
        return self.verifications.verify(order_id)

    def ingest_webhook(self, provider: str, headers: dict, body: bytes) -> Outcome:
        return self.webhooks.ingest(provider, headers, body)

    def retry_unprocessed(self, limit: int = 50, min_age: timedelta = timedelta(minutes=1)) -> list[Outcome]:
        return self.webhooks.retry_unprocessed(limit=limit, min_age=min_age)

    def anomalies(self, order_id: str | None = None) -> list[ReconciliationAnomaly]:
        with transaction():
            return current_domain.repository_for(ReconciliationAnomaly).listing(order_id)
