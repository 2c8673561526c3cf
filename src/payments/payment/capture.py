"""Capture reconciliation: synchronous captures and capture-side webhooks.

Applying a capture is idempotent: the first capture moves a pending or
confirmed order to paid and pins the gateway capture id; any later report
of the same capture only merges metadata. A capture that names a different
capture id, or arrives for a cancelled or refunded order, is recorded as
an anomaly and rejected.
"""

from dataclasses import dataclass

import structlog
from protean.exceptions import ObjectNotFoundError

from ordering.order.lifecycle import OrderEditor, OrderLifecycle
from ordering.order.order import OrderStatus
from ordering.order.transitions import TransitionContext
from payments.errors import GatewayRejected, GatewayTimeout, ReconciliationMismatch
from payments.gateway.port import TERMINAL_FAILURE_STATUSES
from payments.payment.calls import GatewayCaller
from payments.payment.outcome import AlreadyApplied, Applied, Outcome, Rejected
from payments.payment.records import record_anomaly
from shared.clock import utcnow
from shared.money import to_major_string

logger = structlog.get_logger(__name__)

_OPEN_STATES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)
_CLOSED_STATES = (OrderStatus.CANCELLED, OrderStatus.REFUNDED)


@dataclass(frozen=True)
class CaptureFacts:
    """What the gateway told us about a capture."""

    gateway_order_id: str
    capture_id: str | None = None
    status: str | None = None
    amount: int | None = None
    currency: str | None = None
    status_reason: str | None = None
    event_id: str | None = None

    def metadata(self) -> dict:
        values = {"gateway_capture_status": self.status, "capture_recorded_at": utcnow().isoformat()}
        if self.capture_id:
            values["gateway_capture_id"] = self.capture_id
        if self.amount is not None and self.currency:
            values["capture_amount"] = to_major_string(self.amount, self.currency)
        if self.event_id:
            values["webhook_event_id"] = self.event_id
        return values


def mark_payment_state_unknown(lifecycle: OrderLifecycle, order_id: str, operation: str) -> None:
    """Flag an order whose capture/refund outcome is unknown after a timeout."""
    logger.warning("Gateway outcome unknown, reconcile later", order_id=order_id, operation=operation)
    lifecycle.edit(
        order_id,
        lambda editor: editor.merge_metadata(
            {
                "payment_state_unknown": True,
                "payment_state_unknown_operation": operation,
                "payment_state_unknown_at": utcnow().isoformat(),
            }
        ),
    )


class CaptureHandler:
    def __init__(self, lifecycle: OrderLifecycle, caller: GatewayCaller):
        self.lifecycle = lifecycle
        self.caller = caller

    @property
    def gateway(self):
        return self.caller.gateway

    def capture(self, gateway_order_id: str, actor: str = "buyer") -> Outcome:
        """Capture a gateway order and reconcile the local order with the result.

        Raises:
            ObjectNotFoundError: no local order is linked to ``gateway_order_id``.
            GatewayTimeout: outcome unknown; the order is flagged for verification.
            GatewayUnavailable: retry budget exhausted.
            GatewayRejected: the gateway refused the capture.
        """
        order_id = self.lifecycle.find_order_id(gateway_order_id=gateway_order_id)
        if order_id is None:
            raise ObjectNotFoundError(f"No order is linked to gateway order {gateway_order_id}")

        try:
            result = self.caller.call(
                "capture_order",
                lambda: self.gateway.capture_order(gateway_order_id, request_id=f"capture-{gateway_order_id}"),
            )
            facts = CaptureFacts(
                gateway_order_id=gateway_order_id,
                capture_id=result.capture_id or None,
                status=result.status,
                amount=result.amount,
                currency=result.currency,
            )
        except GatewayTimeout:
            mark_payment_state_unknown(self.lifecycle, order_id, "capture")
            raise
        except GatewayRejected as exc:
            if not exc.already_captured:
                logger.warning(
                    "Capture rejected by gateway",
                    order_id=order_id,
                    gateway_order_id=gateway_order_id,
                    issue=exc.issue,
                )
                raise
            state = self.caller.call("get_order", lambda: self.gateway.get_order(gateway_order_id))
            if not state.capture_id:
                raise
            logger.info("Gateway order already captured, reconciling from its state", order_id=order_id)
            facts = CaptureFacts(
                gateway_order_id=gateway_order_id,
                capture_id=state.capture_id,
                status=state.capture_status or state.status,
                amount=state.amount,
                currency=state.currency,
            )

        if facts.status in TERMINAL_FAILURE_STATUSES:
            return self.apply_denial(order_id, facts, actor=actor)
        if facts.status and facts.status != "COMPLETED":
            self.lifecycle.edit(order_id, lambda editor: editor.merge_metadata(facts.metadata()))
            return Rejected(f"capture is {facts.status}", order_id, {"capture_id": facts.capture_id})
        return self.apply_capture(order_id, facts, actor=actor, reason="capture completed")

    # -------------------------------------------------------------------
    # Applying gateway facts
    # -------------------------------------------------------------------
    def apply_capture(self, order_id: str, facts: CaptureFacts, actor: str = "system", reason: str = "") -> Outcome:
        def edit(editor: OrderEditor) -> Outcome:
            order = editor.order
            status = editor.status

            if status in _CLOSED_STATES:
                record_anomaly(
                    ReconciliationMismatch(order.id, "capture_on_closed_order", "pending|confirmed", status.value),
                    {"capture_id": facts.capture_id, "event_id": facts.event_id},
                )
                return Rejected(f"order is {status.value}", order.id)

            if facts.capture_id and not order.record_capture_id(facts.capture_id):
                record_anomaly(
                    ReconciliationMismatch(order.id, "capture_id_conflict", order.gateway_capture_id, facts.capture_id),
                    {"event_id": facts.event_id},
                )
                return Rejected("a different capture is already recorded", order.id)

            if status not in _OPEN_STATES:
                editor.merge_metadata({"last_duplicate_capture_at": utcnow().isoformat()})
                logger.info("Duplicate capture ignored", order_id=order.id, status=status.value)
                return AlreadyApplied(order.id, {"status": status.value})

            self._check_amount(editor, facts)
            editor.transition(
                OrderStatus.PAID,
                TransitionContext(reason=reason, actor=actor, automatic=True, metadata=facts.metadata()),
            )
            return Applied(order.id, OrderStatus.PAID.value, {"capture_id": order.gateway_capture_id})

        return self.lifecycle.edit(order_id, edit)

    def apply_denial(self, order_id: str, facts: CaptureFacts, actor: str = "system") -> Outcome:
        def edit(editor: OrderEditor) -> Outcome:
            status = editor.status
            if status == OrderStatus.CANCELLED:
                return AlreadyApplied(editor.order.id, {"status": status.value})
            if status not in _OPEN_STATES:
                record_anomaly(
                    ReconciliationMismatch(editor.order.id, "denial_after_capture", "pending|confirmed", status.value),
                    {"capture_id": facts.capture_id, "event_id": facts.event_id},
                )
                return Rejected(f"order is {status.value}", editor.order.id)

            metadata = facts.metadata()
            metadata.pop("gateway_capture_id", None)
            if facts.status_reason:
                metadata["denial_reason"] = facts.status_reason
            editor.transition(
                OrderStatus.CANCELLED,
                TransitionContext(
                    reason="Payment denied by gateway",
                    actor=actor,
                    automatic=True,
                    metadata=metadata,
                ),
            )
            return Applied(editor.order.id, OrderStatus.CANCELLED.value)

        return self.lifecycle.edit(order_id, edit)

    def apply_approval(self, order_id: str, facts: CaptureFacts) -> Outcome:
        def edit(editor: OrderEditor) -> Outcome:
            status = editor.status
            if status == OrderStatus.PENDING:
                editor.transition(
                    OrderStatus.CONFIRMED,
                    TransitionContext(
                        reason="Gateway order approved by buyer",
                        automatic=True,
                        metadata={"webhook_event_id": facts.event_id} if facts.event_id else {},
                    ),
                )
                return Applied(editor.order.id, OrderStatus.CONFIRMED.value)
            if status in _CLOSED_STATES:
                return Rejected(f"order is {status.value}", editor.order.id)
            # Approval arriving after the capture it preceded
            return AlreadyApplied(editor.order.id, {"status": status.value})

        return self.lifecycle.edit(order_id, edit)

    @staticmethod
    def _check_amount(editor: OrderEditor, facts: CaptureFacts) -> None:
        order = editor.order
        if facts.amount is None:
            return
        if facts.amount != order.total_amount or (facts.currency and facts.currency != order.currency):
            record_anomaly(
                ReconciliationMismatch(
                    order.id,
                    "capture_amount_mismatch",
                    f"{order.total_amount} {order.currency}",
                    f"{facts.amount} {facts.currency}",
                ),
                {"capture_id": facts.capture_id, "event_id": facts.event_id},
            )
