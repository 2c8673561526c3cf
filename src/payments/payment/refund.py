"""Refund reconciliation: support-initiated refunds and refund webhooks.

Every refund leaves a ``RefundRecord`` keyed by the gateway refund id, so
the same refund reported twice (API response, then webhook) is applied
once. A refund at least as large as the order total moves the order to
refunded; a smaller one only updates metadata and the audit trail.
"""

from dataclasses import dataclass

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from ordering.order.lifecycle import OrderEditor, OrderLifecycle
from ordering.order.order import REFUNDABLE_STATES, OrderStatus
from ordering.order.transitions import TransitionContext
from payments.errors import GatewayRejected, GatewayTimeout, ReconciliationMismatch
from payments.payment.calls import GatewayCaller
from payments.payment.capture import mark_payment_state_unknown
from payments.payment.outcome import AlreadyApplied, Applied, Outcome, Rejected
from payments.payment.records import RefundRecord, record_anomaly
from shared.clock import utcnow
from shared.domain import transaction
from shared.money import to_major_string

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RefundFacts:
    refund_id: str
    capture_id: str
    amount: int
    currency: str
    status: str | None = None
    source: str = "api"
    event_id: str | None = None


class RefundHandler:
    def __init__(self, lifecycle: OrderLifecycle, caller: GatewayCaller):
        self.lifecycle = lifecycle
        self.caller = caller

    def refund(
        self,
        capture_id: str,
        amount: int | None = None,
        reason: str = "",
        actor: str = "system",
        request_key: str | None = None,
    ) -> Outcome:
        """Refund ``amount`` minor units of a capture (the full order when None).

        Raises:
            ObjectNotFoundError: no local order carries ``capture_id``.
            ValidationError: non-positive amount, or more than the order total.
            GatewayTimeout: outcome unknown; the order is flagged for verification.
            GatewayUnavailable: retry budget exhausted.
            GatewayRejected: the gateway refused the refund.
        """
        order_id = self.lifecycle.find_order_id(capture_id=capture_id)
        if order_id is None:
            raise ObjectNotFoundError(f"No order carries capture {capture_id}")
        if amount is not None and amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})

        order = self.lifecycle.load(order_id)
        if order.current_status not in REFUNDABLE_STATES:
            logger.info("Refund refused for order state", order_id=order_id, status=order.status)
            return Rejected(f"order is {order.status}", order_id)
        if amount is not None and amount > order.total_amount:
            raise ValidationError({"amount": ["Refund amount exceeds the order total"]})

        request_id = request_key or self._request_id(capture_id, amount)
        try:
            result = self.caller.call(
                "refund_capture",
                lambda: self.caller.gateway.refund_capture(
                    capture_id,
                    amount,
                    order.currency,
                    request_id=request_id,
                    note=reason or None,
                ),
            )
        except GatewayTimeout:
            mark_payment_state_unknown(self.lifecycle, order_id, "refund")
            raise
        except GatewayRejected as exc:
            logger.warning("Refund rejected by gateway", order_id=order_id, capture_id=capture_id, issue=exc.issue)
            raise

        refunded = result.amount if result.amount is not None else (amount or order.total_amount)
        facts = RefundFacts(
            refund_id=result.refund_id,
            capture_id=capture_id,
            amount=refunded,
            currency=result.currency or order.currency,
            status=result.status,
            source="api",
        )
        return self.apply_refund(order_id, facts, reason=reason or "Refund processed", actor=actor, automatic=False)

    def apply_refund(
        self,
        order_id: str,
        facts: RefundFacts,
        reason: str = "Refund processed",
        actor: str = "system",
        automatic: bool = True,
    ) -> Outcome:
        def edit(editor: OrderEditor) -> Outcome:
            order = editor.order
            existing = current_domain.repository_for(RefundRecord).find(facts.refund_id)
            if existing is not None:
                logger.info("Refund already recorded", order_id=order.id, refund_id=facts.refund_id)
                return AlreadyApplied(order.id, {"refund_id": facts.refund_id})

            status = editor.status
            is_full = facts.amount >= order.total_amount
            status_changed = False
            refund_amount = to_major_string(facts.amount, facts.currency)

            if is_full and status in REFUNDABLE_STATES:
                metadata = {"gateway_refund_id": facts.refund_id, "refund_amount": refund_amount}
                if facts.event_id:
                    metadata["webhook_event_id"] = facts.event_id
                editor.transition(
                    OrderStatus.REFUNDED,
                    TransitionContext(reason=reason, actor=actor, automatic=automatic, metadata=metadata),
                )
                status_changed = True
            else:
                if status not in REFUNDABLE_STATES:
                    kind = "duplicate_full_refund" if status == OrderStatus.REFUNDED else "refund_on_unpaid_order"
                    record_anomaly(
                        ReconciliationMismatch(order.id, kind, "paid or later", status.value),
                        {"refund_id": facts.refund_id, "amount": facts.amount, "event_id": facts.event_id},
                    )
                partial_refunds = list((order.meta or {}).get("partial_refunds", []))
                partial_refunds.append(
                    {"refund_id": facts.refund_id, "amount": refund_amount, "at": utcnow().isoformat()}
                )
                editor.merge_metadata({"partial_refunds": partial_refunds})

            editor.add(
                RefundRecord(
                    order_id=order.id,
                    gateway_refund_id=facts.refund_id,
                    capture_id=facts.capture_id,
                    amount=facts.amount,
                    currency=facts.currency,
                    is_full=is_full,
                    status_changed=status_changed,
                    gateway_status=facts.status,
                    source=facts.source,
                    actor=actor,
                    reason=reason,
                    created_at=utcnow(),
                )
            )
            logger.info(
                "Refund recorded",
                order_id=order.id,
                refund_id=facts.refund_id,
                amount=facts.amount,
                is_full=is_full,
                status_changed=status_changed,
            )
            return Applied(
                order.id,
                editor.status.value,
                {"refund_id": facts.refund_id, "amount": facts.amount, "is_full": is_full, "status_changed": status_changed},
            )

        return self.lifecycle.edit(order_id, edit)

    def refunds_for(self, order_id: str) -> list[RefundRecord]:
        with transaction():
            return current_domain.repository_for(RefundRecord).for_order(order_id)

    def _request_id(self, capture_id: str, amount: int | None) -> str:
        # Stable across retries of the same logical request
        with transaction():
            sequence = current_domain.repository_for(RefundRecord).count_for_capture(capture_id)
        return f"refund-{capture_id}-{sequence + 1}-{amount if amount is not None else 'full'}"
