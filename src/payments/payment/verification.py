"""Payment verification: read-only comparison of gateway and local state.

A verification never transitions an order. It flags two kinds of mismatch:

- the gateway amount differs from the order total by one minor unit or more
- the gateway reports a terminal failure while the order is not cancelled

Every run is stored as a ``VerificationRecord``; mismatches are also
recorded as anomalies. A pending "outcome unknown" flag left by a timed-out
capture or refund is cleared once the gateway state has been read.
"""

import json
from dataclasses import asdict, dataclass, field

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from ordering.order.lifecycle import OrderLifecycle
from ordering.order.order import OrderStatus
from payments.errors import ReconciliationMismatch
from payments.gateway.port import SETTLED_ORDER_STATUSES, TERMINAL_FAILURE_STATUSES
from payments.payment.calls import GatewayCaller
from payments.payment.records import VerificationRecord, record_anomaly
from shared.clock import utcnow
from shared.domain import transaction
from shared.money import amounts_match

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    order_id: str
    gateway_order_id: str
    capture_id: str | None
    order_status: str
    gateway_status: str
    capture_status: str | None
    expected_amount: int
    gateway_amount: int | None
    amount_match: bool
    is_valid: bool
    mismatches: list[dict] = field(default_factory=list)
    verified_at: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


class VerificationHandler:
    def __init__(self, lifecycle: OrderLifecycle, caller: GatewayCaller):
        self.lifecycle = lifecycle
        self.caller = caller

    def verify(self, order_id: str) -> VerificationResult:
        order = self.lifecycle.load(order_id)
        if not order.gateway_order_id:
            raise ValidationError({"gateway_order_id": ["No gateway order is linked to this order"]})

        gateway = self.caller.gateway
        state = self.caller.call("get_order", lambda: gateway.get_order(order.gateway_order_id))
        capture_status = state.capture_status
        if order.gateway_capture_id:
            capture = self.caller.call("get_capture", lambda: gateway.get_capture(order.gateway_capture_id))
            capture_status = capture.status

        mismatches: list[ReconciliationMismatch] = []
        amount_ok = state.amount is not None and amounts_match(order.total_amount, state.amount)
        if state.currency and state.currency != order.currency:
            amount_ok = False
        if not amount_ok:
            mismatches.append(
                ReconciliationMismatch(
                    order.id,
                    "amount_mismatch",
                    f"{order.total_amount} {order.currency}",
                    f"{state.amount} {state.currency}",
                )
            )

        failed = state.status in TERMINAL_FAILURE_STATUSES or capture_status in TERMINAL_FAILURE_STATUSES
        if failed and order.current_status != OrderStatus.CANCELLED:
            mismatches.append(
                ReconciliationMismatch(
                    order.id,
                    "gateway_failed_order_open",
                    OrderStatus.CANCELLED.value,
                    order.status,
                )
            )

        if order.gateway_capture_id and state.capture_id and state.capture_id != order.gateway_capture_id:
            mismatches.append(
                ReconciliationMismatch(order.id, "capture_id_mismatch", order.gateway_capture_id, state.capture_id)
            )

        result = VerificationResult(
            order_id=order.id,
            gateway_order_id=order.gateway_order_id,
            capture_id=order.gateway_capture_id,
            order_status=order.status,
            gateway_status=state.status,
            capture_status=capture_status,
            expected_amount=order.total_amount,
            gateway_amount=state.amount,
            amount_match=amount_ok,
            is_valid=amount_ok and state.status in SETTLED_ORDER_STATUSES and not mismatches,
            mismatches=[m.to_dict() for m in mismatches],
            verified_at=utcnow().isoformat(),
        )

        with transaction():
            current_domain.repository_for(VerificationRecord).add(
                VerificationRecord(
                    order_id=result.order_id,
                    gateway_order_id=result.gateway_order_id,
                    capture_id=result.capture_id,
                    order_status=result.order_status,
                    gateway_status=result.gateway_status,
                    capture_status=result.capture_status,
                    expected_amount=result.expected_amount,
                    gateway_amount=result.gateway_amount,
                    amount_match=result.amount_match,
                    is_valid=result.is_valid,
                    mismatches_json=json.dumps(result.mismatches, default=str),
                    verified_at=utcnow(),
                )
            )
            for mismatch in mismatches:
                record_anomaly(mismatch, {"source": "verification"})

        if (order.meta or {}).get("payment_state_unknown"):
            self._resolve_unknown_state(order.id, state.status, capture_status)

        logger.info(
            "Payment verified",
            order_id=order.id,
            is_valid=result.is_valid,
            mismatches=[m.kind for m in mismatches],
        )
        return result

    def history(self, order_id: str, limit: int = 5) -> list[VerificationRecord]:
        with transaction():
            return current_domain.repository_for(VerificationRecord).latest_for_order(order_id, limit)

    def _resolve_unknown_state(self, order_id: str, gateway_status: str, capture_status: str | None) -> None:
        self.lifecycle.edit(
            order_id,
            lambda editor: editor.merge_metadata(
                {
                    "payment_state_unknown": False,
                    "payment_state_resolved": {
                        "gateway_status": gateway_status,
                        "capture_status": capture_status,
                        "at": utcnow().isoformat(),
                    },
                }
            ),
        )
