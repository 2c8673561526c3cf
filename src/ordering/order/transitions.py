"""Pure order state machine.

``apply_transition`` validates an edge, updates the in-memory order and
returns the side effects the caller must carry out, as data. It touches no
database, queue or network, so it can be exercised without any
infrastructure. ``ordering.order.lifecycle.OrderLifecycle`` executes the
intents inside one unit of work.
"""

from dataclasses import dataclass, field
from datetime import datetime

from protean.exceptions import InvalidOperationError, ObjectNotFoundError

from inventory.stock.stock import ReferenceType, TransactionType
from notifications.notification.queue import Priority
from notifications.templates.keys import TemplateKey
from ordering.order.order import STATUS_TIMESTAMPS, Order, OrderStatus, coerce_status
from shared.clock import utcnow
from shared.money import to_major_string

# Fixed lookup: every status maps to exactly one template
TEMPLATE_FOR_STATUS: dict[OrderStatus, TemplateKey] = {
    OrderStatus.PENDING: TemplateKey.ORDER_RECEIVED,
    OrderStatus.CONFIRMED: TemplateKey.PAYMENT_APPROVED,
    OrderStatus.PAID: TemplateKey.ORDER_CONFIRMED,
    OrderStatus.PROCESSING: TemplateKey.ORDER_PROCESSING,
    OrderStatus.PACKED: TemplateKey.ORDER_PACKED,
    OrderStatus.SHIPPED: TemplateKey.ORDER_SHIPPED,
    OrderStatus.DELIVERED: TemplateKey.ORDER_DELIVERED,
    OrderStatus.CANCELLED: TemplateKey.ORDER_CANCELLED,
    OrderStatus.REFUNDED: TemplateKey.REFUND_PROCESSED,
}

_missing = set(OrderStatus) - set(TEMPLATE_FOR_STATUS)
if _missing:
    raise RuntimeError(f"No notification template for statuses: {sorted(s.value for s in _missing)}")

# Money-moving transitions jump the notification queue
_HIGH_PRIORITY = {OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.REFUNDED}

# Context keys copied into notification variables when present
_NOTIFICATION_KEYS = ("tracking_number", "carrier", "refund_amount", "denial_reason")


def template_for_status(status) -> TemplateKey:
    return TEMPLATE_FOR_STATUS[coerce_status(status)]


# ---------------------------------------------------------------------------
# Inputs and intents
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class TransitionContext:
    """Why a transition is happening and who asked for it.

    ``metadata`` is merged into the order's metadata map and stored as the
    status event's context payload.
    """

    reason: str = ""
    actor: str = "system"
    automatic: bool = False
    metadata: dict = field(default_factory=dict)
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class AppendStatusEvent:
    order_id: str
    old_status: OrderStatus
    new_status: OrderStatus
    reason: str
    actor: str
    automatic: bool
    context: dict
    occurred_at: datetime


@dataclass(frozen=True)
class AdjustInventory:
    variant_id: str
    delta: int
    transaction_type: TransactionType
    reason: str
    reference_type: ReferenceType
    reference_id: str
    vendor_id: str


@dataclass(frozen=True)
class EnqueueNotification:
    template_key: TemplateKey
    recipient: str
    variables: dict
    priority: Priority


Intent = AppendStatusEvent | AdjustInventory | EnqueueNotification


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    old_status: OrderStatus
    new_status: OrderStatus
    intents: list[Intent]

    def of_type(self, intent_type: type) -> list:
        return [intent for intent in self.intents if isinstance(intent, intent_type)]


# ---------------------------------------------------------------------------
# Transition
# ---------------------------------------------------------------------------
def apply_transition(order: Order | None, new_status, context: TransitionContext | None = None) -> TransitionResult:
    """Move ``order`` to ``new_status`` and describe the required side effects.

    Intents, in order:
        1. AppendStatusEvent (always)
        2. AdjustInventory per item: -quantity/sale on first entry into PAID,
           +quantity/refund on entry into REFUNDED
        3. EnqueueNotification for the new status (always)

    Raises:
        ObjectNotFoundError: ``order`` is None.
        InvalidOperationError: no edge from the current status to ``new_status``.
    """
    if order is None:
        raise ObjectNotFoundError("Order does not exist")

    context = context or TransitionContext()
    target = coerce_status(new_status)
    current = order.current_status
    if not order.can_transition_to(target):
        raise InvalidOperationError({"status": [f"Cannot transition from {current.value} to {target.value}"]})

    now = context.occurred_at or utcnow()
    intents: list[Intent] = [
        AppendStatusEvent(
            order_id=order.id,
            old_status=current,
            new_status=target,
            reason=context.reason,
            actor=context.actor,
            automatic=context.automatic,
            context=dict(context.metadata),
            occurred_at=now,
        )
    ]

    if target == OrderStatus.PAID and not order.inventory_deducted:
        intents.extend(_inventory_intents(order, TransactionType.SALE, f"Order paid: {order.id}"))
        order.inventory_deducted = True
    elif target == OrderStatus.REFUNDED and order.inventory_deducted:
        intents.extend(_inventory_intents(order, TransactionType.REFUND, f"Order refunded: {order.id}"))
        order.inventory_deducted = False

    order.status = target.value
    order.updated_at = now
    timestamp_field = STATUS_TIMESTAMPS.get(target)
    if timestamp_field:
        setattr(order, timestamp_field, now)
    order.merge_metadata(context.metadata)

    intents.append(_notification_intent(order, current, target, context))

    return TransitionResult(order=order, old_status=current, new_status=target, intents=intents)


def _inventory_intents(order: Order, transaction_type: TransactionType, reason: str) -> list[AdjustInventory]:
    sign = -1 if transaction_type == TransactionType.SALE else 1
    return [
        AdjustInventory(
            variant_id=item.variant_id,
            delta=sign * item.quantity,
            transaction_type=transaction_type,
            reason=reason,
            reference_type=ReferenceType.ORDER,
            reference_id=order.id,
            vendor_id=item.vendor_id,
        )
        for item in order.items
    ]


def _notification_intent(
    order: Order,
    old_status: OrderStatus,
    new_status: OrderStatus,
    context: TransitionContext,
) -> EnqueueNotification:
    variables = {
        "order_id": order.id,
        "buyer_id": order.buyer_id,
        "status": new_status.value,
        "previous_status": old_status.value,
        "total": to_major_string(order.total_amount, order.currency),
        "currency": order.currency,
        "reason": context.reason,
    }
    for key in _NOTIFICATION_KEYS:
        if key in context.metadata:
            variables[key] = context.metadata[key]

    return EnqueueNotification(
        template_key=TEMPLATE_FOR_STATUS[new_status],
        recipient=order.buyer_email or order.buyer_id,
        variables=variables,
        priority=Priority.HIGH if new_status in _HIGH_PRIORITY else Priority.NORMAL,
    )
