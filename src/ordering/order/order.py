"""Order aggregate: the core of the ordering domain.

An Order owns its line items and an append-only status history. The status
field only ever moves along the edges in ``_VALID_TRANSITIONS``; the pure
transition function in ``ordering.order.transitions`` is the single place
that changes it.

State Machine (9 states):
    PENDING → CONFIRMED → PAID
    PENDING → PAID → PROCESSING → PACKED → SHIPPED → DELIVERED
    PENDING/CONFIRMED → CANCELLED
    PAID/PROCESSING/PACKED/SHIPPED/DELIVERED → REFUNDED
"""

import json
from enum import Enum

from protean.exceptions import InvalidOperationError, ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String, Text

from ordering.domain import ordering
from shared.clock import utcnow
from shared.money import validate_currency
from shared.queries import fetch_all


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    PROCESSING = "processing"
    PACKED = "packed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.PROCESSING, OrderStatus.REFUNDED},
    OrderStatus.PROCESSING: {OrderStatus.PACKED, OrderStatus.REFUNDED},
    OrderStatus.PACKED: {OrderStatus.SHIPPED, OrderStatus.REFUNDED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.REFUNDED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

# Delivered is final for fulfillment but may still be reversed by a refund
_FINAL_STATES = {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED}

# Statuses from which money has been taken and can be given back
REFUNDABLE_STATES = frozenset(
    {
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.PACKED,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
    }
)

_DISPLAY_NAMES = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.PAID: "Paid",
    OrderStatus.PROCESSING: "Processing",
    OrderStatus.PACKED: "Packed",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
    OrderStatus.REFUNDED: "Refunded",
}

# Timestamp column stamped when the order enters a status
STATUS_TIMESTAMPS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.REFUNDED: "refunded_at",
}


def coerce_status(status) -> OrderStatus:
    """Accept an ``OrderStatus`` or its string value."""
    if isinstance(status, OrderStatus):
        return status
    try:
        return OrderStatus(status)
    except ValueError:
        raise ValidationError({"status": [f"Unknown order status: {status!r}"]}) from None


def can_transition(current, target) -> bool:
    return coerce_status(target) in _VALID_TRANSITIONS[coerce_status(current)]


def available_transitions(status) -> list[OrderStatus]:
    """Statuses reachable in one step, in declaration order."""
    targets = _VALID_TRANSITIONS[coerce_status(status)]
    return [s for s in OrderStatus if s in targets]


def is_final_status(status) -> bool:
    return coerce_status(status) in _FINAL_STATES


def status_display_name(status) -> str:
    return _DISPLAY_NAMES[coerce_status(status)]


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@ordering.entity(part_of="Order")
class OrderItem:
    """A line item: one variant, a quantity, and the unit price at purchase time.

    The price is a snapshot and is never re-read from the live catalog.
    """

    variant_id = Identifier(required=True)
    product_id = Identifier()
    vendor_id = Identifier(required=True)
    sku = String(max_length=64)
    title = String(max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Integer(required=True, min_value=0)

    @property
    def line_total(self) -> int:
        return self.quantity * self.unit_price


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@ordering.aggregate
class Order:
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    total_amount = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="USD")
    vendor_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    buyer_email = String(max_length=255)
    gateway_order_id = String(max_length=64)
    gateway_capture_id = String(max_length=64)
    metadata_json = Text(default="{}")
    inventory_deducted = Boolean(default=False)
    items = HasMany(OrderItem)
    paid_at = DateTime()
    shipped_at = DateTime()
    delivered_at = DateTime()
    cancelled_at = DateTime()
    refunded_at = DateTime()
    created_at = DateTime(default=utcnow)
    updated_at = DateTime(default=utcnow)

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        buyer_id: str,
        vendor_id: str,
        items_data: list[dict],
        currency: str = "USD",
        buyer_email: str | None = None,
        gateway_order_id: str | None = None,
        total_amount: int | None = None,
        metadata: dict | None = None,
    ) -> "Order":
        """Create a new PENDING order.

        Args:
            buyer_id: The buyer placing the order.
            vendor_id: The vendor fulfilling it.
            items_data: List of dicts with variant_id, quantity, unit_price
                        (minor units) and optionally product_id, vendor_id,
                        sku, title.
            total_amount: Defaults to the sum of line totals.
        """
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one item"]})

        errors: dict[str, list[str]] = {}
        for index, item in enumerate(items_data):
            if not item.get("variant_id"):
                errors.setdefault("items", []).append(f"Item {index}: variant_id is required")
            if int(item.get("quantity", 0)) < 1:
                errors.setdefault("items", []).append(f"Item {index}: quantity must be at least 1")
            if int(item.get("unit_price", -1)) < 0:
                errors.setdefault("items", []).append(f"Item {index}: unit_price must not be negative")
        if total_amount is not None and total_amount < 0:
            errors.setdefault("total_amount", []).append("Total must not be negative")
        if errors:
            raise ValidationError(errors)

        items = [
            OrderItem(
                variant_id=str(item["variant_id"]),
                product_id=item.get("product_id"),
                vendor_id=str(item.get("vendor_id") or vendor_id),
                sku=item.get("sku"),
                title=item.get("title"),
                quantity=int(item["quantity"]),
                unit_price=int(item["unit_price"]),
            )
            for item in items_data
        ]
        computed_total = sum(item.line_total for item in items)

        now = utcnow()
        order = cls(
            status=OrderStatus.PENDING.value,
            total_amount=computed_total if total_amount is None else total_amount,
            currency=validate_currency(currency),
            vendor_id=str(vendor_id),
            buyer_id=str(buyer_id),
            buyer_email=buyer_email,
            gateway_order_id=gateway_order_id,
            metadata_json=json.dumps(dict(metadata or {}), default=str),
            inventory_deducted=False,
            created_at=now,
            updated_at=now,
        )
        for item in items:
            order.add_items(item)
        return order

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def current_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def meta(self) -> dict:
        """The metadata map. Read-only; change it with ``merge_metadata``."""
        return json.loads(self.metadata_json or "{}")

    def can_transition_to(self, target) -> bool:
        return can_transition(self.current_status, target)

    def merge_metadata(self, values: dict) -> None:
        if values:
            self.metadata_json = json.dumps({**self.meta, **values}, default=str)

    def record_capture_id(self, capture_id: str) -> bool:
        """Set the gateway capture id, first write wins.

        Returns False when a different capture id is already recorded; the
        stored value is never overwritten.
        """
        if self.gateway_capture_id is None:
            self.gateway_capture_id = capture_id
            return True
        return self.gateway_capture_id == capture_id


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------
@ordering.aggregate
class OrderStatusEvent:
    """One row per accepted transition. Never updated or deleted."""

    order_id = Identifier(required=True)
    sequence = Integer(required=True, min_value=1)
    old_status = String(max_length=20, required=True)
    new_status = String(max_length=20, required=True)
    reason = Text()
    actor = String(max_length=64, default="system")
    automatic = Boolean(default=False)
    context_json = Text(default="{}")
    created_at = DateTime(default=utcnow)

    @property
    def context(self) -> dict:
        return json.loads(self.context_json or "{}")


@ordering.repository(part_of=OrderStatusEvent)
class OrderStatusEventRepository:
    def add(self, event):
        if event.state_.is_persisted:
            raise InvalidOperationError({"event": [f"Order status events are append-only (event {event.id})"]})
        return super().add(event)

    def for_order(self, order_id: str) -> list:
        return fetch_all(self._dao.query.filter(order_id=order_id).order_by("sequence"))

    def next_sequence(self, order_id: str) -> int:
        return self._dao.query.filter(order_id=order_id).limit(1).all().total + 1
