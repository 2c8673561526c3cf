"""Order placement: command and handler."""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from notifications.notification.queue import Priority
from ordering.domain import ordering
from ordering.order.order import Order
from ordering.order.transitions import template_for_status
from shared.domain import domain
from shared.money import to_major_string

logger = structlog.get_logger(__name__)


@ordering.command(part_of="Order")
class PlaceOrder:
    buyer_id = Identifier(required=True)
    vendor_id = Identifier(required=True)
    items = Text(required=True)  # JSON: list of item dicts
    currency = String(max_length=3, default="USD")
    buyer_email = String(max_length=255)
    gateway_order_id = String(max_length=64)
    total_amount = Integer(min_value=0)
    metadata = Text()  # JSON: dict


@ordering.command_handler(part_of=Order)
class PlaceOrderHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        items_data = json.loads(command.items) if isinstance(command.items, str) else command.items
        metadata = json.loads(command.metadata) if command.metadata else {}

        repo = current_domain.repository_for(Order)
        if command.gateway_order_id is not None:
            existing = repo._dao.query.filter(gateway_order_id=command.gateway_order_id).first
            if existing is not None:
                raise ValidationError(
                    {"gateway_order_id": [f"Gateway order {command.gateway_order_id} is already linked"]}
                )

        order = Order.create(
            buyer_id=command.buyer_id,
            vendor_id=command.vendor_id,
            items_data=items_data,
            currency=command.currency or "USD",
            buyer_email=command.buyer_email,
            gateway_order_id=command.gateway_order_id,
            total_amount=command.total_amount,
            metadata=metadata,
        )
        repo.add(order)

        logger.info(
            "Order placed",
            order_id=order.id,
            buyer_id=order.buyer_id,
            vendor_id=order.vendor_id,
            total_amount=order.total_amount,
            items=len(order.items),
        )
        return str(order.id)


def _notify_received(notifications, order: Order) -> None:
    variables = {
        "order_id": order.id,
        "buyer_id": order.buyer_id,
        "status": order.status,
        "total": to_major_string(order.total_amount, order.currency),
        "currency": order.currency,
    }
    notifications.submit(
        template_for_status(order.status),
        order.buyer_email or order.buyer_id,
        variables,
        Priority.NORMAL,
    )


class OrderPlacement:
    """Processes ``PlaceOrder`` synchronously and announces the new order.

    The "order received" notification is handed to ``notifications`` once
    the order is stored.
    """

    def __init__(self, notifications=None):
        self.notifications = notifications

    def place_order(self, *, items: list[dict], metadata: dict | None = None, **fields) -> str:
        command = PlaceOrder(
            items=json.dumps(items),
            metadata=json.dumps(metadata, default=str) if metadata else None,
            **fields,
        )
        with domain.domain_context():
            order_id = current_domain.process(command, asynchronous=False)
            if self.notifications is not None:
                _notify_received(self.notifications, current_domain.repository_for(Order).get(order_id))
        return order_id


def place_order(notifications=None, **kwargs) -> str:
    """Convenience wrapper: ``place_order(buyer_id=..., vendor_id=..., items=[...])``."""
    return OrderPlacement(notifications).place_order(**kwargs)
