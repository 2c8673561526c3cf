"""Scheduled automatic transitions.

Shipped orders that nobody marked as delivered are delivered
automatically once ``auto_deliver_after_days`` have passed since shipping.
A failure on one order is logged and the batch carries on.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog
from protean.exceptions import ProteanException
from protean.utils.globals import current_domain

from ordering.order.lifecycle import OrderLifecycle
from ordering.order.order import Order, OrderStatus
from ordering.order.transitions import TransitionContext
from shared.clock import utcnow
from shared.domain import transaction
from shared.queries import fetch_all

logger = structlog.get_logger(__name__)


@dataclass
class AutomationReport:
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def process_automatic_transitions(
    lifecycle: OrderLifecycle,
    now: datetime | None = None,
    auto_deliver_after_days: int = 7,
) -> AutomationReport:
    now = now or utcnow()
    cutoff = now - timedelta(days=auto_deliver_after_days)
    report = AutomationReport()

    with transaction():
        query = current_domain.repository_for(Order)._dao.query.filter(
            status=OrderStatus.SHIPPED.value, shipped_at__lte=cutoff
        )
        order_ids = [str(order.id) for order in fetch_all(query.order_by("shipped_at"))]

    context = TransitionContext(
        reason=f"Auto-delivered after {auto_deliver_after_days} days",
        actor="system",
        automatic=True,
        occurred_at=now,
    )
    for order_id in order_ids:
        try:
            lifecycle.transition(order_id, OrderStatus.DELIVERED, context)
            report.delivered.append(order_id)
        except ProteanException as exc:
            # Usually a concurrent transition (e.g. a refund) got there first
            report.failed[order_id] = str(exc)
            logger.warning("Automatic delivery failed", order_id=order_id, error=str(exc))
        except Exception as exc:
            report.failed[order_id] = str(exc)
            logger.exception("Automatic delivery crashed", order_id=order_id)

    logger.info("Automatic transitions processed", delivered=len(report.delivered), failed=len(report.failed))
    return report
