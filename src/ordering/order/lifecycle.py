"""Order lifecycle orchestrator: executes transitions and their intents.

Every change to an order goes through ``OrderLifecycle.edit``:

1. take the order's in-process lock
2. take the locks of every variant on the order (sorted, all at once)
3. open a unit of work, load the order, run the caller's edit
4. commit; a stale version surfaces as ``ExpectedVersionError`` and the
   whole edit is retried from step 3
5. release the locks, then hand notification intents to the dispatcher

Status, audit row and ledger rows therefore commit or roll back together,
and two callers can never both move an order away from the same status.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import structlog
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.utils.globals import current_domain

from inventory.stock.ledger import InventoryLedger
from ordering.order.order import Order, OrderStatus, OrderStatusEvent
from ordering.order.transitions import (
    AdjustInventory,
    AppendStatusEvent,
    EnqueueNotification,
    Intent,
    TransitionContext,
    apply_transition,
)
from shared.domain import transaction
from shared.locks import KeyedLocks
from shared.retry import call_with_retry

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TransitionRecord:
    order_id: str
    old_status: OrderStatus
    new_status: OrderStatus
    event_id: str | None
    intents: tuple[Intent, ...]


class OrderEditor:
    """Mutation handle for one order inside one unit of work."""

    def __init__(self, order: Order, ledger: InventoryLedger):
        self.order = order
        self.ledger = ledger
        self.transitions: list[TransitionRecord] = []
        self.notifications: list[EnqueueNotification] = []
        self._next_sequence: int | None = None

    @property
    def status(self) -> OrderStatus:
        return self.order.current_status

    def transition(self, new_status, context: TransitionContext | None = None) -> TransitionRecord:
        result = apply_transition(self.order, new_status, context)

        event_id = None
        for intent in result.intents:
            if isinstance(intent, AppendStatusEvent):
                event_id = self._append_status_event(intent)
            elif isinstance(intent, AdjustInventory):
                self._adjust_inventory(intent)
            elif isinstance(intent, EnqueueNotification):
                self.notifications.append(intent)

        record = TransitionRecord(
            order_id=self.order.id,
            old_status=result.old_status,
            new_status=result.new_status,
            event_id=event_id,
            intents=tuple(result.intents),
        )
        self.transitions.append(record)
        logger.info(
            "Order status changed",
            order_id=self.order.id,
            old_status=result.old_status.value,
            new_status=result.new_status.value,
            automatic=bool(context and context.automatic),
        )
        return record

    def merge_metadata(self, values: dict) -> None:
        self.order.merge_metadata(values)

    def add(self, instance) -> None:
        """Persist another aggregate in this edit's unit of work."""
        current_domain.repository_for(type(instance)).add(instance)

    def _append_status_event(self, intent: AppendStatusEvent) -> str:
        repo = current_domain.repository_for(OrderStatusEvent)
        if self._next_sequence is None:
            self._next_sequence = repo.next_sequence(intent.order_id)
        event = OrderStatusEvent(
            order_id=intent.order_id,
            sequence=self._next_sequence,
            old_status=intent.old_status.value,
            new_status=intent.new_status.value,
            reason=intent.reason,
            actor=intent.actor,
            automatic=intent.automatic,
            context_json=json.dumps(intent.context, default=str),
            created_at=intent.occurred_at,
        )
        repo.add(event)
        self._next_sequence += 1
        return str(event.id)

    def _adjust_inventory(self, intent: AdjustInventory) -> None:
        try:
            self.ledger.apply_adjustment(
                intent.variant_id,
                intent.delta,
                intent.transaction_type,
                intent.reason,
                reference_type=intent.reference_type,
                reference_id=intent.reference_id,
            )
        except ObjectNotFoundError:
            # Variant no longer tracked; the order transition still stands
            logger.error(
                "Inventory adjustment skipped for unknown variant",
                variant_id=intent.variant_id,
                order_id=intent.reference_id,
                delta=intent.delta,
            )


class OrderLifecycle:
    def __init__(
        self,
        ledger: InventoryLedger,
        notifications=None,
        order_locks: KeyedLocks | None = None,
        transition_retries: int = 3,
    ):
        self.ledger = ledger
        self.notifications = notifications
        self.order_locks = order_locks or KeyedLocks("order")
        self.transition_retries = transition_retries

    def transition(self, order_id: str, new_status, context: TransitionContext | None = None) -> TransitionRecord:
        """Apply one transition to a stored order and execute its intents."""
        return self.edit(order_id, lambda editor: editor.transition(new_status, context))

    def edit(self, order_id: str, fn: Callable[[OrderEditor], T]) -> T:
        """Run ``fn`` against the order under its lock, in one unit of work."""
        pending: list[EnqueueNotification] = []

        def attempt() -> T:
            pending.clear()
            with transaction():
                repo = current_domain.repository_for(Order)
                editor = OrderEditor(repo.get(order_id), self.ledger)
                value = fn(editor)
                repo.add(editor.order)
                pending.extend(editor.notifications)
            return value

        with self.order_locks.hold(order_id):
            variant_ids = self._variant_ids(order_id)
            with self.ledger.locks.hold_all(variant_ids):
                value = call_with_retry(
                    attempt,
                    retry_on=(ExpectedVersionError,),
                    max_attempts=self.transition_retries,
                    base_delay=0.01,
                    operation="ordering.edit",
                )

        self.dispatch(pending)
        return value

    def load(self, order_id: str) -> Order:
        """Return the stored order with its items.

        Raises:
            ObjectNotFoundError: No order has that id.
        """
        with transaction():
            order = current_domain.repository_for(Order).get(order_id)
            # Associations load lazily; read them while the domain is active
            order.items  # noqa: B018
            return order

    def status_history(self, order_id: str) -> list[OrderStatusEvent]:
        with transaction():
            return current_domain.repository_for(OrderStatusEvent).for_order(order_id)

    def find_order_id(self, gateway_order_id: str | None = None, capture_id: str | None = None) -> str | None:
        if gateway_order_id is not None:
            criteria = {"gateway_order_id": gateway_order_id}
        elif capture_id is not None:
            criteria = {"gateway_capture_id": capture_id}
        else:
            return None
        with transaction():
            order = current_domain.repository_for(Order)._dao.query.filter(**criteria).order_by("created_at").first
        return str(order.id) if order else None

    def _variant_ids(self, order_id: str) -> list[str]:
        # Items never change after creation, so they can be read before locking
        return [item.variant_id for item in self.load(order_id).items]

    def dispatch(self, intents: list[EnqueueNotification]) -> None:
        """Hand committed notification intents to the dispatcher.

        A full queue dead-letters the notification instead of losing it.
        """
        if self.notifications is None:
            return
        for intent in intents:
            self.notifications.submit(intent.template_key, intent.recipient, intent.variables, intent.priority)
