"""Application tests for the order lifecycle orchestrator.

Transitions run against the test database: the status, the
status event row and the inventory ledger rows commit together, and
notifications are handed to the dispatcher only after the commit.
"""

import threading

import pytest
from inventory.stock.history import get_history
from notifications.notification.dispatch import NotificationDispatcher
from notifications.notification.queue import DispatchQueue, Priority
from notifications.templates.keys import TemplateKey
from ordering.order.creation import place_order
from ordering.order.lifecycle import OrderLifecycle
from ordering.order.order import OrderStatus, OrderStatusEvent
from ordering.order.transitions import TransitionContext
from protean.exceptions import ExpectedVersionError, InvalidOperationError, ObjectNotFoundError
from protean.utils.globals import current_domain


def _advance(lifecycle, order_id, *statuses):
    for status in statuses:
        lifecycle.transition(order_id, status)


def _deliver(lifecycle, order_id):
    _advance(
        lifecycle,
        order_id,
        OrderStatus.PAID,
        OrderStatus.PROCESSING,
        OrderStatus.PACKED,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
    )


class TestTransitionPersistence:
    def test_transition_updates_status_and_appends_event(self, lifecycle, make_order):
        order_id = make_order()

        record = lifecycle.transition(order_id, "confirmed", TransitionContext(reason="approved", actor="buyer-001"))

        assert record.old_status == OrderStatus.PENDING
        assert record.new_status == OrderStatus.CONFIRMED
        assert lifecycle.load(order_id).status == "confirmed"
        (event,) = lifecycle.status_history(order_id)
        assert str(event.id) == record.event_id
        assert event.sequence == 1
        assert (event.old_status, event.new_status, event.reason, event.actor) == (
            "pending",
            "confirmed",
            "approved",
            "buyer-001",
        )

    def test_history_is_a_path_through_the_graph(self, lifecycle, make_order):
        order_id = make_order()
        _deliver(lifecycle, order_id)
        lifecycle.transition(order_id, OrderStatus.REFUNDED)

        events = lifecycle.status_history(order_id)
        assert [e.old_status for e in events[1:]] == [e.new_status for e in events[:-1]]
        assert [e.new_status for e in events] == [
            "paid",
            "processing",
            "packed",
            "shipped",
            "delivered",
            "refunded",
        ]

    def test_paid_deducts_stock_through_the_ledger(self, lifecycle, ledger, make_order):
        order_id = make_order(stock=10)

        lifecycle.transition(order_id, OrderStatus.PAID)

        assert ledger.get_variant("var-001").quantity == 8
        latest = get_history("var-001").entries[0]
        assert latest.delta == -2
        assert latest.reference_id == order_id
        assert ledger.check_consistency("var-001").consistent

    def test_status_events_are_append_only(self, lifecycle, make_order):
        order_id = make_order()
        lifecycle.transition(order_id, OrderStatus.CONFIRMED)

        repo = current_domain.repository_for(OrderStatusEvent)
        (event,) = repo.for_order(order_id)
        event.reason = "rewritten"
        with pytest.raises(InvalidOperationError):
            repo.add(event)
        assert repo.for_order(order_id)[0].reason != "rewritten"

    def test_unknown_order_is_not_found(self, lifecycle):
        with pytest.raises(ObjectNotFoundError):
            lifecycle.transition("missing", OrderStatus.PAID)

    def test_unknown_variant_does_not_block_payment(self, lifecycle, ledger):
        ledger.register_variant("var-001", "vendor-001", initial_quantity=10)
        order_id = place_order(
            buyer_id="buyer-001",
            vendor_id="vendor-001",
            items=[
                {"variant_id": "var-001", "quantity": 1, "unit_price": 1000},
                {"variant_id": "var-untracked", "quantity": 1, "unit_price": 1000},
            ],
        )

        lifecycle.transition(order_id, OrderStatus.PAID)

        assert lifecycle.load(order_id).status == "paid"
        assert ledger.get_variant("var-001").quantity == 9


class TestInvalidOperationError:
    def test_delivered_to_pending_leaves_order_and_ledger_unchanged(self, lifecycle, ledger, make_order):
        order_id = make_order(stock=10)
        _deliver(lifecycle, order_id)
        events_before = len(lifecycle.status_history(order_id))
        ledger_before = [e.id for e in get_history("var-001").entries]

        with pytest.raises(InvalidOperationError):
            lifecycle.transition(order_id, "pending")

        assert lifecycle.load(order_id).status == "delivered"
        assert len(lifecycle.status_history(order_id)) == events_before
        assert [e.id for e in get_history("var-001").entries] == ledger_before
        assert ledger.get_variant("var-001").quantity == 8


class TestRefundRestoresStock:
    def test_refund_after_shipping_restores_quantities(self, lifecycle, ledger, make_order):
        order_id = make_order(stock=10)
        _advance(lifecycle, order_id, OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.PACKED)
        assert ledger.get_variant("var-001").quantity == 8

        lifecycle.transition(order_id, OrderStatus.REFUNDED, TransitionContext(reason="damaged"))

        assert ledger.get_variant("var-001").quantity == 10
        order = lifecycle.load(order_id)
        assert order.inventory_deducted is False
        assert order.refunded_at is not None


class TestNotificationHandoff:
    def test_notifications_are_enqueued_after_commit(self, lifecycle, dispatcher, make_order):
        order_id = make_order()
        dispatcher.queue.clear()

        lifecycle.transition(order_id, OrderStatus.PAID)

        (item,) = dispatcher.queue.drain_all()
        assert item.payload.template_key == TemplateKey.ORDER_CONFIRMED
        assert item.priority == Priority.HIGH
        assert item.payload.variables["order_id"] == order_id

    def test_failed_edit_enqueues_nothing(self, lifecycle, dispatcher, make_order):
        order_id = make_order()
        dispatcher.queue.clear()

        def edit(editor):
            editor.transition(OrderStatus.PAID)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            lifecycle.edit(order_id, edit)

        assert len(dispatcher.queue) == 0
        assert lifecycle.load(order_id).status == "pending"

    def test_full_queue_dead_letters_the_notification(self, ledger, transport, dead_letters, make_order):
        order_id = make_order()
        queue = DispatchQueue(capacity=1, max_retries=3, base_delay_seconds=5.0, batch_size=10)
        dispatcher = NotificationDispatcher(queue, transport, dead_letters, workers=1)
        dispatcher.enqueue(TemplateKey.ORDER_RECEIVED, "someone@example.com", {"order_id": "other"})
        lifecycle = OrderLifecycle(ledger, notifications=dispatcher)

        lifecycle.transition(order_id, OrderStatus.PAID)

        assert lifecycle.load(order_id).status == "paid"
        assert len(queue) == 1
        (entry,) = dead_letters.entries()
        assert entry["template_key"] == TemplateKey.ORDER_CONFIRMED.value
        assert entry["variables"]["order_id"] == order_id
        assert "full" in entry["last_error"]
        assert dispatcher.stats()["dead_lettered"] == 1


class TestConcurrentTransitions:
    def test_only_one_of_two_conflicting_transitions_wins(self, lifecycle, make_order):
        order_id = make_order()
        barrier = threading.Barrier(2)
        outcomes = {}

        def attempt(target):
            barrier.wait()
            try:
                lifecycle.transition(order_id, target)
                outcomes[target] = "ok"
            except InvalidOperationError:
                outcomes[target] = "illegal"

        threads = [
            threading.Thread(target=attempt, args=(OrderStatus.PAID,)),
            threading.Thread(target=attempt, args=(OrderStatus.CANCELLED,)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(outcomes.values()) == ["illegal", "ok"]
        events = lifecycle.status_history(order_id)
        assert len(events) == 1
        assert events[0].old_status == "pending"

    def test_parallel_payments_on_shared_variant_keep_ledger_consistent(self, lifecycle, ledger, make_order):
        order_ids = [make_order(stock=20) for _ in range(5)]

        threads = [
            threading.Thread(target=lifecycle.transition, args=(order_id, OrderStatus.PAID)) for order_id in order_ids
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert ledger.get_variant("var-001").quantity == 10
        assert ledger.check_consistency("var-001").consistent

    def test_stale_write_is_retried(self, lifecycle, make_order):
        order_id = make_order()
        calls = []

        def edit(editor):
            calls.append(1)
            if len(calls) == 1:
                raise ExpectedVersionError({"_version": ["Order was changed by another writer"]})
            editor.merge_metadata({"seen": len(calls)})

        lifecycle.edit(order_id, edit)

        assert len(calls) == 2
        assert lifecycle.load(order_id).meta == {"seen": 2}

    def test_retries_are_bounded(self, ledger, make_order):
        lifecycle = OrderLifecycle(ledger, transition_retries=2)
        order_id = make_order()

        def edit(editor):
            editor.merge_metadata({"attempted": True})
            raise ExpectedVersionError({"_version": ["Order was changed by another writer"]})

        with pytest.raises(ExpectedVersionError):
            lifecycle.edit(order_id, edit)

        assert "attempted" not in lifecycle.load(order_id).meta
