"""Application tests for the scheduled auto-delivery job."""

from datetime import timedelta

from ordering.order.automation import process_automatic_transitions
from ordering.order.order import OrderStatus
from ordering.order.transitions import TransitionContext
from shared.clock import utcnow


def _ship(lifecycle, order_id, shipped_at):
    for status in (OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.PACKED):
        lifecycle.transition(order_id, status)
    lifecycle.transition(order_id, OrderStatus.SHIPPED, TransitionContext(occurred_at=shipped_at))


class TestAutoDelivery:
    def test_long_shipped_orders_are_delivered(self, lifecycle, make_order):
        now = utcnow()
        stale = make_order()
        fresh = make_order()
        _ship(lifecycle, stale, now - timedelta(days=8))
        _ship(lifecycle, fresh, now - timedelta(days=2))

        report = process_automatic_transitions(lifecycle, now=now, auto_deliver_after_days=7)

        assert report.delivered == [stale]
        assert report.failed == {}
        assert lifecycle.load(stale).status == "delivered"
        assert lifecycle.load(fresh).status == "shipped"

        event = lifecycle.status_history(stale)[-1]
        assert event.automatic is True
        assert event.reason == "Auto-delivered after 7 days"

    def test_orders_in_other_states_are_ignored(self, lifecycle, make_order):
        order_id = make_order()
        lifecycle.transition(order_id, OrderStatus.PAID)

        report = process_automatic_transitions(lifecycle, now=utcnow() + timedelta(days=30))

        assert report.delivered == []
        assert lifecycle.load(order_id).status == "paid"

    def test_one_failure_does_not_stop_the_batch(self, lifecycle, make_order, monkeypatch):
        now = utcnow()
        first = make_order()
        second = make_order()
        _ship(lifecycle, first, now - timedelta(days=10))
        _ship(lifecycle, second, now - timedelta(days=9))

        original = lifecycle.transition

        def flaky(order_id, *args, **kwargs):
            if order_id == first:
                raise RuntimeError("database hiccup")
            return original(order_id, *args, **kwargs)

        monkeypatch.setattr(lifecycle, "transition", flaky)

        report = process_automatic_transitions(lifecycle, now=now)

        assert report.delivered == [second]
        assert report.failed == {first: "database hiccup"}
