"""Tests for the two-level priority dispatch queue."""

from datetime import UTC, datetime, timedelta

import pytest
from notifications.notification.queue import DispatchQueue, NotificationPayload, Priority, QueueFull
from notifications.templates.keys import TemplateKey

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _payload(recipient="buyer@example.com", key=TemplateKey.ORDER_SHIPPED):
    return NotificationPayload(template_key=key, recipient=recipient, variables={"order_id": "ord-1"})


def _queue(**overrides):
    options = {"capacity": 10, "max_retries": 3, "base_delay_seconds": 5.0, "batch_size": 10}
    options.update(overrides)
    return DispatchQueue(**options)


class TestPriorityOrder:
    def test_high_drains_before_earlier_normal(self):
        queue = _queue()
        normal = queue.enqueue(_payload("first@example.com"), Priority.NORMAL, now=T0)
        high = queue.enqueue(_payload("second@example.com"), Priority.HIGH, now=T0)

        assert [item.id for item in queue.drain_batch(T0)] == [high.id, normal.id]

    def test_high_then_normal(self):
        queue = _queue()
        high = queue.enqueue(_payload(), Priority.HIGH, now=T0)
        normal = queue.enqueue(_payload(), Priority.NORMAL, now=T0)

        (first,) = queue.drain_batch(T0, limit=1)
        assert first.id == high.id
        (second,) = queue.drain_batch(T0, limit=1)
        assert second.id == normal.id

    def test_same_priority_is_fifo(self):
        queue = _queue()
        ids = [queue.enqueue(_payload(f"r{i}@example.com"), now=T0).id for i in range(5)]
        assert [item.id for item in queue.drain_batch(T0)] == ids

    def test_batch_size_limits_each_drain(self):
        queue = _queue(batch_size=2)
        for _ in range(5):
            queue.enqueue(_payload(), now=T0)

        assert len(queue.drain_batch(T0)) == 2
        assert len(queue) == 3


class TestCapacity:
    def test_full_queue_refuses_new_items(self):
        queue = _queue(capacity=2)
        queue.enqueue(_payload(), now=T0)
        queue.enqueue(_payload(), Priority.HIGH, now=T0)

        with pytest.raises(QueueFull) as exc:
            queue.enqueue(_payload(), now=T0)
        assert exc.value.capacity == 2

    def test_waiting_items_count_against_capacity(self):
        queue = _queue(capacity=1)
        item = queue.enqueue(_payload(), now=T0)
        queue.drain_batch(T0)
        queue.schedule_retry(item, "smtp down", now=T0)

        with pytest.raises(QueueFull):
            queue.enqueue(_payload(), now=T0)


class TestRetryBackoff:
    def test_failed_item_waits_for_exponential_delay(self):
        queue = _queue(base_delay_seconds=5.0)
        item = queue.enqueue(_payload(), now=T0)
        queue.drain_batch(T0)

        assert queue.schedule_retry(item, "smtp down", now=T0)
        assert item.retry_count == 1
        assert item.next_attempt_at == T0 + timedelta(seconds=5)
        assert queue.drain_batch(T0 + timedelta(seconds=4)) == []
        assert queue.drain_batch(T0 + timedelta(seconds=5)) == [item]

        t1 = T0 + timedelta(seconds=5)
        assert queue.schedule_retry(item, "smtp down", now=t1)
        assert item.next_attempt_at == t1 + timedelta(seconds=10)

    def test_retry_budget(self):
        queue = _queue(max_retries=3)
        item = queue.enqueue(_payload(), now=T0)
        queue.drain_batch(T0)

        assert queue.schedule_retry(item, "e1", now=T0)
        queue.drain_all()
        assert queue.schedule_retry(item, "e2", now=T0)
        queue.drain_all()
        assert not queue.schedule_retry(item, "e3", now=T0)

        assert item.retry_count == 3
        assert item.last_error == "e3"
        assert len(queue) == 0

    def test_retried_high_item_still_leads(self):
        queue = _queue(base_delay_seconds=0)
        high = queue.enqueue(_payload(), Priority.HIGH, now=T0)
        queue.drain_batch(T0)
        normal = queue.enqueue(_payload(), Priority.NORMAL, now=T0)
        queue.schedule_retry(high, "busy", now=T0)

        assert [i.id for i in queue.drain_batch(T0)] == [high.id, normal.id]

    def test_drain_all_ignores_delays(self):
        queue = _queue(base_delay_seconds=3600)
        item = queue.enqueue(_payload(), now=T0)
        queue.drain_batch(T0)
        queue.schedule_retry(item, "later", now=T0)

        assert queue.drain_all() == [item]
        assert item.next_attempt_at is None


class TestIntrospection:
    def test_stats(self):
        queue = _queue(capacity=50)
        queue.enqueue(_payload(), Priority.HIGH, now=T0)
        queue.enqueue(_payload(), now=T0)
        queue.enqueue(_payload(), now=T0)

        assert queue.stats() == {"queued": 3, "high": 1, "normal": 2, "waiting_retry": 0, "capacity": 50}

    def test_clear(self):
        queue = _queue()
        queue.enqueue(_payload(), now=T0)
        assert queue.clear() == 1
        assert len(queue) == 0

    def test_item_to_dict(self):
        queue = _queue()
        item = queue.enqueue(_payload(), Priority.HIGH, now=T0)
        data = item.to_dict()
        assert data["template_key"] == "order_shipped"
        assert data["priority"] == "high"
        assert data["added_at"] == T0.isoformat()
        assert data["last_attempt_at"] is None
