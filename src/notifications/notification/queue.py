"""In-process notification dispatch queue.

Two-level priority: HIGH items are always drained before NORMAL items, and
items of the same priority leave in arrival order. A failed item waits
``base_delay * 2 ** (retry_count - 1)`` seconds before it becomes eligible
again; once ``max_retries`` attempts have failed the queue gives it up and
the dispatcher dead-letters it.

The queue is a plain object owned by ``NotificationDispatcher``. Anything
that needs to enqueue receives a reference to it at construction time.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from uuid import uuid4

import structlog

from notifications.templates.keys import TemplateKey
from shared.clock import utcnow
from shared.retry import backoff_delay

logger = structlog.get_logger(__name__)


class Priority(Enum):
    HIGH = "high"
    NORMAL = "normal"


class QueueFull(Exception):
    """The queue is at capacity; the item was not accepted."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(f"Notification queue is full (capacity {capacity})")


@dataclass(frozen=True)
class NotificationPayload:
    template_key: TemplateKey
    recipient: str
    variables: dict = field(default_factory=dict)


@dataclass
class NotificationQueueItem:
    payload: NotificationPayload
    priority: Priority = Priority.NORMAL
    id: str = field(default_factory=lambda: str(uuid4()))
    retry_count: int = 0
    added_at: datetime = field(default_factory=utcnow)
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    next_attempt_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "template_key": self.payload.template_key.value,
            "recipient": self.payload.recipient,
            "variables": dict(self.payload.variables),
            "priority": self.priority.value,
            "retry_count": self.retry_count,
            "added_at": self.added_at.isoformat(),
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "last_error": self.last_error,
        }


class DispatchQueue:
    def __init__(
        self,
        capacity: int = 1000,
        max_retries: int = 3,
        base_delay_seconds: float = 5.0,
        batch_size: int = 10,
    ):
        self.capacity = capacity
        self.max_retries = max_retries
        self.base_delay_seconds = base_delay_seconds
        self.batch_size = batch_size

        self._lock = threading.Lock()
        self._ready: dict[Priority, deque[NotificationQueueItem]] = {
            Priority.HIGH: deque(),
            Priority.NORMAL: deque(),
        }
        # Items backing off after a failure, in the order they failed
        self._waiting: list[NotificationQueueItem] = []

    def __len__(self) -> int:
        with self._lock:
            return self._size()

    def _size(self) -> int:
        return sum(len(items) for items in self._ready.values()) + len(self._waiting)

    # -------------------------------------------------------------------
    # Producers
    # -------------------------------------------------------------------
    def enqueue(
        self,
        payload: NotificationPayload,
        priority: Priority = Priority.NORMAL,
        now: datetime | None = None,
    ) -> NotificationQueueItem:
        item = NotificationQueueItem(payload=payload, priority=priority, added_at=now or utcnow())
        with self._lock:
            if self._size() >= self.capacity:
                raise QueueFull(self.capacity)
            self._ready[priority].append(item)

        logger.debug(
            "Notification queued",
            item_id=item.id,
            template_key=payload.template_key.value,
            priority=priority.value,
        )
        return item

    # -------------------------------------------------------------------
    # Consumers
    # -------------------------------------------------------------------
    def drain_batch(self, now: datetime | None = None, limit: int | None = None) -> list[NotificationQueueItem]:
        """Remove and return up to ``limit`` ready items, HIGH first."""
        now = now or utcnow()
        limit = self.batch_size if limit is None else limit
        batch: list[NotificationQueueItem] = []
        with self._lock:
            self._promote_due(now)
            for priority in (Priority.HIGH, Priority.NORMAL):
                ready = self._ready[priority]
                while ready and len(batch) < limit:
                    batch.append(ready.popleft())
        return batch

    def drain_all(self) -> list[NotificationQueueItem]:
        """Remove and return every item, ignoring backoff delays."""
        with self._lock:
            for item in self._waiting:
                item.next_attempt_at = None
                self._ready[item.priority].append(item)
            self._waiting.clear()
            batch = list(self._ready[Priority.HIGH]) + list(self._ready[Priority.NORMAL])
            for ready in self._ready.values():
                ready.clear()
        return batch

    def schedule_retry(self, item: NotificationQueueItem, error: str, now: datetime | None = None) -> bool:
        """Record a failed attempt and requeue the item after its backoff delay.

        Returns False when the retry budget is spent; the item is then no
        longer held by the queue and must be dead-lettered by the caller.
        """
        now = now or utcnow()
        item.retry_count += 1
        item.last_attempt_at = now
        item.last_error = error

        if item.retry_count >= self.max_retries:
            return False

        delay = backoff_delay(self.base_delay_seconds, item.retry_count)
        item.next_attempt_at = now + timedelta(seconds=delay)
        with self._lock:
            self._waiting.append(item)

        logger.info(
            "Notification scheduled for retry",
            item_id=item.id,
            retry_count=item.retry_count,
            delay_seconds=delay,
            error=error,
        )
        return True

    def hold(self, item: NotificationQueueItem, now: datetime | None = None) -> None:
        """Put an item back in the waiting list after its retries are spent.

        For items that could not be dead-lettered. The item becomes eligible
        again after the last backoff delay. Capacity is not checked: the item
        was admitted when it was first enqueued.
        """
        now = now or utcnow()
        delay = backoff_delay(self.base_delay_seconds, max(item.retry_count, 1))
        item.next_attempt_at = now + timedelta(seconds=delay)
        with self._lock:
            self._waiting.append(item)

    def _promote_due(self, now: datetime) -> None:
        still_waiting = []
        for item in self._waiting:
            if item.next_attempt_at is None or item.next_attempt_at <= now:
                item.next_attempt_at = None
                self._ready[item.priority].append(item)
            else:
                still_waiting.append(item)
        self._waiting = still_waiting

    # -------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------
    def stats(self) -> dict:
        with self._lock:
            high = len(self._ready[Priority.HIGH])
            normal = len(self._ready[Priority.NORMAL])
            waiting = len(self._waiting)
        return {
            "queued": high + normal + waiting,
            "high": high,
            "normal": normal,
            "waiting_retry": waiting,
            "capacity": self.capacity,
        }

    def clear(self) -> int:
        """Drop every queued item and return how many were removed."""
        with self._lock:
            removed = self._size()
            for ready in self._ready.values():
                ready.clear()
            self._waiting.clear()
        if removed:
            logger.warning("Notification queue cleared", removed=removed)
        return removed
