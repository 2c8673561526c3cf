"""Dead-letter storage for notifications that exhausted their retries.

Each queue item is recorded at most once, keyed by its id.
"""

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from notifications.domain import notifications
from notifications.notification.queue import NotificationQueueItem
from shared.clock import as_utc, utcnow
from shared.domain import transaction
from shared.queries import fetch_all


@notifications.aggregate
class FailedNotification:
    item_id = Identifier(identifier=True)
    template_key = String(max_length=40, required=True)
    recipient = String(max_length=255, required=True)
    variables_json = Text(default="{}")
    priority = String(max_length=10, required=True)
    retry_count = Integer(default=0)
    last_error = Text()
    added_at = DateTime(required=True)
    failed_at = DateTime(default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.item_id,
            "template_key": self.template_key,
            "recipient": self.recipient,
            "variables": json.loads(self.variables_json or "{}"),
            "priority": self.priority,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "added_at": as_utc(self.added_at).isoformat(),
            "failed_at": as_utc(self.failed_at).isoformat(),
        }


class DeadLetterStore(ABC):
    @abstractmethod
    def record(self, item: NotificationQueueItem, failed_at: datetime | None = None) -> bool:
        """Store a permanently failed item. Returns False if it was already stored."""
        ...

    @abstractmethod
    def entries(self) -> list[dict]: ...

    def __len__(self) -> int:
        return len(self.entries())


class InMemoryDeadLetterStore(DeadLetterStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._items: dict[str, dict] = {}

    def record(self, item: NotificationQueueItem, failed_at: datetime | None = None) -> bool:
        with self._lock:
            if item.id in self._items:
                return False
            self._items[item.id] = {**item.to_dict(), "failed_at": (failed_at or utcnow()).isoformat()}
            return True

    def entries(self) -> list[dict]:
        with self._lock:
            return list(self._items.values())


class SqlDeadLetterStore(DeadLetterStore):
    """Dead letters persisted through the domain's repository."""

    def __init__(self):
        self._lock = threading.Lock()

    def record(self, item: NotificationQueueItem, failed_at: datetime | None = None) -> bool:
        with self._lock, transaction():
            repo = current_domain.repository_for(FailedNotification)
            try:
                repo.get(item.id)
            except ObjectNotFoundError:
                repo.add(
                    FailedNotification(
                        item_id=item.id,
                        template_key=item.payload.template_key.value,
                        recipient=item.payload.recipient,
                        variables_json=json.dumps(dict(item.payload.variables), default=str),
                        priority=item.priority.value,
                        retry_count=item.retry_count,
                        last_error=item.last_error,
                        added_at=item.added_at,
                        failed_at=failed_at or utcnow(),
                    )
                )
                return True
        return False

    def entries(self) -> list[dict]:
        with transaction():
            query = current_domain.repository_for(FailedNotification)._dao.query.order_by("failed_at")
            return [row.to_dict() for row in fetch_all(query)]
