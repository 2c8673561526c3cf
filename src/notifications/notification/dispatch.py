"""Notification dispatcher: drains the queue through the mail transport.

A background tick thread hands one batch at a time to a worker pool. Each
item is rendered through the template registry and sent; failures go back
to the queue with backoff, and items whose retries are exhausted are
dead-lettered and logged with full context.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import structlog

from notifications.channel.email_port import MailMessage, MailTransport
from notifications.notification.dead_letter import DeadLetterStore
from notifications.notification.queue import (
    DispatchQueue,
    NotificationPayload,
    NotificationQueueItem,
    Priority,
    QueueFull,
)
from notifications.templates import render
from shared.clock import utcnow

logger = structlog.get_logger(__name__)

SENT = "sent"
RETRYING = "retrying"
DEAD_LETTERED = "dead_lettered"
DROPPED = "dropped"


class NotificationDispatcher:
    def __init__(
        self,
        queue: DispatchQueue,
        transport: MailTransport,
        dead_letters: DeadLetterStore,
        workers: int = 4,
        tick_interval_seconds: float = 1.0,
        sender: str = "",
    ):
        self.queue = queue
        self.transport = transport
        self.dead_letters = dead_letters
        self.tick_interval_seconds = tick_interval_seconds
        self.sender = sender

        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify")
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._counters_lock = threading.Lock()
        self._counters = {SENT: 0, RETRYING: 0, DEAD_LETTERED: 0, DROPPED: 0}

    def enqueue(self, template_key, recipient: str, variables: dict, priority: Priority = Priority.NORMAL):
        return self.queue.enqueue(
            NotificationPayload(template_key=template_key, recipient=recipient, variables=dict(variables)),
            priority,
        )

    def submit(
        self,
        template_key,
        recipient: str,
        variables: dict,
        priority: Priority = Priority.NORMAL,
    ) -> NotificationQueueItem:
        """Enqueue a notification, dead-lettering it when the queue is full.

        Used after a state change has committed, where the caller cannot
        undo the change and must not lose the notification either.
        """
        try:
            return self.enqueue(template_key, recipient, variables, priority)
        except QueueFull as exc:
            item = NotificationQueueItem(
                payload=NotificationPayload(template_key=template_key, recipient=recipient, variables=dict(variables)),
                priority=priority,
                last_error=str(exc),
            )
            logger.warning("Notification queue full, dead-lettering", item_id=item.id, capacity=exc.capacity)
            self._dead_letter(item, utcnow(), requeue=False)
            return item

    # -------------------------------------------------------------------
    # Background ticker
    # -------------------------------------------------------------------
    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="notification-ticker", daemon=True)
        self._thread.start()
        logger.info("Notification dispatcher started", interval=self.tick_interval_seconds)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.tick_interval_seconds):
            try:
                self.tick()
            except Exception:
                logger.exception("Notification tick failed")

    # -------------------------------------------------------------------
    # Draining
    # -------------------------------------------------------------------
    def tick(self, now: datetime | None = None) -> dict:
        """Attempt one batch of ready items on the worker pool."""
        now = now or utcnow()
        batch = self.queue.drain_batch(now)
        outcomes = list(self._executor.map(lambda item: self._attempt(item, now), batch))
        return {
            SENT: outcomes.count(SENT),
            RETRYING: outcomes.count(RETRYING),
            DEAD_LETTERED: outcomes.count(DEAD_LETTERED),
        }

    def shutdown(self) -> dict:
        """Stop ticking, then attempt every remaining item in the calling thread.

        Backoff delays are not honoured here; each item is attempted until
        it is sent or dead-lettered. An item that can be neither is logged
        with its full payload and counted as dropped.
        """
        self.stop()
        totals = {SENT: 0, RETRYING: 0, DEAD_LETTERED: 0, DROPPED: 0}
        while True:
            batch = self.queue.drain_all()
            if not batch:
                break
            for item in batch:
                try:
                    outcome = self._attempt(item, utcnow(), requeue=False)
                except Exception:
                    logger.exception("Notification attempt failed during shutdown", **item.to_dict())
                    outcome = DROPPED
                totals[outcome] += 1
        self._executor.shutdown(wait=True)
        logger.info("Notification dispatcher shut down", **totals)
        return totals

    def _attempt(self, item: NotificationQueueItem, now: datetime, requeue: bool = True) -> str:
        error = self._send(item)
        if error is None:
            self._count(SENT)
            logger.info(
                "Notification sent",
                item_id=item.id,
                template_key=item.payload.template_key.value,
                retry_count=item.retry_count,
            )
            return SENT

        if self.queue.schedule_retry(item, error, now):
            self._count(RETRYING)
            return RETRYING

        return self._dead_letter(item, now, requeue)

    def _dead_letter(self, item: NotificationQueueItem, now: datetime, requeue: bool) -> str:
        """Hand a given-up item to the dead-letter store.

        When the store itself fails the item goes back to the queue's
        waiting list, or is dropped when ``requeue`` is False. Either way the
        full item is logged so it can be recovered by hand.
        """
        try:
            recorded = self.dead_letters.record(item, failed_at=now)
        except Exception as exc:
            logger.error(
                "Dead-letter store failed",
                store_error=f"{type(exc).__name__}: {exc}",
                requeued=requeue,
                **item.to_dict(),
            )
            if requeue:
                self.queue.hold(item, now)
                self._count(RETRYING)
                return RETRYING
            self._count(DROPPED)
            return DROPPED

        if recorded:
            logger.error("Notification dead-lettered", **item.to_dict())
        self._count(DEAD_LETTERED)
        return DEAD_LETTERED

    def _send(self, item: NotificationQueueItem) -> str | None:
        """Render and send; returns an error message or None on success."""
        payload = item.payload
        try:
            content = render(payload.template_key, payload.variables)
            result = self.transport.send(
                MailMessage(
                    to=payload.recipient,
                    subject=content["subject"],
                    html=content["html"],
                    text=content["text"],
                    sender=self.sender,
                )
            )
        except Exception as exc:
            return f"{type(exc).__name__}: {exc}"
        if result.success:
            return None
        return result.error or "Unknown delivery error"

    def _count(self, key: str) -> None:
        with self._counters_lock:
            self._counters[key] += 1

    def stats(self) -> dict:
        with self._counters_lock:
            counters = dict(self._counters)
        return {
            **self.queue.stats(),
            "sent": counters[SENT],
            "retried": counters[RETRYING],
            "dead_lettered": counters[DEAD_LETTERED],
            "dropped": counters[DROPPED],
            "running": self._thread is not None and self._thread.is_alive(),
        }
