"""Webhook ingestion: verify, deduplicate, dispatch, acknowledge.

Every authentic delivery is stored once per ``(provider, event_id)`` before
it is acted on. A redelivery of a stored event is acknowledged without
being reapplied. Failures while applying an event are recorded on its row
and can be replayed later with ``retry_unprocessed``; the gateway is still
acknowledged so it does not keep redelivering.
"""

import json
from datetime import timedelta

import structlog
from protean.exceptions import ObjectNotFoundError, ProteanException
from protean.utils.globals import current_domain

from ordering.order.lifecycle import OrderLifecycle
from ordering.order.order import OrderStatus
from payments.errors import SignatureInvalid
from payments.gateway.port import GatewayEvent, PaymentGateway, WebhookEventType
from payments.payment.capture import CaptureFacts, CaptureHandler
from payments.payment.outcome import AlreadyApplied, Outcome, Rejected
from payments.payment.records import GatewayEventRecord, WebhookStatus, event_key
from payments.payment.refund import RefundFacts, RefundHandler
from shared.clock import utcnow
from shared.domain import transaction
from shared.locks import KeyedLocks

logger = structlog.get_logger(__name__)


class WebhookHandler:
    def __init__(
        self,
        lifecycle: OrderLifecycle,
        gateway: PaymentGateway,
        captures: CaptureHandler,
        refunds: RefundHandler,
    ):
        self.lifecycle = lifecycle
        self.gateway = gateway
        self.captures = captures
        self.refunds = refunds
        self.event_locks = KeyedLocks("webhook")

    def ingest(self, provider: str, headers: dict, body: bytes) -> Outcome:
        """Handle one webhook delivery.

        Raises:
            SignatureInvalid: the delivery is not authentic; nothing is stored.
            ValidationError: the body is not a well-formed gateway event.
        """
        if not self.gateway.verify_webhook_signature(headers, body):
            logger.warning("Webhook signature rejected", provider=provider)
            raise SignatureInvalid(f"Invalid {provider} webhook signature")

        event = self.gateway.parse_webhook(body)
        with structlog.contextvars.bound_contextvars(webhook_event_id=event.event_id):
            if not self._record(provider, event):
                logger.info("Duplicate webhook acknowledged", provider=provider, event_type=event.event_type)
                return AlreadyApplied(None, {"event_id": event.event_id, "duplicate": True})
            return self._process(provider, event)

    def retry_unprocessed(
        self,
        limit: int = 50,
        max_attempts: int = 5,
        min_age: timedelta = timedelta(minutes=1),
    ) -> list[Outcome]:
        """Re-dispatch stored events that were never processed successfully."""
        cutoff = utcnow() - min_age
        with transaction():
            records = current_domain.repository_for(GatewayEventRecord).replayable(max_attempts, cutoff, limit)

        outcomes = []
        for record in records:
            provider = record.provider
            event = GatewayEvent.from_payload(record.payload)
            logger.info("Replaying webhook", provider=provider, event_id=event.event_id)
            outcomes.append(self._process(provider, event))
        return outcomes

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _record(self, provider: str, event: GatewayEvent) -> bool:
        """Store the delivery; False when it was stored before."""
        key = event_key(provider, event.event_id)
        with self.event_locks.hold(key), transaction():
            repo = current_domain.repository_for(GatewayEventRecord)
            if repo.find(provider, event.event_id) is not None:
                return False
            repo.add(
                GatewayEventRecord(
                    key=key,
                    provider=provider,
                    event_id=event.event_id,
                    event_type=event.event_type,
                    payload_json=json.dumps(event.payload, default=str),
                    status=WebhookStatus.RECEIVED.value,
                    attempts=0,
                    received_at=utcnow(),
                )
            )
        return True

    def _process(self, provider: str, event: GatewayEvent) -> Outcome:
        try:
            outcome = self._dispatch(event)
        except ProteanException as exc:
            self._mark(provider, event, WebhookStatus.FAILED, error=str(exc))
            logger.warning("Webhook could not be applied", event_type=event.event_type, error=str(exc))
            return Rejected(str(exc), None, {"event_id": event.event_id})
        except Exception as exc:
            self._mark(provider, event, WebhookStatus.FAILED, error=repr(exc))
            logger.exception("Webhook processing failed", event_type=event.event_type)
            return Rejected("processing failed", None, {"event_id": event.event_id})

        self._mark(provider, event, WebhookStatus.PROCESSED, outcome=outcome.kind)
        logger.info(
            "Webhook processed",
            event_type=event.event_type,
            outcome=outcome.kind,
            order_id=outcome.order_id,
        )
        return outcome

    def _dispatch(self, event: GatewayEvent) -> Outcome:
        event_type = event.known_type
        if event_type is None:
            logger.info("Unhandled webhook event type", event_type=event.event_type)
            return Rejected("unhandled event type", None, {"event_type": event.event_type})

        if event_type == WebhookEventType.CAPTURE_REFUNDED:
            return self._on_refund(event)

        order_id = self._order_for(event)
        facts = CaptureFacts(
            gateway_order_id=event.gateway_order_id or "",
            capture_id=event.capture_id,
            status=event.resource.get("status"),
            amount=event.amount,
            currency=event.currency,
            status_reason=event.status_reason,
            event_id=event.event_id,
        )

        if event_type == WebhookEventType.CAPTURE_COMPLETED:
            return self.captures.apply_capture(order_id, facts, reason="PAYMENT.CAPTURE.COMPLETED webhook")
        if event_type == WebhookEventType.CAPTURE_DENIED:
            return self.captures.apply_denial(order_id, facts)
        if event_type == WebhookEventType.ORDER_APPROVED:
            return self.captures.apply_approval(order_id, facts)

        # CHECKOUT.ORDER.COMPLETED only settles orders still waiting for payment
        order = self.lifecycle.load(order_id)
        if order.current_status not in (OrderStatus.PENDING, OrderStatus.CONFIRMED):
            return AlreadyApplied(order_id, {"status": order.status})
        return self.captures.apply_capture(order_id, facts, reason="CHECKOUT.ORDER.COMPLETED webhook")

    def _on_refund(self, event: GatewayEvent) -> Outcome:
        if not event.refund_id or not event.capture_id:
            return Rejected("refund event without refund or capture id", None, {"event_id": event.event_id})
        order_id = self.lifecycle.find_order_id(capture_id=event.capture_id)
        if order_id is None:
            raise ObjectNotFoundError(f"No order carries capture {event.capture_id}")
        order = self.lifecycle.load(order_id)
        facts = RefundFacts(
            refund_id=event.refund_id,
            capture_id=event.capture_id,
            amount=event.amount if event.amount is not None else order.total_amount,
            currency=event.currency or order.currency,
            status=event.resource.get("status"),
            source="webhook",
            event_id=event.event_id,
        )
        return self.refunds.apply_refund(order_id, facts, reason="PAYMENT.CAPTURE.REFUNDED webhook")

    def _order_for(self, event: GatewayEvent) -> str:
        order_id = None
        if event.gateway_order_id:
            order_id = self.lifecycle.find_order_id(gateway_order_id=event.gateway_order_id)
        if order_id is None and event.capture_id:
            order_id = self.lifecycle.find_order_id(capture_id=event.capture_id)
        if order_id is None:
            raise ObjectNotFoundError(
                f"No order matches gateway event {event.gateway_order_id or event.capture_id or event.event_id}"
            )
        return order_id

    def _mark(
        self,
        provider: str,
        event: GatewayEvent,
        status: WebhookStatus,
        outcome: str | None = None,
        error: str | None = None,
    ) -> None:
        with self.event_locks.hold(event_key(provider, event.event_id)), transaction():
            repo = current_domain.repository_for(GatewayEventRecord)
            record = repo.find(provider, event.event_id)
            if record is None:
                return
            record.status = status.value
            record.attempts = (record.attempts or 0) + 1
            if outcome is not None:
                record.outcome = outcome
            if status == WebhookStatus.PROCESSED:
                record.processed_at = utcnow()
                record.last_error = None
            else:
                record.last_error = error
            repo.add(record)
