"""Reconciliation records: webhook dedup, refund audit, verification log, anomalies."""

import json
from enum import Enum

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from payments.domain import payments
from payments.errors import ReconciliationMismatch
from shared.clock import utcnow
from shared.queries import fetch_all

logger = structlog.get_logger(__name__)


class WebhookStatus(Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


def event_key(provider: str, event_id: str) -> str:
    return f"{provider}:{event_id}"


@payments.aggregate
class GatewayEventRecord:
    """One row per distinct ``(provider, event_id)`` ever received.

    The identity is ``event_key(provider, event_id)``, so a second insert of
    the same delivery collides on the primary key.
    """

    key = Identifier(identifier=True)
    provider = String(max_length=32, required=True)
    event_id = String(max_length=128, required=True)
    event_type = String(max_length=64, required=True)
    payload_json = Text(required=True)
    status = String(max_length=16, choices=WebhookStatus, default=WebhookStatus.RECEIVED.value)
    outcome = String(max_length=32)
    attempts = Integer(default=0)
    last_error = Text()
    received_at = DateTime(default=utcnow)
    processed_at = DateTime()

    @property
    def payload(self) -> dict:
        return json.loads(self.payload_json)


@payments.repository(part_of=GatewayEventRecord)
class GatewayEventRecordRepository:
    def find(self, provider: str, event_id: str):
        try:
            return self.get(event_key(provider, event_id))
        except ObjectNotFoundError:
            return None

    def replayable(self, max_attempts: int, received_before, limit: int) -> list:
        """Unfinished events, oldest first."""
        return (
            self._dao.query.filter(
                status__in=[WebhookStatus.RECEIVED.value, WebhookStatus.FAILED.value],
                attempts__lt=max_attempts,
                received_at__lte=received_before,
            )
            .order_by("received_at")
            .limit(limit)
            .all()
            .items
        )


@payments.aggregate
class RefundRecord:
    """Audit row for every refund, full or partial, keyed by the gateway refund id."""

    gateway_refund_id = Identifier(identifier=True)
    order_id = Identifier(required=True)
    capture_id = String(max_length=64, required=True)
    amount = Integer(required=True)
    currency = String(max_length=3, required=True)
    is_full = Boolean(default=False)
    status_changed = Boolean(default=False)
    gateway_status = String(max_length=32)
    source = String(max_length=16, required=True)
    actor = String(max_length=64, default="system")
    reason = Text()
    created_at = DateTime(default=utcnow)


@payments.repository(part_of=RefundRecord)
class RefundRecordRepository:
    def find(self, gateway_refund_id: str):
        try:
            return self.get(gateway_refund_id)
        except ObjectNotFoundError:
            return None

    def for_order(self, order_id: str) -> list:
        return fetch_all(self._dao.query.filter(order_id=order_id).order_by("created_at"))

    def count_for_capture(self, capture_id: str) -> int:
        return self._dao.query.filter(capture_id=capture_id).limit(1).all().total


@payments.aggregate
class VerificationRecord:
    order_id = Identifier(required=True)
    gateway_order_id = String(max_length=64, required=True)
    capture_id = String(max_length=64)
    order_status = String(max_length=20, required=True)
    gateway_status = String(max_length=32, required=True)
    capture_status = String(max_length=32)
    expected_amount = Integer(required=True)
    gateway_amount = Integer()
    amount_match = Boolean(default=False)
    is_valid = Boolean(default=False)
    mismatches_json = Text(default="[]")
    verified_at = DateTime(default=utcnow)

    @property
    def mismatches(self) -> list:
        return json.loads(self.mismatches_json or "[]")


@payments.repository(part_of=VerificationRecord)
class VerificationRecordRepository:
    def latest_for_order(self, order_id: str, limit: int) -> list:
        return self._dao.query.filter(order_id=order_id).order_by("-verified_at").limit(limit).all().items


@payments.aggregate
class ReconciliationAnomaly:
    order_id = Identifier()
    kind = String(max_length=48, required=True)
    expected = Text()
    actual = Text()
    context_json = Text(default="{}")
    created_at = DateTime(default=utcnow)

    @property
    def context(self) -> dict:
        return json.loads(self.context_json or "{}")


@payments.repository(part_of=ReconciliationAnomaly)
class ReconciliationAnomalyRepository:
    def listing(self, order_id: str | None = None) -> list:
        query = self._dao.query
        if order_id is not None:
            query = query.filter(order_id=order_id)
        return fetch_all(query.order_by("created_at"))


def record_anomaly(mismatch: ReconciliationMismatch, context: dict | None = None) -> None:
    """Persist a mismatch for manual review in the active unit of work and log it.

    Never raises the mismatch.
    """
    current_domain.repository_for(ReconciliationAnomaly).add(
        ReconciliationAnomaly(
            order_id=mismatch.order_id,
            kind=mismatch.kind,
            expected=None if mismatch.expected is None else str(mismatch.expected),
            actual=None if mismatch.actual is None else str(mismatch.actual),
            context_json=json.dumps(dict(context or {}), default=str),
            created_at=utcnow(),
        )
    )
    logger.warning(
        "Reconciliation anomaly recorded",
        order_id=mismatch.order_id,
        kind=mismatch.kind,
        expected=mismatch.expected,
        actual=mismatch.actual,
        context=context or {},
    )
