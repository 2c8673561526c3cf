"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
This enables swapping between FakeGateway (dev/test) and PayPalGateway
(production) without changing any reconciliation code.

Amounts crossing this port are integers in the currency's minor unit.
Webhook envelopes follow the gateway's ``{id, event_type, resource}``
shape and are normalized into ``GatewayEvent`` by ``parse_webhook``.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from protean.exceptions import ValidationError

from shared.money import to_minor_units

# Order/capture statuses after which no money will move
TERMINAL_FAILURE_STATUSES = frozenset({"VOIDED", "DECLINED", "FAILED", "DENIED"})
SETTLED_ORDER_STATUSES = frozenset({"COMPLETED", "APPROVED"})


class WebhookEventType(Enum):
    CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"
    CAPTURE_DENIED = "PAYMENT.CAPTURE.DENIED"
    CAPTURE_REFUNDED = "PAYMENT.CAPTURE.REFUNDED"
    ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
    ORDER_COMPLETED = "CHECKOUT.ORDER.COMPLETED"


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: datetime


@dataclass(frozen=True)
class CaptureResult:
    """Result of capturing a gateway order."""

    gateway_order_id: str
    capture_id: str
    status: str
    amount: int | None = None
    currency: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund request."""

    refund_id: str
    capture_id: str
    status: str
    amount: int | None = None
    currency: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayOrderState:
    gateway_order_id: str
    status: str
    amount: int | None = None
    currency: str | None = None
    capture_id: str | None = None
    capture_status: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CaptureState:
    capture_id: str
    status: str
    amount: int | None = None
    currency: str | None = None
    gateway_order_id: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayEvent:
    """A webhook delivery, normalized."""

    event_id: str
    event_type: str
    resource: dict
    gateway_order_id: str | None = None
    capture_id: str | None = None
    refund_id: str | None = None
    amount: int | None = None
    currency: str | None = None
    status_reason: str | None = None
    payload: dict = field(default_factory=dict)

    @property
    def known_type(self) -> WebhookEventType | None:
        try:
            return WebhookEventType(self.event_type)
        except ValueError:
            return None

    @classmethod
    def from_payload(cls, payload: dict) -> "GatewayEvent":
        if not isinstance(payload, dict) or not payload.get("id") or not isinstance(payload.get("event_type"), str):
            raise ValidationError({"webhook": ["Webhook body must carry 'id' and 'event_type'"]})

        event_id = str(payload["id"])
        event_type = payload["event_type"]
        resource = payload.get("resource")
        if not isinstance(resource, dict):
            resource = {}

        try:
            WebhookEventType(event_type)
        except ValueError:
            # Stored and acknowledged as-is; nothing in an unhandled resource is read
            return cls(event_id=event_id, event_type=event_type, resource=resource, payload=payload)

        related = _mapping(_mapping(resource.get("supplementary_data")).get("related_ids"))
        gateway_order_id = related.get("order_id")
        capture_id = None
        refund_id = None
        money = resource.get("amount")

        if event_type.startswith("CHECKOUT.ORDER."):
            gateway_order_id = resource.get("id")
            unit = _first_purchase_unit(resource)
            money = unit.get("amount")
            capture = _first_capture(unit)
            capture_id = capture.get("id")
        elif event_type == WebhookEventType.CAPTURE_REFUNDED.value:
            refund_id = resource.get("id")
            capture_id = related.get("capture_id")
        else:
            capture_id = resource.get("id")

        amount, currency = parse_money(money)
        return cls(
            event_id=event_id,
            event_type=event_type,
            resource=resource,
            gateway_order_id=gateway_order_id,
            capture_id=capture_id,
            refund_id=refund_id,
            amount=amount,
            currency=currency,
            status_reason=_mapping(resource.get("status_details")).get("reason"),
            payload=payload,
        )


def parse_money(money: dict | None) -> tuple[int | None, str | None]:
    """``{"value": "50.00", "currency_code": "USD"}`` -> ``(5000, "USD")``.

    Raises:
        ValidationError: ``money`` is not an amount object or its value is not a finite decimal.
    """
    if money is None:
        return None, None
    if not isinstance(money, dict):
        raise ValidationError({"amount": [f"Invalid amount: {money!r}"]})
    if money.get("value") is None:
        return None, None
    currency = money.get("currency_code") or "USD"
    if not isinstance(currency, str):
        raise ValidationError({"currency": [f"Invalid currency code: {currency!r}"]})
    currency = currency.upper()
    return to_minor_units(money["value"], currency), currency


def _mapping(value) -> dict:
    return value if isinstance(value, dict) else {}


def _first_purchase_unit(order: dict) -> dict:
    units = order.get("purchase_units")
    if not isinstance(units, list) or not units:
        return {}
    return _mapping(units[0])


def _first_capture(unit: dict) -> dict:
    captures = _mapping(unit.get("payments")).get("captures")
    if not isinstance(captures, list) or not captures:
        return {}
    return _mapping(captures[0])


def order_state_from_payload(data: dict) -> GatewayOrderState:
    unit = _first_purchase_unit(data)
    capture = _first_capture(unit)
    amount, currency = parse_money(unit.get("amount"))
    return GatewayOrderState(
        gateway_order_id=data.get("id", ""),
        status=data.get("status", "UNKNOWN"),
        amount=amount,
        currency=currency,
        capture_id=capture.get("id"),
        capture_status=capture.get("status"),
        raw=data,
    )


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str = "gateway"

    @abstractmethod
    def exchange_credentials_for_token(self) -> AccessToken:
        """Exchange client credentials for a bearer token."""
        ...

    @abstractmethod
    def capture_order(self, gateway_order_id: str, request_id: str) -> CaptureResult:
        """Capture an approved gateway order.

        ``request_id`` makes the call idempotent at the gateway: resending
        the same id returns the original result instead of capturing twice.
        """
        ...

    @abstractmethod
    def refund_capture(
        self,
        capture_id: str,
        amount: int | None,
        currency: str,
        request_id: str,
        note: str | None = None,
    ) -> RefundResult:
        """Refund a capture, fully when ``amount`` is None."""
        ...

    @abstractmethod
    def get_order(self, gateway_order_id: str) -> GatewayOrderState: ...

    @abstractmethod
    def get_capture(self, capture_id: str) -> CaptureState: ...

    @abstractmethod
    def verify_webhook_signature(self, headers: dict, body: bytes) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...

    def parse_webhook(self, body: bytes) -> GatewayEvent:
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as exc:
            raise ValidationError({"webhook": [f"Malformed webhook body: {exc}"]}) from exc
        return GatewayEvent.from_payload(payload)
