"""PayPal REST adapter over httpx.

- OAuth client-credentials token, cached until shortly before expiry and
  refreshed once when a call comes back 401
- every call carries an explicit timeout
- state-changing calls send a caller-supplied ``PayPal-Request-Id`` so a
  retried request is answered with the original result
- webhook authenticity is checked through PayPal's
  verify-webhook-signature API

Timeouts on capture and refund raise ``GatewayTimeout`` because the money
may have moved; timeouts on reads and token exchange are plain
``GatewayUnavailable`` and safe to retry.
"""

import json
import threading
from datetime import timedelta

import httpx
import structlog

from payments.errors import GatewayRejected, GatewayTimeout, GatewayUnavailable
from payments.gateway.port import (
    AccessToken,
    CaptureResult,
    CaptureState,
    GatewayOrderState,
    PaymentGateway,
    RefundResult,
    order_state_from_payload,
    parse_money,
)
from shared.clock import utcnow
from shared.money import to_major_string

logger = structlog.get_logger(__name__)

API_BASE_URLS = {
    "sandbox": "https://api-m.sandbox.paypal.com",
    "production": "https://api-m.paypal.com",
}

# Refresh the token this long before PayPal says it expires
_TOKEN_EXPIRY_MARGIN = timedelta(seconds=60)

_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalGateway(PaymentGateway):
    name = "paypal"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        webhook_id: str,
        environment: str = "sandbox",
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not client_id or not client_secret:
            raise ValueError("PayPal client id and secret are required")
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_id = webhook_id
        self.environment = environment
        self._client = httpx.Client(
            base_url=API_BASE_URLS[environment],
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )
        self._token: AccessToken | None = None
        self._token_lock = threading.Lock()

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------
    # Authentication
    # -------------------------------------------------------------------
    def exchange_credentials_for_token(self) -> AccessToken:
        try:
            response = self._client.post(
                "/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise GatewayUnavailable(f"PayPal token request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise GatewayUnavailable(f"PayPal token request failed: {exc}") from exc

        data = self._decode(response, "token exchange")
        if not data.get("access_token"):
            raise GatewayRejected("PayPal token response missing access_token", response.status_code, details=data)

        redacted = f"{self.client_id[:8]}...{self.client_id[-4:]}"
        logger.info("PayPal access token issued", client_id=redacted, expires_in=data.get("expires_in"))
        return AccessToken(
            value=data["access_token"],
            expires_at=utcnow() + timedelta(seconds=int(data.get("expires_in", 3600))),
        )

    def _access_token(self, force_refresh: bool = False) -> str:
        with self._token_lock:
            token = self._token
            if force_refresh or token is None or token.expires_at - _TOKEN_EXPIRY_MARGIN <= utcnow():
                token = self._token = self.exchange_credentials_for_token()
            return token.value

    # -------------------------------------------------------------------
    # Orders, captures, refunds
    # -------------------------------------------------------------------
    def capture_order(self, gateway_order_id: str, request_id: str) -> CaptureResult:
        data = self._request(
            "POST",
            f"/v2/checkout/orders/{gateway_order_id}/capture",
            operation="capture",
            money_moving=True,
            headers={"PayPal-Request-Id": request_id, "Prefer": "return=representation"},
            json={},
        )
        state = order_state_from_payload(data)
        return CaptureResult(
            gateway_order_id=state.gateway_order_id or gateway_order_id,
            capture_id=state.capture_id or "",
            status=state.capture_status or state.status,
            amount=state.amount,
            currency=state.currency,
            raw=data,
        )

    def refund_capture(
        self,
        capture_id: str,
        amount: int | None,
        currency: str,
        request_id: str,
        note: str | None = None,
    ) -> RefundResult:
        body: dict = {}
        if amount is not None:
            body["amount"] = {"value": to_major_string(amount, currency), "currency_code": currency}
        if note:
            body["note_to_payer"] = note[:255]

        data = self._request(
            "POST",
            f"/v2/payments/captures/{capture_id}/refund",
            operation="refund",
            money_moving=True,
            headers={"PayPal-Request-Id": request_id, "Prefer": "return=representation"},
            json=body,
        )
        refunded, refund_currency = parse_money(data.get("amount"))
        return RefundResult(
            refund_id=data.get("id", ""),
            capture_id=capture_id,
            status=data.get("status", "UNKNOWN"),
            amount=refunded if refunded is not None else amount,
            currency=refund_currency or currency,
            raw=data,
        )

    def get_order(self, gateway_order_id: str) -> GatewayOrderState:
        data = self._request("GET", f"/v2/checkout/orders/{gateway_order_id}", operation="get_order")
        return order_state_from_payload(data)

    def get_capture(self, capture_id: str) -> CaptureState:
        data = self._request("GET", f"/v2/payments/captures/{capture_id}", operation="get_capture")
        amount, currency = parse_money(data.get("amount"))
        related = (data.get("supplementary_data") or {}).get("related_ids") or {}
        return CaptureState(
            capture_id=data.get("id", capture_id),
            status=data.get("status", "UNKNOWN"),
            amount=amount,
            currency=currency,
            gateway_order_id=related.get("order_id"),
            raw=data,
        )

    # -------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------
    def verify_webhook_signature(self, headers: dict, body: bytes) -> bool:
        lowered = {key.lower(): value for key, value in headers.items()}
        fields = {name: lowered.get(header) for name, header in _SIGNATURE_HEADERS.items()}
        missing = [header for name, header in _SIGNATURE_HEADERS.items() if not fields[name]]
        if missing or not self.webhook_id:
            logger.warning("Webhook signature headers missing", missing=missing)
            return False
        try:
            event = json.loads(body)
        except (TypeError, ValueError):
            return False

        data = self._request(
            "POST",
            "/v1/notifications/verify-webhook-signature",
            operation="verify_webhook_signature",
            json={**fields, "webhook_id": self.webhook_id, "webhook_event": event},
        )
        return data.get("verification_status") == "SUCCESS"

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        money_moving: bool = False,
        headers: dict | None = None,
        json: dict | None = None,
    ) -> dict:
        response = self._send(method, path, operation, money_moving, headers, json, self._access_token())
        if response.status_code == 401:
            logger.info("PayPal token rejected, refreshing", operation=operation)
            token = self._access_token(force_refresh=True)
            response = self._send(method, path, operation, money_moving, headers, json, token)
        return self._decode(response, operation)

    def _send(self, method, path, operation, money_moving, headers, body, token) -> httpx.Response:
        request_headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        request_headers.update(headers or {})
        try:
            return self._client.request(method, path, headers=request_headers, json=body)
        except httpx.TimeoutException as exc:
            if money_moving:
                raise GatewayTimeout(f"PayPal {operation} timed out; outcome unknown") from exc
            raise GatewayUnavailable(f"PayPal {operation} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise GatewayUnavailable(f"PayPal {operation} failed: {exc}") from exc

    @staticmethod
    def _decode(response: httpx.Response, operation: str) -> dict:
        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"raw": response.text}

        if response.status_code == 429 or response.status_code >= 500:
            raise GatewayUnavailable(
                f"PayPal {operation} unavailable (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            details = data.get("details") or [{}]
            issue = details[0].get("issue") or data.get("name") or data.get("error")
            message = data.get("message") or data.get("error_description") or f"PayPal {operation} rejected"
            logger.warning(
                "PayPal request rejected",
                operation=operation,
                status_code=response.status_code,
                issue=issue,
                debug_id=data.get("debug_id"),
            )
            raise GatewayRejected(message, response.status_code, issue=issue, details=data)
        return data
