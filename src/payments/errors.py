"""Payment reconciliation error taxonomy.

* ``GatewayUnavailable``: network failure or 5xx/429 from the gateway.
  Transient, retried with bounded backoff by the caller that owns the budget.
* ``GatewayTimeout``: the request may or may not have reached the gateway.
  Never retried blindly; the outcome is resolved by verification or webhook.
* ``GatewayRejected``: 4xx from the gateway. Terminal.
* ``SignatureInvalid``: a webhook failed authenticity checks. Never processed.
* ``ReconciliationMismatch``: gateway and local state disagree. Recorded for
  review, never blocks the request that found it.
"""


class PaymentError(Exception):
    code = "payment_error"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self)}


class GatewayUnavailable(PaymentError):
    code = "gateway_unavailable"

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict:
        return {**super().to_dict(), "status_code": self.status_code}


class GatewayTimeout(GatewayUnavailable):
    code = "gateway_timeout"


# Gateway issue codes meaning the capture already happened
_ALREADY_CAPTURED_ISSUES = frozenset({"ORDER_ALREADY_CAPTURED", "DUPLICATE_INVOICE_ID"})


class GatewayRejected(PaymentError):
    code = "gateway_rejected"

    def __init__(self, message: str, status_code: int, issue: str | None = None, details: dict | None = None):
        self.status_code = status_code
        self.issue = issue
        self.details = details or {}
        super().__init__(message)

    @property
    def already_captured(self) -> bool:
        return self.issue in _ALREADY_CAPTURED_ISSUES

    def to_dict(self) -> dict:
        return {**super().to_dict(), "status_code": self.status_code, "issue": self.issue}


class SignatureInvalid(PaymentError):
    code = "signature_invalid"


class ReconciliationMismatch(PaymentError):
    code = "reconciliation_mismatch"

    def __init__(self, order_id: str | None, kind: str, expected=None, actual=None):
        self.order_id = order_id
        self.kind = kind
        self.expected = expected
        self.actual = actual
        super().__init__(f"Reconciliation mismatch on order {order_id}: {kind} (expected {expected!r}, got {actual!r})")

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "order_id": self.order_id,
            "kind": self.kind,
            "expected": self.expected,
            "actual": self.actual,
        }
