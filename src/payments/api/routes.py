"""FastAPI routes for the payments context: webhooks, captures, refunds and verification."""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from protean.exceptions import ObjectNotFoundError
from starlette.concurrency import run_in_threadpool

from identity.port import AuthError, Principal
from payments.api.schemas import (
    ConfigureGatewayRequest,
    GatewayConfigResponse,
    OutcomeResponse,
    RefundRequest,
    VerificationResponse,
)
from payments.gateway.fake_adapter import FakeGateway
from payments.payment.outcome import Applied, Outcome, Rejected
from shared.money import to_minor_units

payment_router = APIRouter(prefix="/payments", tags=["payments"])

_bearer = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_container(request: Request):
    return request.app.state.container


def require_role(role: str):
    """Resolve the bearer credential and check ``role``."""

    def dependency(
        credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
        container=Depends(get_container),
    ) -> Principal:
        principal = container.identity.verify_principal(credentials.credentials if credentials else "")
        if not container.identity.has_role(principal, role):
            raise AuthError(f"Role '{role}' required", status_code=403)
        return principal

    return dependency


def _outcome_response(outcome: Outcome) -> OutcomeResponse:
    return OutcomeResponse(
        outcome=outcome.kind,
        order_id=outcome.order_id,
        status=outcome.status if isinstance(outcome, Applied) else None,
        reason=outcome.reason if isinstance(outcome, Rejected) else None,
        detail=outcome.detail,
    )


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------
@payment_router.post("/webhooks/{provider}", response_model=OutcomeResponse)
async def ingest_webhook(provider: str, request: Request, container=Depends(get_container)) -> OutcomeResponse:
    """Receive a gateway webhook.

    Answers 400 when the signature is invalid and 200 for every authentic
    delivery, including duplicates and events that could not be applied.
    """
    body = await request.body()
    headers = {key.lower(): value for key, value in request.headers.items()}
    outcome = await run_in_threadpool(container.reconciliation.ingest_webhook, provider, headers, body)
    return _outcome_response(outcome)


# ---------------------------------------------------------------------------
# Human-initiated operations
# ---------------------------------------------------------------------------
@payment_router.post("/orders/{gateway_order_id}/capture", response_model=OutcomeResponse)
def capture_order(
    gateway_order_id: str,
    principal: Principal = Depends(require_role("buyer")),
    container=Depends(get_container),
) -> OutcomeResponse:
    """Capture an approved gateway order and mark the local order paid."""
    outcome = container.reconciliation.reconcile_capture(gateway_order_id, actor=principal.user_id)
    return _outcome_response(outcome)


@payment_router.post("/captures/{capture_id}/refunds", response_model=OutcomeResponse)
def refund_capture(
    capture_id: str,
    body: RefundRequest,
    principal: Principal = Depends(require_role("support")),
    container=Depends(get_container),
) -> OutcomeResponse:
    """Refund a capture, in full when no amount is given."""
    amount = None
    if body.amount is not None:
        order_id = container.lifecycle.find_order_id(capture_id=capture_id)
        if order_id is None:
            raise ObjectNotFoundError(f"No order carries capture {capture_id}")
        amount = to_minor_units(body.amount, container.lifecycle.load(order_id).currency)
    outcome = container.reconciliation.reconcile_refund(
        capture_id,
        amount=amount,
        reason=body.reason,
        actor=principal.user_id,
    )
    return _outcome_response(outcome)


@payment_router.get("/orders/{order_id}/verification", response_model=VerificationResponse)
def verify_order(
    order_id: str,
    principal: Principal = Depends(require_role("support")),
    container=Depends(get_container),
) -> VerificationResponse:
    """Compare the order with the gateway's view of it. Never changes the order."""
    result = container.reconciliation.verify_order(order_id)
    return VerificationResponse(**result.to_dict())


# ---------------------------------------------------------------------------
# Development
# ---------------------------------------------------------------------------
@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
def configure_gateway(body: ConfigureGatewayRequest, container=Depends(get_container)) -> GatewayConfigResponse:
    """Configure the FakeGateway behavior (non-production only).

    Allows toggling success/failure behavior for manual API testing. Answers
    403 when ``APP_ENV`` is production and 400 when a real gateway is wired.
    Takes no credential.
    """
    if container.settings.env == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = container.gateway
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(
        should_succeed=body.should_succeed,
        failure_reason=body.failure_reason,
    )
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        should_succeed=gateway.should_succeed,
        failure_reason=gateway.failure_reason,
    )
