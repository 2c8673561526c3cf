"""Pydantic request/response schemas for the Payments API.

These are external contracts, kept separate from the reconciliation
handlers' own value types.
"""

from decimal import Decimal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class RefundRequest(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0)
    reason: str = ""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"amount": "20.00", "reason": "Item arrived damaged"},
                {"reason": "Order refunded in full"},
            ]
        }
    }


class ConfigureGatewayRequest(BaseModel):
    should_succeed: bool = True
    failure_reason: str = "Card declined"


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class OutcomeResponse(BaseModel):
    outcome: str
    order_id: str | None = None
    status: str | None = None
    reason: str | None = None
    detail: dict = Field(default_factory=dict)


class VerificationResponse(BaseModel):
    order_id: str
    gateway_order_id: str
    capture_id: str | None
    order_status: str
    gateway_status: str
    capture_status: str | None
    expected_amount: int
    gateway_amount: int | None
    amount_match: bool
    is_valid: bool
    mismatches: list[dict]
    verified_at: str


class GatewayConfigResponse(BaseModel):
    gateway: str
    should_succeed: bool
    failure_reason: str
