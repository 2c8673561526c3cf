"""Result of applying a gateway fact to an order.

Reconciliation calls return one of these instead of raising for
idempotent no-ops.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Applied:
    order_id: str
    status: str | None = None
    detail: dict = field(default_factory=dict)

    kind = "applied"


@dataclass(frozen=True)
class AlreadyApplied:
    order_id: str | None
    detail: dict = field(default_factory=dict)

    kind = "already_applied"


@dataclass(frozen=True)
class Rejected:
    reason: str
    order_id: str | None = None
    detail: dict = field(default_factory=dict)

    kind = "rejected"


Outcome = Applied | AlreadyApplied | Rejected


def outcome_to_dict(outcome: Outcome) -> dict:
    data = {"outcome": outcome.kind, "order_id": outcome.order_id, **outcome.detail}
    if isinstance(outcome, Applied):
        data["status"] = outcome.status
    if isinstance(outcome, Rejected):
        data["reason"] = outcome.reason
    return data
