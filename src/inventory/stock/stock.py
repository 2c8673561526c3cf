"""Variant stock projection and the inventory ledger rows behind it.

The ledger (``InventoryTransaction``) is append-only and authoritative. The
on-hand quantity cached on ``VariantStock`` is the running sum of every
delta recorded for the variant. It is only ever changed by
``InventoryLedger``, in the same unit of work that appends the matching
ledger row.

Stock Level Model:
    quantity:        cached on-hand count (sum of ledger deltas)
    last_sequence:   sequence number of the newest ledger row
    allow_negative:  per-vendor policy; when off, reductions clamp at zero
"""

from enum import Enum

from protean.exceptions import InvalidOperationError
from protean.fields import Boolean, DateTime, Identifier, Integer, String, Text

from inventory.domain import inventory
from shared.clock import utcnow
from shared.queries import fetch_all

DEFAULT_LOW_STOCK_THRESHOLD = 10


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TransactionType(Enum):
    SALE = "sale"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class ReferenceType(Enum):
    ORDER = "order"
    MANUAL = "manual"
    SYSTEM = "system"


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------
@inventory.aggregate
class VariantStock:
    """Cached on-hand quantity for one product variant."""

    variant_id = Identifier(identifier=True)
    product_id = Identifier()
    vendor_id = Identifier(required=True)
    quantity = Integer(default=0)
    last_sequence = Integer(default=0)
    created_at = DateTime(default=utcnow)
    updated_at = DateTime(default=utcnow)


@inventory.aggregate
class VendorInventorySettings:
    """Per-vendor stock policy."""

    vendor_id = Identifier(identifier=True)
    allow_negative_stock = Boolean(default=False)
    low_stock_threshold = Integer(default=DEFAULT_LOW_STOCK_THRESHOLD, min_value=0)
    updated_at = DateTime(default=utcnow)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
@inventory.aggregate
class InventoryTransaction:
    """One signed stock movement.

    ``delta`` is the change actually applied to the projection. When a
    reduction was clamped at zero, ``requested_delta`` keeps the original
    request and ``reason`` names the shortfall. ``sequence`` numbers the
    variant's rows from 1 in the order they were appended.
    """

    variant_id = Identifier(required=True)
    sequence = Integer(required=True, min_value=1)
    delta = Integer(required=True)
    requested_delta = Integer(required=True)
    transaction_type = String(max_length=20, choices=TransactionType, required=True)
    reason = Text(required=True)
    reference_type = String(max_length=20, choices=ReferenceType)
    reference_id = String(max_length=64)
    actor = String(max_length=64)
    quantity_after = Integer(required=True)
    created_at = DateTime(default=utcnow)

    @property
    def clamped(self) -> bool:
        return self.delta != self.requested_delta


@inventory.repository(part_of=InventoryTransaction)
class InventoryTransactionRepository:
    def add(self, entry):
        if entry.state_.is_persisted:
            raise InvalidOperationError(
                {"transaction": [f"Inventory ledger rows are append-only (transaction {entry.id})"]}
            )
        return super().add(entry)

    def for_variant(self, variant_id: str) -> list:
        return fetch_all(self._dao.query.filter(variant_id=variant_id).order_by("sequence"))

    def ledger_sum(self, variant_id: str) -> int:
        return sum(entry.delta for entry in self.for_variant(variant_id))
