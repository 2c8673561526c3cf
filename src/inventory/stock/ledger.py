"""Inventory ledger: the only writer of variant stock quantities.

``record_adjustment`` appends one ``InventoryTransaction`` and moves the
cached quantity by the applied delta inside a single unit of work, while
holding the variant's lock. ``apply_adjustment`` does the same work inside
the caller's active unit of work, for callers (the order lifecycle) that
already hold the variant lock and need the ledger row to commit with their
own writes.

Floor policy:
    Reductions that would take the quantity below zero are clamped at zero
    unless the vendor allows negative stock. The clamped amount is recorded
    in the transaction's reason. Refunds are always applied in full.
"""

from dataclasses import dataclass

import structlog
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from inventory.stock.stock import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    InventoryTransaction,
    ReferenceType,
    TransactionType,
    VariantStock,
    VendorInventorySettings,
)
from shared.clock import utcnow
from shared.domain import transaction
from shared.locks import KeyedLocks
from shared.queries import fetch_all
from shared.retry import call_with_retry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VariantSnapshot:
    variant_id: str
    product_id: str | None
    vendor_id: str
    quantity: int

    @classmethod
    def from_stock(cls, stock: VariantStock) -> "VariantSnapshot":
        return cls(stock.variant_id, stock.product_id, stock.vendor_id, stock.quantity)


@dataclass(frozen=True)
class AdjustmentResult:
    transaction_id: str
    sequence: int
    variant_id: str
    delta: int
    requested_delta: int
    quantity_after: int
    reason: str

    @property
    def clamped(self) -> bool:
        return self.delta != self.requested_delta


@dataclass(frozen=True)
class ConsistencyReport:
    variant_id: str
    cached_quantity: int
    ledger_sum: int

    @property
    def consistent(self) -> bool:
        return self.cached_quantity == self.ledger_sum


def _coerce(enum_cls, value, field_name: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError({field_name: [f"Unknown {field_name}: {value!r}"]}) from None


def _validate_delta(transaction_type: TransactionType, delta: int) -> None:
    if not isinstance(delta, int) or isinstance(delta, bool):
        raise ValidationError({"delta": ["Delta must be an integer"]})
    if delta == 0:
        raise ValidationError({"delta": ["Delta must not be zero"]})
    if transaction_type == TransactionType.SALE and delta > 0:
        raise ValidationError({"delta": ["A sale must reduce stock"]})
    if transaction_type == TransactionType.REFUND and delta < 0:
        raise ValidationError({"delta": ["A refund must restore stock"]})


def _find(cls, identifier: str):
    try:
        return current_domain.repository_for(cls).get(identifier)
    except ObjectNotFoundError:
        return None


def _load_stock(variant_id: str) -> VariantStock:
    stock = _find(VariantStock, variant_id)
    if stock is None:
        raise ObjectNotFoundError(f"Variant {variant_id} does not exist")
    return stock


class InventoryLedger:
    def __init__(self, locks: KeyedLocks | None = None, conflict_retries: int = 3):
        self.locks = locks or KeyedLocks("variant")
        self.conflict_retries = conflict_retries

    # -------------------------------------------------------------------
    # Variant setup
    # -------------------------------------------------------------------
    def register_variant(
        self,
        variant_id: str,
        vendor_id: str,
        product_id: str | None = None,
        initial_quantity: int = 0,
        actor: str | None = None,
    ) -> VariantSnapshot:
        """Create the stock row for a variant.

        A non-zero starting quantity is recorded as an adjustment so the
        cached quantity equals the ledger sum from the start.
        """
        if initial_quantity < 0:
            raise ValidationError({"initial_quantity": ["Initial quantity must not be negative"]})

        with self.locks.hold(variant_id), transaction():
            if _find(VariantStock, variant_id) is not None:
                raise ValidationError({"variant_id": [f"Variant {variant_id} is already registered"]})
            now = utcnow()
            current_domain.repository_for(VariantStock).add(
                VariantStock(
                    variant_id=variant_id,
                    product_id=product_id,
                    vendor_id=vendor_id,
                    quantity=0,
                    last_sequence=0,
                    created_at=now,
                    updated_at=now,
                )
            )
            if initial_quantity:
                self.apply_adjustment(
                    variant_id,
                    initial_quantity,
                    TransactionType.ADJUSTMENT,
                    "Initial stock",
                    reference_type=ReferenceType.SYSTEM,
                    actor=actor,
                )

        logger.info("Variant registered", variant_id=variant_id, vendor_id=vendor_id, quantity=initial_quantity)
        return VariantSnapshot(variant_id, product_id, vendor_id, initial_quantity)

    def set_vendor_policy(
        self,
        vendor_id: str,
        allow_negative_stock: bool = False,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    ) -> None:
        if low_stock_threshold < 0:
            raise ValidationError({"low_stock_threshold": ["Threshold must not be negative"]})
        with transaction():
            repo = current_domain.repository_for(VendorInventorySettings)
            policy = _find(VendorInventorySettings, vendor_id) or VendorInventorySettings(vendor_id=vendor_id)
            policy.allow_negative_stock = allow_negative_stock
            policy.low_stock_threshold = low_stock_threshold
            policy.updated_at = utcnow()
            repo.add(policy)

    # -------------------------------------------------------------------
    # Adjustments
    # -------------------------------------------------------------------
    def record_adjustment(
        self,
        variant_id: str,
        delta: int,
        transaction_type,
        reason: str,
        reference_type=None,
        reference_id: str | None = None,
        actor: str | None = None,
    ) -> AdjustmentResult:
        """Append a ledger row and move the cached quantity, atomically."""
        transaction_type = _coerce(TransactionType, transaction_type, "transaction_type")
        reference_type = _coerce(ReferenceType, reference_type, "reference_type")
        _validate_delta(transaction_type, delta)

        def attempt() -> AdjustmentResult:
            with transaction():
                return self.apply_adjustment(
                    variant_id,
                    delta,
                    transaction_type,
                    reason,
                    reference_type=reference_type,
                    reference_id=reference_id,
                    actor=actor,
                )

        with self.locks.hold(variant_id):
            return call_with_retry(
                attempt,
                retry_on=(ExpectedVersionError,),
                max_attempts=self.conflict_retries,
                base_delay=0.01,
                operation="inventory.record_adjustment",
            )

    def apply_adjustment(
        self,
        variant_id: str,
        delta: int,
        transaction_type,
        reason: str,
        reference_type=None,
        reference_id: str | None = None,
        actor: str | None = None,
    ) -> AdjustmentResult:
        """Apply an adjustment in the active unit of work. The caller holds the variant lock."""
        transaction_type = _coerce(TransactionType, transaction_type, "transaction_type")
        reference_type = _coerce(ReferenceType, reference_type, "reference_type")
        _validate_delta(transaction_type, delta)

        stock = _load_stock(variant_id)

        applied = delta
        if delta < 0 and not self._allows_negative(stock.vendor_id):
            on_hand = max(stock.quantity, 0)
            applied = max(delta, -on_hand)
            if applied != delta:
                shortfall = applied - delta
                reason = f"{reason} [shortfall: requested {delta}, on hand {stock.quantity}, {shortfall} not deducted]"
                logger.warning(
                    "Stock reduction clamped at zero",
                    variant_id=variant_id,
                    requested=delta,
                    on_hand=stock.quantity,
                    shortfall=shortfall,
                    reference_id=reference_id,
                )

        now = utcnow()
        stock.quantity += applied
        stock.last_sequence += 1
        stock.updated_at = now
        entry = InventoryTransaction(
            variant_id=variant_id,
            sequence=stock.last_sequence,
            delta=applied,
            requested_delta=delta,
            transaction_type=transaction_type.value,
            reason=reason,
            reference_type=reference_type.value if reference_type else None,
            reference_id=reference_id,
            actor=actor,
            quantity_after=stock.quantity,
            created_at=now,
        )
        current_domain.repository_for(InventoryTransaction).add(entry)
        current_domain.repository_for(VariantStock).add(stock)

        logger.info(
            "Inventory adjusted",
            variant_id=variant_id,
            delta=applied,
            transaction_type=transaction_type.value,
            quantity=stock.quantity,
            reference_id=reference_id,
        )
        return AdjustmentResult(
            transaction_id=str(entry.id),
            sequence=entry.sequence,
            variant_id=variant_id,
            delta=applied,
            requested_delta=delta,
            quantity_after=stock.quantity,
            reason=reason,
        )

    @staticmethod
    def _allows_negative(vendor_id: str) -> bool:
        policy = _find(VendorInventorySettings, vendor_id)
        return bool(policy and policy.allow_negative_stock)

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def get_variant(self, variant_id: str) -> VariantSnapshot:
        with transaction():
            return VariantSnapshot.from_stock(_load_stock(variant_id))

    @staticmethod
    def ledger_sum(variant_id: str) -> int:
        return current_domain.repository_for(InventoryTransaction).ledger_sum(variant_id)

    def check_consistency(self, variant_id: str) -> ConsistencyReport:
        with transaction():
            stock = _load_stock(variant_id)
            report = ConsistencyReport(variant_id, stock.quantity, self.ledger_sum(variant_id))
        if not report.consistent:
            logger.error(
                "Stock projection drifted from ledger",
                variant_id=variant_id,
                cached=report.cached_quantity,
                ledger_sum=report.ledger_sum,
            )
        return report

    def rebuild_projection(self, variant_id: str) -> ConsistencyReport:
        """Reset the cached quantity to the ledger sum. Returns the state before the reset."""
        with self.locks.hold(variant_id), transaction():
            stock = _load_stock(variant_id)
            report = ConsistencyReport(variant_id, stock.quantity, self.ledger_sum(variant_id))
            if not report.consistent:
                stock.quantity = report.ledger_sum
                stock.updated_at = utcnow()
                current_domain.repository_for(VariantStock).add(stock)
                logger.warning(
                    "Stock projection rebuilt from ledger",
                    variant_id=variant_id,
                    previous=report.cached_quantity,
                    quantity=report.ledger_sum,
                )
        return report

    def low_stock(self, vendor_id: str) -> list[VariantSnapshot]:
        """Variants at or below the vendor's threshold, lowest quantity first."""
        with transaction():
            policy = _find(VendorInventorySettings, vendor_id)
            threshold = policy.low_stock_threshold if policy else DEFAULT_LOW_STOCK_THRESHOLD
            query = (
                current_domain.repository_for(VariantStock)
                ._dao.query.filter(vendor_id=vendor_id, quantity__lte=threshold)
                .order_by(["quantity", "variant_id"])
            )
            return [VariantSnapshot.from_stock(stock) for stock in fetch_all(query)]
