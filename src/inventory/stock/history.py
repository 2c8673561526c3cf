"""Paginated, newest-first reads of a variant's inventory ledger.

Pages use keyset pagination on the per-variant ledger sequence, which
grows with insertion order. A cursor is the sequence of the last row
returned; passing it back resumes exactly after that row, even if new rows were appended meanwhile.
"""

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime

from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from inventory.stock.stock import InventoryTransaction, TransactionType
from shared.clock import as_utc
from shared.domain import transaction

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class HistoryFilters:
    transaction_types: tuple[TransactionType, ...] = ()
    since: datetime | None = None
    until: datetime | None = None

    def __post_init__(self):
        if self.since and self.until and self.since > self.until:
            raise ValidationError({"since": ["'since' must not be after 'until'"]})
        try:
            types = tuple(TransactionType(t) for t in self.transaction_types)
        except ValueError as exc:
            raise ValidationError({"transaction_types": [str(exc)]}) from None
        object.__setattr__(self, "transaction_types", types)


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    sequence: int
    variant_id: str
    delta: int
    requested_delta: int
    transaction_type: TransactionType
    reason: str
    reference_type: str | None
    reference_id: str | None
    actor: str | None
    quantity_after: int
    created_at: datetime

    @classmethod
    def from_row(cls, row: InventoryTransaction) -> "LedgerEntry":
        return cls(
            id=str(row.id),
            sequence=row.sequence,
            variant_id=row.variant_id,
            delta=row.delta,
            requested_delta=row.requested_delta,
            transaction_type=TransactionType(row.transaction_type),
            reason=row.reason,
            reference_type=row.reference_type,
            reference_id=row.reference_id,
            actor=row.actor,
            quantity_after=row.quantity_after,
            created_at=as_utc(row.created_at),
        )


@dataclass(frozen=True)
class HistoryPage:
    entries: list[LedgerEntry]
    next_cursor: int | None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


def get_history(
    variant_id: str,
    filters: HistoryFilters | None = None,
    cursor: int | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> HistoryPage:
    """Return one page of ledger rows, newest first."""
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError({"page_size": [f"Page size must be between 1 and {MAX_PAGE_SIZE}"]})
    filters = filters or HistoryFilters()

    criteria = {"variant_id": variant_id}
    if filters.transaction_types:
        criteria["transaction_type__in"] = [t.value for t in filters.transaction_types]
    if filters.since is not None:
        criteria["created_at__gte"] = filters.since
    if filters.until is not None:
        criteria["created_at__lte"] = filters.until
    if cursor is not None:
        criteria["sequence__lt"] = cursor

    with transaction():
        repo = current_domain.repository_for(InventoryTransaction)
        # One extra row tells us whether another page exists
        rows = repo._dao.query.filter(**criteria).order_by("-sequence").limit(page_size + 1).all().items
        entries = [LedgerEntry.from_row(row) for row in rows[:page_size]]

    next_cursor = entries[-1].sequence if len(rows) > page_size else None
    return HistoryPage(entries=entries, next_cursor=next_cursor)


def iter_history(
    variant_id: str,
    filters: HistoryFilters | None = None,
    cursor: int | None = None,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> Iterator[LedgerEntry]:
    """Lazily yield every matching ledger row, newest first, one page at a time."""
    while True:
        page = get_history(variant_id, filters, cursor=cursor, page_size=page_size)
        yield from page.entries
        if not page.has_more:
            return
        cursor = page.next_cursor
