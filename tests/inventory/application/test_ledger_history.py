"""Application tests for paginated ledger history."""

from datetime import timedelta

import pytest
from inventory.stock.history import HistoryFilters, get_history, iter_history
from inventory.stock.stock import TransactionType
from protean.exceptions import ValidationError
from shared.clock import utcnow


@pytest.fixture()
def busy_variant(ledger):
    ledger.register_variant("var-001", "vendor-001", initial_quantity=100)
    for index in range(12):
        kind = TransactionType.SALE if index % 3 else TransactionType.REFUND
        delta = -1 if kind == TransactionType.SALE else 1
        ledger.record_adjustment("var-001", delta, kind, f"move {index}")
    return ledger


class TestPagination:
    def test_pages_are_newest_first(self, busy_variant):
        page = get_history("var-001", page_size=5)

        assert len(page.entries) == 5
        assert page.has_more
        sequences = [e.sequence for e in page.entries]
        assert sequences == sorted(sequences, reverse=True)
        assert page.entries[0].reason == "move 11"

    def test_cursor_resumes_after_last_row(self, busy_variant):
        first = get_history("var-001", page_size=5)
        second = get_history("var-001", cursor=first.next_cursor, page_size=5)

        assert second.entries[0].sequence < first.entries[-1].sequence
        assert not set(e.sequence for e in first.entries) & set(e.sequence for e in second.entries)

    def test_last_page_has_no_cursor(self, busy_variant):
        page = get_history("var-001", page_size=13)
        assert len(page.entries) == 13
        assert page.next_cursor is None

    def test_new_rows_do_not_shift_an_open_cursor(self, busy_variant):
        first = get_history("var-001", page_size=4)
        busy_variant.record_adjustment("var-001", 5, TransactionType.ADJUSTMENT, "late arrival")

        second = get_history("var-001", cursor=first.next_cursor, page_size=4)

        assert second.entries[0].sequence == first.entries[-1].sequence - 1

    def test_iteration_is_lazy_and_complete(self, busy_variant, monkeypatch):
        import inventory.stock.history as history

        calls = []
        original = history.get_history

        def counting(*args, **kwargs):
            calls.append(kwargs.get("cursor"))
            return original(*args, **kwargs)

        monkeypatch.setattr(history, "get_history", counting)

        entries = iter_history("var-001", page_size=5)
        assert calls == []
        first = next(entries)
        assert len(calls) == 1
        rest = list(entries)

        assert len(rest) + 1 == 13
        assert len(calls) == 3
        assert first.reason == "move 11"

    def test_iteration_can_restart(self, busy_variant):
        assert [e.sequence for e in iter_history("var-001", page_size=4)] == [
            e.sequence for e in iter_history("var-001", page_size=4)
        ]

    @pytest.mark.parametrize("page_size", [0, 501])
    def test_page_size_is_bounded(self, page_size):
        with pytest.raises(ValidationError):
            get_history("var-001", page_size=page_size)

    def test_unknown_variant_has_empty_history(self):
        assert list(iter_history("var-none")) == []


class TestFilters:
    def test_filter_by_type(self, busy_variant):
        filters = HistoryFilters(transaction_types=("refund",))
        entries = list(iter_history("var-001", filters, page_size=2))

        assert len(entries) == 4
        assert all(e.transaction_type == TransactionType.REFUND for e in entries)

    def test_filter_by_date_range(self, busy_variant):
        now = utcnow()
        assert len(list(iter_history("var-001", HistoryFilters(since=now + timedelta(minutes=1))))) == 0
        assert len(list(iter_history("var-001", HistoryFilters(until=now + timedelta(minutes=1))))) == 13

    def test_inverted_range_is_rejected(self):
        now = utcnow()
        with pytest.raises(ValidationError):
            HistoryFilters(since=now, until=now - timedelta(days=1))

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValidationError):
            HistoryFilters(transaction_types=("theft",))
