"""Tests for Order creation and helpers."""

import pytest
from ordering.order.order import Order, OrderStatus
from protean.exceptions import ValidationError


def _items(**overrides):
    item = {"variant_id": "var-001", "product_id": "prod-001", "sku": "SKU-001", "quantity": 2, "unit_price": 2500}
    item.update(overrides)
    return [item]


class TestOrderCreation:
    def test_new_order_is_pending(self):
        order = Order.create(buyer_id="buyer-001", vendor_id="vendor-001", items_data=_items())
        assert order.current_status == OrderStatus.PENDING
        assert order.inventory_deducted is False
        assert order.meta == {}

    def test_total_is_computed_from_items(self):
        order = Order.create(
            buyer_id="buyer-001",
            vendor_id="vendor-001",
            items_data=_items() + [{"variant_id": "var-002", "quantity": 3, "unit_price": 100}],
        )
        assert order.total_amount == 5300

    def test_explicit_total_wins(self):
        order = Order.create(buyer_id="b", vendor_id="v", items_data=_items(), total_amount=5500)
        assert order.total_amount == 5500

    def test_item_prices_are_snapshots(self):
        order = Order.create(buyer_id="b", vendor_id="v", items_data=_items(unit_price=1999))
        assert order.items[0].unit_price == 1999
        assert order.items[0].line_total == 3998

    def test_item_vendor_defaults_to_order_vendor(self):
        order = Order.create(buyer_id="b", vendor_id="vendor-009", items_data=_items())
        assert order.items[0].vendor_id == "vendor-009"

    def test_currency_is_normalised(self):
        order = Order.create(buyer_id="b", vendor_id="v", items_data=_items(), currency="eur")
        assert order.currency == "EUR"

    def test_order_needs_items(self):
        with pytest.raises(ValidationError) as exc:
            Order.create(buyer_id="b", vendor_id="v", items_data=[])
        assert "items" in exc.value.messages

    @pytest.mark.parametrize(
        "bad_item",
        [
            {"quantity": 0},
            {"unit_price": -1},
            {"variant_id": ""},
        ],
    )
    def test_invalid_items_are_rejected(self, bad_item):
        with pytest.raises(ValidationError):
            Order.create(buyer_id="b", vendor_id="v", items_data=_items(**bad_item))

    def test_invalid_currency_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            Order.create(buyer_id="b", vendor_id="v", items_data=_items(), currency="US")
        assert "currency" in exc.value.messages


class TestOrderHelpers:
    def test_merge_metadata_keeps_existing_keys(self):
        order = Order.create(buyer_id="b", vendor_id="v", items_data=_items(), metadata={"channel": "web"})
        order.merge_metadata({"gateway_capture_status": "COMPLETED"})
        assert order.meta == {"channel": "web", "gateway_capture_status": "COMPLETED"}

    def test_capture_id_first_write_wins(self):
        order = Order.create(buyer_id="b", vendor_id="v", items_data=_items())
        assert order.record_capture_id("CAP-1") is True
        assert order.record_capture_id("CAP-1") is True
        assert order.record_capture_id("CAP-2") is False
        assert order.gateway_capture_id == "CAP-1"

    def test_can_transition_to(self):
        order = Order.create(buyer_id="b", vendor_id="v", items_data=_items())
        assert order.can_transition_to("paid")
        assert not order.can_transition_to("shipped")
