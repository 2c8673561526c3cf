import os
import tempfile
from pathlib import Path

import pytest


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Initialise the domain against a throwaway SQLite file and push its
    context. The activated domain can then be referred to elsewhere as
    `current_domain`.
    """
    os.environ["APP_ENV"] = "test"
    database_path = Path(tempfile.mkdtemp(prefix="reconciliation-tests-")) / "reconciliation.db"

    from shared.domain import init_domain

    domain = init_domain(f"sqlite:///{database_path}")
    domain.domain_context().push()


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session", autouse=True)
def setup_db(request):
    from shared.domain import domain
    from shared.utils.db import drop_db, setup_db

    setup_db(domain)

    yield

    drop_db(domain)


@pytest.fixture(autouse=True)
def run_around_tests():
    """Fixture to automatically cleanup infrastructure after every test"""
    yield

    from protean import current_domain

    # Clear all databases
    for _, provider in current_domain.providers.items():
        provider._data_reset()

    # Drain event stores
    current_domain.event_store.store._data_reset()


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------
@pytest.fixture()
def ledger():
    from inventory.stock.ledger import InventoryLedger

    return InventoryLedger()


@pytest.fixture()
def transport():
    from notifications.channel.fake_email import FakeEmailTransport

    return FakeEmailTransport()


@pytest.fixture()
def dead_letters():
    from notifications.notification.dead_letter import InMemoryDeadLetterStore

    return InMemoryDeadLetterStore()


@pytest.fixture()
def dispatcher(transport, dead_letters):
    from notifications.notification.dispatch import NotificationDispatcher
    from notifications.notification.queue import DispatchQueue

    queue = DispatchQueue(capacity=100, max_retries=3, base_delay_seconds=5.0, batch_size=10)
    instance = NotificationDispatcher(queue, transport, dead_letters, workers=2, tick_interval_seconds=0.05)
    yield instance
    instance.stop()


@pytest.fixture()
def lifecycle(ledger, dispatcher):
    from ordering.order.lifecycle import OrderLifecycle

    return OrderLifecycle(ledger, notifications=dispatcher)


@pytest.fixture()
def gateway():
    from payments.gateway.fake_adapter import FakeGateway

    return FakeGateway()


@pytest.fixture()
def reconciliation(lifecycle, gateway):
    from payments.payment.reconciliation import PaymentReconciliation

    return PaymentReconciliation(lifecycle, gateway, max_attempts=3, backoff_base_seconds=0.0, sleep=lambda _: None)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
@pytest.fixture()
def make_order(ledger, dispatcher):
    """Place an order whose variants are registered with ``stock`` units each.

    Returns the order id. Items default to two units of ``var-001`` at
    2500 minor units, for a total of 5000.
    """
    from ordering.order.creation import OrderPlacement
    from protean.exceptions import ObjectNotFoundError

    placement = OrderPlacement(notifications=dispatcher)

    def _make(items=None, gateway_order_id=None, stock=10, vendor_id="vendor-001", **kwargs):
        items = items or [{"variant_id": "var-001", "product_id": "prod-001", "quantity": 2, "unit_price": 2500}]
        for item in items:
            try:
                ledger.get_variant(item["variant_id"])
            except ObjectNotFoundError:
                ledger.register_variant(item["variant_id"], vendor_id, item.get("product_id"), initial_quantity=stock)
        return placement.place_order(
            buyer_id=kwargs.pop("buyer_id", "buyer-001"),
            vendor_id=vendor_id,
            items=items,
            buyer_email=kwargs.pop("buyer_email", "buyer@example.com"),
            gateway_order_id=gateway_order_id,
            **kwargs,
        )

    return _make
