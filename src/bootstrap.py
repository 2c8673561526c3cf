"""Composition root.

``build_container(settings)`` wires every collaborator exactly once per
process: the domain, one inventory ledger, one order lifecycle, one
gateway, one notification dispatcher. The FastAPI app, the CLI and the
test suite all go through here.
"""

from dataclasses import dataclass

import structlog
from protean.domain import Domain

from identity import IdentityProvider, StaticTokenIdentity
from inventory.stock.ledger import InventoryLedger
from notifications.channel import MailTransport, build_transport
from notifications.notification.dead_letter import DeadLetterStore, SqlDeadLetterStore
from notifications.notification.dispatch import NotificationDispatcher
from notifications.notification.queue import DispatchQueue
from ordering.order.automation import AutomationReport, process_automatic_transitions
from ordering.order.creation import OrderPlacement
from ordering.order.lifecycle import OrderLifecycle
from payments.gateway import PaymentGateway, build_gateway
from payments.payment.reconciliation import PaymentReconciliation
from shared.config import Settings, load_settings
from shared.domain import init_domain

logger = structlog.get_logger(__name__)


@dataclass
class Container:
    settings: Settings
    domain: Domain
    ledger: InventoryLedger
    lifecycle: OrderLifecycle
    orders: OrderPlacement
    gateway: PaymentGateway
    reconciliation: PaymentReconciliation
    dispatcher: NotificationDispatcher
    transport: MailTransport
    dead_letters: DeadLetterStore
    identity: IdentityProvider

    def run_automation(self) -> AutomationReport:
        return process_automatic_transitions(
            self.lifecycle,
            auto_deliver_after_days=self.settings.ordering.auto_deliver_after_days,
        )

    def close(self) -> None:
        """Drain notifications and release the gateway client."""
        self.dispatcher.shutdown()
        close_gateway = getattr(self.gateway, "close", None)
        if close_gateway is not None:
            close_gateway()


def build_container(
    settings: Settings | None = None,
    gateway: PaymentGateway | None = None,
    transport: MailTransport | None = None,
    dead_letters: DeadLetterStore | None = None,
) -> Container:
    """Build the object graph. Explicit collaborators override configuration."""
    settings = settings or load_settings()
    domain = init_domain(settings.database.url)

    notify = settings.notifications
    transport = transport or build_transport(notify.transport)
    dead_letters = dead_letters or SqlDeadLetterStore()
    dispatcher = NotificationDispatcher(
        DispatchQueue(
            capacity=notify.capacity,
            max_retries=notify.max_retries,
            base_delay_seconds=notify.base_delay_seconds,
            batch_size=notify.batch_size,
        ),
        transport,
        dead_letters,
        workers=notify.workers,
        tick_interval_seconds=notify.tick_interval_seconds,
        sender=notify.sender,
    )

    ledger = InventoryLedger()
    lifecycle = OrderLifecycle(
        ledger,
        notifications=dispatcher,
        transition_retries=settings.ordering.transition_retries,
    )

    gateway = gateway or build_gateway(settings.gateway)
    reconciliation = PaymentReconciliation(
        lifecycle,
        gateway,
        max_attempts=settings.gateway.max_attempts,
        backoff_base_seconds=settings.gateway.backoff_base_seconds,
    )

    logger.info(
        "Container built",
        env=settings.env,
        gateway=type(gateway).__name__,
        transport=type(transport).__name__,
    )
    return Container(
        settings=settings,
        domain=domain,
        ledger=ledger,
        lifecycle=lifecycle,
        orders=OrderPlacement(notifications=dispatcher),
        gateway=gateway,
        reconciliation=reconciliation,
        dispatcher=dispatcher,
        transport=transport,
        dead_letters=dead_letters,
        identity=StaticTokenIdentity(settings.identity.tokens),
    )
