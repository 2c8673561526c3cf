"""Domain composition root.

Every bounded context registers its aggregates with this one Domain, so an
order transition, its audit row and the ledger rows it causes live behind
the same provider and commit in the same unit of work.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from protean import UnitOfWork
from protean.domain import Domain

logger = structlog.get_logger(__name__)

domain = Domain(name="reconciliation")

# Modules that declare aggregates, entities, commands and repositories
ELEMENT_MODULES = (
    "ordering.order.order",
    "ordering.order.creation",
    "inventory.stock.stock",
    "payments.payment.records",
    "notifications.notification.dead_letter",
)

_init_lock = threading.Lock()
_initialized_with: str | None = None


def provider_for(database_url: str) -> str:
    scheme = database_url.split(":", 1)[0].split("+", 1)[0]
    if scheme not in ("sqlite", "postgresql"):
        raise ValueError(f"Unsupported database URL: {database_url}")
    return scheme


def init_domain(database_url: str) -> Domain:
    """Point the default provider at ``database_url`` and initialise the domain.

    Runs once per process; later calls return the initialised domain and
    warn when they ask for a different database.
    """
    global _initialized_with

    with _init_lock:
        if _initialized_with is not None:
            if database_url != _initialized_with:
                logger.warning(
                    "Domain already initialised, ignoring database URL",
                    requested=database_url,
                    active=_initialized_with,
                )
            return domain

        domain.config["databases"] = {
            "default": {"provider": provider_for(database_url), "database_uri": database_url},
            # Protean's internal memory event store registers against this provider
            "memory": {"provider": "memory"},
        }
        domain.config["command_processing"] = "sync"
        domain.config["event_processing"] = "sync"

        for module in ELEMENT_MODULES:
            __import__(module)
        domain.init(traverse=False)

        _initialized_with = database_url
        logger.info("Domain initialised", domain=domain.name, provider=provider_for(database_url))
        return domain


@contextmanager
def transaction() -> Iterator[UnitOfWork]:
    """Run the block in the domain's context inside one unit of work.

    Commits when the block exits normally and rolls back when it raises.
    Safe from any thread; worker threads have no domain context of their own.
    """
    with domain.domain_context(), UnitOfWork() as uow:
        yield uow
