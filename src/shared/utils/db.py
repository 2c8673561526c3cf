from protean.domain import Domain
from sqlalchemy import create_engine


def _relational_providers(domain: Domain):
    for _, provider in domain.providers.items():
        if provider.conn_info["provider"] in ("sqlite", "postgresql"):
            yield provider


def _load_models(domain: Domain, provider) -> None:
    """Force every persisted element onto the provider's SQLAlchemy metadata.

    Models are built lazily on first repository access, so the DAO of each
    aggregate and entity stored with ``provider`` is touched once.
    """
    records = [*domain.registry.aggregates.values(), *domain.registry.entities.values()]
    for record in records:
        if record.cls.meta_.provider == provider.name:
            domain.repository_for(record.cls)._dao  # noqa: B018


def setup_db(domain: Domain):
    """Create every table the domain persists."""
    with domain.domain_context():
        for provider in _relational_providers(domain):
            _load_models(domain, provider)
            provider._metadata.create_all(create_engine(provider.conn_info["database_uri"]))


def drop_db(domain: Domain):
    """Drop every table the domain persists."""
    with domain.domain_context():
        for provider in _relational_providers(domain):
            _load_models(domain, provider)
            provider._metadata.drop_all(create_engine(provider.conn_info["database_uri"]))
