"""Schema management for relational providers.

The memory provider needs no schema, so both helpers are no-ops unless the
active environment points a provider at SQLite or PostgreSQL.
"""

from protean.domain import Domain
from sqlalchemy import create_engine

_RELATIONAL_PROVIDERS = ("sqlite", "postgresql")


def _relational_providers(domain: Domain):
    for _, provider in domain.providers.items():
        if provider.conn_info["provider"] in _RELATIONAL_PROVIDERS:
            yield provider


def _register_models(domain: Domain, provider) -> None:
    """Touch each repository's DAO so SQLAlchemy builds the table models."""
    registries = (
        domain.registry.aggregates,
        domain.registry.entities,
        domain.registry.projections,
    )
    for registry in registries:
        for _, record in registry.items():
            if record.cls.meta_.provider == provider.name:
                domain.repository_for(record.cls)._dao  # noqa: B018


def setup_db(domain: Domain) -> None:
    """Create tables for every aggregate, entity and projection."""
    with domain.domain_context():
        for provider in _relational_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            _register_models(domain, provider)
            provider._metadata.create_all(engine)


def drop_db(domain: Domain) -> None:
    """Drop all tables created by `setup_db`."""
    with domain.domain_context():
        for provider in _relational_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.drop_all(engine)
