import os
from pathlib import Path

import pytest

# Directory under tests/delivery → marker
_LAYER_MARKERS = {
    "domain": pytest.mark.domain,
    "application": pytest.mark.application,
    "integration": pytest.mark.integration,
    "bdd": pytest.mark.bdd,
}


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="PROTEAN_ENV overlay from domain.toml to run the delivery domain under",
    )


def pytest_sessionstart(session):
    """Initialize the delivery domain before collection.

    Test modules import aggregates and handlers at module level, so the domain
    has to be initialized and its context pushed before any of them load.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ.setdefault("DELIVERY_OFFER_MONITOR", "off")

    from delivery.domain import delivery

    delivery.init()
    delivery.domain_context().push()


def pytest_collection_modifyitems(config, items):
    for item in items:
        layers = set(Path(item.fspath).parts)
        for layer, marker in _LAYER_MARKERS.items():
            if layer in layers:
                item.add_marker(marker)
        if "integration" in layers and not item.get_closest_marker("fast"):
            item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session", autouse=True)
def delivery_schema():
    from delivery.domain import delivery
    from delivery.utils.db import drop_db, setup_db

    setup_db(delivery)
    yield
    drop_db(delivery)


@pytest.fixture(autouse=True)
def fresh_delivery_state():
    """Every test starts with empty stores, fresh fakes and no held locks."""
    yield

    from protean import current_domain

    from delivery.notification import reset_notifier
    from delivery.payment import reset_gateway
    from delivery.shared.locks import locks

    for provider in current_domain.providers.values():
        provider._data_reset()
    current_domain.event_store.store._data_reset()

    reset_gateway()
    reset_notifier()
    locks.clear()
