import pytest
from protean.integrations.pytest import DomainFixture

from delivery.shared.actor import Actor

MANILA = {"latitude": 14.5995, "longitude": 120.9842, "address": "Ermita, Manila"}
MAKATI = {"latitude": 14.5547, "longitude": 121.0244, "address": "Ayala Ave, Makati"}


@pytest.fixture(scope="session")
def delivery_bed():
    from delivery.domain import delivery

    bed = DomainFixture(delivery)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(delivery_bed):
    with delivery_bed.domain_context():
        yield


@pytest.fixture
def customer():
    return Actor(id="cust-001", role="customer")


@pytest.fixture
def vendor():
    return Actor(id="vendor-001", role="vendor", restaurant_id="rest-001")


@pytest.fixture
def admin():
    return Actor(id="admin-001", role="admin")


@pytest.fixture
def system():
    return Actor.system()


@pytest.fixture
def gateway():
    from delivery.payment import get_gateway

    return get_gateway()


@pytest.fixture
def notifier():
    from delivery.notification import get_notifier

    return get_notifier()


def food_order_kwargs(**overrides):
    """Arguments for ``operations.create_order``: two burgers and a shake, PHP 1,000.00 total."""
    kwargs = {
        "order_type": "food",
        "customer_id": "cust-001",
        "restaurant_id": "rest-001",
        "items": [
            {"item_id": "item-burger", "name": "Burger", "quantity": 2, "unit_price": 350.0},
            {"item_id": "item-shake", "name": "Shake", "quantity": 1, "unit_price": 200.0},
        ],
        "subtotal": 900.0,
        "delivery_fee": 80.0,
        "service_fee": 20.0,
        "total": 1000.0,
        "pickup_location": MANILA,
        "dropoff_location": MAKATI,
    }
    kwargs.update(overrides)
    return kwargs


@pytest.fixture
def place_order():
    from delivery import operations

    def _place(**overrides):
        return operations.create_order(**food_order_kwargs(**overrides))

    return _place


@pytest.fixture
def advance(vendor):
    """Walk an order forward through the vendor-owned statuses."""
    from delivery import operations

    def _advance(order, *statuses):
        for status in statuses:
            order = operations.transition_status(str(order.id), status, vendor)
        return order

    return _advance


@pytest.fixture
def online_rider():
    """Register a verified rider and put them online near the Manila pickup."""
    from delivery import operations

    def _rider(user_id, offset_km=0.5, **profile):
        profile.setdefault("is_verified", True)
        operations.register_rider(user_id, f"Rider {user_id}", **profile)
        # 0.009 degrees of latitude is roughly one kilometre
        return operations.rider_online(
            user_id, MANILA["latitude"] + offset_km * 0.009, MANILA["longitude"]
        )

    return _rider


@pytest.fixture
def pickup():
    return dict(MANILA)


@pytest.fixture
def order_kwargs():
    return food_order_kwargs


@pytest.fixture
def stock():
    """Track stock for the burger and the shake at rest-001."""
    from delivery import operations

    def _stock(burgers=10, shakes=10):
        operations.register_inventory_item("item-burger", "rest-001", "Burger", price=350.0, stock_quantity=burgers)
        operations.register_inventory_item("item-shake", "rest-001", "Shake", price=200.0, stock_quantity=shakes)

    return _stock


@pytest.fixture
def paid_order(place_order):
    """An online order whose payment the gateway has confirmed."""
    from delivery import operations

    def _paid(reference="pay-ref-001", **overrides):
        place_order(payment_method="online", payment_reference=reference, **overrides)
        return operations.payment_confirmed(reference)

    return _paid
