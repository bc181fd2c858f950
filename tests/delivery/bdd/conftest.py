"""Shared BDD fixtures and step definitions for the Delivery domain."""

import pytest
from protean.exceptions import ValidationError
from pytest_bdd import given, parsers, then

from delivery import operations
from delivery.errors import DeliveryError

# Who walks the order into each status
_WALK = [
    ("confirmed", "vendor"),
    ("preparing", "vendor"),
    ("ready", "vendor"),
    ("picked_up", "admin"),
    ("in_transit", "admin"),
    ("delivered", "admin"),
]


@pytest.fixture()
def error():
    """Container for the failure a When step captured."""
    return {"exc": None}


@pytest.fixture()
def actors(customer, vendor, admin):
    return {"customer": customer, "vendor": vendor, "admin": admin}


@pytest.fixture()
def attempt(error):
    """Run an action and keep a domain failure for the Then steps to inspect."""

    def _attempt(action, *args, **kwargs):
        try:
            return action(*args, **kwargs)
        except (ValidationError, DeliveryError) as exc:
            error["exc"] = exc
            return None

    return _attempt


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given("a cash food order was placed", target_fixture="order")
def _(place_order):
    return place_order()


@given("an online food order was paid", target_fixture="order")
def _(paid_order):
    return paid_order()


@given(parsers.cfparse('the order has reached "{status}"'), target_fixture="order")
def _(order, status, actors):
    current = operations.get_order(str(order.id)).status
    if status == current:
        return order
    walked = [step for step, role in _WALK]
    start = walked.index(current) + 1 if current in walked else 0
    for next_status, role in _WALK[start:]:
        order = operations.transition_status(str(order.id), next_status, actors[role])
        if next_status == status:
            return order
    raise AssertionError(f"No walk reaches {status}")


@given(parsers.cfparse("the burger stock is {count:d}"))
def _(stock, count):
    stock(burgers=count)


@given(parsers.cfparse('rider "{rider_id}" is online {distance:g} km from the restaurant'))
def _(online_rider, rider_id, distance):
    online_rider(rider_id, offset_km=distance)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def _(order, status):
    assert operations.get_order(str(order.id)).status == status


@then(parsers.cfparse('the order payment status is "{status}"'))
def _(order, status):
    assert operations.get_order(str(order.id)).payment_status == status


@then("the action fails with a validation error")
def _(error):
    assert error["exc"] is not None, "Expected a validation error but none was raised"
    assert isinstance(error["exc"], ValidationError)


@then(parsers.cfparse('the action is refused as "{kind}"'))
def _(error, kind):
    assert isinstance(error["exc"], DeliveryError), f"Expected a {kind} refusal, got {error['exc']!r}"
    assert error["exc"].kind == kind


@then(parsers.cfparse("the burger stock is {count:d}"))
def _(count):
    assert operations.get_inventory_item("item-burger").stock_quantity == count


@then(parsers.cfparse('a "{event}" notification is sent'))
def _(notifier, event):
    assert event in notifier.events(), f"Sent: {notifier.events()}"
