"""Threaded tests for the single-writer guarantees: contended stock and racing offer settlement."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from protean.exceptions import ValidationError

from delivery import operations
from delivery.dispatch.dispatcher import load_offer, load_rider
from delivery.domain import delivery
from delivery.errors import AlreadyResolved
from delivery.shared.actor import Actor
from delivery.shared.clock import utcnow

NEAR = Actor(id="rider-near", role="rider")


def _race(*calls):
    """Run every call on its own thread, released together. Returns each call's result or exception."""
    barrier = threading.Barrier(len(calls))

    def _run(call):
        with delivery.domain_context():
            barrier.wait()
            try:
                return call()
            except (ValidationError, AlreadyResolved) as exc:
                return exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_run, calls))


class TestContendedStock:
    def test_only_one_order_gets_the_last_burgers(self, stock, order_kwargs):
        stock(burgers=2, shakes=10)

        results = _race(*[lambda: operations.create_order(**order_kwargs()) for _ in range(4)])

        placed = [result for result in results if not isinstance(result, Exception)]
        refused = [result for result in results if isinstance(result, ValidationError)]
        assert len(placed) == 1
        assert len(refused) == 3
        assert operations.get_inventory_item("item-burger").stock_quantity == 0
        assert operations.get_inventory_item("item-shake").stock_quantity == 9

    def test_cancellations_restore_every_unit(self, stock, place_order, customer):
        stock(burgers=6, shakes=6)
        orders = [place_order() for _ in range(3)]

        cancellations = [
            lambda order=order: operations.cancel_order(str(order.id), "Changed my mind", customer) for order in orders
        ]
        _race(*cancellations)

        assert operations.get_inventory_item("item-burger").stock_quantity == 6
        assert operations.get_inventory_item("item-shake").stock_quantity == 6


class TestOfferSettlementRace:
    @pytest.fixture
    def open_offer(self, online_rider, place_order, advance):
        online_rider("rider-near", offset_km=0.5)
        online_rider("rider-far", offset_km=3.0)
        order = advance(place_order(), "confirmed")
        now = utcnow()
        return str(order.id), operations.offer_to_rider(str(order.id), as_of=now), now

    def test_response_and_sweep_settle_the_offer_once(self, open_offer):
        order_id, outcome, now = open_offer

        response, expired_count = _race(
            lambda: operations.record_rider_response(
                outcome.offer_id, True, NEAR, responded_at=now + timedelta(seconds=10)
            ),
            lambda: operations.expire_overdue_offers(now + timedelta(seconds=31)),
        )

        offer = load_offer(outcome.offer_id)
        order = operations.get_order(order_id)
        if isinstance(response, AlreadyResolved):
            assert expired_count == 1
            assert offer.status == "expired"
            assert order.rider_id != "rider-near"
        else:
            assert expired_count == 0
            assert offer.status == "accepted"
            assert order.rider_id == "rider-near"
            assert load_rider("rider-near").active_orders == 1

    def test_two_responses_settle_the_offer_once(self, open_offer):
        _, outcome, now = open_offer
        at = now + timedelta(seconds=5)

        results = _race(
            lambda: operations.record_rider_response(outcome.offer_id, True, NEAR, responded_at=at),
            lambda: operations.record_rider_response(outcome.offer_id, False, NEAR, responded_at=at),
        )

        assert sum(isinstance(result, AlreadyResolved) for result in results) == 1
        assert load_offer(outcome.offer_id).status in {"accepted", "rejected"}
