"""Application tests for rider dispatch: offers, timeouts, responses, batches and manual assignment."""

from datetime import timedelta

import pytest
from protean.exceptions import ValidationError

from delivery import operations, settings
from delivery.dispatch.dispatcher import find_request, load_offer, load_rider, offers_for_order
from delivery.dispatch.monitor import OfferExpiryMonitor
from delivery.domain import delivery
from delivery.errors import AlreadyResolved, Forbidden, InvalidState, NotFound
from delivery.shared.actor import Actor
from delivery.shared.clock import utcnow

NEAR = Actor(id="rider-near", role="rider")
FAR = Actor(id="rider-far", role="rider")


@pytest.fixture
def riders(online_rider):
    online_rider("rider-near", offset_km=0.5)
    online_rider("rider-far", offset_km=3.0)


@pytest.fixture
def confirmed_order(place_order, advance):
    def _confirmed(**overrides):
        return advance(place_order(**overrides), "confirmed")

    return _confirmed


def _statuses(order_id):
    return [offer.status for offer in offers_for_order(order_id)]


class TestOfferToRider:
    def test_best_candidate_offered(self, riders, confirmed_order, notifier):
        order = confirmed_order()
        now = utcnow()
        outcome = operations.offer_to_rider(str(order.id), as_of=now)

        assert outcome.status == "offered"
        assert outcome.rider_id == "rider-near"
        assert outcome.attempts == 1
        assert outcome.expires_at == now + timedelta(seconds=30)
        assert operations.get_order(str(order.id)).dispatch_status == "offering"
        assert "dispatch.offer" in notifier.events()

    def test_offer_records_score_and_distance(self, riders, confirmed_order):
        order = confirmed_order()
        outcome = operations.offer_to_rider(str(order.id))
        offer = load_offer(outcome.offer_id)
        assert offer.distance_km == pytest.approx(0.5, abs=0.01)
        assert 0 < offer.score <= 100

    def test_one_offer_at_a_time(self, riders, confirmed_order):
        order = confirmed_order()
        first = operations.offer_to_rider(str(order.id))
        second = operations.offer_to_rider(str(order.id))
        assert second.offer_id == first.offer_id
        assert _statuses(str(order.id)) == ["offered"]

    def test_no_riders_needs_manual_dispatch(self, confirmed_order, notifier):
        order = confirmed_order()
        outcome = operations.offer_to_rider(str(order.id))
        assert outcome.status == "needs_manual_dispatch"
        assert outcome.offer_id is None
        assert operations.get_order(str(order.id)).dispatch_status == "needs_manual_dispatch"
        assert "dispatch.manual_required" in notifier.events()

    def test_riders_out_of_range_ignored(self, online_rider, confirmed_order):
        online_rider("rider-provincial", offset_km=25.0)
        order = confirmed_order()
        assert operations.offer_to_rider(str(order.id)).status == "needs_manual_dispatch"

    def test_offline_rider_ignored(self, online_rider, confirmed_order):
        online_rider("rider-near", offset_km=0.5)
        operations.rider_offline("rider-near")
        order = confirmed_order()
        assert operations.offer_to_rider(str(order.id)).status == "needs_manual_dispatch"

    def test_rider_with_open_offer_not_offered_another(self, online_rider, confirmed_order):
        online_rider("rider-near", offset_km=0.5)
        first = confirmed_order()
        second = confirmed_order()
        assert operations.offer_to_rider(str(first.id)).rider_id == "rider-near"
        assert operations.offer_to_rider(str(second.id)).status == "needs_manual_dispatch"

    def test_pending_order_cannot_be_dispatched(self, riders, place_order):
        order = place_order()
        with pytest.raises(InvalidState):
            operations.offer_to_rider(str(order.id))

    def test_ready_order_dispatched_automatically(self, riders, place_order, advance):
        order = advance(place_order(), "confirmed", "preparing", "ready")
        stored = operations.get_order(str(order.id))
        assert stored.dispatch_status == "offering"
        assert _statuses(str(order.id)) == ["offered"]


class TestOfferTimeout:
    def test_expired_offer_moves_to_next_candidate(self, riders, confirmed_order):
        order = confirmed_order()
        now = utcnow()
        first = operations.offer_to_rider(str(order.id), as_of=now)

        assert operations.expire_overdue_offers(now + timedelta(seconds=31)) == 1

        expired = load_offer(first.offer_id)
        assert expired.status == "expired"
        assert expired.reasons() == ["timeout"]
        offers = offers_for_order(str(order.id))
        assert [(offer.rider_id, offer.status) for offer in offers] == [
            ("rider-near", "expired"),
            ("rider-far", "offered"),
        ]
        request = find_request(str(order.id))
        assert request.attempts == 2
        assert request.excluded() == {"rider-near"}

    def test_offer_alive_until_deadline(self, riders, confirmed_order):
        order = confirmed_order()
        now = utcnow()
        operations.offer_to_rider(str(order.id), as_of=now)
        assert operations.expire_overdue_offers(now + timedelta(seconds=29)) == 0
        assert _statuses(str(order.id)) == ["offered"]

    def test_response_at_deadline_loses(self, riders, confirmed_order):
        order = confirmed_order()
        now = utcnow()
        outcome = operations.offer_to_rider(str(order.id), as_of=now)

        with pytest.raises(AlreadyResolved):
            operations.record_rider_response(
                outcome.offer_id, True, NEAR, responded_at=now + timedelta(seconds=30)
            )
        assert load_offer(outcome.offer_id).status == "expired"
        stored = operations.get_order(str(order.id))
        assert stored.rider_id is None
        assert _statuses(str(order.id)) == ["expired", "offered"]

    def test_redispatch_clears_lapsed_offer(self, riders, confirmed_order):
        order = confirmed_order()
        now = utcnow()
        operations.offer_to_rider(str(order.id), as_of=now)
        outcome = operations.offer_to_rider(str(order.id), as_of=now + timedelta(seconds=45))
        assert outcome.rider_id == "rider-far"

    def test_every_candidate_timing_out_needs_manual_dispatch(self, riders, confirmed_order):
        order = confirmed_order()
        now = utcnow()
        operations.offer_to_rider(str(order.id), as_of=now)
        operations.expire_overdue_offers(now + timedelta(seconds=31))
        operations.expire_overdue_offers(now + timedelta(seconds=62))
        assert find_request(str(order.id)).status == "needs_manual_dispatch"
        assert operations.get_order(str(order.id)).dispatch_status == "needs_manual_dispatch"


class TestRiderResponse:
    def test_accept_assigns_rider(self, riders, confirmed_order, notifier):
        order = confirmed_order()
        offer = operations.offer_to_rider(str(order.id))
        outcome = operations.record_rider_response(offer.offer_id, True, NEAR)

        assert outcome.status == "assigned"
        assert outcome.rider_id == "rider-near"
        stored = operations.get_order(str(order.id))
        assert stored.rider_id == "rider-near"
        assert stored.dispatch_status == "assigned"
        assert load_rider("rider-near").active_orders == 1
        assert "order.rider_assigned" in notifier.events()

    def test_exactly_one_accepted_offer(self, riders, confirmed_order):
        order = confirmed_order()
        offer = operations.offer_to_rider(str(order.id))
        operations.record_rider_response(offer.offer_id, True, NEAR)
        with pytest.raises(AlreadyResolved):
            operations.record_rider_response(offer.offer_id, True, NEAR)
        assert _statuses(str(order.id)) == ["accepted"]

    def test_assigned_order_not_offered_again(self, riders, confirmed_order):
        order = confirmed_order()
        offer = operations.offer_to_rider(str(order.id))
        operations.record_rider_response(offer.offer_id, True, NEAR)
        with pytest.raises(InvalidState):
            operations.offer_to_rider(str(order.id))

    def test_other_rider_cannot_answer(self, riders, confirmed_order):
        order = confirmed_order()
        offer = operations.offer_to_rider(str(order.id))
        with pytest.raises(Forbidden):
            operations.record_rider_response(offer.offer_id, True, FAR)

    def test_vendor_cannot_answer(self, riders, confirmed_order, vendor):
        order = confirmed_order()
        offer = operations.offer_to_rider(str(order.id))
        with pytest.raises(Forbidden):
            operations.record_rider_response(offer.offer_id, True, vendor)

    def test_reject_moves_to_next_candidate(self, riders, confirmed_order):
        order = confirmed_order()
        offer = operations.offer_to_rider(str(order.id))
        outcome = operations.record_rider_response(offer.offer_id, False, NEAR, reason="too far")

        assert outcome.status == "offered"
        assert outcome.rider_id == "rider-far"
        assert outcome.attempts == 2
        rejected = load_offer(offer.offer_id)
        assert rejected.status == "rejected"
        assert rejected.reasons() == ["too far"]

    def test_rejected_by_everyone(self, riders, confirmed_order):
        order = confirmed_order()
        first = operations.offer_to_rider(str(order.id))
        second = operations.record_rider_response(first.offer_id, False, NEAR)
        outcome = operations.record_rider_response(second.offer_id, False, FAR)
        assert outcome.status == "needs_manual_dispatch"

    def test_attempt_budget(self, riders, confirmed_order, monkeypatch):
        monkeypatch.setattr(settings, "MAX_DISPATCH_ATTEMPTS", 1)
        order = confirmed_order()
        first = operations.offer_to_rider(str(order.id))
        outcome = operations.record_rider_response(first.offer_id, False, NEAR)
        assert outcome.status == "needs_manual_dispatch"
        assert outcome.attempts == 1

    def test_admin_retry_reopens_dispatch(self, riders, confirmed_order, monkeypatch):
        monkeypatch.setattr(settings, "MAX_DISPATCH_ATTEMPTS", 1)
        order = confirmed_order()
        first = operations.offer_to_rider(str(order.id))
        operations.record_rider_response(first.offer_id, False, NEAR)

        outcome = operations.offer_to_rider(str(order.id))
        assert outcome.status == "offered"
        assert outcome.attempts == 1
        assert outcome.rider_id == "rider-near"


class TestBatchOffers:
    def _two_orders(self, confirmed_order):
        return [str(confirmed_order().id), str(confirmed_order().id)]

    def test_batch_offered_to_one_rider(self, riders, confirmed_order):
        order_ids = self._two_orders(confirmed_order)
        outcomes = operations.offer_batch(order_ids, "rider-near")

        assert [outcome.rider_id for outcome in outcomes] == ["rider-near", "rider-near"]
        offers = [load_offer(outcome.offer_id) for outcome in outcomes]
        assert offers[0].batch_id is not None
        assert offers[0].batch_id == offers[1].batch_id

    def test_accepting_one_offer_takes_the_batch(self, riders, confirmed_order):
        order_ids = self._two_orders(confirmed_order)
        outcomes = operations.offer_batch(order_ids, "rider-near")
        operations.record_rider_response(outcomes[1].offer_id, True, NEAR)

        for order_id in order_ids:
            assert operations.get_order(order_id).rider_id == "rider-near"
            assert _statuses(order_id) == ["accepted"]
        assert load_rider("rider-near").active_orders == 2

    def test_rejecting_releases_the_batch(self, riders, confirmed_order):
        order_ids = self._two_orders(confirmed_order)
        outcomes = operations.offer_batch(order_ids, "rider-near")
        outcome = operations.record_rider_response(outcomes[0].offer_id, False, NEAR)

        assert outcome.rider_id == "rider-far"
        for order_id in order_ids:
            assert offers_for_order(order_id)[0].status == "rejected"
            assert "rider-near" in find_request(order_id).excluded()

    def test_batch_times_out_together(self, riders, confirmed_order):
        order_ids = self._two_orders(confirmed_order)
        now = utcnow()
        operations.offer_batch(order_ids, "rider-near", as_of=now)
        assert operations.expire_overdue_offers(now + timedelta(seconds=31)) == 2
        for order_id in order_ids:
            assert offers_for_order(order_id)[0].status == "expired"

    def test_batch_respects_capacity(self, online_rider, confirmed_order):
        online_rider("rider-near", offset_km=0.5, max_active_orders=1)
        order_ids = self._two_orders(confirmed_order)
        with pytest.raises(InvalidState):
            operations.offer_batch(order_ids, "rider-near")
        for order_id in order_ids:
            assert offers_for_order(order_id) == []

    def test_order_with_open_offer_cannot_join_batch(self, riders, confirmed_order):
        order_ids = self._two_orders(confirmed_order)
        operations.offer_to_rider(order_ids[0])
        with pytest.raises(InvalidState):
            operations.offer_batch(order_ids, "rider-far")


class TestManualAssignment:
    def test_admin_assigns_rider(self, riders, confirmed_order, admin):
        order = confirmed_order()
        outcome = operations.manual_assign(str(order.id), "rider-far", admin)
        assert outcome.status == "assigned"
        assert operations.get_order(str(order.id)).rider_id == "rider-far"
        assert load_rider("rider-far").active_orders == 1

    def test_manual_assignment_supersedes_offer(self, riders, confirmed_order, admin):
        order = confirmed_order()
        offer = operations.offer_to_rider(str(order.id))
        operations.manual_assign(str(order.id), "rider-far", admin)

        superseded = load_offer(offer.offer_id)
        assert superseded.status == "expired"
        assert superseded.reasons() == ["manual_assignment"]
        with pytest.raises(AlreadyResolved):
            operations.record_rider_response(offer.offer_id, True, NEAR)

    def test_after_manual_dispatch_flag(self, confirmed_order, admin):
        order = confirmed_order()
        operations.offer_to_rider(str(order.id))
        operations.register_rider("rider-late", "Late Rider", is_verified=True)
        outcome = operations.manual_assign(str(order.id), "rider-late", admin)
        assert outcome.status == "assigned"

    def test_only_admins(self, riders, confirmed_order, vendor):
        order = confirmed_order()
        with pytest.raises(Forbidden):
            operations.manual_assign(str(order.id), "rider-far", vendor)

    def test_unverified_rider_refused(self, confirmed_order, admin):
        order = confirmed_order()
        operations.register_rider("rider-new", "New Rider")
        with pytest.raises(InvalidState):
            operations.manual_assign(str(order.id), "rider-new", admin)

    def test_already_assigned(self, riders, confirmed_order, admin):
        order = confirmed_order()
        operations.manual_assign(str(order.id), "rider-far", admin)
        with pytest.raises(InvalidState):
            operations.manual_assign(str(order.id), "rider-near", admin)


class TestRiderLoad:
    def _assigned(self, confirmed_order):
        order = confirmed_order()
        offer = operations.offer_to_rider(str(order.id))
        operations.record_rider_response(offer.offer_id, True, NEAR)
        return str(order.id)

    def test_delivery_releases_rider(self, riders, confirmed_order, vendor):
        order_id = self._assigned(confirmed_order)
        operations.transition_status(order_id, "preparing", vendor)
        operations.transition_status(order_id, "ready", vendor)
        for status in ("picked_up", "in_transit", "delivered"):
            operations.transition_status(order_id, status, NEAR)
        assert load_rider("rider-near").active_orders == 0

    def test_cancellation_releases_rider(self, riders, confirmed_order, customer):
        order_id = self._assigned(confirmed_order)
        operations.cancel_order(order_id, "Changed my mind", customer)
        assert load_rider("rider-near").active_orders == 0

    def test_cancellation_closes_open_offer(self, riders, confirmed_order, customer):
        order = confirmed_order()
        offer = operations.offer_to_rider(str(order.id))
        operations.cancel_order(str(order.id), "Changed my mind", customer)

        closed = load_offer(offer.offer_id)
        assert closed.status == "expired"
        assert closed.reasons() == ["order_cancelled"]
        assert find_request(str(order.id)).status == "cancelled"


class TestRiderRegistry:
    def test_register(self):
        rider = operations.register_rider("rider-001", "Juan", vehicle_type="motorcycle")
        assert rider.id == "rider-001"
        assert not rider.is_verified
        assert not rider.is_online

    def test_register_twice(self):
        operations.register_rider("rider-001", "Juan")
        with pytest.raises(ValidationError):
            operations.register_rider("rider-001", "Juan")

    def test_verify_then_online(self):
        operations.register_rider("rider-001", "Juan")
        operations.verify_rider("rider-001")
        rider = operations.rider_online("rider-001", 14.6, 121.0)
        assert rider.is_online
        assert rider.location.latitude == 14.6

    def test_location_update(self, online_rider):
        online_rider("rider-001")
        rider = operations.update_rider_location("rider-001", 14.55, 121.02)
        assert rider.location.longitude == 121.02

    def test_offline(self, online_rider):
        online_rider("rider-001")
        assert not operations.rider_offline("rider-001").is_online

    def test_unverified_rider_cannot_go_online(self):
        operations.register_rider("rider-001", "Juan")
        with pytest.raises(ValidationError):
            operations.rider_online("rider-001", 14.6, 121.0)

    def test_unknown_rider(self):
        with pytest.raises(NotFound):
            operations.verify_rider("rider-ghost")


class TestOfferExpiryMonitor:
    def test_sweep_times_out_lapsed_offers(self, riders, confirmed_order):
        order = confirmed_order()
        operations.offer_to_rider(str(order.id), as_of=utcnow() - timedelta(minutes=5))

        assert OfferExpiryMonitor(delivery).sweep_once() == 1
        assert offers_for_order(str(order.id))[0].status == "expired"

    def test_start_and_stop(self):
        monitor = OfferExpiryMonitor(delivery, interval_seconds=60)
        monitor.start()
        assert monitor.is_alive()
        monitor.stop()
        assert not monitor.is_alive()
