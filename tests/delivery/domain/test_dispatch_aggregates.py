"""Tests for the Rider, RiderAssignmentOffer and DispatchRequest aggregates."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError

from delivery.dispatch.offer import OfferExtended, OfferResolved, OfferStatus, RiderAssignmentOffer
from delivery.dispatch.request import DispatchRequest, DispatchRequestStatus
from delivery.dispatch.rider import Rider, RiderWentOnline
from delivery.errors import AlreadyResolved, InvalidState

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _make_offer(**overrides):
    kwargs = {"order_id": "ord-001", "rider_id": "rider-001", "attempt": 1, "now": NOW}
    kwargs.update(overrides)
    return RiderAssignmentOffer.extend(**kwargs)


def _make_rider(**overrides):
    kwargs = {"user_id": "rider-001", "name": "Juan", "is_verified": True}
    kwargs.update(overrides)
    return Rider.register(**kwargs)


class TestRider:
    def test_identity_is_user_id(self):
        rider = _make_rider()
        assert rider.id == "rider-001"
        assert rider.max_active_orders == 3

    def test_go_online_sets_location(self):
        rider = _make_rider()
        rider.go_online(14.6, 121.0)
        assert rider.is_online
        assert rider.location.latitude == 14.6
        assert rider.last_seen_at is not None
        assert isinstance(rider._events[-1], RiderWentOnline)

    def test_unverified_rider_stays_offline(self):
        rider = _make_rider(is_verified=False)
        with pytest.raises(ValidationError):
            rider.go_online(14.6, 121.0)
        assert not rider.is_online

    def test_capacity(self):
        rider = _make_rider(max_active_orders=2)
        rider.take_order()
        assert rider.has_capacity
        assert rider.spare_capacity() == 1
        rider.take_order()
        assert not rider.has_capacity
        with pytest.raises(ValidationError):
            rider.take_order()

    def test_batch_take_checks_whole_batch(self):
        rider = _make_rider(max_active_orders=2)
        with pytest.raises(ValidationError):
            rider.take_order(count=3)
        assert rider.active_orders == 0

    def test_finish_order_never_negative(self):
        rider = _make_rider()
        rider.finish_order()
        assert rider.active_orders == 0


class TestOffer:
    def test_offer_expires_after_ttl(self):
        offer = _make_offer()
        assert offer.status == OfferStatus.OFFERED.value
        assert offer.expires_at == NOW + timedelta(seconds=30)
        assert isinstance(offer._events[0], OfferExtended)

    def test_custom_ttl(self):
        assert _make_offer(ttl_seconds=90).expires_at == NOW + timedelta(seconds=90)

    def test_overdue_from_the_expiry_instant(self):
        offer = _make_offer()
        assert not offer.is_overdue(NOW + timedelta(seconds=29))
        assert offer.is_overdue(NOW + timedelta(seconds=30))

    def test_accept(self):
        offer = _make_offer()
        offer.accept(NOW + timedelta(seconds=5))
        assert offer.status == OfferStatus.ACCEPTED.value
        assert offer.responded_at == NOW + timedelta(seconds=5)
        assert not offer.is_outstanding

    def test_reject_records_reason(self):
        offer = _make_offer()
        offer.reject("too far", at=NOW)
        assert offer.status == OfferStatus.REJECTED.value
        assert offer.reasons() == ["too far"]

    def test_reject_default_reason(self):
        offer = _make_offer()
        offer.reject(at=NOW)
        assert offer.reasons() == ["declined"]

    def test_expire(self):
        offer = _make_offer()
        offer.expire(NOW + timedelta(seconds=30))
        assert offer.status == OfferStatus.EXPIRED.value
        assert offer.reasons() == ["timeout"]
        assert isinstance(offer._events[-1], OfferResolved)

    def test_resolved_offer_cannot_resolve_again(self):
        offer = _make_offer()
        offer.expire(NOW + timedelta(seconds=30))
        with pytest.raises(AlreadyResolved):
            offer.accept(NOW + timedelta(seconds=31))

    def test_resolved_offer_is_never_overdue(self):
        offer = _make_offer()
        offer.accept(NOW)
        assert not offer.is_overdue(NOW + timedelta(hours=1))


class TestDispatchRequest:
    def test_open_request(self):
        request = DispatchRequest.open("ord-001")
        assert request.id == "ord-001"
        assert request.status == DispatchRequestStatus.SEARCHING.value
        assert request.attempts == 0
        assert request.excluded() == set()

    def test_record_offer_counts_attempts(self):
        request = DispatchRequest.open("ord-001")
        assert request.record_offer("offer-1") == 1
        assert request.status == DispatchRequestStatus.OFFERED.value
        assert request.current_offer_id == "offer-1"

    def test_lapsed_offer_excludes_rider(self):
        request = DispatchRequest.open("ord-001")
        request.record_offer("offer-1")
        request.offer_lapsed("rider-001")
        assert request.excluded() == {"rider-001"}
        assert request.current_offer_id is None
        assert request.status == DispatchRequestStatus.SEARCHING.value

    def test_attempts_exhausted(self):
        request = DispatchRequest.open("ord-001", max_attempts=2)
        request.record_offer("offer-1")
        assert not request.attempts_exhausted
        request.record_offer("offer-2")
        assert request.attempts_exhausted

    def test_retry_resets_budget(self):
        request = DispatchRequest.open("ord-001", max_attempts=1)
        request.record_offer("offer-1")
        request.offer_lapsed("rider-001")
        request.mark_needs_manual_dispatch()
        request.retry()
        assert request.attempts == 0
        assert request.excluded() == set()
        assert request.status == DispatchRequestStatus.SEARCHING.value

    def test_retry_only_from_manual_dispatch(self):
        request = DispatchRequest.open("ord-001")
        with pytest.raises(InvalidState):
            request.retry()

    def test_closed_request_takes_no_offers(self):
        request = DispatchRequest.open("ord-001")
        request.mark_assigned("rider-001")
        assert request.is_closed
        with pytest.raises(InvalidState):
            request.record_offer("offer-2")

    def test_cancel(self):
        request = DispatchRequest.open("ord-001")
        request.record_offer("offer-1")
        request.cancel()
        assert request.status == DispatchRequestStatus.CANCELLED.value
        assert request.current_offer_id is None
