"""Application tests for SLA event recording and the overdue scan."""

from datetime import timedelta

import pytest
from protean.exceptions import ValidationError

from delivery import operations
from delivery.errors import NotFound
from delivery.shared.clock import utcnow
from delivery.sla.recording import find_tracking


class TestRecordSlaEvent:
    def test_late_vendor_acceptance_breaches(self, place_order, notifier):
        order = operations.get_order(str(place_order().id))
        record = operations.record_sla_event(
            str(order.id), "vendor_accepted", timestamp=order.created_at + timedelta(minutes=10)
        )

        assert record["breached"] is True
        assert record["elapsed_seconds"] == pytest.approx(600.0)
        assert operations.get_breaches(str(order.id)) == {"vendor_accepted"}
        assert "sla.breached" in notifier.events()

    def test_first_report_wins(self, place_order):
        order = operations.get_order(str(place_order().id))
        first = operations.record_sla_event(
            str(order.id), "vendor_accepted", timestamp=order.created_at + timedelta(minutes=1)
        )
        second = operations.record_sla_event(
            str(order.id), "vendor_accepted", timestamp=order.created_at + timedelta(minutes=20)
        )
        assert second["elapsed_seconds"] == first["elapsed_seconds"] == pytest.approx(60.0)
        assert operations.get_breaches(str(order.id)) == set()

    def test_early_report_never_blocks_status_change(self, place_order, advance):
        order = place_order()
        operations.record_sla_event(str(order.id), "vendor_accepted", timestamp=utcnow() + timedelta(hours=1))

        order = advance(order, "confirmed", "preparing", "ready")

        assert order.status == "ready"
        assert find_tracking(str(order.id)).preparation_done.elapsed_seconds == 0.0

    def test_unknown_event_kind(self, place_order):
        order = place_order()
        with pytest.raises(ValidationError) as exc:
            operations.record_sla_event(str(order.id), "teleported")
        assert "event_kind" in exc.value.messages

    def test_unknown_order(self):
        with pytest.raises(NotFound):
            operations.record_sla_event("missing", "vendor_accepted")
        with pytest.raises(NotFound):
            operations.get_breaches("missing")


class TestOverdueScan:
    def test_unaccepted_order_is_overdue(self, place_order):
        order = place_order()
        overdue = operations.scan_overdue_sla(as_of=utcnow() + timedelta(minutes=10))
        assert [(item.order_id, item.milestone) for item in overdue] == [(str(order.id), "vendor_accepted")]
        assert overdue[0].overdue_seconds > 0

    def test_nothing_overdue_yet(self, place_order):
        place_order()
        assert operations.scan_overdue_sla() == []

    def test_next_milestone_is_watched(self, place_order, advance):
        order = advance(place_order(), "confirmed")
        overdue = operations.scan_overdue_sla(as_of=utcnow() + timedelta(minutes=30))
        assert [item.milestone for item in overdue if item.order_id == str(order.id)] == ["preparation_done"]

    def test_cancelled_orders_are_not_watched(self, place_order, customer):
        order = place_order()
        operations.cancel_order(str(order.id), "Changed my mind", customer)
        assert operations.scan_overdue_sla(as_of=utcnow() + timedelta(hours=2)) == []
