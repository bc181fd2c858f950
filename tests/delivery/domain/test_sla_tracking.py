"""Tests for SLA milestone tracking."""

from datetime import UTC, datetime, timedelta

import pytest
from protean.exceptions import ValidationError

from delivery.sla.budgets import Milestone, budgets_for, delivery_budget_seconds
from delivery.sla.tracking import OrderSlaTracking, SlaBreachDetected

CREATED = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _tracking(order_type="food"):
    return OrderSlaTracking.start("ord-001", order_type, CREATED)


def _at(minutes):
    return CREATED + timedelta(minutes=minutes)


class TestBudgets:
    def test_food_budgets(self):
        budgets = budgets_for("food")
        assert budgets[Milestone.VENDOR_ACCEPTED] == 300
        assert budgets[Milestone.PREPARATION_DONE] == 1200
        assert budgets[Milestone.PICKED_UP] == 600
        assert budgets[Milestone.DELIVERED] == 2700

    def test_errands_get_an_hour(self):
        assert delivery_budget_seconds("pabili") == 3600
        assert delivery_budget_seconds("parcel") == 3600

    def test_tracking_copies_budgets(self):
        tracking = _tracking("pabayad")
        assert tracking.delivery_budget == 3600
        assert tracking.budget_for(Milestone.VENDOR_ACCEPTED) == 300


class TestMilestoneRecording:
    def test_on_time_acceptance(self):
        tracking = _tracking()
        record = tracking.record(Milestone.VENDOR_ACCEPTED, _at(4))
        assert record.elapsed_seconds == 240
        assert not record.breached
        assert tracking.breaches() == set()

    def test_late_acceptance_breaches(self):
        tracking = _tracking()
        record = tracking.record(Milestone.VENDOR_ACCEPTED, _at(6))
        assert record.breached
        assert tracking.breaches() == {"vendor_accepted"}

    def test_exactly_on_budget_is_not_a_breach(self):
        tracking = _tracking()
        assert not tracking.record(Milestone.VENDOR_ACCEPTED, _at(5)).breached

    def test_elapsed_measured_from_previous_milestone(self):
        tracking = _tracking()
        tracking.record(Milestone.VENDOR_ACCEPTED, _at(4))
        record = tracking.record(Milestone.PREPARATION_DONE, _at(30))
        assert record.elapsed_seconds == 26 * 60
        assert record.breached

    def test_skipped_milestone_measures_from_creation(self):
        tracking = _tracking()
        record = tracking.record(Milestone.PREPARATION_DONE, _at(15))
        assert record.elapsed_seconds == 15 * 60

    def test_delivery_judged_on_total_time(self):
        tracking = _tracking()
        tracking.record(Milestone.VENDOR_ACCEPTED, _at(2))
        tracking.record(Milestone.PREPARATION_DONE, _at(20))
        tracking.record(Milestone.PICKED_UP, _at(25))
        record = tracking.record(Milestone.DELIVERED, _at(50))
        assert record.elapsed_seconds == 25 * 60
        assert record.breached
        assert tracking.total_elapsed_seconds == 50 * 60

    def test_delivery_within_total_budget(self):
        tracking = _tracking()
        tracking.record(Milestone.PICKED_UP, _at(30))
        assert not tracking.record(Milestone.DELIVERED, _at(44)).breached

    def test_first_write_wins(self):
        tracking = _tracking()
        first = tracking.record(Milestone.VENDOR_ACCEPTED, _at(1))
        second = tracking.record(Milestone.VENDOR_ACCEPTED, _at(10))
        assert second == first
        assert tracking.breaches() == set()

    def test_milestone_cannot_precede_previous(self):
        tracking = _tracking()
        tracking.record(Milestone.VENDOR_ACCEPTED, _at(4))
        with pytest.raises(ValidationError):
            tracking.record(Milestone.PREPARATION_DONE, _at(3))

    def test_clamped_milestone_counts_zero_elapsed(self):
        tracking = _tracking()
        tracking.record(Milestone.VENDOR_ACCEPTED, _at(4))
        record = tracking.record(Milestone.PREPARATION_DONE, _at(3), clamp=True)
        assert record.elapsed_seconds == 0.0
        assert not record.breached

    def test_breach_raises_event(self):
        tracking = _tracking()
        tracking.record(Milestone.VENDOR_ACCEPTED, _at(9))
        events = [event for event in tracking._events if isinstance(event, SlaBreachDetected)]
        assert len(events) == 1
        assert events[0].milestone == "vendor_accepted"
        assert events[0].budget_seconds == 300

    def test_on_time_record_raises_nothing(self):
        tracking = _tracking()
        tracking.record(Milestone.VENDOR_ACCEPTED, _at(1))
        assert tracking._events == []


class TestDeadlines:
    def test_next_pending_milestone(self):
        tracking = _tracking()
        assert tracking.next_pending_milestone() == Milestone.VENDOR_ACCEPTED
        tracking.record(Milestone.VENDOR_ACCEPTED, _at(1))
        assert tracking.next_pending_milestone() == Milestone.PREPARATION_DONE

    def test_nothing_pending_once_delivered(self):
        tracking = _tracking()
        for minutes, milestone in zip((1, 10, 15, 30), Milestone):
            tracking.record(milestone, _at(minutes))
        assert tracking.next_pending_milestone() is None

    def test_deadline_follows_previous_record(self):
        tracking = _tracking()
        tracking.record(Milestone.VENDOR_ACCEPTED, _at(2))
        assert tracking.deadline_for(Milestone.PREPARATION_DONE) == _at(22)

    def test_delivery_deadline_from_creation(self):
        tracking = _tracking()
        tracking.record(Milestone.VENDOR_ACCEPTED, _at(2))
        assert tracking.deadline_for(Milestone.DELIVERED) == _at(45)
