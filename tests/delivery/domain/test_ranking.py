"""Tests for rider candidate ranking."""

from datetime import UTC, datetime, timedelta

import pytest

from delivery.dispatch.ranking import haversine_km, is_eligible, rank_candidates, score_rider
from delivery.dispatch.rider import Rider

PICKUP = (14.5995, 120.9842)
SEEN = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _make_rider(user_id, offset_km=1.0, **overrides):
    rider = Rider.register(user_id=user_id, name=f"Rider {user_id}", is_verified=True)
    rider.go_online(PICKUP[0] + offset_km * 0.009, PICKUP[1])
    for field, value in overrides.items():
        setattr(rider, field, value)
    return rider


def _rank(riders, **kwargs):
    return rank_candidates(riders, PICKUP[0], PICKUP[1], kwargs.pop("radius_km", 10.0), **kwargs)


class TestHaversine:
    def test_zero_distance(self):
        assert haversine_km(*PICKUP, *PICKUP) == 0

    def test_manila_to_makati(self):
        assert haversine_km(14.5995, 120.9842, 14.5547, 121.0244) == pytest.approx(6.6, abs=0.2)


class TestScoring:
    def test_perfect_rider_at_pickup(self):
        rider = _make_rider("r1", performance_score=100.0)
        assert score_rider(rider, 0.0, 10.0) == 100.0

    def test_default_rider_halfway(self):
        rider = _make_rider("r1")
        # 20 distance + 12.5 performance + 15 rating + 10 on-time + 10 availability
        assert score_rider(rider, 5.0, 10.0) == 67.5

    def test_load_lowers_score(self):
        idle = _make_rider("r1")
        busy = _make_rider("r2", active_orders=2)
        assert score_rider(busy, 1.0, 10.0) < score_rider(idle, 1.0, 10.0)

    def test_beyond_radius_scores_no_distance_points(self):
        rider = _make_rider("r1")
        assert score_rider(rider, 12.0, 10.0) == score_rider(rider, 10.0, 10.0)


class TestEligibility:
    def test_online_verified_rider_is_eligible(self):
        assert is_eligible(_make_rider("r1"), set(), set())

    @pytest.mark.parametrize(
        "overrides",
        [
            {"is_online": False},
            {"is_verified": False},
            {"is_available": False},
            {"active_orders": 3},
        ],
    )
    def test_ineligible_riders(self, overrides):
        assert not is_eligible(_make_rider("r1", **overrides), set(), set())

    def test_excluded_and_busy_riders(self):
        rider = _make_rider("r1")
        assert not is_eligible(rider, {"r1"}, set())
        assert not is_eligible(rider, set(), {"r1"})


class TestRanking:
    def test_nearest_first(self):
        near = _make_rider("near", offset_km=0.5)
        far = _make_rider("far", offset_km=4.0)
        assert [c.rider_id for c in _rank([far, near])] == ["near", "far"]

    def test_outside_radius_dropped(self):
        rider = _make_rider("r1", offset_km=12.0)
        assert _rank([rider]) == []

    def test_better_record_beats_slightly_closer(self):
        closer = _make_rider("closer", offset_km=1.0, performance_score=10.0, rating=3.0)
        better = _make_rider("better", offset_km=1.5, performance_score=95.0)
        assert _rank([closer, better])[0].rider_id == "better"

    def test_tie_goes_to_longest_waiting(self):
        fresh = _make_rider("fresh", last_seen_at=SEEN)
        waiting = _make_rider("waiting", last_seen_at=SEEN - timedelta(minutes=10))
        assert [c.rider_id for c in _rank([fresh, waiting])] == ["waiting", "fresh"]

    def test_tie_without_sighting_sorts_last(self):
        unseen = _make_rider("a-unseen", last_seen_at=None)
        seen = _make_rider("z-seen", last_seen_at=SEEN)
        assert [c.rider_id for c in _rank([unseen, seen])] == ["z-seen", "a-unseen"]

    def test_final_tie_break_on_id(self):
        one = _make_rider("rider-b", last_seen_at=SEEN)
        two = _make_rider("rider-a", last_seen_at=SEEN)
        assert [c.rider_id for c in _rank([one, two])] == ["rider-a", "rider-b"]

    def test_excluded_riders_skipped(self):
        riders = [_make_rider("r1"), _make_rider("r2", offset_km=2.0)]
        assert [c.rider_id for c in _rank(riders, excluded={"r1"})] == ["r2"]

    def test_candidate_carries_distance(self):
        candidate = _rank([_make_rider("r1", offset_km=1.0)])[0]
        assert candidate.distance_km == pytest.approx(1.0, abs=0.01)
