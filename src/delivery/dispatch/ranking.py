"""Candidate selection and scoring for rider dispatch.

Pure functions over riders already loaded from the repository. The score is a
0-100 composite; higher is better. The weights are platform policy.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from delivery.shared.clock import as_utc

EARTH_RADIUS_KM = 6371.0

DISTANCE_WEIGHT = 40
PERFORMANCE_WEIGHT = 25
RATING_WEIGHT = 15
ON_TIME_WEIGHT = 10
AVAILABILITY_WEIGHT = 10

# Riders never seen sort after everyone else on a score tie
_NEVER_SEEN = datetime.max


@dataclass(frozen=True)
class Candidate:
    rider_id: str
    distance_km: float
    score: float
    last_seen_at: datetime | None


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def score_rider(rider, distance_km: float, radius_km: float) -> float:
    distance_score = max(0.0, (radius_km - distance_km) / radius_km) * DISTANCE_WEIGHT
    performance_score = ((rider.performance_score or 0.0) / 100) * PERFORMANCE_WEIGHT
    rating_score = ((rider.rating or 0.0) / 5) * RATING_WEIGHT
    on_time_score = ((rider.on_time_rate or 0.0) / 100) * ON_TIME_WEIGHT
    availability_score = (1 - (rider.active_orders or 0) / rider.max_active_orders) * AVAILABILITY_WEIGHT
    return round(distance_score + performance_score + rating_score + on_time_score + availability_score, 2)


def is_eligible(rider, excluded: set[str], busy: set[str]) -> bool:
    return (
        bool(rider.is_online)
        and bool(rider.is_verified)
        and bool(rider.is_available)
        and rider.location is not None
        and rider.has_capacity
        and str(rider.id) not in excluded
        and str(rider.id) not in busy
    )


def _tie_key(candidate: Candidate):
    seen = as_utc(candidate.last_seen_at)
    return (-candidate.score, seen.replace(tzinfo=None) if seen else _NEVER_SEEN, candidate.rider_id)


def rank_candidates(
    riders,
    pickup_latitude: float,
    pickup_longitude: float,
    radius_km: float,
    excluded: set[str] | None = None,
    busy: set[str] | None = None,
) -> list[Candidate]:
    """Eligible riders within ``radius_km`` of the pickup, best first.

    ``excluded`` holds riders who already rejected or let an offer for this
    order lapse; ``busy`` holds riders with another outstanding offer.
    """
    excluded = excluded or set()
    busy = busy or set()

    candidates = []
    for rider in riders:
        if not is_eligible(rider, excluded, busy):
            continue
        distance = haversine_km(
            pickup_latitude, pickup_longitude, rider.location.latitude, rider.location.longitude
        )
        if distance > radius_km:
            continue
        candidates.append(
            Candidate(
                rider_id=str(rider.id),
                distance_km=round(distance, 3),
                score=score_rider(rider, distance, radius_km),
                last_seen_at=rider.last_seen_at,
            )
        )
    return sorted(candidates, key=_tie_key)
