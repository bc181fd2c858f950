"""DispatchRequest aggregate (CQRS) — the dispatch queue state of one order.

Identity is the order id, so there is at most one request per order.

State Machine:
    SEARCHING → OFFERED → {ASSIGNED, SEARCHING}
    SEARCHING → NEEDS_MANUAL_DISPATCH → SEARCHING (retry) | ASSIGNED (manual)
    any open state → CANCELLED
"""

import json
from enum import Enum

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from delivery import settings
from delivery.domain import delivery
from delivery.errors import InvalidState
from delivery.shared.clock import utcnow


class DispatchRequestStatus(Enum):
    SEARCHING = "searching"
    OFFERED = "offered"
    ASSIGNED = "assigned"
    NEEDS_MANUAL_DISPATCH = "needs_manual_dispatch"
    CANCELLED = "cancelled"


_CLOSED = {DispatchRequestStatus.ASSIGNED.value, DispatchRequestStatus.CANCELLED.value}


@delivery.aggregate
class DispatchRequest:
    order_id = Identifier(required=True)
    status = String(choices=DispatchRequestStatus, default=DispatchRequestStatus.SEARCHING.value)
    attempts = Integer(default=0, min_value=0)
    max_attempts = Integer(default=settings.MAX_DISPATCH_ATTEMPTS, min_value=1)
    radius_km = Float(default=settings.DISPATCH_RADIUS_KM, min_value=0.1)
    current_offer_id = Identifier()
    excluded_rider_ids = Text()  # JSON list
    assigned_rider_id = Identifier()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def open(cls, order_id: str, max_attempts: int | None = None, radius_km: float | None = None):
        now = utcnow()
        return cls(
            id=order_id,
            order_id=order_id,
            status=DispatchRequestStatus.SEARCHING.value,
            max_attempts=max_attempts or settings.MAX_DISPATCH_ATTEMPTS,
            radius_km=radius_km or settings.DISPATCH_RADIUS_KM,
            excluded_rider_ids=json.dumps([]),
            created_at=now,
            updated_at=now,
        )

    @property
    def is_closed(self) -> bool:
        return self.status in _CLOSED

    @property
    def attempts_exhausted(self) -> bool:
        return (self.attempts or 0) >= self.max_attempts

    def excluded(self) -> set[str]:
        return set(json.loads(self.excluded_rider_ids)) if self.excluded_rider_ids else set()

    def exclude(self, rider_id: str) -> None:
        riders = self.excluded()
        riders.add(rider_id)
        self.excluded_rider_ids = json.dumps(sorted(riders))

    def _touch(self, status: DispatchRequestStatus) -> None:
        self.status = status.value
        self.updated_at = utcnow()

    def record_offer(self, offer_id: str) -> int:
        """Count one more attempt and remember the outstanding offer. Returns the attempt number."""
        if self.is_closed:
            raise InvalidState(f"Dispatch for order {self.order_id} is {self.status}")
        self.attempts = (self.attempts or 0) + 1
        self.current_offer_id = offer_id
        self._touch(DispatchRequestStatus.OFFERED)
        return self.attempts

    def offer_lapsed(self, rider_id: str) -> None:
        """The outstanding offer was rejected or timed out."""
        self.exclude(rider_id)
        self.current_offer_id = None
        self._touch(DispatchRequestStatus.SEARCHING)

    def mark_assigned(self, rider_id: str) -> None:
        self.assigned_rider_id = rider_id
        self.current_offer_id = None
        self._touch(DispatchRequestStatus.ASSIGNED)

    def mark_needs_manual_dispatch(self) -> None:
        self.current_offer_id = None
        self._touch(DispatchRequestStatus.NEEDS_MANUAL_DISPATCH)

    def retry(self) -> None:
        """Admin reopens an exhausted request with a fresh attempt budget."""
        if self.status != DispatchRequestStatus.NEEDS_MANUAL_DISPATCH.value:
            raise InvalidState(f"Only requests awaiting manual dispatch can be retried, not {self.status}")
        self.attempts = 0
        self.excluded_rider_ids = json.dumps([])
        self._touch(DispatchRequestStatus.SEARCHING)

    def cancel(self) -> None:
        self.current_offer_id = None
        self._touch(DispatchRequestStatus.CANCELLED)
