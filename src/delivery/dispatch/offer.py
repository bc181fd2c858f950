"""RiderAssignmentOffer aggregate (CQRS) — one time-boxed proposal of an order to one rider.

State Machine:
    OFFERED → {ACCEPTED, REJECTED, EXPIRED}

Resolution is first-to-commit-wins. Resolving an offer that is no longer
OFFERED raises AlreadyResolved; callers treat that as a lost race.
"""

import json
from datetime import timedelta
from enum import Enum

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from delivery import settings
from delivery.domain import delivery
from delivery.errors import AlreadyResolved
from delivery.shared.clock import as_utc, utcnow


class OfferStatus(Enum):
    OFFERED = "offered"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


@delivery.event(part_of="RiderAssignmentOffer")
class OfferExtended:
    __version__ = 1

    offer_id = Identifier(required=True)
    order_id = Identifier(required=True)
    rider_id = Identifier(required=True)
    batch_id = Identifier()
    attempt = Integer(required=True)
    expires_at = DateTime(required=True)


@delivery.event(part_of="RiderAssignmentOffer")
class OfferResolved:
    __version__ = 1

    offer_id = Identifier(required=True)
    order_id = Identifier(required=True)
    rider_id = Identifier(required=True)
    status = String(required=True)
    reason = String()
    resolved_at = DateTime(required=True)


@delivery.aggregate
class RiderAssignmentOffer:
    order_id = Identifier(required=True)
    rider_id = Identifier(required=True)
    batch_id = Identifier()
    status = String(choices=OfferStatus, default=OfferStatus.OFFERED.value)
    attempt = Integer(default=1, min_value=1)
    score = Float()
    distance_km = Float()
    offered_at = DateTime(required=True)
    expires_at = DateTime(required=True)
    responded_at = DateTime()
    rejection_reasons = Text()  # JSON list of strings

    @classmethod
    def extend(
        cls,
        order_id: str,
        rider_id: str,
        attempt: int,
        score: float | None = None,
        distance_km: float | None = None,
        batch_id: str | None = None,
        now=None,
        ttl_seconds: int | None = None,
    ):
        now = as_utc(now) if now else utcnow()
        offer = cls(
            order_id=order_id,
            rider_id=rider_id,
            batch_id=batch_id,
            status=OfferStatus.OFFERED.value,
            attempt=attempt,
            score=score,
            distance_km=distance_km,
            offered_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds or settings.OFFER_TTL_SECONDS),
            rejection_reasons=json.dumps([]),
        )
        offer.raise_(
            OfferExtended(
                offer_id=str(offer.id),
                order_id=order_id,
                rider_id=rider_id,
                batch_id=batch_id,
                attempt=attempt,
                expires_at=offer.expires_at,
            )
        )
        return offer

    @property
    def is_outstanding(self) -> bool:
        return self.status == OfferStatus.OFFERED.value

    def is_overdue(self, as_of) -> bool:
        return self.is_outstanding and as_utc(as_of) >= as_utc(self.expires_at)

    def reasons(self) -> list[str]:
        return json.loads(self.rejection_reasons) if self.rejection_reasons else []

    def _resolve(self, status: OfferStatus, at, reason: str | None = None) -> None:
        if not self.is_outstanding:
            raise AlreadyResolved(f"Offer was already {self.status}", offer_id=str(self.id))
        at = as_utc(at) if at else utcnow()
        self.status = status.value
        self.responded_at = at
        if reason:
            self.rejection_reasons = json.dumps(self.reasons() + [reason])
        self.raise_(
            OfferResolved(
                offer_id=str(self.id),
                order_id=self.order_id,
                rider_id=self.rider_id,
                status=status.value,
                reason=reason,
                resolved_at=at,
            )
        )

    def accept(self, at=None) -> None:
        self._resolve(OfferStatus.ACCEPTED, at)

    def reject(self, reason: str | None = None, at=None) -> None:
        self._resolve(OfferStatus.REJECTED, at, reason or "declined")

    def expire(self, at=None, reason: str = "timeout") -> None:
        self._resolve(OfferStatus.EXPIRED, at, reason)
