"""Rider dispatch — commands and handlers that offer orders to riders and settle the offers.

Offering is serial per order: while one offer is outstanding, asking to
dispatch the order again returns that offer instead of creating another.
Every rejection or timeout excludes the rider and moves straight on to the
next-ranked candidate until the attempt budget runs out, at which point the
order is flagged for manual dispatch.

Callers hold ``dispatch_locks`` for every order (and the rider) an operation
touches. Lock order is orders, then dispatch keys, then the rider.
"""

import json
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Boolean, DateTime, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.dispatch.offer import OfferStatus, RiderAssignmentOffer
from delivery.dispatch.ranking import haversine_km, is_eligible, rank_candidates, score_rider
from delivery.dispatch.request import DispatchRequest, DispatchRequestStatus
from delivery.dispatch.rider import Rider
from delivery.domain import delivery
from delivery.errors import AlreadyResolved, DeliveryError, Forbidden, InvalidState, NotFound
from delivery.order.order import Order
from delivery.order.queries import load_order
from delivery.shared.actor import Actor, Role
from delivery.shared.clock import as_utc, utcnow
from delivery.shared.locks import dispatch_key, locks, order_key, rider_key

logger = structlog.get_logger(__name__)

_RESPONDER_ROLES = {Role.RIDER.value, Role.ADMIN.value, Role.SYSTEM.value}


@dataclass(frozen=True)
class DispatchOutcome:
    order_id: str
    status: str
    attempts: int
    offer_id: str | None = None
    rider_id: str | None = None
    expires_at: datetime | None = None


@contextmanager
def dispatch_locks(order_ids, rider_id: str | None = None):
    order_ids = sorted({str(order_id) for order_id in order_ids})
    with ExitStack() as stack:
        stack.enter_context(locks.hold_all([order_key(order_id) for order_id in order_ids]))
        stack.enter_context(locks.hold_all([dispatch_key(order_id) for order_id in order_ids]))
        if rider_id:
            stack.enter_context(locks.hold(rider_key(rider_id)))
        yield


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def load_offer(offer_id: str) -> RiderAssignmentOffer:
    try:
        return current_domain.repository_for(RiderAssignmentOffer).get(offer_id)
    except ObjectNotFoundError:
        raise NotFound(f"Offer {offer_id} not found", offer_id=offer_id) from None


def load_rider(rider_id: str) -> Rider:
    try:
        return current_domain.repository_for(Rider).get(rider_id)
    except ObjectNotFoundError:
        raise NotFound(f"Rider {rider_id} not found", rider_id=rider_id) from None


def find_request(order_id: str) -> DispatchRequest | None:
    try:
        return current_domain.repository_for(DispatchRequest).get(order_id)
    except ObjectNotFoundError:
        return None


def outstanding_offers(**filters) -> list[RiderAssignmentOffer]:
    return (
        current_domain.repository_for(RiderAssignmentOffer)
        ._dao.query.filter(status=OfferStatus.OFFERED.value, **filters)
        .all()
        .items
    )


def offers_for_order(order_id: str) -> list[RiderAssignmentOffer]:
    offers = current_domain.repository_for(RiderAssignmentOffer)._dao.query.filter(order_id=order_id).all().items
    return sorted(offers, key=lambda offer: (offer.attempt, as_utc(offer.offered_at)))


def batch_members(offer: RiderAssignmentOffer) -> list[RiderAssignmentOffer]:
    """The offer itself first, then the rest of its batch."""
    if not offer.batch_id:
        return [offer]
    siblings = current_domain.repository_for(RiderAssignmentOffer)._dao.query.filter(batch_id=offer.batch_id).all()
    return [offer] + [sibling for sibling in siblings.items if sibling.id != offer.id]


def _outcome(request: DispatchRequest, offer: RiderAssignmentOffer | None = None) -> DispatchOutcome:
    live = offer if offer is not None and offer.is_outstanding else None
    return DispatchOutcome(
        order_id=str(request.order_id),
        status=request.status,
        attempts=request.attempts or 0,
        offer_id=str(live.id) if live else None,
        rider_id=request.assigned_rider_id or (live.rider_id if live else None),
        expires_at=live.expires_at if live else None,
    )


def _assert_dispatchable(order: Order) -> None:
    if order.rider_id:
        raise InvalidState(f"Order {order.order_number} already has a rider", order_id=str(order.id))
    if not order.is_dispatchable:
        raise InvalidState(f"Orders that are {order.status} cannot be dispatched", order_id=str(order.id))
    if order.pickup_location is None:
        raise ValidationError({"pickup_location": ["A pickup location is required for dispatch"]})


def _request_for(order: Order) -> DispatchRequest:
    request = find_request(str(order.id))
    if request is None or request.status == DispatchRequestStatus.CANCELLED.value:
        return DispatchRequest.open(str(order.id))
    return request


# ---------------------------------------------------------------------------
# Offering
# ---------------------------------------------------------------------------
def _flag_manual(order: Order, request: DispatchRequest, why: str) -> None:
    request.mark_needs_manual_dispatch()
    order.flag_for_manual_dispatch(request.attempts or 0)
    logger.warning(
        "Order needs manual dispatch",
        order_id=str(order.id),
        order_number=order.order_number,
        attempts=request.attempts,
        reason=why,
    )


def _offer_next(order: Order, request: DispatchRequest, now: datetime) -> RiderAssignmentOffer | None:
    """Offer the order to the best remaining candidate, or flag it for an admin."""
    if request.attempts_exhausted:
        _flag_manual(order, request, "attempts exhausted")
        return None

    riders = current_domain.repository_for(Rider)._dao.query.filter(is_online=True).all().items
    busy = {offer.rider_id for offer in outstanding_offers() if offer.order_id != str(order.id)}
    candidates = rank_candidates(
        riders,
        order.pickup_location.latitude,
        order.pickup_location.longitude,
        request.radius_km,
        excluded=request.excluded(),
        busy=busy,
    )
    if not candidates:
        _flag_manual(order, request, "no eligible riders")
        return None

    best = candidates[0]
    offer = RiderAssignmentOffer.extend(
        order_id=str(order.id),
        rider_id=best.rider_id,
        attempt=(request.attempts or 0) + 1,
        score=best.score,
        distance_km=best.distance_km,
        now=now,
    )
    request.record_offer(str(offer.id))
    order.mark_offering()
    current_domain.repository_for(RiderAssignmentOffer).add(offer)

    logger.info(
        "Order offered to rider",
        order_id=str(order.id),
        offer_id=str(offer.id),
        rider_id=best.rider_id,
        attempt=offer.attempt,
        score=best.score,
        distance_km=best.distance_km,
    )
    return offer


def _lapse(members: list[RiderAssignmentOffer], now: datetime, resolve) -> list[DispatchOutcome]:
    """Settle offers that went nowhere, then re-offer each order to its next candidate."""
    outcomes = []
    for member in members:
        if not member.is_outstanding:
            continue
        resolve(member)
        current_domain.repository_for(RiderAssignmentOffer).add(member)

        order = load_order(member.order_id)
        request = _request_for(order)
        request.offer_lapsed(member.rider_id)

        next_offer = None
        if order.is_dispatchable:
            next_offer = _offer_next(order, request, now)
        else:
            request.cancel()

        current_domain.repository_for(DispatchRequest).add(request)
        current_domain.repository_for(Order).add(order)
        outcomes.append(_outcome(request, next_offer))
    return outcomes


def _supersede(order_id: str, keep: set[str], now: datetime, reason: str) -> None:
    for offer in outstanding_offers(order_id=order_id):
        if str(offer.id) in keep:
            continue
        offer.expire(now, reason=reason)
        current_domain.repository_for(RiderAssignmentOffer).add(offer)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@delivery.command(part_of="DispatchRequest")
class StartDispatch:
    order_id = Identifier(required=True)
    as_of = DateTime()


@delivery.command(part_of="DispatchRequest")
class RecordRiderResponse:
    offer_id = Identifier(required=True)
    accept = Boolean(required=True)
    reason = String(max_length=500)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=50)
    actor_restaurant_id = String(max_length=255)
    responded_at = DateTime()


@delivery.command(part_of="DispatchRequest")
class ExpireOffer:
    offer_id = Identifier(required=True)
    as_of = DateTime()


@delivery.command(part_of="DispatchRequest")
class ExpireOverdueOffers:
    """Time out every outstanding offer whose expiry has passed."""

    as_of = DateTime()  # Optional: defaults to now


@delivery.command(part_of="DispatchRequest")
class OfferBatchToRider:
    order_ids = Text(required=True)  # JSON list
    rider_id = Identifier(required=True)
    as_of = DateTime()


@delivery.command(part_of="DispatchRequest")
class ManualAssignRider:
    order_id = Identifier(required=True)
    rider_id = Identifier(required=True)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=50)
    actor_restaurant_id = String(max_length=255)


@delivery.command(part_of="DispatchRequest")
class CloseDispatch:
    order_id = Identifier(required=True)
    reason = String(max_length=100)


@delivery.command(part_of="DispatchRequest")
class ReleaseRiderLoad:
    rider_id = Identifier(required=True)
    order_id = Identifier(required=True)


@delivery.command_handler(part_of=DispatchRequest)
class DispatchHandler:
    @handle(StartDispatch)
    def start_dispatch(self, command):
        now = as_utc(command.as_of) if command.as_of else utcnow()
        order = load_order(command.order_id)
        _assert_dispatchable(order)

        request = _request_for(order)
        if request.status == DispatchRequestStatus.NEEDS_MANUAL_DISPATCH.value:
            request.retry()
            logger.info("Dispatch reopened", order_id=str(order.id))

        if request.current_offer_id:
            current = load_offer(request.current_offer_id)
            if current.is_outstanding:
                return _outcome(request, current)

        offer = _offer_next(order, request, now)
        current_domain.repository_for(DispatchRequest).add(request)
        current_domain.repository_for(Order).add(order)
        return _outcome(request, offer)

    @handle(RecordRiderResponse)
    def record_rider_response(self, command):
        offer = load_offer(command.offer_id)
        actor = Actor.from_command(command)
        if actor.role not in _RESPONDER_ROLES:
            raise Forbidden("Only riders can respond to offers")
        if actor.role == Role.RIDER.value and actor.id != offer.rider_id:
            raise Forbidden("This offer was made to another rider")

        now = as_utc(command.responded_at) if command.responded_at else utcnow()
        if not offer.is_outstanding:
            raise AlreadyResolved(f"Offer was already {offer.status}", offer_id=str(offer.id))
        if offer.is_overdue(now):
            raise AlreadyResolved("Offer expired before the response arrived", offer_id=str(offer.id))

        members = batch_members(offer)
        if not command.accept:
            reason = command.reason or "declined"
            outcomes = _lapse(members, now, lambda member: member.reject(reason, at=now))
            logger.info(
                "Rider rejected offer",
                offer_id=str(offer.id),
                rider_id=offer.rider_id,
                batch_size=len(members),
                reason=reason,
            )
            return outcomes[0]

        rider = load_rider(offer.rider_id)
        outcomes = []
        for member in members:
            if not member.is_outstanding:
                continue
            order = load_order(member.order_id)
            request = _request_for(order)
            if not order.is_dispatchable:
                member.expire(now, reason="order_unavailable")
                current_domain.repository_for(RiderAssignmentOffer).add(member)
                outcomes.append(_outcome(request))
                continue

            member.accept(now)
            order.assign_rider(rider.user_id)
            request.mark_assigned(rider.user_id)
            _supersede(str(order.id), {str(member.id)}, now, "superseded")
            rider.take_order()

            current_domain.repository_for(RiderAssignmentOffer).add(member)
            current_domain.repository_for(DispatchRequest).add(request)
            current_domain.repository_for(Order).add(order)
            outcomes.append(_outcome(request))

        rider.last_seen_at = now
        current_domain.repository_for(Rider).add(rider)
        logger.info(
            "Rider accepted offer",
            offer_id=str(offer.id),
            rider_id=rider.user_id,
            batch_size=len(members),
            active_orders=rider.active_orders,
        )
        return outcomes[0]

    @handle(ExpireOffer)
    def expire_offer(self, command):
        now = as_utc(command.as_of) if command.as_of else utcnow()
        offer = load_offer(command.offer_id)
        if not offer.is_outstanding:
            raise AlreadyResolved(f"Offer was already {offer.status}", offer_id=str(offer.id))
        if not offer.is_overdue(now):
            raise InvalidState("Offer has not expired yet", offer_id=str(offer.id))

        outcomes = _lapse(batch_members(offer), now, lambda member: member.expire(now, reason="timeout"))
        logger.info("Offer timed out", offer_id=str(offer.id), rider_id=offer.rider_id, order_id=offer.order_id)
        return outcomes[0]

    @handle(ExpireOverdueOffers)
    def expire_overdue_offers(self, command):
        now = as_utc(command.as_of) if command.as_of else utcnow()
        overdue = [offer for offer in outstanding_offers() if offer.is_overdue(now)]
        if not overdue:
            return 0

        # One representative per batch; expiring it settles the whole batch
        groups = {}
        for offer in overdue:
            groups.setdefault(offer.batch_id or str(offer.id), []).append(offer)

        expired_count = 0
        for group in groups.values():
            representative = group[0]
            order_ids = [member.order_id for member in batch_members(representative)]
            try:
                with dispatch_locks(order_ids):
                    current_domain.process(
                        ExpireOffer(offer_id=str(representative.id), as_of=now),
                        asynchronous=False,
                    )
                expired_count += len(group)
            except (ValidationError, DeliveryError) as exc:
                logger.warning("Failed to expire offer", offer_id=str(representative.id), error=str(exc))

        logger.info("Offer expiry sweep complete", expired_count=expired_count, as_of=now.isoformat())
        return expired_count

    @handle(OfferBatchToRider)
    def offer_batch_to_rider(self, command):
        now = as_utc(command.as_of) if command.as_of else utcnow()
        order_ids = json.loads(command.order_ids)
        if not order_ids:
            raise ValidationError({"order_ids": ["A batch needs at least one order"]})
        if len(set(order_ids)) != len(order_ids):
            raise ValidationError({"order_ids": ["A batch cannot repeat an order"]})

        rider = load_rider(command.rider_id)
        if not is_eligible(rider, excluded=set(), busy={offer.rider_id for offer in outstanding_offers()}):
            raise InvalidState(f"Rider {rider.name} cannot take offers right now", rider_id=rider.user_id)
        if rider.spare_capacity() < len(order_ids):
            raise InvalidState(
                f"Rider {rider.name} has room for {rider.spare_capacity()} more orders", rider_id=rider.user_id
            )

        batch_id = str(uuid4())
        outcomes = []
        for order_id in order_ids:
            order = load_order(order_id)
            _assert_dispatchable(order)
            request = _request_for(order)
            if request.status == DispatchRequestStatus.NEEDS_MANUAL_DISPATCH.value:
                request.retry()
            if outstanding_offers(order_id=str(order.id)):
                raise InvalidState(f"Order {order.order_number} already has an outstanding offer")

            distance = haversine_km(
                order.pickup_location.latitude,
                order.pickup_location.longitude,
                rider.location.latitude,
                rider.location.longitude,
            )
            offer = RiderAssignmentOffer.extend(
                order_id=str(order.id),
                rider_id=rider.user_id,
                attempt=(request.attempts or 0) + 1,
                score=score_rider(rider, distance, request.radius_km),
                distance_km=round(distance, 3),
                batch_id=batch_id,
                now=now,
            )
            request.record_offer(str(offer.id))
            order.mark_offering()

            current_domain.repository_for(RiderAssignmentOffer).add(offer)
            current_domain.repository_for(DispatchRequest).add(request)
            current_domain.repository_for(Order).add(order)
            outcomes.append(_outcome(request, offer))

        logger.info("Batch offered to rider", batch_id=batch_id, rider_id=rider.user_id, order_count=len(order_ids))
        return outcomes

    @handle(ManualAssignRider)
    def manual_assign_rider(self, command):
        actor = Actor.from_command(command)
        if not actor.is_admin:
            raise Forbidden("Only admins can assign riders by hand")

        now = utcnow()
        order = load_order(command.order_id)
        _assert_dispatchable(order)
        rider = load_rider(command.rider_id)
        if not rider.is_verified:
            raise InvalidState(f"Rider {rider.name} is not verified", rider_id=rider.user_id)

        request = _request_for(order)
        _supersede(str(order.id), set(), now, "manual_assignment")
        order.assign_rider(rider.user_id)
        request.mark_assigned(rider.user_id)
        rider.take_order()

        current_domain.repository_for(DispatchRequest).add(request)
        current_domain.repository_for(Order).add(order)
        current_domain.repository_for(Rider).add(rider)
        logger.info(
            "Rider assigned manually",
            order_id=str(order.id),
            rider_id=rider.user_id,
            admin_id=actor.id,
        )
        return _outcome(request)

    @handle(CloseDispatch)
    def close_dispatch(self, command):
        request = find_request(command.order_id)
        if request is None or request.is_closed:
            return None
        _supersede(command.order_id, set(), utcnow(), command.reason or "order_closed")
        request.cancel()
        current_domain.repository_for(DispatchRequest).add(request)
        logger.info("Dispatch closed", order_id=command.order_id, reason=command.reason)
        return _outcome(request)

    @handle(ReleaseRiderLoad)
    def release_rider_load(self, command):
        rider = load_rider(command.rider_id)
        rider.finish_order()
        current_domain.repository_for(Rider).add(rider)
        logger.info(
            "Rider load released",
            rider_id=rider.user_id,
            order_id=command.order_id,
            active_orders=rider.active_orders,
        )
        return rider.active_orders
