"""Public operations of the delivery context.

Each function takes the locks its unit of work needs, then hands a command to
the domain. Callers (the HTTP routes, workers, tests) go through here rather
than processing commands directly.

Lock order is fixed: orders, stock rows, dispatch keys, riders, refunds.
Every function must be called inside an active domain context.
"""

import json
from contextlib import ExitStack, contextmanager
from datetime import datetime

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from delivery.dispatch.dispatcher import (
    DispatchOutcome,
    ExpireOffer,
    ExpireOverdueOffers,
    ManualAssignRider,
    OfferBatchToRider,
    RecordRiderResponse,
    StartDispatch,
    batch_members,
    dispatch_locks,
    load_offer,
    load_rider,
    outstanding_offers,
)
from delivery.dispatch.registry import GoOffline, GoOnline, RegisterRider, UpdateRiderLocation, VerifyRider
from delivery.dispatch.rider import Rider
from delivery.errors import NotFound
from delivery.inventory import ledger
from delivery.inventory.item import UNTRACKED, InventoryItem
from delivery.inventory.management import RegisterInventoryItem, RestockInventoryItem
from delivery.order.creation import CreateOrder, shortfall_messages
from delivery.order.order import Order, OrderStatus, PaymentMethod
from delivery.order.payment import ConfirmOrderPayment, FailOrderPayment
from delivery.order.queries import find_order_by_payment_reference, load_order
from delivery.order.sequence import next_order_number
from delivery.order.transition import TransitionOrderStatus
from delivery.refund import cancellation, eligibility
from delivery.refund.processing import ProcessRefund, load_refund
from delivery.refund.refund import Refund
from delivery.shared.actor import Actor
from delivery.shared.clock import as_utc, utcnow
from delivery.shared.locks import locks, order_key, refund_key, rider_key, stock_key
from delivery.sla import monitor as sla_monitor
from delivery.sla.recording import RecordSlaEvent
from delivery.sla.recording import get_breaches as _get_breaches

logger = structlog.get_logger(__name__)


@contextmanager
def order_locks(order: Order, with_stock: bool = False):
    """Hold the order, plus its reserved stock rows when the change may release them."""
    with ExitStack() as stack:
        stack.enter_context(locks.hold(order_key(str(order.id))))
        if with_stock and order.stock_reserved:
            stack.enter_context(locks.hold_all(ledger.stock_keys(order.restaurant_id, order.reserved_lines())))
        yield


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
def create_order(
    order_type: str,
    customer_id: str,
    items: list[dict],
    subtotal: float,
    total: float,
    restaurant_id: str | None = None,
    delivery_fee: float = 0.0,
    service_fee: float = 0.0,
    tax: float = 0.0,
    tip: float = 0.0,
    discount: float = 0.0,
    payment_method: str = PaymentMethod.CASH.value,
    payment_reference: str | None = None,
    pickup_location: dict | None = None,
    dropoff_location: dict | None = None,
    special_instructions: str | None = None,
) -> Order:
    """Place an order and reserve its stock. A shortfall rejects it before a number is drawn."""
    shortfalls = ledger.check_availability(restaurant_id, items)
    if shortfalls:
        logger.info(
            "Order refused for insufficient stock",
            customer_id=customer_id,
            restaurant_id=restaurant_id,
            shortfall_count=len(shortfalls),
        )
        raise ValidationError({"items": shortfall_messages(shortfalls)})

    order_number = next_order_number()
    with locks.hold_all(ledger.stock_keys(restaurant_id, items)):
        order_id = current_domain.process(
            CreateOrder(
                order_number=order_number,
                order_type=order_type,
                customer_id=customer_id,
                restaurant_id=restaurant_id,
                items=json.dumps(items),
                subtotal=subtotal,
                delivery_fee=delivery_fee,
                service_fee=service_fee,
                tax=tax,
                tip=tip,
                discount=discount,
                total=total,
                payment_method=payment_method,
                payment_reference=payment_reference,
                pickup_location=json.dumps(pickup_location) if pickup_location else None,
                dropoff_location=json.dumps(dropoff_location) if dropoff_location else None,
                special_instructions=special_instructions,
            ),
            asynchronous=False,
        )
    return load_order(order_id)


def get_order(order_id: str) -> Order:
    return load_order(order_id)


def transition_status(
    order_id: str,
    target_status: str,
    actor: Actor,
    reason: str | None = None,
    notes: str | None = None,
) -> Order:
    """Move an order along the state machine.

    Cancelling this way runs the full cancellation workflow, so refund
    policy and refund records apply exactly as with ``cancel_order``.
    """
    if target_status == OrderStatus.CANCELLED.value:
        cancel_order(order_id, reason or "Cancelled", actor)
        return load_order(order_id)

    order = load_order(order_id)
    with order_locks(order):
        return current_domain.process(
            TransitionOrderStatus(
                order_id=order_id,
                target_status=target_status,
                actor_id=actor.id,
                actor_role=actor.role,
                actor_restaurant_id=actor.restaurant_id,
                reason=reason,
                notes=notes,
            ),
            asynchronous=False,
        )


def cancel_order(
    order_id: str, reason: str, actor: Actor, request_refund: bool = True
) -> cancellation.CancellationResult:
    order = load_order(order_id)
    with order_locks(order, with_stock=True):
        return cancellation.cancel_order(order_id, reason, actor, request_refund=request_refund)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
def payment_confirmed(payment_reference: str) -> Order:
    order = find_order_by_payment_reference(payment_reference)
    with order_locks(order):
        return current_domain.process(ConfirmOrderPayment(payment_reference=payment_reference), asynchronous=False)


def payment_failed(payment_reference: str, reason: str | None = None) -> Order:
    order = find_order_by_payment_reference(payment_reference)
    with order_locks(order, with_stock=True):
        return current_domain.process(
            FailOrderPayment(payment_reference=payment_reference, reason=reason),
            asynchronous=False,
        )


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------
def process_refund(
    refund_id: str,
    action: str,
    actor: Actor,
    notes: str | None = None,
    adjusted_amount: float | None = None,
) -> Refund:
    refund = load_refund(refund_id)
    with locks.hold(order_key(refund.order_id)), locks.hold(refund_key(refund_id)):
        return current_domain.process(
            ProcessRefund(
                refund_id=refund_id,
                action=action,
                actor_id=actor.id,
                actor_role=actor.role,
                actor_restaurant_id=actor.restaurant_id,
                notes=notes,
                adjusted_amount=adjusted_amount,
            ),
            asynchronous=False,
        )


def get_refund_eligibility(order_id: str, actor: Actor) -> eligibility.RefundEligibility:
    return eligibility.get_refund_eligibility(order_id, actor)


def customer_refund_stats(customer_id: str) -> eligibility.CustomerRefundStats:
    return eligibility.customer_refund_stats(customer_id)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
def _expire_lapsed(offers, now: datetime) -> None:
    for offer in offers:
        if offer.is_overdue(now):
            current_domain.process(ExpireOffer(offer_id=str(offer.id), as_of=now), asynchronous=False)


def _order_ids_in_play(order_id: str) -> list[str]:
    """The order plus every order batched with its outstanding offers."""
    order_ids = {order_id}
    for offer in outstanding_offers(order_id=order_id):
        order_ids.update(member.order_id for member in batch_members(offer))
    return sorted(order_ids)


def offer_to_rider(order_id: str, as_of: datetime | None = None) -> DispatchOutcome:
    """Offer the order to the best available rider, or return the offer already out."""
    now = as_utc(as_of) if as_of else utcnow()
    with dispatch_locks(_order_ids_in_play(order_id)):
        _expire_lapsed(outstanding_offers(order_id=order_id), now)
        return current_domain.process(StartDispatch(order_id=order_id, as_of=now), asynchronous=False)


def record_rider_response(
    offer_id: str,
    accept: bool,
    actor: Actor,
    reason: str | None = None,
    responded_at: datetime | None = None,
) -> DispatchOutcome:
    """Settle an offer. A response at or after the offer's expiry loses to the timeout."""
    now = as_utc(responded_at) if responded_at else utcnow()
    offer = load_offer(offer_id)
    order_ids = [member.order_id for member in batch_members(offer)]
    with dispatch_locks(order_ids, rider_id=offer.rider_id):
        _expire_lapsed([load_offer(offer_id)], now)
        return current_domain.process(
            RecordRiderResponse(
                offer_id=offer_id,
                accept=accept,
                reason=reason,
                actor_id=actor.id,
                actor_role=actor.role,
                actor_restaurant_id=actor.restaurant_id,
                responded_at=now,
            ),
            asynchronous=False,
        )


def offer_batch(order_ids: list[str], rider_id: str, as_of: datetime | None = None) -> list[DispatchOutcome]:
    now = as_utc(as_of) if as_of else utcnow()
    with dispatch_locks(order_ids, rider_id=rider_id):
        return current_domain.process(
            OfferBatchToRider(order_ids=json.dumps(list(order_ids)), rider_id=rider_id, as_of=now),
            asynchronous=False,
        )


def manual_assign(order_id: str, rider_id: str, actor: Actor) -> DispatchOutcome:
    with dispatch_locks(_order_ids_in_play(order_id), rider_id=rider_id):
        return current_domain.process(
            ManualAssignRider(
                order_id=order_id,
                rider_id=rider_id,
                actor_id=actor.id,
                actor_role=actor.role,
                actor_restaurant_id=actor.restaurant_id,
            ),
            asynchronous=False,
        )


def expire_overdue_offers(as_of: datetime | None = None) -> int:
    return current_domain.process(ExpireOverdueOffers(as_of=as_of), asynchronous=False)


# ---------------------------------------------------------------------------
# Riders
# ---------------------------------------------------------------------------
def register_rider(user_id: str, name: str, **profile) -> Rider:
    with locks.hold(rider_key(user_id)):
        rider_id = current_domain.process(RegisterRider(user_id=user_id, name=name, **profile), asynchronous=False)
    return load_rider(rider_id)


def verify_rider(rider_id: str) -> Rider:
    with locks.hold(rider_key(rider_id)):
        return current_domain.process(VerifyRider(rider_id=rider_id), asynchronous=False)


def rider_online(rider_id: str, latitude: float, longitude: float) -> Rider:
    with locks.hold(rider_key(rider_id)):
        return current_domain.process(
            GoOnline(rider_id=rider_id, latitude=latitude, longitude=longitude), asynchronous=False
        )


def rider_offline(rider_id: str) -> Rider:
    with locks.hold(rider_key(rider_id)):
        return current_domain.process(GoOffline(rider_id=rider_id), asynchronous=False)


def update_rider_location(rider_id: str, latitude: float, longitude: float) -> Rider:
    with locks.hold(rider_key(rider_id)):
        return current_domain.process(
            UpdateRiderLocation(rider_id=rider_id, latitude=latitude, longitude=longitude), asynchronous=False
        )


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------
def register_inventory_item(
    item_id: str,
    restaurant_id: str,
    name: str,
    price: float | None = None,
    stock_quantity: int = UNTRACKED,
    low_stock_threshold: int = 5,
) -> InventoryItem:
    with locks.hold(stock_key(restaurant_id, item_id)):
        current_domain.process(
            RegisterInventoryItem(
                item_id=item_id,
                restaurant_id=restaurant_id,
                name=name,
                price=price,
                stock_quantity=stock_quantity,
                low_stock_threshold=low_stock_threshold,
            ),
            asynchronous=False,
        )
    return get_inventory_item(item_id)


def get_inventory_item(item_id: str) -> InventoryItem:
    try:
        return current_domain.repository_for(InventoryItem).get(item_id)
    except ObjectNotFoundError:
        raise NotFound(f"Inventory item {item_id} not found", item_id=item_id) from None


def restock_inventory_item(item_id: str, stock_quantity: int) -> int:
    item = get_inventory_item(item_id)
    with locks.hold(stock_key(item.restaurant_id, item_id)):
        return current_domain.process(
            RestockInventoryItem(item_id=item_id, stock_quantity=stock_quantity), asynchronous=False
        )


def check_availability(restaurant_id: str | None, items: list[dict]) -> list[ledger.Shortfall]:
    return ledger.check_availability(restaurant_id, items)


# ---------------------------------------------------------------------------
# SLA
# ---------------------------------------------------------------------------
def record_sla_event(order_id: str, event_kind: str, timestamp: datetime | None = None) -> dict:
    with locks.hold(order_key(order_id)):
        return current_domain.process(
            RecordSlaEvent(order_id=order_id, event_kind=event_kind, timestamp=timestamp),
            asynchronous=False,
        )


def get_breaches(order_id: str) -> set[str]:
    return _get_breaches(order_id)


def scan_overdue_sla(as_of: datetime | None = None) -> list[sla_monitor.OverdueMilestone]:
    return sla_monitor.scan_overdue(as_of)
