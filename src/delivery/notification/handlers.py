"""Outbound notifications for order, dispatch and refund events.

Handlers run after the producing unit of work has committed. A notifier
failure is logged and dropped; it never reaches the operation that raised
the event.
"""

import structlog
from protean.utils.mixins import handle

from delivery.dispatch.offer import OfferExtended, RiderAssignmentOffer
from delivery.domain import delivery
from delivery.notification import get_notifier
from delivery.order.events import ManualDispatchRequired, OrderPlaced, OrderStatusChanged, RiderAssigned
from delivery.order.order import Order
from delivery.refund.refund import Refund, RefundApproved, RefundRejected, RefundRequested
from delivery.shared.money import format_money
from delivery.sla.tracking import OrderSlaTracking, SlaBreachDetected

logger = structlog.get_logger(__name__)


def send(event_name: str, payload: dict) -> None:
    try:
        result = get_notifier().notify(event_name, payload)
    except Exception as exc:
        logger.error("Notification dispatch failed", notification_event=event_name, error=str(exc))
        return
    logger.debug("Notification sent", notification_event=event_name, message_id=result.get("message_id"))


@delivery.event_handler(part_of=Order)
class OrderNotificationHandler:
    @handle(OrderPlaced)
    def on_order_placed(self, event: OrderPlaced) -> None:
        send(
            "order.placed",
            {
                "order_id": str(event.order_id),
                "order_number": event.order_number,
                "customer_id": str(event.customer_id),
                "restaurant_id": str(event.restaurant_id) if event.restaurant_id else None,
                "status": event.status,
                "total": format_money(event.total),
            },
        )

    @handle(OrderStatusChanged)
    def on_order_status_changed(self, event: OrderStatusChanged) -> None:
        send(
            f"order.{event.to_status}",
            {
                "order_id": str(event.order_id),
                "order_number": event.order_number,
                "customer_id": str(event.customer_id),
                "restaurant_id": str(event.restaurant_id) if event.restaurant_id else None,
                "rider_id": str(event.rider_id) if event.rider_id else None,
                "from_status": event.from_status,
                "to_status": event.to_status,
                "reason": event.reason,
            },
        )

    @handle(RiderAssigned)
    def on_rider_assigned(self, event: RiderAssigned) -> None:
        send(
            "order.rider_assigned",
            {
                "order_id": str(event.order_id),
                "order_number": event.order_number,
                "customer_id": str(event.customer_id),
                "rider_id": str(event.rider_id),
            },
        )

    @handle(ManualDispatchRequired)
    def on_manual_dispatch_required(self, event: ManualDispatchRequired) -> None:
        """Ops channel: nobody took the order and an admin has to step in."""
        send(
            "dispatch.manual_required",
            {
                "order_id": str(event.order_id),
                "order_number": event.order_number,
                "attempts": event.attempts,
            },
        )


@delivery.event_handler(part_of=RiderAssignmentOffer)
class OfferNotificationHandler:
    @handle(OfferExtended)
    def on_offer_extended(self, event: OfferExtended) -> None:
        send(
            "dispatch.offer",
            {
                "offer_id": str(event.offer_id),
                "order_id": str(event.order_id),
                "rider_id": str(event.rider_id),
                "batch_id": str(event.batch_id) if event.batch_id else None,
                "expires_at": event.expires_at.isoformat(),
            },
        )


@delivery.event_handler(part_of=Refund)
class RefundNotificationHandler:
    @handle(RefundRequested)
    def on_refund_requested(self, event: RefundRequested) -> None:
        send(
            "refund.requested",
            {
                "refund_id": str(event.refund_id),
                "order_id": str(event.order_id),
                "customer_id": str(event.customer_id),
                "amount": format_money(event.amount),
                "percentage": event.percentage,
            },
        )

    @handle(RefundApproved)
    def on_refund_approved(self, event: RefundApproved) -> None:
        send(
            "refund.approved",
            {
                "refund_id": str(event.refund_id),
                "order_id": str(event.order_id),
                "customer_id": str(event.customer_id),
                "amount": format_money(event.amount),
            },
        )

    @handle(RefundRejected)
    def on_refund_rejected(self, event: RefundRejected) -> None:
        send(
            "refund.rejected",
            {
                "refund_id": str(event.refund_id),
                "order_id": str(event.order_id),
                "customer_id": str(event.customer_id),
                "reason": event.reason,
            },
        )


@delivery.event_handler(part_of=OrderSlaTracking)
class SlaNotificationHandler:
    @handle(SlaBreachDetected)
    def on_sla_breach_detected(self, event: SlaBreachDetected) -> None:
        send(
            "sla.breached",
            {
                "order_id": str(event.order_id),
                "milestone": event.milestone,
                "elapsed_seconds": event.elapsed_seconds,
                "budget_seconds": event.budget_seconds,
            },
        )
