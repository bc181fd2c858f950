"""Dispatch reactions to order lifecycle events.

A ready order with no rider is put up for dispatch automatically. When an
assigned order is delivered or cancelled the rider's load is released, and a
cancelled order's open dispatch request is closed. Failures here are logged
and never undo the status change that triggered them.
"""

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from delivery.dispatch.dispatcher import CloseDispatch, ReleaseRiderLoad, StartDispatch, dispatch_locks
from delivery.domain import delivery
from delivery.errors import DeliveryError
from delivery.order.events import OrderStatusChanged
from delivery.order.order import Order, OrderStatus

logger = structlog.get_logger(__name__)


@delivery.event_handler(part_of=Order)
class OrderDispatchEventHandler:
    """Keeps dispatch state in step with the order's lifecycle."""

    @handle(OrderStatusChanged)
    def on_order_status_changed(self, event: OrderStatusChanged) -> None:
        status = event.to_status
        order_id = str(event.order_id)

        try:
            if status == OrderStatus.READY.value and not event.rider_id:
                with dispatch_locks([order_id]):
                    outcome = current_domain.process(StartDispatch(order_id=order_id), asynchronous=False)
                logger.info("Auto-dispatch started", order_id=order_id, dispatch_status=outcome.status)

            elif status == OrderStatus.CANCELLED.value:
                with dispatch_locks([order_id], rider_id=event.rider_id):
                    current_domain.process(
                        CloseDispatch(order_id=order_id, reason="order_cancelled"), asynchronous=False
                    )
                    if event.rider_id:
                        current_domain.process(
                            ReleaseRiderLoad(rider_id=event.rider_id, order_id=order_id), asynchronous=False
                        )

            elif status == OrderStatus.DELIVERED.value and event.rider_id:
                with dispatch_locks([order_id], rider_id=event.rider_id):
                    current_domain.process(
                        ReleaseRiderLoad(rider_id=event.rider_id, order_id=order_id), asynchronous=False
                    )
        except (ValidationError, DeliveryError) as exc:
            logger.warning(
                "Dispatch follow-up failed",
                order_id=order_id,
                to_status=status,
                error=str(exc),
            )
