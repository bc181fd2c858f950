"""Order status transitions — command, handler and the effects every transition carries.

The status write, the history line, SLA milestone recording and any stock
release for a cancellation all happen in one unit of work.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.inventory import ledger
from delivery.order.order import Order, OrderStatus
from delivery.order.queries import load_order
from delivery.shared.actor import Actor
from delivery.sla.budgets import MILESTONE_FOR_STATUS
from delivery.sla.recording import close_tracking, find_tracking

logger = structlog.get_logger(__name__)


def apply_transition_effects(order: Order, change) -> None:
    """Side effects owned by the state machine for the status just entered."""
    status = OrderStatus(change.to_status)

    milestone = MILESTONE_FOR_STATUS.get(change.to_status)
    if milestone is not None:
        tracking = find_tracking(str(order.id))
        if tracking is None:
            logger.warning("Order has no SLA tracking", order_id=str(order.id))
        else:
            tracking.record(milestone, change.changed_at, clamp=True)
            if status == OrderStatus.DELIVERED:
                tracking.close()
            current_domain.repository_for(type(tracking)).add(tracking)

    if status == OrderStatus.CANCELLED:
        if order.stock_reserved:
            ledger.release(order.restaurant_id, order.reserved_lines())
            order.mark_stock_released()
        close_tracking(str(order.id))


@delivery.command(part_of="Order")
class TransitionOrderStatus:
    order_id = Identifier(required=True)
    target_status = String(required=True, max_length=50)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=50)
    actor_restaurant_id = String(max_length=255)
    reason = String(max_length=500)
    notes = Text()


@delivery.command_handler(part_of=Order)
class TransitionOrderStatusHandler:
    @handle(TransitionOrderStatus)
    def transition_order_status(self, command):
        order = load_order(command.order_id)
        actor = Actor.from_command(command)

        change = order.transition_to(command.target_status, actor, reason=command.reason, notes=command.notes)
        apply_transition_effects(order, change)
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            order_number=order.order_number,
            from_status=change.from_status,
            to_status=change.to_status,
            actor_role=actor.role,
        )
        return order
