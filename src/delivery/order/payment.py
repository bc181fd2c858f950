"""Payment webhooks — the gateway settles online payments for orders awaiting them."""

import structlog
from protean import handle
from protean.fields import String
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.order.order import Order, OrderStatus, PaymentStatus
from delivery.order.queries import find_order_by_payment_reference
from delivery.order.transition import apply_transition_effects

logger = structlog.get_logger(__name__)


@delivery.command(part_of="Order")
class ConfirmOrderPayment:
    payment_reference = String(required=True, max_length=255)


@delivery.command(part_of="Order")
class FailOrderPayment:
    payment_reference = String(required=True, max_length=255)
    reason = String(max_length=500)


@delivery.command_handler(part_of=Order)
class OrderPaymentHandler:
    @handle(ConfirmOrderPayment)
    def confirm_payment(self, command):
        order = find_order_by_payment_reference(command.payment_reference)
        if order.payment_status == PaymentStatus.PAID.value:
            logger.info("Duplicate payment confirmation ignored", order_id=str(order.id))
            return order

        change = order.confirm_payment()
        apply_transition_effects(order, change)
        current_domain.repository_for(Order).add(order)
        logger.info("Order payment confirmed", order_id=str(order.id), order_number=order.order_number)
        return order

    @handle(FailOrderPayment)
    def fail_payment(self, command):
        order = find_order_by_payment_reference(command.payment_reference)
        if order.status == OrderStatus.CANCELLED.value and order.payment_status == PaymentStatus.FAILED.value:
            logger.info("Duplicate payment failure ignored", order_id=str(order.id))
            return order

        change = order.fail_payment(command.reason)
        apply_transition_effects(order, change)
        current_domain.repository_for(Order).add(order)
        logger.info(
            "Order cancelled after payment failure",
            order_id=str(order.id),
            order_number=order.order_number,
            reason=command.reason,
        )
        return order
