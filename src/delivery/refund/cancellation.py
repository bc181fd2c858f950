"""Order cancellation and refund request — commands, handlers and the workflow tying them together.

Cancellation and refund recording are two units of work. The cancellation
commits first (status, history, stock release). The refund record follows;
if it cannot be written the cancellation stands and the result is flagged
``degraded`` so an admin can reconcile the refund by hand.
"""

from dataclasses import dataclass, replace
from enum import Enum

import structlog
from protean import handle
from protean.fields import Boolean, Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.errors import Forbidden, InvalidState
from delivery.order.order import Order, OrderStatus, PaymentStatus
from delivery.order.queries import load_order
from delivery.order.transition import apply_transition_effects
from delivery.refund import calculator
from delivery.refund.refund import OPEN_STATUSES, Refund, RefundReason
from delivery.shared.actor import Actor, Role
from delivery.shared.money import round_money

logger = structlog.get_logger(__name__)

# Customers and vendors can cancel up to the moment the rider collects the order
_SELF_SERVICE_CANCEL_STATUSES = {
    OrderStatus.PAYMENT_PENDING,
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
}

_REASON_BY_ROLE = {
    Role.CUSTOMER.value: RefundReason.CUSTOMER_CANCELLED,
    Role.VENDOR.value: RefundReason.VENDOR_CANCELLED,
    Role.ADMIN.value: RefundReason.ADMIN_CANCELLED,
}


class RefundOutcome(Enum):
    PENDING = "pending"
    NOT_APPLICABLE = "not_applicable"
    NOT_ELIGIBLE = "not_eligible"
    FAILED = "failed"


@dataclass(frozen=True)
class CancellationResult:
    order_id: str
    order_status: str
    previous_status: str
    refund_status: str
    refund_amount: float
    refund_percentage: int
    cancellation_stage: str
    requires_dispute: bool
    refund_id: str | None = None
    degraded: str | None = None

    @property
    def is_degraded(self) -> bool:
        return self.degraded is not None


def is_open_refund(refund: Refund) -> bool:
    return refund.status in {status.value for status in OPEN_STATUSES}


def refunds_for_order(order_id: str) -> list[Refund]:
    return current_domain.repository_for(Refund)._dao.query.filter(order_id=order_id).all().items


def authorize_cancellation(order: Order, actor: Actor) -> None:
    """Who may cancel this order at all, before looking at its status."""
    if actor.is_admin or actor.is_system:
        return
    is_owner = actor.role == Role.CUSTOMER.value and actor.id == order.customer_id
    is_vendor = (
        actor.role == Role.VENDOR.value and bool(order.restaurant_id) and actor.restaurant_id == order.restaurant_id
    )
    if not (is_owner or is_vendor):
        raise Forbidden("Only the customer, the restaurant or an admin can cancel this order")

    if order.status == OrderStatus.IN_TRANSIT.value:
        raise Forbidden("Orders in transit can only be cancelled by an admin")


def assert_cancellable(order: Order, actor: Actor) -> None:
    status = order.current_status
    if status == OrderStatus.CANCELLED:
        raise InvalidState("Order has already been cancelled", order_id=str(order.id))
    if status in {OrderStatus.DELIVERED, OrderStatus.COMPLETED}:
        raise InvalidState(
            "Order has already been delivered and cannot be cancelled; submit a dispute for refund consideration",
            order_id=str(order.id),
        )
    if actor.role in {Role.CUSTOMER.value, Role.VENDOR.value} and status not in _SELF_SERVICE_CANCEL_STATUSES:
        raise Forbidden(f"Orders that are {order.status} can only be cancelled by an admin")


@delivery.command(part_of="Order")
class CancelOrder:
    order_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=50)
    actor_restaurant_id = String(max_length=255)
    request_refund = Boolean(default=True)


@delivery.command_handler(part_of=Order)
class CancelOrderHandler:
    @handle(CancelOrder)
    def cancel_order(self, command):
        order = load_order(command.order_id)
        actor = Actor.from_command(command)

        authorize_cancellation(order, actor)
        assert_cancellable(order, actor)

        previous_status = order.status
        refund = calculator.calculate(order.total, previous_status)

        change = order.cancel(actor, reason=command.reason)
        apply_transition_effects(order, change)
        current_domain.repository_for(Order).add(order)

        if order.payment_status != PaymentStatus.PAID.value or command.request_refund is False:
            outcome = RefundOutcome.NOT_APPLICABLE
        elif refund.amount <= 0:
            outcome = RefundOutcome.NOT_ELIGIBLE
        else:
            outcome = RefundOutcome.PENDING

        logger.info(
            "Order cancelled",
            order_id=str(order.id),
            order_number=order.order_number,
            previous_status=previous_status,
            actor_role=actor.role,
            refund_outcome=outcome.value,
        )
        return CancellationResult(
            order_id=str(order.id),
            order_status=order.status,
            previous_status=previous_status,
            refund_status=outcome.value,
            refund_amount=round_money(refund.amount) if outcome == RefundOutcome.PENDING else 0.0,
            refund_percentage=refund.percentage,
            cancellation_stage=refund.stage,
            requires_dispute=refund.requires_dispute,
        )


@delivery.command(part_of="Refund")
class RequestRefund:
    order_id = Identifier(required=True)
    amount = Float(required=True, min_value=0.0)
    percentage = Integer(required=True, min_value=0, max_value=100)
    cancellation_stage = String(required=True, max_length=50)
    order_status_at_cancellation = String(required=True, max_length=50)
    initiated_by = String(required=True, max_length=255)
    initiated_by_role = String(required=True, max_length=50)
    reason = String(choices=RefundReason, default=RefundReason.OTHER.value)
    description = String(max_length=1000)


@delivery.command_handler(part_of=Refund)
class RequestRefundHandler:
    @handle(RequestRefund)
    def request_refund(self, command):
        if any(is_open_refund(existing) for existing in refunds_for_order(command.order_id)):
            raise InvalidState("A refund for this order is already pending", order_id=command.order_id)

        order = load_order(command.order_id)
        refund = Refund.request(
            order_id=str(order.id),
            customer_id=order.customer_id,
            payment_reference=order.payment_reference,
            original_amount=order.total,
            amount=command.amount,
            percentage=command.percentage,
            cancellation_stage=command.cancellation_stage,
            order_status_at_cancellation=command.order_status_at_cancellation,
            initiated_by=command.initiated_by,
            initiated_by_role=command.initiated_by_role,
            reason=command.reason,
            description=command.description,
            metadata={"order_number": order.order_number},
        )
        order.mark_refund_pending(refund.amount)

        current_domain.repository_for(Refund).add(refund)
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Refund requested",
            refund_id=str(refund.id),
            order_id=str(order.id),
            amount=refund.amount,
            percentage=refund.percentage,
        )
        return str(refund.id)


def cancel_order(order_id: str, reason: str, actor: Actor, request_refund: bool = True) -> CancellationResult:
    """Cancel the order, then record the refund it is owed, if any."""
    result = current_domain.process(
        CancelOrder(
            order_id=order_id,
            reason=reason,
            actor_id=actor.id,
            actor_role=actor.role,
            actor_restaurant_id=actor.restaurant_id,
            request_refund=request_refund,
        ),
        asynchronous=False,
    )
    if result.refund_status != RefundOutcome.PENDING.value:
        return result

    reason_code = _REASON_BY_ROLE.get(actor.role, RefundReason.OTHER)
    try:
        refund_id = current_domain.process(
            RequestRefund(
                order_id=order_id,
                amount=result.refund_amount,
                percentage=result.refund_percentage,
                cancellation_stage=result.cancellation_stage,
                order_status_at_cancellation=result.previous_status,
                initiated_by=actor.id,
                initiated_by_role=actor.role,
                reason=reason_code.value,
                description=reason,
            ),
            asynchronous=False,
        )
    except Exception as exc:  # the cancellation is already committed; surface, never raise
        logger.exception("Refund record could not be created after cancellation", order_id=order_id)
        return replace(
            result,
            refund_status=RefundOutcome.FAILED.value,
            degraded=f"Refund could not be recorded: {exc}",
        )

    return replace(result, refund_id=refund_id)
