"""Read-side refund queries: what an order would get back, and a customer's refund history."""

from dataclasses import dataclass, field

from protean.utils.globals import current_domain

from delivery.errors import Forbidden
from delivery.order.order import OrderStatus
from delivery.order.queries import load_order
from delivery.refund import calculator
from delivery.refund.cancellation import is_open_refund, refunds_for_order
from delivery.refund.refund import Refund, RefundStatus
from delivery.shared.actor import Actor, Role
from delivery.shared.money import round_money


@dataclass(frozen=True)
class RefundEligibility:
    order_id: str
    order_number: str
    current_status: str
    total_amount: float
    percentage: int
    amount: float
    stage: str
    requires_dispute: bool
    is_eligible: bool
    reason: str
    already_cancelled: bool
    has_pending_refund: bool
    has_completed_refund: bool
    payment_method: str
    payment_status: str
    breakdown: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CustomerRefundStats:
    total_refunds: int
    pending_count: int
    completed_count: int
    rejected_count: int
    total_refunded_amount: float


def get_refund_eligibility(order_id: str, actor: Actor) -> RefundEligibility:
    order = load_order(order_id)

    allowed = (
        actor.is_admin
        or actor.is_system
        or (actor.role == Role.CUSTOMER.value and actor.id == order.customer_id)
        or (actor.role == Role.VENDOR.value and actor.restaurant_id == order.restaurant_id)
    )
    if not allowed:
        raise Forbidden("You cannot view refund eligibility for this order")

    calculation = calculator.calculate(order.total, order.status)
    refunds = refunds_for_order(str(order.id))
    has_pending = any(is_open_refund(refund) for refund in refunds)
    has_completed = any(refund.status == RefundStatus.COMPLETED.value for refund in refunds)
    already_cancelled = order.status == OrderStatus.CANCELLED.value
    amount = round_money(calculation.amount)

    pricing = order.pricing
    return RefundEligibility(
        order_id=str(order.id),
        order_number=order.order_number,
        current_status=order.status,
        total_amount=order.total,
        percentage=calculation.percentage,
        amount=amount,
        stage=calculation.stage,
        requires_dispute=calculation.requires_dispute,
        is_eligible=calculation.is_eligible and not (has_pending or has_completed or already_cancelled),
        reason=calculator.eligibility_reason(order.status, calculation.percentage),
        already_cancelled=already_cancelled,
        has_pending_refund=has_pending,
        has_completed_refund=has_completed,
        payment_method=order.payment_method,
        payment_status=order.payment_status,
        breakdown={
            "subtotal": pricing.subtotal,
            "delivery_fee": pricing.delivery_fee,
            "service_fee": pricing.service_fee,
            "tax": pricing.tax,
            "tip": pricing.tip,
            "discount": pricing.discount,
            "total": pricing.total,
            "refund_percentage": f"{calculation.percentage}%",
            "calculated_refund": f"{amount:.2f}",
        },
    )


def customer_refund_stats(customer_id: str) -> CustomerRefundStats:
    refunds = current_domain.repository_for(Refund)._dao.query.filter(customer_id=customer_id).all().items
    completed = [refund for refund in refunds if refund.status == RefundStatus.COMPLETED.value]
    return CustomerRefundStats(
        total_refunds=len(refunds),
        pending_count=sum(1 for refund in refunds if refund.status == RefundStatus.PENDING.value),
        completed_count=len(completed),
        rejected_count=sum(
            1 for refund in refunds if refund.status in (RefundStatus.REJECTED.value, RefundStatus.FAILED.value)
        ),
        total_refunded_amount=round_money(sum(refund.amount for refund in completed)),
    )
