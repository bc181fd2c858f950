"""Admin refund review — approve (pay out) or reject an open refund."""

from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.errors import DependencyFailure, Forbidden, NotFound
from delivery.order.order import Order
from delivery.order.queries import load_order
from delivery.payment import get_gateway
from delivery.refund.refund import Refund
from delivery.shared.actor import Actor
from delivery.shared.money import format_money, round_money

logger = structlog.get_logger(__name__)


class RefundAction(Enum):
    APPROVE = "approve"
    REJECT = "reject"


@delivery.command(part_of="Refund")
class ProcessRefund:
    refund_id = Identifier(required=True)
    action = String(required=True, choices=RefundAction)
    actor_id = String(required=True, max_length=255)
    actor_role = String(required=True, max_length=50)
    actor_restaurant_id = String(max_length=255)
    notes = Text()
    adjusted_amount = Float()


def load_refund(refund_id: str) -> Refund:
    try:
        return current_domain.repository_for(Refund).get(refund_id)
    except ObjectNotFoundError:
        raise NotFound(f"Refund {refund_id} not found", refund_id=refund_id) from None


def _pay_out(refund: Refund, amount: float) -> str | None:
    """Ask the gateway to return the money. Cash orders have nothing to reverse."""
    if not refund.payment_reference:
        return None
    try:
        result = get_gateway().initiate_refund(refund.payment_reference, amount)
    except Exception as exc:
        raise DependencyFailure(f"Payment gateway error: {exc}", refund_id=str(refund.id)) from exc
    if not result.success:
        raise DependencyFailure(
            f"Payment gateway declined the refund: {result.failure_reason}",
            refund_id=str(refund.id),
        )
    return result.transaction_id


@delivery.command_handler(part_of=Refund)
class ProcessRefundHandler:
    @handle(ProcessRefund)
    def process_refund(self, command):
        actor = Actor.from_command(command)
        if not actor.is_admin:
            raise Forbidden("Only admins can process refunds")

        refund = load_refund(command.refund_id)
        order = load_order(refund.order_id)

        refund.assert_open()

        if command.action == RefundAction.APPROVE.value:
            requested = refund.amount if command.adjusted_amount is None else command.adjusted_amount
            final_amount = round_money(requested)
            if final_amount <= 0:
                raise ValidationError({"adjusted_amount": ["Refund amount must be positive"]})
            if final_amount > order.total:
                raise ValidationError({"adjusted_amount": ["Refund cannot exceed the order total"]})
            transaction_id = _pay_out(refund, final_amount)

            refund.approve(actor.id, final_amount, notes=command.notes, gateway_transaction_id=transaction_id)
            order.mark_refunded(refund.amount)
            order.add_audit_note(
                actor,
                reason=f"Refund of {format_money(refund.amount)} approved and processed",
                notes=command.notes,
            )
        else:
            refund.reject(actor.id, notes=command.notes)
            order.revert_refund()
            order.add_audit_note(actor, reason="Refund request rejected", notes=command.notes)

        current_domain.repository_for(Refund).add(refund)
        current_domain.repository_for(Order).add(order)

        logger.info(
            "Refund processed",
            refund_id=str(refund.id),
            order_id=str(order.id),
            action=command.action,
            status=refund.status,
            amount=refund.amount,
        )
        return refund
