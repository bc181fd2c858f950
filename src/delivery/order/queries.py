"""Order lookups shared by the command handlers."""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from delivery.errors import NotFound
from delivery.order.order import Order


def load_order(order_id: str) -> Order:
    try:
        return current_domain.repository_for(Order).get(order_id)
    except ObjectNotFoundError:
        raise NotFound(f"Order {order_id} not found", order_id=order_id) from None


def find_order_by_payment_reference(payment_reference: str) -> Order:
    matches = (
        current_domain.repository_for(Order)._dao.query.filter(payment_reference=payment_reference).all().items
    )
    if not matches:
        raise NotFound(f"No order for payment {payment_reference}", payment_reference=payment_reference)
    return matches[0]
