"""Order domain events — published after the order's unit of work commits.

Dispatch and notification handlers react to these; their failures never roll
back the order change that produced them.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String

from delivery.domain import delivery


@delivery.event(part_of="Order")
class OrderPlaced:
    """A customer placed a new order."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    order_type = String(required=True)
    customer_id = Identifier(required=True)
    restaurant_id = Identifier()
    status = String(required=True)
    payment_method = String(required=True)
    total = Float(required=True)
    item_count = Integer(required=True)
    placed_at = DateTime(required=True)


@delivery.event(part_of="Order")
class OrderStatusChanged:
    """The order moved from one lifecycle status to another."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    restaurant_id = Identifier()
    rider_id = Identifier()
    from_status = String(required=True)
    to_status = String(required=True)
    changed_by = String(required=True)
    changed_by_role = String(required=True)
    reason = String()
    changed_at = DateTime(required=True)


@delivery.event(part_of="Order")
class PaymentStatusChanged:
    """The order's payment or refund bookkeeping moved."""

    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    amount = Float()
    changed_at = DateTime(required=True)


@delivery.event(part_of="Order")
class RiderAssigned:
    """A rider accepted the order (or an admin assigned one)."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    customer_id = Identifier(required=True)
    rider_id = Identifier(required=True)
    assigned_at = DateTime(required=True)


@delivery.event(part_of="Order")
class ManualDispatchRequired:
    """Automatic dispatch ran out of candidates; an admin must assign a rider."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    attempts = Integer(required=True)
    flagged_at = DateTime(required=True)
