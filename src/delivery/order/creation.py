"""Order placement — command and handler.

Placing an order reserves stock for every tracked line and opens the order's
SLA tracking in the same unit of work. A reservation shortfall rejects the
whole placement; nothing is persisted.
"""

import json

import structlog
from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.inventory import ledger
from delivery.order.order import Order, OrderType, PaymentMethod
from delivery.sla.tracking import OrderSlaTracking

logger = structlog.get_logger(__name__)


@delivery.command(part_of="Order")
class CreateOrder:
    order_number = String(required=True, max_length=20)
    order_type = String(required=True, choices=OrderType)
    customer_id = Identifier(required=True)
    restaurant_id = Identifier()
    items = Text(required=True)  # JSON: list of {item_id, name, quantity, unit_price, notes?}
    subtotal = Float(required=True, min_value=0.0)
    delivery_fee = Float(default=0.0)
    service_fee = Float(default=0.0)
    tax = Float(default=0.0)
    tip = Float(default=0.0)
    discount = Float(default=0.0)
    total = Float(required=True, min_value=0.0)
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.CASH.value)
    payment_reference = String(max_length=255)
    pickup_location = Text()  # JSON: {latitude, longitude, address?}
    dropoff_location = Text()  # JSON: {latitude, longitude, address?}
    special_instructions = String(max_length=1000)


def _json(value):
    if value is None or not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        raise ValidationError({"payload": ["Malformed JSON"]}) from None


def shortfall_messages(shortfalls) -> list[str]:
    return [f"{s.item_id}: requested {s.requested}, only {s.available} available" for s in shortfalls]


@delivery.command_handler(part_of=Order)
class CreateOrderHandler:
    @handle(CreateOrder)
    def create_order(self, command):
        order = Order.create(
            order_number=command.order_number,
            order_type=command.order_type,
            customer_id=command.customer_id,
            restaurant_id=command.restaurant_id,
            items_data=_json(command.items) or [],
            pricing={
                "subtotal": command.subtotal,
                "delivery_fee": command.delivery_fee or 0.0,
                "service_fee": command.service_fee or 0.0,
                "tax": command.tax or 0.0,
                "tip": command.tip or 0.0,
                "discount": command.discount or 0.0,
                "total": command.total,
            },
            payment_method=command.payment_method,
            payment_reference=command.payment_reference,
            pickup_location=_json(command.pickup_location),
            dropoff_location=_json(command.dropoff_location),
            special_instructions=command.special_instructions,
        )

        lines = order.line_items()
        taken = ledger.tracked_quantities(order.restaurant_id, lines)
        if not ledger.reserve(order.restaurant_id, lines):
            shortfalls = ledger.check_availability(order.restaurant_id, lines)
            raise ValidationError({"items": shortfall_messages(shortfalls) or ["Insufficient stock"]})
        order.mark_stock_reserved(taken)

        current_domain.repository_for(Order).add(order)
        current_domain.repository_for(OrderSlaTracking).add(
            OrderSlaTracking.start(str(order.id), order.order_type, order.created_at)
        )

        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            order_type=order.order_type,
            status=order.status,
            total=order.total,
        )
        return str(order.id)
