"""Delivery domain API package."""

from delivery.api.errors import register_error_handlers
from delivery.api.routes import (
    dispatch_router,
    inventory_router,
    order_router,
    payment_router,
    refund_router,
    rider_router,
    sla_router,
)

__all__ = [
    "order_router",
    "refund_router",
    "payment_router",
    "dispatch_router",
    "rider_router",
    "inventory_router",
    "sla_router",
    "register_error_handlers",
]
