"""SLA budgets per milestone and order type."""

from enum import Enum

from delivery import settings


class Milestone(Enum):
    VENDOR_ACCEPTED = "vendor_accepted"
    PREPARATION_DONE = "preparation_done"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"


MILESTONE_ORDER = [
    Milestone.VENDOR_ACCEPTED,
    Milestone.PREPARATION_DONE,
    Milestone.PICKED_UP,
    Milestone.DELIVERED,
]

# Status reached → milestone it completes
MILESTONE_FOR_STATUS = {
    "confirmed": Milestone.VENDOR_ACCEPTED,
    "ready": Milestone.PREPARATION_DONE,
    "picked_up": Milestone.PICKED_UP,
    "delivered": Milestone.DELIVERED,
}


def delivery_budget_seconds(order_type: str) -> int:
    if order_type == "food":
        return settings.FOOD_DELIVERY_BUDGET
    return settings.ERRAND_DELIVERY_BUDGET


def budgets_for(order_type: str) -> dict[Milestone, int]:
    return {
        Milestone.VENDOR_ACCEPTED: settings.VENDOR_ACCEPTANCE_BUDGET,
        Milestone.PREPARATION_DONE: settings.PREPARATION_BUDGET,
        Milestone.PICKED_UP: settings.PICKUP_BUDGET,
        Milestone.DELIVERED: delivery_budget_seconds(order_type),
    }
