"""Refund calculator — how much of an order's total goes back on cancellation.

Pure functions, no I/O. The percentage depends only on the status the order
was in *before* it was cancelled. Amounts are returned unrounded; rounding to
the centavo happens once, when the refund is persisted or displayed.
"""

from dataclasses import dataclass
from enum import Enum


class CancellationStage(Enum):
    BEFORE_VENDOR_ACCEPT = "before_vendor_accept"
    AFTER_VENDOR_ACCEPT = "after_vendor_accept"
    AFTER_PICKUP = "after_pickup"
    AFTER_DELIVERY = "after_delivery"
    UNKNOWN = "unknown"


REFUND_PERCENTAGES = {
    "payment_pending": 100,
    "pending": 100,
    "confirmed": 80,
    "preparing": 80,
    "ready": 50,
    "picked_up": 50,
    "in_transit": 0,
    "delivered": 0,
    "completed": 0,
    "cancelled": 0,
}

_STAGES = {
    "payment_pending": CancellationStage.BEFORE_VENDOR_ACCEPT,
    "pending": CancellationStage.BEFORE_VENDOR_ACCEPT,
    "confirmed": CancellationStage.AFTER_VENDOR_ACCEPT,
    "preparing": CancellationStage.AFTER_VENDOR_ACCEPT,
    "ready": CancellationStage.AFTER_PICKUP,
    "picked_up": CancellationStage.AFTER_PICKUP,
    "in_transit": CancellationStage.AFTER_DELIVERY,
    "delivered": CancellationStage.AFTER_DELIVERY,
    "completed": CancellationStage.AFTER_DELIVERY,
}

DISPUTE_STATUSES = frozenset({"in_transit", "delivered", "completed"})

_STATUS_MESSAGES = {
    "pending": "Your refund request is being reviewed",
    "processing": "Your refund is being processed",
    "completed": "Refund has been completed and credited to your account",
    "failed": "Refund could not be processed. Please contact support.",
    "rejected": "Refund request was not approved. Please contact support for more details.",
}


@dataclass(frozen=True)
class RefundCalculation:
    percentage: int
    amount: float
    stage: str
    is_eligible: bool
    requires_dispute: bool


def cancellation_stage(status: str) -> str:
    return _STAGES.get(status, CancellationStage.UNKNOWN).value


def requires_dispute(status: str) -> bool:
    """Past this point money only comes back through a dispute, not a cancellation."""
    return status in DISPUTE_STATUSES


def calculate(total_amount: float, status: str) -> RefundCalculation:
    percentage = REFUND_PERCENTAGES.get(status, 0)
    return RefundCalculation(
        percentage=percentage,
        amount=total_amount * percentage / 100,
        stage=cancellation_stage(status),
        is_eligible=percentage > 0,
        requires_dispute=requires_dispute(status),
    )


def eligibility_reason(status: str, percentage: int) -> str:
    if status == "cancelled":
        return "Order has already been cancelled"
    if requires_dispute(status):
        return "Order is in progress or completed. Please submit a dispute for refund consideration."
    if percentage == 100:
        return "Full refund available - order has not been accepted by vendor yet"
    if percentage == 80:
        return "Partial refund (80%) - vendor has already started processing the order"
    if percentage == 50:
        return "Partial refund (50%) - order is ready or has been picked up"
    return "Order status does not qualify for automatic refund"


def refund_status_message(status: str) -> str:
    return _STATUS_MESSAGES.get(status, "Unknown status")
