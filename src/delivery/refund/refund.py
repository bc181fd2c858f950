"""Refund aggregate (CQRS) — money owed back to a customer for a cancelled order.

State Machine:
    {PENDING, PROCESSING} → {COMPLETED, REJECTED}

PROCESSING and FAILED are written by gateway reconciliation outside this
service; they are honoured here but never produced.

Only open refunds (PENDING, PROCESSING) can be approved or rejected; an order
has at most one open refund at a time.
"""

import json
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from delivery.domain import delivery
from delivery.errors import InvalidState
from delivery.shared.clock import as_utc, utcnow
from delivery.shared.money import format_money, round_money


class RefundStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


class RefundReason(Enum):
    CUSTOMER_CANCELLED = "customer_cancelled"
    VENDOR_CANCELLED = "vendor_cancelled"
    ADMIN_CANCELLED = "admin_cancelled"
    PAYMENT_FAILED = "payment_failed"
    ORDER_NOT_FULFILLED = "order_not_fulfilled"
    QUALITY_ISSUE = "quality_issue"
    DISPUTE_RESOLUTION = "dispute_resolution"
    DUPLICATE_PAYMENT = "duplicate_payment"
    FRAUDULENT = "fraudulent"
    OTHER = "other"


OPEN_STATUSES = {RefundStatus.PENDING, RefundStatus.PROCESSING}


@delivery.event(part_of="Refund")
class RefundRequested:
    __version__ = 1

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    amount = Float(required=True)
    percentage = Integer(required=True)
    cancellation_stage = String(required=True)
    requested_at = DateTime(required=True)


@delivery.event(part_of="Refund")
class RefundApproved:
    __version__ = 1

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    amount = Float(required=True)
    approved_by = String(required=True)
    approved_at = DateTime(required=True)


@delivery.event(part_of="Refund")
class RefundRejected:
    __version__ = 1

    refund_id = Identifier(required=True)
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    rejected_by = String(required=True)
    reason = String()
    rejected_at = DateTime(required=True)


@delivery.aggregate
class Refund:
    order_id = Identifier(required=True)
    customer_id = Identifier(required=True)
    payment_reference = String(max_length=255)
    original_amount = Float(required=True, min_value=0.0)
    amount = Float(required=True, min_value=0.0)
    percentage = Integer(required=True, min_value=0, max_value=100)
    cancellation_stage = String(required=True, max_length=50)
    order_status_at_cancellation = String(required=True, max_length=50)
    reason = String(choices=RefundReason, default=RefundReason.OTHER.value)
    description = String(max_length=1000)
    status = String(choices=RefundStatus, default=RefundStatus.PENDING.value)
    initiated_by = String(required=True, max_length=255)
    initiated_by_role = String(required=True, max_length=50)
    approved_by = String(max_length=255)
    approved_at = DateTime()
    rejected_by = String(max_length=255)
    rejected_at = DateTime()
    processed_at = DateTime()
    failure_reason = String(max_length=500)
    admin_notes = Text()
    gateway_transaction_id = String(max_length=255)
    metadata = Text()  # JSON object
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def request(
        cls,
        order_id: str,
        customer_id: str,
        original_amount: float,
        amount: float,
        percentage: int,
        cancellation_stage: str,
        order_status_at_cancellation: str,
        initiated_by: str,
        initiated_by_role: str,
        reason: str = RefundReason.OTHER.value,
        description: str | None = None,
        payment_reference: str | None = None,
        metadata: dict | None = None,
    ):
        amount = round_money(amount)
        if amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})
        if amount > original_amount:
            raise ValidationError({"amount": ["Refund cannot exceed the order total"]})

        now = utcnow()
        refund = cls(
            order_id=order_id,
            customer_id=customer_id,
            payment_reference=payment_reference,
            original_amount=original_amount,
            amount=amount,
            percentage=percentage,
            cancellation_stage=cancellation_stage,
            order_status_at_cancellation=order_status_at_cancellation,
            reason=reason,
            description=description,
            status=RefundStatus.PENDING.value,
            initiated_by=initiated_by,
            initiated_by_role=initiated_by_role,
            metadata=json.dumps(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        refund.raise_(
            RefundRequested(
                refund_id=str(refund.id),
                order_id=order_id,
                customer_id=customer_id,
                amount=amount,
                percentage=percentage,
                cancellation_stage=cancellation_stage,
                requested_at=now,
            )
        )
        return refund

    @property
    def is_open(self) -> bool:
        return RefundStatus(self.status) in OPEN_STATUSES

    def metadata_dict(self) -> dict:
        return json.loads(self.metadata) if self.metadata else {}

    def assert_open(self) -> None:
        if not self.is_open:
            raise InvalidState(f"Refund has already been {self.status}", refund_id=str(self.id))

    def approve(
        self,
        admin_id: str,
        final_amount: float,
        notes: str | None = None,
        gateway_transaction_id: str | None = None,
    ) -> None:
        self.assert_open()
        final_amount = round_money(final_amount)
        if final_amount <= 0:
            raise ValidationError({"adjusted_amount": ["Refund amount must be positive"]})
        if final_amount > self.original_amount:
            raise ValidationError({"adjusted_amount": ["Refund cannot exceed the order total"]})

        now = utcnow()
        metadata = self.metadata_dict()
        metadata.update({"original_amount": self.amount, "adjusted_amount": final_amount})
        if gateway_transaction_id:
            metadata["gateway_transaction_id"] = gateway_transaction_id

        self.amount = final_amount
        self.status = RefundStatus.COMPLETED.value
        self.approved_by = admin_id
        self.approved_at = now
        self.processed_at = now
        self.admin_notes = notes
        self.gateway_transaction_id = gateway_transaction_id
        self.metadata = json.dumps(metadata)
        self.updated_at = now
        self.raise_(
            RefundApproved(
                refund_id=str(self.id),
                order_id=self.order_id,
                customer_id=self.customer_id,
                amount=final_amount,
                approved_by=admin_id,
                approved_at=now,
            )
        )

    def reject(self, admin_id: str, notes: str | None = None) -> None:
        self.assert_open()
        now = utcnow()
        self.status = RefundStatus.REJECTED.value
        self.rejected_by = admin_id
        self.rejected_at = now
        self.failure_reason = notes or "Refund request was rejected"
        self.admin_notes = notes
        self.updated_at = now
        self.raise_(
            RefundRejected(
                refund_id=str(self.id),
                order_id=self.order_id,
                customer_id=self.customer_id,
                rejected_by=admin_id,
                reason=self.failure_reason,
                rejected_at=now,
            )
        )

    def timeline(self) -> list[dict]:
        """Customer-facing history of this refund, oldest first."""
        events = [
            {
                "event": "Refund Requested",
                "timestamp": self.created_at,
                "details": f"Refund of {format_money(self.amount)} requested",
            }
        ]
        if self.approved_at:
            events.append(
                {
                    "event": "Refund Approved",
                    "timestamp": self.approved_at,
                    "details": "Refund approved by administrator",
                }
            )
        if self.rejected_at:
            events.append(
                {
                    "event": "Refund Rejected",
                    "timestamp": self.rejected_at,
                    "details": self.failure_reason or "Refund request was rejected",
                }
            )
        if self.processed_at:
            completed = self.status == RefundStatus.COMPLETED.value
            details = "Refund has been credited to your account" if completed else "Refund processing completed"
            events.append(
                {
                    "event": "Refund Completed" if completed else "Refund Processed",
                    "timestamp": self.processed_at,
                    "details": details,
                }
            )
        return sorted(events, key=lambda event: as_utc(event["timestamp"]))
