"""OrderSlaTracking aggregate (CQRS) — per-order milestone timings and breaches.

Each milestone slot is either unrecorded (``None``) or holds a
``MilestoneRecord``. Recording is first-write-wins: a second report of the
same milestone returns the stored record untouched.

Elapsed time for each milestone is measured from the preceding recorded
milestone (or order creation). The delivered milestone is judged against the
total delivery budget, measured from order creation.
"""

import structlog
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Float, Identifier, Integer, String, ValueObject

from delivery.domain import delivery
from delivery.shared.clock import after, as_utc, seconds_between
from delivery.sla.budgets import MILESTONE_ORDER, Milestone, budgets_for

logger = structlog.get_logger(__name__)


@delivery.event(part_of="OrderSlaTracking")
class SlaBreachDetected:
    """A milestone was recorded after its budget ran out."""

    __version__ = 1

    order_id = Identifier(required=True)
    milestone = String(required=True)
    elapsed_seconds = Float(required=True)
    budget_seconds = Integer(required=True)
    recorded_at = DateTime(required=True)


@delivery.value_object(part_of="OrderSlaTracking")
class MilestoneRecord:
    recorded_at = DateTime(required=True)
    elapsed_seconds = Float(required=True, min_value=0.0)
    breached = Boolean(default=False)


@delivery.aggregate
class OrderSlaTracking:
    order_id = Identifier(required=True)
    order_type = String(required=True, max_length=20)
    order_created_at = DateTime(required=True)
    vendor_acceptance_budget = Integer(required=True)
    preparation_budget = Integer(required=True)
    pickup_budget = Integer(required=True)
    delivery_budget = Integer(required=True)
    vendor_accepted = ValueObject(MilestoneRecord)
    preparation_done = ValueObject(MilestoneRecord)
    picked_up = ValueObject(MilestoneRecord)
    delivered = ValueObject(MilestoneRecord)
    total_elapsed_seconds = Float()
    closed = Boolean(default=False)

    @classmethod
    def start(cls, order_id: str, order_type: str, order_created_at):
        budgets = budgets_for(order_type)
        return cls(
            order_id=order_id,
            order_type=order_type,
            order_created_at=order_created_at,
            vendor_acceptance_budget=budgets[Milestone.VENDOR_ACCEPTED],
            preparation_budget=budgets[Milestone.PREPARATION_DONE],
            pickup_budget=budgets[Milestone.PICKED_UP],
            delivery_budget=budgets[Milestone.DELIVERED],
        )

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def budget_for(self, milestone: Milestone) -> int:
        return {
            Milestone.VENDOR_ACCEPTED: self.vendor_acceptance_budget,
            Milestone.PREPARATION_DONE: self.preparation_budget,
            Milestone.PICKED_UP: self.pickup_budget,
            Milestone.DELIVERED: self.delivery_budget,
        }[milestone]

    def record_for(self, milestone: Milestone) -> MilestoneRecord | None:
        return getattr(self, milestone.value)

    def _preceding_timestamp(self, milestone: Milestone):
        position = MILESTONE_ORDER.index(milestone)
        for earlier in reversed(MILESTONE_ORDER[:position]):
            record = self.record_for(earlier)
            if record is not None:
                return record.recorded_at
        return self.order_created_at

    def next_pending_milestone(self) -> Milestone | None:
        for milestone in MILESTONE_ORDER:
            if self.record_for(milestone) is None:
                return milestone
        return None

    def deadline_for(self, milestone: Milestone):
        """When ``milestone`` is due, given what has been recorded so far."""
        if milestone == Milestone.DELIVERED:
            return after(self.order_created_at, self.delivery_budget)
        return after(self._preceding_timestamp(milestone), self.budget_for(milestone))

    def breaches(self) -> set[str]:
        return {
            milestone.value
            for milestone in MILESTONE_ORDER
            if (record := self.record_for(milestone)) is not None and record.breached
        }

    # -------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------
    def record(self, milestone: Milestone, timestamp, clamp: bool = False) -> MilestoneRecord:
        """Record ``milestone`` at ``timestamp``; the first write wins.

        A timestamp earlier than the milestone before it is rejected, unless
        ``clamp`` is set, in which case the gap counts as zero seconds.
        """
        existing = self.record_for(milestone)
        if existing is not None:
            logger.warning(
                "SLA milestone already recorded, ignoring duplicate",
                order_id=self.order_id,
                milestone=milestone.value,
                recorded_at=str(existing.recorded_at),
            )
            return existing

        elapsed = seconds_between(self._preceding_timestamp(milestone), timestamp)
        if elapsed < 0 and clamp:
            logger.warning(
                "SLA milestone precedes the one before it, counting zero elapsed",
                order_id=self.order_id,
                milestone=milestone.value,
                elapsed_seconds=round(elapsed, 1),
            )
            elapsed = 0.0
        elif elapsed < 0:
            raise ValidationError({"timestamp": [f"{milestone.value} cannot precede the milestone before it"]})

        if milestone == Milestone.DELIVERED:
            total = seconds_between(self.order_created_at, timestamp)
            self.total_elapsed_seconds = total
            breached = total > self.delivery_budget
            judged = total
        else:
            breached = elapsed > self.budget_for(milestone)
            judged = elapsed

        record = MilestoneRecord(recorded_at=as_utc(timestamp), elapsed_seconds=elapsed, breached=breached)
        setattr(self, milestone.value, record)

        if breached:
            logger.info(
                "SLA milestone breached",
                order_id=self.order_id,
                milestone=milestone.value,
                elapsed_seconds=round(judged, 1),
                budget_seconds=self.budget_for(milestone),
            )
            self.raise_(
                SlaBreachDetected(
                    order_id=self.order_id,
                    milestone=milestone.value,
                    elapsed_seconds=judged,
                    budget_seconds=self.budget_for(milestone),
                    recorded_at=as_utc(timestamp),
                )
            )
        return record

    def close(self) -> None:
        """Stop watching deadlines (order cancelled or finished)."""
        self.closed = True
