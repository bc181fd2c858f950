"""Recording SLA milestones and reading breaches back."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.errors import NotFound
from delivery.shared.clock import utcnow
from delivery.sla.budgets import Milestone
from delivery.sla.tracking import MilestoneRecord, OrderSlaTracking


def find_tracking(order_id: str) -> OrderSlaTracking | None:
    repo = current_domain.repository_for(OrderSlaTracking)
    matches = repo._dao.query.filter(order_id=order_id).all().items
    return matches[0] if matches else None


def tracking_for(order_id: str) -> OrderSlaTracking:
    tracking = find_tracking(order_id)
    if tracking is None:
        raise NotFound(f"No SLA tracking for order {order_id}")
    return tracking


def parse_milestone(kind: str) -> Milestone:
    try:
        return Milestone(kind)
    except ValueError:
        valid = ", ".join(m.value for m in Milestone)
        raise ValidationError({"event_kind": [f"Unknown SLA event {kind!r}; expected one of {valid}"]}) from None


def record_milestone(order_id: str, milestone: Milestone, timestamp=None) -> MilestoneRecord:
    """Record a milestone inside the caller's unit of work."""
    repo = current_domain.repository_for(OrderSlaTracking)
    tracking = tracking_for(order_id)
    record = tracking.record(milestone, timestamp or utcnow())
    if milestone == Milestone.DELIVERED:
        tracking.close()
    repo.add(tracking)
    return record


def close_tracking(order_id: str) -> None:
    tracking = find_tracking(order_id)
    if tracking is not None and not tracking.closed:
        tracking.close()
        current_domain.repository_for(OrderSlaTracking).add(tracking)


def get_breaches(order_id: str) -> set[str]:
    return tracking_for(order_id).breaches()


@delivery.command(part_of="OrderSlaTracking")
class RecordSlaEvent:
    """Report a milestone observed outside the state machine (e.g. a rider app ping)."""

    order_id = Identifier(required=True)
    event_kind = String(required=True, max_length=50)
    timestamp = DateTime()


@delivery.command_handler(part_of=OrderSlaTracking)
class RecordSlaEventHandler:
    @handle(RecordSlaEvent)
    def record_sla_event(self, command):
        record = record_milestone(command.order_id, parse_milestone(command.event_kind), command.timestamp)
        return record.to_dict()
