"""Overdue milestone scan for the ops dashboard.

Reports open orders whose next milestone is past due. It never cancels or
penalizes anything; acting on the report is an operations decision.
"""

from dataclasses import dataclass
from datetime import datetime

import structlog
from protean.utils.globals import current_domain

from delivery.shared.clock import as_utc, seconds_between, utcnow
from delivery.sla.tracking import OrderSlaTracking

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OverdueMilestone:
    order_id: str
    milestone: str
    due_at: datetime
    overdue_seconds: float


def scan_overdue(as_of: datetime | None = None) -> list[OverdueMilestone]:
    as_of = as_utc(as_of) if as_of else utcnow()
    open_trackings = current_domain.repository_for(OrderSlaTracking)._dao.query.filter(closed=False).all().items

    overdue = []
    for tracking in open_trackings:
        milestone = tracking.next_pending_milestone()
        if milestone is None:
            continue
        due_at = tracking.deadline_for(milestone)
        if due_at < as_of:
            overdue.append(
                OverdueMilestone(
                    order_id=str(tracking.order_id),
                    milestone=milestone.value,
                    due_at=due_at,
                    overdue_seconds=seconds_between(due_at, as_of),
                )
            )

    if overdue:
        logger.warning("Orders past their SLA deadline", count=len(overdue), as_of=as_of.isoformat())
    return sorted(overdue, key=lambda item: item.due_at)
