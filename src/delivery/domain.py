"""Delivery bounded context — order lifecycle for a multi-sided food and errand marketplace.

Customers place orders with restaurants (or errand-style pabili/pabayad/parcel
jobs), vendors accept and prepare them, independent riders pick them up and
deliver. The context owns the order state machine, SLA tracking, inventory
reservation, refunds, and rider dispatch. Uses CQRS throughout: every
aggregate is persisted as current state and publishes domain events for
lifecycle reactions.
"""

from protean.domain import Domain

from delivery.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

delivery = Domain(name="delivery")
