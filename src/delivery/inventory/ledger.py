"""Inventory ledger — availability checks, reservations and releases.

These functions run inside the caller's unit of work. Callers serialize
access per stock row by holding ``stock_key(restaurant_id, item_id)`` for
every item involved (see ``delivery.operations``).

Reservation is all-or-nothing across the order's items: every line is checked
before any stock moves. The order records ``tracked_quantities`` at reservation
time, under the same stock locks, so a later release returns exactly those units
even if an item started or stopped being tracked in between. Release is not
idempotent on its own; the order's ``stock_reserved`` flag makes it happen once.
"""

from collections import OrderedDict
from dataclasses import dataclass

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from delivery.inventory.item import InventoryItem
from delivery.shared.locks import stock_key

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Shortfall:
    item_id: str
    requested: int
    available: int


def _quantities(items: list[dict]) -> "OrderedDict[str, int]":
    """Sum quantities per item id, keeping first-seen order."""
    totals: OrderedDict[str, int] = OrderedDict()
    for position, line in enumerate(items):
        try:
            item_id = str(line["item_id"])
            quantity = int(line["quantity"])
        except (KeyError, TypeError, ValueError):
            raise ValidationError(
                {"items": [f"Line {position + 1} needs an item_id and a whole-number quantity"]}
            ) from None
        if quantity < 1:
            raise ValidationError({"items": [f"Line {position + 1} must order at least one {item_id}"]})
        totals[item_id] = totals.get(item_id, 0) + quantity
    return totals


def stock_keys(restaurant_id: str | None, items: list[dict]) -> list[str]:
    if not restaurant_id:
        return []
    return sorted(stock_key(restaurant_id, item_id) for item_id in _quantities(items))


def _load(restaurant_id: str, item_ids) -> dict[str, InventoryItem]:
    """Inventory rows for this restaurant. Items without a row are untracked."""
    repo = current_domain.repository_for(InventoryItem)
    rows = {}
    for item_id in item_ids:
        try:
            row = repo.get(item_id)
        except ObjectNotFoundError:
            continue
        if row.restaurant_id == restaurant_id:
            rows[item_id] = row
    return rows


def check_availability(restaurant_id: str | None, items: list[dict]) -> list[Shortfall]:
    """Dry run: the lines that cannot be satisfied, with what is left."""
    if not restaurant_id:
        return []
    requested = _quantities(items)
    rows = _load(restaurant_id, requested)
    return [
        Shortfall(item_id=item_id, requested=quantity, available=rows[item_id].stock_quantity)
        for item_id, quantity in requested.items()
        if item_id in rows and not rows[item_id].available_for(quantity)
    ]


def tracked_quantities(restaurant_id: str | None, items: list[dict]) -> dict[str, int]:
    """What ``reserve`` would take right now: the requested quantity of every tracked line."""
    if not restaurant_id:
        return {}
    requested = _quantities(items)
    rows = _load(restaurant_id, requested)
    return {
        item_id: quantity
        for item_id, quantity in requested.items()
        if item_id in rows and rows[item_id].is_tracked
    }


def reserve(restaurant_id: str | None, items: list[dict]) -> bool:
    """Decrement stock for every tracked line, or for none of them."""
    if not restaurant_id:
        return True
    requested = _quantities(items)
    rows = _load(restaurant_id, requested)

    shortfalls = [
        item_id
        for item_id, quantity in requested.items()
        if item_id in rows and not rows[item_id].available_for(quantity)
    ]
    if shortfalls:
        logger.info("Stock reservation refused", restaurant_id=restaurant_id, item_ids=shortfalls)
        return False

    repo = current_domain.repository_for(InventoryItem)
    for item_id, quantity in requested.items():
        row = rows.get(item_id)
        if row is None or not row.is_tracked:
            continue
        row.reserve(quantity)
        repo.add(row)

    logger.info("Stock reserved", restaurant_id=restaurant_id, lines=len(requested))
    return True


def release(restaurant_id: str | None, items: list[dict]) -> None:
    """Put the quantities back on every tracked line.

    Pass the order's reserved lines, not its items, so only what was taken returns.
    """
    if not restaurant_id or not items:
        return
    returned = _quantities(items)
    rows = _load(restaurant_id, returned)

    repo = current_domain.repository_for(InventoryItem)
    for item_id, quantity in returned.items():
        row = rows.get(item_id)
        if row is None or not row.is_tracked:
            logger.warning("Reserved stock row no longer tracked", restaurant_id=restaurant_id, item_id=item_id)
            continue
        row.release(quantity)
        repo.add(row)

    logger.info("Stock released", restaurant_id=restaurant_id, lines=len(returned))
