"""InventoryItem aggregate (CQRS) — stock for one menu item of one restaurant.

The aggregate id is the menu item id. A stock quantity of -1 means the item
is not tracked: it is always available and reservations leave it alone.
Tracked stock never goes negative; it moves down only through reservations,
up only through releases and restocks.
"""

from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, Integer, String

from delivery.domain import delivery
from delivery.shared.clock import utcnow

UNTRACKED = -1


@delivery.event(part_of="InventoryItem")
class StockReserved:
    __version__ = 1

    item_id = Identifier(required=True)
    restaurant_id = Identifier(required=True)
    quantity = Integer(required=True)
    remaining = Integer(required=True)
    reserved_at = DateTime(required=True)


@delivery.event(part_of="InventoryItem")
class StockReleased:
    __version__ = 1

    item_id = Identifier(required=True)
    restaurant_id = Identifier(required=True)
    quantity = Integer(required=True)
    remaining = Integer(required=True)
    released_at = DateTime(required=True)


@delivery.event(part_of="InventoryItem")
class LowStockDetected:
    """Tracked stock fell to or below the restaurant's threshold."""

    __version__ = 1

    item_id = Identifier(required=True)
    restaurant_id = Identifier(required=True)
    name = String(required=True)
    remaining = Integer(required=True)
    threshold = Integer(required=True)
    detected_at = DateTime(required=True)


@delivery.aggregate
class InventoryItem:
    restaurant_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    price = Float(min_value=0.0)
    stock_quantity = Integer(default=UNTRACKED, min_value=UNTRACKED)
    low_stock_threshold = Integer(default=5, min_value=0)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def register(
        cls,
        item_id: str,
        restaurant_id: str,
        name: str,
        stock_quantity: int = UNTRACKED,
        low_stock_threshold: int = 5,
        price: float | None = None,
    ):
        now = utcnow()
        return cls(
            id=item_id,
            restaurant_id=restaurant_id,
            name=name,
            price=price,
            stock_quantity=stock_quantity,
            low_stock_threshold=low_stock_threshold,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_tracked(self) -> bool:
        return self.stock_quantity != UNTRACKED

    def available_for(self, quantity: int) -> bool:
        return not self.is_tracked or self.stock_quantity >= quantity

    def reserve(self, quantity: int) -> None:
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})
        if not self.is_tracked:
            return
        if self.stock_quantity < quantity:
            raise ValidationError(
                {"stock_quantity": [f"Only {self.stock_quantity} of {self.name} left, {quantity} requested"]}
            )

        now = utcnow()
        self.stock_quantity -= quantity
        self.updated_at = now
        self.raise_(
            StockReserved(
                item_id=str(self.id),
                restaurant_id=self.restaurant_id,
                quantity=quantity,
                remaining=self.stock_quantity,
                reserved_at=now,
            )
        )
        if self.stock_quantity <= self.low_stock_threshold:
            self.raise_(
                LowStockDetected(
                    item_id=str(self.id),
                    restaurant_id=self.restaurant_id,
                    name=self.name,
                    remaining=self.stock_quantity,
                    threshold=self.low_stock_threshold,
                    detected_at=now,
                )
            )

    def release(self, quantity: int) -> None:
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})
        if not self.is_tracked:
            return

        now = utcnow()
        self.stock_quantity += quantity
        self.updated_at = now
        self.raise_(
            StockReleased(
                item_id=str(self.id),
                restaurant_id=self.restaurant_id,
                quantity=quantity,
                remaining=self.stock_quantity,
                released_at=now,
            )
        )

    def restock(self, stock_quantity: int) -> None:
        """Set an absolute stock level, or -1 to stop tracking."""
        if stock_quantity < UNTRACKED:
            raise ValidationError({"stock_quantity": ["Stock cannot be negative"]})
        self.stock_quantity = stock_quantity
        self.updated_at = utcnow()
