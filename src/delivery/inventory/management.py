"""Inventory management — registering menu items and restocking them."""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, Integer, String
from protean.utils.globals import current_domain

from delivery.domain import delivery
from delivery.inventory.item import UNTRACKED, InventoryItem


@delivery.command(part_of="InventoryItem")
class RegisterInventoryItem:
    item_id = Identifier(required=True)
    restaurant_id = Identifier(required=True)
    name = String(required=True, max_length=255)
    price = Float(min_value=0.0)
    stock_quantity = Integer(default=UNTRACKED)
    low_stock_threshold = Integer(default=5)


@delivery.command(part_of="InventoryItem")
class RestockInventoryItem:
    item_id = Identifier(required=True)
    stock_quantity = Integer(required=True)


@delivery.command_handler(part_of=InventoryItem)
class InventoryManagementHandler:
    @handle(RegisterInventoryItem)
    def register_item(self, command):
        repo = current_domain.repository_for(InventoryItem)
        existing = repo._dao.query.filter(id=command.item_id).all().items
        if existing:
            raise ValidationError({"item_id": [f"Inventory item {command.item_id} already exists"]})

        item = InventoryItem.register(
            item_id=command.item_id,
            restaurant_id=command.restaurant_id,
            name=command.name,
            price=command.price,
            stock_quantity=command.stock_quantity,
            low_stock_threshold=command.low_stock_threshold,
        )
        repo.add(item)
        return str(item.id)

    @handle(RestockInventoryItem)
    def restock(self, command):
        repo = current_domain.repository_for(InventoryItem)
        item = repo.get(command.item_id)
        item.restock(command.stock_quantity)
        repo.add(item)
        return item.stock_quantity
