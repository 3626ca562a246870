"""Domain errors raised by the inventory deduction core.

Four families, matching how callers must react:

- recoverable-local: ``RecipeNotFound`` - sale proceeds without inventory tracking
- blocking-validation: ``UnmappedIngredient``, ``ForeignMapping``,
  ``UnitConversionError``, ``FractionalQuantityNotAllowed`` - sale refused until
  the recipe/mapping data is repaired
- commit-race: ``InsufficientStockAtCommit`` - sale refused, caller re-quotes
- lookup/state: not-found and invalid queue transitions

Every error names the ingredient or item involved so an operator or cashier
can act on it directly.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class StockLedgerError(Exception):
    """Base class for all inventory core errors."""

    code = "stock_ledger_error"
    http_status = 400

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        for key, value in self.details.items():
            payload[key] = str(value) if isinstance(value, Decimal) else value
        return payload


class RecipeNotFound(StockLedgerError):
    """No active recipe exists for the product (and variation)."""

    code = "recipe_not_found"
    http_status = 404

    def __init__(self, product_id: str, variation_id: Optional[str] = None, store_id: Optional[int] = None):
        self.product_id = product_id
        self.variation_id = variation_id
        self.store_id = store_id
        label = product_id if not variation_id else f"{product_id}/{variation_id}"
        super().__init__(
            f"No active recipe for product '{label}'",
            product_id=product_id,
            variation_id=variation_id,
            store_id=store_id,
        )


class BlockingValidationError(StockLedgerError):
    """Recipe or mapping data is invalid; the sale is blocked until repaired."""

    code = "blocking_validation"
    http_status = 422


class UnmappedIngredient(BlockingValidationError):
    """An ingredient line has no inventory item reference."""

    code = "unmapped_ingredient"

    def __init__(self, ingredient_name: str, recipe_id: Optional[int] = None, line_id: Optional[int] = None):
        self.ingredient_name = ingredient_name
        self.recipe_id = recipe_id
        self.line_id = line_id
        super().__init__(
            f"Ingredient '{ingredient_name}' is not mapped to an inventory item",
            ingredient_name=ingredient_name,
            recipe_id=recipe_id,
            line_id=line_id,
        )


class ForeignMapping(BlockingValidationError):
    """An ingredient line points at another store's inventory item."""

    code = "foreign_mapping"

    def __init__(
        self,
        ingredient_name: str,
        store_id: int,
        item_store_id: int,
        inventory_item_id: int,
        line_id: Optional[int] = None,
    ):
        self.ingredient_name = ingredient_name
        self.store_id = store_id
        self.item_store_id = item_store_id
        self.inventory_item_id = inventory_item_id
        self.line_id = line_id
        super().__init__(
            f"Ingredient '{ingredient_name}' is mapped to inventory item {inventory_item_id} "
            f"of store {item_store_id}, not store {store_id}",
            ingredient_name=ingredient_name,
            store_id=store_id,
            item_store_id=item_store_id,
            inventory_item_id=inventory_item_id,
            line_id=line_id,
        )


class UnitConversionError(BlockingValidationError):
    """Raised when no conversion exists between a recipe unit and a stock unit."""

    code = "unit_conversion_error"

    def __init__(self, from_unit: str, to_unit: str, item_name: str = ""):
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.item_name = item_name
        super().__init__(
            f"Cannot convert '{from_unit}' to '{to_unit}' for item '{item_name}'",
            from_unit=from_unit,
            to_unit=to_unit,
            item_name=item_name,
        )


class FractionalQuantityNotAllowed(BlockingValidationError):
    """A discrete, non-fractional item was given a non-integer recipe quantity."""

    code = "fractional_quantity_not_allowed"

    def __init__(self, ingredient_name: str, quantity: Decimal, unit: str):
        self.ingredient_name = ingredient_name
        self.quantity = quantity
        self.unit = unit
        super().__init__(
            f"Ingredient '{ingredient_name}' cannot be used in fractional quantities "
            f"({quantity} {unit})",
            ingredient_name=ingredient_name,
            quantity=quantity,
            unit=unit,
        )


class InsufficientStockAtCommit(StockLedgerError):
    """The guarded decrement found less stock than required at commit time."""

    code = "insufficient_stock_at_commit"
    http_status = 409

    def __init__(
        self,
        item_name: str,
        inventory_item_id: int,
        required: Decimal,
        available: Decimal,
        unit: str = "",
        transaction_id: Optional[str] = None,
    ):
        self.item_name = item_name
        self.inventory_item_id = inventory_item_id
        self.required = required
        self.available = available
        self.unit = unit
        self.transaction_id = transaction_id
        super().__init__(
            f"Insufficient stock for '{item_name}': need {required} {unit}, have {available} {unit}".rstrip(),
            item_name=item_name,
            inventory_item_id=inventory_item_id,
            required=required,
            available=available,
            unit=unit,
            transaction_id=transaction_id,
        )


class InventoryItemNotFound(StockLedgerError):
    code = "inventory_item_not_found"
    http_status = 404

    def __init__(self, inventory_item_id: int):
        self.inventory_item_id = inventory_item_id
        super().__init__(
            f"Inventory item {inventory_item_id} not found",
            inventory_item_id=inventory_item_id,
        )


class QueuedDeductionNotFound(StockLedgerError):
    code = "queued_deduction_not_found"
    http_status = 404

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(
            f"No queued deduction for transaction '{transaction_id}'",
            transaction_id=transaction_id,
        )


class InvalidQueueTransition(StockLedgerError):
    """A queued deduction was asked to move to a state its current one forbids."""

    code = "invalid_queue_transition"
    http_status = 409

    def __init__(self, transaction_id: str, current: str, action: str):
        self.transaction_id = transaction_id
        self.current = current
        self.action = action
        super().__init__(
            f"Cannot {action} queued transaction '{transaction_id}' in status '{current}'",
            transaction_id=transaction_id,
            status=current,
            action=action,
        )


class InvalidMovement(StockLedgerError):
    """Adjustment, transfer or restock request that cannot be recorded."""

    code = "invalid_movement"
    http_status = 422


class StoreNotFound(StockLedgerError):
    code = "store_not_found"
    http_status = 404

    def __init__(self, store_id: int):
        self.store_id = store_id
        super().__init__(f"Store {store_id} not found", store_id=store_id)
