"""SQLAlchemy models."""

from stockledger.models.store import Store
from stockledger.models.inventory import InventoryItem, UnitConversion
from stockledger.models.recipe import IngredientLine, Recipe, RecipeTemplate, TemplateIngredient
from stockledger.models.movement import MovementRecord, MovementType
from stockledger.models.offline_queue import QueuedDeduction, QueueStatus

__all__ = [
    "Store",
    "InventoryItem",
    "UnitConversion",
    "RecipeTemplate",
    "TemplateIngredient",
    "Recipe",
    "IngredientLine",
    "MovementRecord",
    "MovementType",
    "QueuedDeduction",
    "QueueStatus",
]
