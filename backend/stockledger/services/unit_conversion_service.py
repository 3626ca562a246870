"""Unit Conversion Service - recipe units to canonical stock units.

A conversion factor is the recipe-unit quantity that equals ONE canonical
stock unit of an inventory item:

    Croissant stocked in "pack" (packs of 20), recipe uses "piece"  -> factor 20
    Flour stocked in "kg", recipe uses "g"                          -> factor 1000

Resolution order for an item/recipe-unit pair:
1. Item-specific mapping (UnitConversion row), e.g. pack <-> piece
2. Same unit after normalization -> 1
3. Standard dimension table (weight, volume, count)

Stock needed per serving = recipe quantity / factor. A sale's total is rounded
UP at the stock scale.
"""

import logging
from decimal import ROUND_UP, Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.exceptions import (
    FractionalQuantityNotAllowed,
    UnitConversionError,
)
from stockledger.models.inventory import InventoryItem, UnitConversion

logger = logging.getLogger(__name__)

# Spelling variants -> canonical unit name
UNIT_ALIASES = {
    "pcs": "piece", "pc": "piece", "pieces": "piece", "piece": "piece",
    "ea": "piece", "each": "piece", "unit": "piece", "units": "piece",
    "g": "g", "gram": "g", "grams": "g",
    "kg": "kg", "kilogram": "kg", "kilograms": "kg",
    "mg": "mg",
    "ml": "ml", "milliliter": "ml", "milliliters": "ml",
    "l": "l", "liter": "l", "liters": "l", "litre": "l", "litres": "l",
    "cl": "cl",
    "dozen": "dozen",
    "pack": "pack", "packs": "pack",
    "box": "box", "boxes": "box",
    "bottle": "bottle", "bottles": "bottle",
    "serving": "serving", "servings": "serving", "portion": "serving", "portions": "serving",
    "scoop": "scoop", "scoops": "scoop",
}

# Factor to the dimension's base unit (g, ml, piece)
WEIGHT_UNITS = {"kg": Decimal("1000"), "g": Decimal("1"), "mg": Decimal("0.001")}
VOLUME_UNITS = {"l": Decimal("1000"), "ml": Decimal("1"), "cl": Decimal("10")}
COUNT_UNITS = {"piece": Decimal("1"), "dozen": Decimal("12")}

DIMENSIONS = (WEIGHT_UNITS, VOLUME_UNITS, COUNT_UNITS)

# Units that can be measured in any fraction
CONTINUOUS_UNITS = set(WEIGHT_UNITS) | set(VOLUME_UNITS)


def normalize_unit(unit: Optional[str]) -> str:
    """Canonical spelling of a unit name ("Pieces" -> "piece")."""
    cleaned = (unit or "").strip().lower()
    return UNIT_ALIASES.get(cleaned, cleaned)


def standard_factor(stock_unit: str, recipe_unit: str) -> Optional[Decimal]:
    """Recipe-unit quantity per one stock unit from the standard table, if any."""
    stock_unit = normalize_unit(stock_unit)
    recipe_unit = normalize_unit(recipe_unit)
    if stock_unit == recipe_unit:
        return Decimal("1")
    for table in DIMENSIONS:
        if stock_unit in table and recipe_unit in table:
            return table[stock_unit] / table[recipe_unit]
    return None


def is_continuous(unit: str) -> bool:
    return normalize_unit(unit) in CONTINUOUS_UNITS


def stock_quantum(scale: Optional[int] = None) -> Decimal:
    """Smallest quantity representable at the configured stock scale."""
    return Decimal(1).scaleb(-(settings.quantity_scale if scale is None else scale))


def quantize_up(value: Decimal, scale: Optional[int] = None) -> Decimal:
    """Round a stock quantity up (away from zero) to the stock scale."""
    return Decimal(value).quantize(stock_quantum(scale), rounding=ROUND_UP)


class UnitConversionService:
    """Lookup and derivation of purchase-unit -> recipe-unit factors."""

    def __init__(self, db: Session):
        self.db = db

    def item_conversion(self, item: InventoryItem, recipe_unit: str) -> Optional[UnitConversion]:
        unit = normalize_unit(recipe_unit)
        for conversion in item.conversions:
            if normalize_unit(conversion.recipe_unit) == unit:
                return conversion
        return None

    def conversion_factor(
        self,
        item: InventoryItem,
        recipe_unit: str,
        declared_factor: Optional[Decimal] = None,
    ) -> Decimal:
        """Factor for ``item`` in ``recipe_unit``.

        A factor declared on the ingredient line wins; otherwise the item
        mapping, then the standard table. Raises UnitConversionError when the
        units are unrelated (e.g. "ml" for an item stocked in "piece").
        """
        if declared_factor is not None:
            if declared_factor <= 0:
                raise UnitConversionError(recipe_unit, item.unit, item.name)
            return Decimal(declared_factor)

        mapping = self.item_conversion(item, recipe_unit)
        if mapping is not None:
            return Decimal(mapping.factor)

        factor = standard_factor(item.unit, recipe_unit)
        if factor is None:
            raise UnitConversionError(recipe_unit, item.unit, item.name)
        return factor

    def allows_fractional(self, item: InventoryItem, recipe_unit: str) -> bool:
        """Whether a recipe may use a non-integer quantity of ``item`` in ``recipe_unit``."""
        return bool(item.allows_fractional) or is_continuous(recipe_unit)

    def check_serving_quantity(
        self,
        item: InventoryItem,
        ingredient_name: str,
        quantity: Decimal,
        recipe_unit: str,
    ) -> None:
        """Reject fractional per-serving quantities of discrete, non-fractional items."""
        quantity = Decimal(quantity)
        if quantity == quantity.to_integral_value():
            return
        if not self.allows_fractional(item, recipe_unit):
            raise FractionalQuantityNotAllowed(ingredient_name, quantity, normalize_unit(recipe_unit))

    def register_conversion(
        self,
        item: InventoryItem,
        recipe_unit: str,
        factor: Decimal,
        notes: Optional[str] = None,
    ) -> UnitConversion:
        """Create or update the item-specific factor for ``recipe_unit``."""
        factor = Decimal(str(factor))
        if factor <= 0:
            raise ValueError(f"factor must be positive, got {factor}")

        unit = normalize_unit(recipe_unit)
        conversion = self.db.scalar(
            select(UnitConversion).where(
                UnitConversion.inventory_item_id == item.id,
                UnitConversion.recipe_unit == unit,
            )
        )
        if conversion is None:
            conversion = UnitConversion(inventory_item_id=item.id, recipe_unit=unit, factor=factor, notes=notes)
            self.db.add(conversion)
        else:
            conversion.factor = factor
            if notes is not None:
                conversion.notes = notes
        self.db.flush()
        self.db.refresh(item, attribute_names=["conversions"])
        logger.info(f"Conversion for '{item.name}': 1 {item.unit} = {factor} {unit}")
        return conversion
