"""Inventory schemas."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class UnitConversionResponse(BaseModel):
    recipe_unit: str
    factor: Decimal
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class InventoryItemResponse(BaseModel):
    """Inventory item response schema."""

    id: int
    store_id: int
    name: str
    unit: str
    quantity: Decimal
    min_threshold: Decimal
    allows_fractional: bool
    is_active: bool
    is_low_stock: bool
    conversions: list[UnitConversionResponse] = []

    model_config = {"from_attributes": True}
