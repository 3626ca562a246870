"""Ingredient mapping schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class IngredientLineResponse(BaseModel):
    id: int
    recipe_id: int
    ingredient_name: str
    inventory_item_id: Optional[int] = None

    model_config = {"from_attributes": True}


class RepairedLineResponse(BaseModel):
    line_id: int
    ingredient_name: str
    old_inventory_item_id: Optional[int] = None
    new_inventory_item_id: int

    model_config = {"from_attributes": True}


class RepairResponse(BaseModel):
    fixed: int
    repaired: list[RepairedLineResponse]
    unresolved: list[IngredientLineResponse]

    model_config = {"from_attributes": True}
