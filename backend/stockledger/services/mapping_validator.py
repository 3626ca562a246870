"""Cross-Store Mapping Validator.

Recipes are copied between stores, and a copied ingredient line can keep
pointing at the source store's inventory item. Selling such a product would
deduct another store's stock, so:

- ``ensure_store_mappings`` is the pre-flight gate the deduction executor runs
  before accepting a sale (unmapped lines are already refused by the resolver)
- ``detect_foreign_mappings`` / ``repair_foreign_mappings`` are the operator
  batch job (also available as ``scripts/repair_foreign_mappings.py``)

Repair rebinds a line to the selling store's item with the same normalized
name. Zero or several candidates leave the line flagged as unresolved.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased, joinedload

from stockledger.core.exceptions import ForeignMapping
from stockledger.db.repository import StockPort, StockRepository
from stockledger.models.inventory import InventoryItem
from stockledger.models.recipe import IngredientLine, Recipe
from stockledger.services.recipe_resolver import ResolvedCart, normalize_name

logger = logging.getLogger(__name__)


@dataclass
class RepairedLine:
    line_id: int
    ingredient_name: str
    old_inventory_item_id: Optional[int]
    new_inventory_item_id: int


@dataclass
class RepairResult:
    """Outcome of a repair run."""
    fixed: int = 0
    unresolved: List[IngredientLine] = field(default_factory=list)
    repaired: List[RepairedLine] = field(default_factory=list)


class MappingValidator:
    """Detects and repairs ingredient lines bound to the wrong store's stock."""

    def __init__(self, db: Session, repository: Optional[StockPort] = None):
        self.db = db
        self.repository = repository or StockRepository(db)

    # ===== GATE =====

    def find_foreign(self, store_id: int, lines: Iterable[IngredientLine]) -> List[IngredientLine]:
        """Subset of ``lines`` whose inventory item belongs to another store."""
        return [
            line for line in lines
            if line.inventory_item is not None and line.inventory_item.store_id != store_id
        ]

    def ensure_store_mappings(self, store_id: int, resolved: ResolvedCart) -> None:
        """Raise if any resolved requirement would touch another store's stock."""
        for req in resolved.requirements:
            if req.item_store_id != store_id:
                ingredient = req.ingredient_names[0] if req.ingredient_names else req.item_name
                raise ForeignMapping(
                    ingredient_name=ingredient,
                    store_id=store_id,
                    item_store_id=req.item_store_id,
                    inventory_item_id=req.inventory_item_id,
                )

    # ===== DETECTION =====

    def detect_foreign_mappings(self, store_id: int) -> List[IngredientLine]:
        """All ingredient lines of the store's recipes mapped to another store's item."""
        mapped_item = aliased(InventoryItem)
        stmt = (
            select(IngredientLine)
            .join(Recipe, IngredientLine.recipe_id == Recipe.id)
            .join(mapped_item, IngredientLine.inventory_item_id == mapped_item.id)
            .options(joinedload(IngredientLine.inventory_item), joinedload(IngredientLine.recipe))
            .where(Recipe.store_id == store_id, mapped_item.store_id != store_id)
            .order_by(IngredientLine.recipe_id, IngredientLine.position, IngredientLine.id)
        )
        return list(self.db.scalars(stmt).unique().all())

    def detect_unmapped(self, store_id: int) -> List[IngredientLine]:
        """Ingredient lines of the store's recipes with no inventory reference."""
        stmt = (
            select(IngredientLine)
            .join(Recipe, IngredientLine.recipe_id == Recipe.id)
            .options(joinedload(IngredientLine.recipe))
            .where(Recipe.store_id == store_id, IngredientLine.inventory_item_id.is_(None))
            .order_by(IngredientLine.recipe_id, IngredientLine.position, IngredientLine.id)
        )
        return list(self.db.scalars(stmt).unique().all())

    # ===== REPAIR =====

    def _store_item_index(self, store_id: int) -> Dict[str, List[InventoryItem]]:
        index: Dict[str, List[InventoryItem]] = {}
        for item in self.repository.list_store_items(store_id):
            index.setdefault(normalize_name(item.name), []).append(item)
        return index

    def _match(self, index: Dict[str, List[InventoryItem]], *names: Optional[str]) -> Optional[InventoryItem]:
        for name in names:
            if not name:
                continue
            candidates = index.get(normalize_name(name), [])
            if len(candidates) == 1:
                return candidates[0]
            if len(candidates) > 1:
                logger.warning(f"Ambiguous name match for '{name}': {[c.id for c in candidates]}")
                return None
        return None

    def repair_foreign_mappings(self, store_id: int, include_unmapped: bool = False) -> RepairResult:
        """Rebind foreign-mapped (and optionally unmapped) lines to the store's own items."""
        index = self._store_item_index(store_id)
        result = RepairResult()

        candidates = self.detect_foreign_mappings(store_id)
        if include_unmapped:
            candidates += self.detect_unmapped(store_id)

        for line in candidates:
            foreign_name = line.inventory_item.name if line.inventory_item is not None else None
            match = self._match(index, foreign_name, line.ingredient_name)
            if match is None:
                result.unresolved.append(line)
                continue

            result.repaired.append(RepairedLine(
                line_id=line.id,
                ingredient_name=line.ingredient_name,
                old_inventory_item_id=line.inventory_item_id,
                new_inventory_item_id=match.id,
            ))
            line.inventory_item_id = match.id
            line.inventory_item = match
            result.fixed += 1

        self.db.commit()

        logger.info(
            f"Mapping repair for store {store_id}: fixed={result.fixed}, "
            f"unresolved={len(result.unresolved)}"
        )
        for line in result.unresolved:
            logger.warning(
                f"Unresolved mapping: recipe {line.recipe_id} ingredient '{line.ingredient_name}' "
                f"(line {line.id})"
            )
        return result
