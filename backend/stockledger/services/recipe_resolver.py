"""Recipe Resolver - maps sold products to the inventory they consume.

This is the only place that walks product -> recipe -> (template) ->
ingredient lines, and the only place mix & match components are unioned
with their base product.

Lookup order for a (product, variation):
1. Active recipe for the exact variation
2. Active base recipe of the product (variation_id IS NULL)

A recipe with no lines of its own but a template derives its lines from the
template, binding each template ingredient to the store's inventory item of
the same (normalized) name.
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from stockledger.core.config import settings
from stockledger.core.exceptions import RecipeNotFound, UnmappedIngredient
from stockledger.db.repository import StockPort, StockRepository
from stockledger.models.inventory import InventoryItem
from stockledger.models.recipe import IngredientLine, Recipe, RecipeTemplate
from stockledger.services.sales import CartLine
from stockledger.services.unit_conversion_service import UnitConversionService, quantize_up

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: Optional[str]) -> str:
    """Case-insensitive, whitespace-collapsed form used for name matching."""
    return _WHITESPACE.sub(" ", (name or "").strip()).casefold()


@dataclass
class LineSpec:
    """An ingredient line bound to an inventory item, ready for conversion."""

    ingredient_name: str
    item: InventoryItem
    quantity: Decimal  # per serving, in recipe_unit
    recipe_unit: str
    declared_factor: Optional[Decimal] = None
    recipe_id: Optional[int] = None
    line_id: Optional[int] = None


@dataclass
class Requirement:
    """Stock needed from one inventory item, in its canonical unit."""

    inventory_item_id: int
    item_name: str
    unit: str
    quantity: Decimal
    item_store_id: int
    ingredient_names: List[str] = field(default_factory=list)


@dataclass
class ResolvedLine:
    cart_line: CartLine
    requirements: List[Requirement]
    unit_requirements: List[Requirement] = field(default_factory=list)
    missing_components: List[str] = field(default_factory=list)


@dataclass
class ResolvedCart:
    """Requirements for a whole sale, aggregated across cart lines."""

    requirements: List[Requirement]
    lines: List[ResolvedLine]
    untracked: List[CartLine] = field(default_factory=list)

    @property
    def by_item(self) -> Dict[int, Requirement]:
        return {r.inventory_item_id: r for r in self.requirements}


def merge_requirements(groups: Iterable[Iterable[Requirement]]) -> List[Requirement]:
    """Sum requirements per inventory item, keeping first-appearance order."""
    merged: "OrderedDict[int, Requirement]" = OrderedDict()
    for group in groups:
        for req in group:
            existing = merged.get(req.inventory_item_id)
            if existing is None:
                merged[req.inventory_item_id] = Requirement(
                    inventory_item_id=req.inventory_item_id,
                    item_name=req.item_name,
                    unit=req.unit,
                    quantity=req.quantity,
                    item_store_id=req.item_store_id,
                    ingredient_names=list(req.ingredient_names),
                )
            else:
                existing.quantity += req.quantity
                for name in req.ingredient_names:
                    if name not in existing.ingredient_names:
                        existing.ingredient_names.append(name)
    return list(merged.values())


def scale_requirements(unit_requirements: Iterable[Requirement], sold_quantity: Decimal) -> List[Requirement]:
    """Multiply per-unit requirements by the sold quantity, rounding up at the stock scale."""
    sold_quantity = Decimal(sold_quantity)
    return [
        Requirement(
            inventory_item_id=req.inventory_item_id,
            item_name=req.item_name,
            unit=req.unit,
            quantity=quantize_up(req.quantity * sold_quantity),
            item_store_id=req.item_store_id,
            ingredient_names=list(req.ingredient_names),
        )
        for req in unit_requirements
    ]


class RecipeResolver:
    """Resolves products to ordered, deduplicated stock requirements."""

    def __init__(self, db: Session, repository: Optional[StockPort] = None):
        self.db = db
        self.repository = repository or StockRepository(db)
        self.conversions = UnitConversionService(db)

    # ===== RECIPE LOOKUP =====

    def find_recipe(self, store_id: int, product_id: str, variation_id: Optional[str] = None) -> Optional[Recipe]:
        """Active recipe for the variation, falling back to the product's base recipe."""
        base = (
            select(Recipe)
            .options(
                selectinload(Recipe.lines).selectinload(IngredientLine.inventory_item),
                selectinload(Recipe.template).selectinload(RecipeTemplate.ingredients),
            )
            .where(
                Recipe.store_id == store_id,
                Recipe.product_id == product_id,
                Recipe.is_active.is_(True),
            )
            .order_by(Recipe.id.desc())
        )

        if variation_id:
            recipe = self.db.scalars(base.where(Recipe.variation_id == variation_id)).first()
            if recipe:
                return recipe
            logger.debug(f"No recipe for variation {product_id}/{variation_id}, trying base recipe")

        return self.db.scalars(base.where(Recipe.variation_id.is_(None))).first()

    def resolve_lines(self, store_id: int, product_id: str, variation_id: Optional[str] = None) -> List[LineSpec]:
        """Ingredient lines of the product's active recipe."""
        recipe = self.find_recipe(store_id, product_id, variation_id)
        if recipe is None:
            raise RecipeNotFound(product_id, variation_id, store_id)
        return self.recipe_line_specs(recipe)

    def recipe_line_specs(self, recipe: Recipe) -> List[LineSpec]:
        if recipe.lines:
            specs = []
            for line in recipe.lines:
                if line.inventory_item_id is None or line.inventory_item is None:
                    raise UnmappedIngredient(line.ingredient_name, recipe.id, line.id)
                specs.append(LineSpec(
                    ingredient_name=line.ingredient_name,
                    item=line.inventory_item,
                    quantity=Decimal(line.quantity),
                    recipe_unit=line.recipe_unit,
                    declared_factor=line.conversion_factor,
                    recipe_id=recipe.id,
                    line_id=line.id,
                ))
            return specs

        if recipe.template is not None:
            return self._template_line_specs(recipe)

        logger.warning(f"Recipe '{recipe.name}' (ID: {recipe.id}) has no ingredient lines")
        return []

    def _template_line_specs(self, recipe: Recipe) -> List[LineSpec]:
        store_items: Dict[str, List[InventoryItem]] = {}
        for item in self.repository.list_store_items(recipe.store_id):
            store_items.setdefault(normalize_name(item.name), []).append(item)

        specs = []
        for ingredient in recipe.template.ingredients:
            matches = store_items.get(normalize_name(ingredient.ingredient_name), [])
            if len(matches) != 1:
                raise UnmappedIngredient(ingredient.ingredient_name, recipe.id)
            specs.append(LineSpec(
                ingredient_name=ingredient.ingredient_name,
                item=matches[0],
                quantity=Decimal(ingredient.quantity),
                recipe_unit=ingredient.unit,
                declared_factor=ingredient.conversion_factor,
                recipe_id=recipe.id,
            ))
        return specs

    # ===== REQUIREMENTS =====

    def unit_requirements(self, specs: Iterable[LineSpec]) -> List[Requirement]:
        """Unrounded stock needed per ONE unit sold: per-serving quantity / conversion factor."""
        raw: "OrderedDict[int, Requirement]" = OrderedDict()
        for spec in specs:
            self.conversions.check_serving_quantity(spec.item, spec.ingredient_name, spec.quantity, spec.recipe_unit)
            factor = self.conversions.conversion_factor(spec.item, spec.recipe_unit, spec.declared_factor)
            needed = spec.quantity / factor

            req = raw.get(spec.item.id)
            if req is None:
                raw[spec.item.id] = Requirement(
                    inventory_item_id=spec.item.id,
                    item_name=spec.item.name,
                    unit=spec.item.unit,
                    quantity=needed,
                    item_store_id=spec.item.store_id,
                    ingredient_names=[spec.ingredient_name],
                )
            else:
                req.quantity += needed
                if spec.ingredient_name not in req.ingredient_names:
                    req.ingredient_names.append(spec.ingredient_name)

        return list(raw.values())

    def resolve_line(self, store_id: int, cart_line: CartLine) -> ResolvedLine:
        """Requirements for one cart line, unioning mix & match components.

        Raises RecipeNotFound when the base product has no recipe. A component
        without a recipe is skipped with a warning (or raises when recipe
        tracking is strict).
        """
        specs = list(self.resolve_lines(store_id, cart_line.product_id, cart_line.variation_id))

        missing = []
        for component in cart_line.components:
            try:
                specs.extend(self.resolve_lines(store_id, component))
            except RecipeNotFound:
                if settings.strict_recipe_tracking:
                    raise
                logger.warning(
                    f"Mix & match component '{component}' of '{cart_line.product_id}' has no recipe; "
                    f"it will not be deducted"
                )
                missing.append(component)

        unit_requirements = self.unit_requirements(specs)
        return ResolvedLine(
            cart_line=cart_line,
            requirements=scale_requirements(unit_requirements, cart_line.quantity),
            unit_requirements=unit_requirements,
            missing_components=missing,
        )

    def resolve(
        self,
        store_id: int,
        product_id: str,
        variation_id: Optional[str] = None,
        quantity: Decimal = Decimal("1"),
        components: Iterable[str] = (),
    ) -> List[Requirement]:
        """Ordered, deduplicated stock requirements for selling ``quantity`` of a product."""
        cart_line = CartLine(product_id=product_id, quantity=quantity, variation_id=variation_id,
                             components=list(components))
        return self.resolve_line(store_id, cart_line).requirements

    def resolve_cart(self, store_id: int, cart_lines: Iterable[CartLine]) -> ResolvedCart:
        """Resolve every cart line and aggregate requirements across the sale.

        Lines without a recipe are sold untracked (logged) unless
        ``strict_recipe_tracking`` is enabled.
        """
        resolved: List[ResolvedLine] = []
        untracked: List[CartLine] = []
        for cart_line in cart_lines:
            try:
                resolved.append(self.resolve_line(store_id, cart_line))
            except RecipeNotFound as e:
                if settings.strict_recipe_tracking:
                    raise
                logger.warning(f"{e.message} in store {store_id}; selling without inventory tracking")
                untracked.append(cart_line)

        return ResolvedCart(
            requirements=merge_requirements(line.requirements for line in resolved),
            lines=resolved,
            untracked=untracked,
        )
