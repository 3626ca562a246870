"""Availability Checker - advisory stock check for a cart before checkout.

Nothing is locked or reserved: stock can still change between this check
and the commit, which is why the deduction executor re-checks with a
guarded update. Inactive inventory items count as zero available.
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from stockledger.db.repository import StockPort, StockRepository
from stockledger.models.inventory import InventoryItem
from stockledger.services.mapping_validator import MappingValidator
from stockledger.services.recipe_resolver import RecipeResolver, Requirement, ResolvedCart
from stockledger.services.sales import CartLine
from stockledger.services.unit_conversion_service import quantize_up

logger = logging.getLogger(__name__)


@dataclass
class Shortfall:
    """One inventory item the cart needs more of than is on hand."""

    inventory_item_id: int
    item_name: str
    unit: str
    required: Decimal
    available: Decimal
    shortfall: Decimal = field(init=False)

    def __post_init__(self):
        self.shortfall = self.required - self.available


@dataclass
class ProductCapacity:
    """How many units of a product the current stock can cover.

    ``max_quantity`` is None for a recipe that consumes nothing.
    """

    product_id: str
    variation_id: Optional[str] = None
    components: List[str] = field(default_factory=list)
    max_quantity: Optional[int] = None
    limiting_item_id: Optional[int] = None
    limiting_item: Optional[str] = None


@dataclass
class AvailabilityResult:
    available: bool
    shortfalls: List[Shortfall] = field(default_factory=list)
    products: List[ProductCapacity] = field(default_factory=list)
    untracked: List[str] = field(default_factory=list)


def available_quantity(item: Optional[InventoryItem]) -> Decimal:
    """Stock usable for a sale: zero for missing or deactivated items."""
    if item is None or not item.is_active:
        return Decimal("0")
    return Decimal(item.quantity)


class AvailabilityService:
    """Compares a cart's aggregated requirements with current stock."""

    def __init__(self, db: Session, repository: Optional[StockPort] = None):
        self.db = db
        self.repository = repository or StockRepository(db)
        self.resolver = RecipeResolver(db, self.repository)
        self.validator = MappingValidator(db, self.repository)

    def check_availability(self, store_id: int, cart_lines: Iterable[CartLine]) -> AvailabilityResult:
        """Shortfalls (largest first) and per-product capacity for a cart.

        Raises the same blocking validation errors a commit would, so a cart
        that cannot be sold is reported as such rather than as available.
        """
        resolved = self.resolver.resolve_cart(store_id, list(cart_lines))
        self.validator.ensure_store_mappings(store_id, resolved)

        item_ids = {req.inventory_item_id for req in resolved.requirements}
        items = self.repository.get_items(item_ids)

        shortfalls = []
        for req in resolved.requirements:
            on_hand = available_quantity(items.get(req.inventory_item_id))
            if req.quantity > on_hand:
                shortfalls.append(Shortfall(
                    inventory_item_id=req.inventory_item_id,
                    item_name=req.item_name,
                    unit=req.unit,
                    required=req.quantity,
                    available=on_hand,
                ))
        shortfalls.sort(key=lambda s: (-s.shortfall, s.item_name))

        products = [
            self._capacity(
                line.cart_line.product_id,
                line.cart_line.variation_id,
                line.cart_line.components,
                line.unit_requirements,
                items,
            )
            for line in resolved.lines
        ]

        if shortfalls:
            logger.debug(
                f"Cart for store {store_id} is short on "
                f"{', '.join(s.item_name for s in shortfalls)}"
            )

        return AvailabilityResult(
            available=not shortfalls,
            shortfalls=shortfalls,
            products=products,
            untracked=[line.label for line in resolved.untracked],
        )

    def max_sellable(
        self,
        store_id: int,
        product_id: str,
        variation_id: Optional[str] = None,
        components: Iterable[str] = (),
    ) -> ProductCapacity:
        """Largest whole quantity of the product the current stock covers.

        Raises RecipeNotFound when the product has no recipe, and ForeignMapping
        when an ingredient is mapped to another store's stock.
        """
        cart_line = CartLine(product_id=product_id, variation_id=variation_id, components=list(components))
        line = self.resolver.resolve_line(store_id, cart_line)
        single = ResolvedCart(requirements=line.unit_requirements, lines=[line])
        self.validator.ensure_store_mappings(store_id, single)
        items = self.repository.get_items(req.inventory_item_id for req in line.unit_requirements)
        return self._capacity(product_id, variation_id, cart_line.components, line.unit_requirements, items)

    def _capacity(
        self,
        product_id: str,
        variation_id: Optional[str],
        components: List[str],
        unit_requirements: List[Requirement],
        items: Dict[int, InventoryItem],
    ) -> ProductCapacity:
        capacity = ProductCapacity(product_id=product_id, variation_id=variation_id, components=list(components))

        for req in unit_requirements:
            if req.quantity <= 0:
                continue
            on_hand = available_quantity(items.get(req.inventory_item_id))
            count = int((on_hand / req.quantity).to_integral_value(rounding=ROUND_FLOOR))
            # Selling ``count`` deducts the rounded-up total, which may not fit
            while count > 0 and quantize_up(req.quantity * count) > on_hand:
                count -= 1

            if capacity.max_quantity is None or count < capacity.max_quantity:
                capacity.max_quantity = count
                capacity.limiting_item_id = req.inventory_item_id
                capacity.limiting_item = req.item_name

        return capacity
