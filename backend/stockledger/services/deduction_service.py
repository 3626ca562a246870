"""Deduction Executor - commits a sale's stock consumption atomically.

Flow for one sale (transaction id = idempotency key):
1. Resolve the cart to per-item requirements (recipe resolver)
2. Refuse requirements that point at another store's stock (mapping validator)
3. Skip items that already have a sale movement for this transaction
4. Guarded decrement per item, in inventory item id order:
       UPDATE ... SET quantity = quantity - :d
       WHERE id = :id AND is_active AND quantity >= :d
5. Any rejected decrement -> roll back everything, raise InsufficientStockAtCommit
6. One ``sale`` MovementRecord per item, then commit
7. Low-stock warnings for the items touched

The executor never retries: a commit race is reported to the caller, who
re-quotes availability. Stock and ledger rows change together or not at all.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.exceptions import InsufficientStockAtCommit
from stockledger.db.repository import StockPort, StockRepository
from stockledger.models.movement import MovementType
from stockledger.services.availability_service import available_quantity
from stockledger.services.mapping_validator import MappingValidator
from stockledger.services.recipe_resolver import RecipeResolver, Requirement, ResolvedCart
from stockledger.services.sales import CartLine, SaleRequest

logger = logging.getLogger(__name__)


@dataclass
class AppliedMovement:
    movement_id: int
    inventory_item_id: int
    item_name: str
    unit: str
    quantity: Decimal
    previous_quantity: Decimal
    new_quantity: Decimal


@dataclass
class CommitResult:
    """Outcome of a committed (or already committed) sale."""

    transaction_id: str
    store_id: int
    applied_movements: List[AppliedMovement] = field(default_factory=list)
    skipped_items: List[int] = field(default_factory=list)
    untracked_products: List[str] = field(default_factory=list)
    low_stock_items: List[str] = field(default_factory=list)
    already_applied: bool = False


class DeductionExecutor:
    """Commits sales against inventory with guarded, all-or-nothing decrements."""

    def __init__(self, db: Session, repository: Optional[StockPort] = None):
        self.db = db
        self.repository = repository or StockRepository(db)
        self.resolver = RecipeResolver(db, self.repository)
        self.validator = MappingValidator(db, self.repository)

    def commit_request(self, request: SaleRequest) -> CommitResult:
        return self.commit_sale(request.transaction_id, request.store_id, request.lines, actor=request.actor)

    def commit_sale(
        self,
        transaction_id: str,
        store_id: int,
        cart_lines: Iterable[CartLine],
        actor: Optional[str] = None,
    ) -> CommitResult:
        """Deduct the stock consumed by a sale.

        Raises:
            BlockingValidationError: unmapped/foreign ingredient or bad units;
                nothing is written.
            InsufficientStockAtCommit: a guarded decrement was rejected;
                everything is rolled back.
        """
        request = SaleRequest(transaction_id=transaction_id, store_id=store_id, lines=list(cart_lines), actor=actor)

        resolved = self.resolver.resolve_cart(store_id, request.lines)
        self.validator.ensure_store_mappings(store_id, resolved)

        result = CommitResult(
            transaction_id=transaction_id,
            store_id=store_id,
            untracked_products=self._untracked_labels(resolved),
        )

        recorded = self._recorded_items(transaction_id)
        requirements = sorted(resolved.requirements, key=lambda r: r.inventory_item_id)
        pending = [req for req in requirements if req.inventory_item_id not in recorded]
        result.skipped_items = [req.inventory_item_id for req in requirements if req.inventory_item_id in recorded]

        if result.skipped_items and not pending:
            logger.info(f"Sale {transaction_id} already applied, nothing to deduct")
            result.already_applied = True
            return result

        if not pending:
            logger.info(f"Sale {transaction_id} in store {store_id} consumed no tracked inventory")
            return result

        items = self.repository.get_items(req.inventory_item_id for req in pending)

        try:
            for req in pending:
                result.applied_movements.append(self._deduct(req, store_id, transaction_id, actor, items))
            self.db.commit()
        except InsufficientStockAtCommit as e:
            self.db.rollback()
            logger.warning(f"Commit race on sale {transaction_id}: {e.message}")
            raise
        except IntegrityError:
            # A concurrent commit of the same transaction recorded its movements first
            self.db.rollback()
            recorded = self._recorded_items(transaction_id)
            if not all(req.inventory_item_id in recorded for req in pending):
                raise
            logger.info(f"Sale {transaction_id} was applied concurrently, nothing to deduct")
            result.applied_movements = []
            result.skipped_items = [req.inventory_item_id for req in requirements]
            result.already_applied = True
            return result
        except Exception:
            self.db.rollback()
            raise

        result.low_stock_items = self._low_stock(result.applied_movements, items)

        logger.info(
            f"Committed sale {transaction_id} in store {store_id}: "
            f"{len(result.applied_movements)} items deducted, {len(result.skipped_items)} skipped"
        )
        return result

    # ===== HELPERS =====

    def _recorded_items(self, transaction_id: str) -> set:
        movements = self.repository.movements_for_reference(transaction_id, MovementType.SALE)
        return {m.inventory_item_id for m in movements}

    def _deduct(self, req: Requirement, store_id: int, transaction_id: str, actor, items) -> AppliedMovement:
        new_quantity = self.repository.decrement_if_available(req.inventory_item_id, req.quantity)
        if new_quantity is None:
            item = items.get(req.inventory_item_id)
            available = Decimal("0")
            if item is not None and item.is_active:
                available = self.repository.current_quantity(req.inventory_item_id) or Decimal("0")
            raise InsufficientStockAtCommit(
                item_name=req.item_name,
                inventory_item_id=req.inventory_item_id,
                required=req.quantity,
                available=Decimal(available),
                unit=req.unit,
                transaction_id=transaction_id,
            )

        new_quantity = Decimal(new_quantity)
        previous_quantity = new_quantity + req.quantity
        movement = self.repository.append_movement(
            store_id=store_id,
            inventory_item_id=req.inventory_item_id,
            movement_type=MovementType.SALE,
            quantity_change=-req.quantity,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            reference_id=transaction_id,
            notes=f"Sale: {', '.join(req.ingredient_names)}",
            actor=actor,
        )
        return AppliedMovement(
            movement_id=movement.id,
            inventory_item_id=req.inventory_item_id,
            item_name=req.item_name,
            unit=req.unit,
            quantity=req.quantity,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
        )

    def _low_stock(self, applied: List[AppliedMovement], items) -> List[str]:
        low = []
        for movement in applied:
            item = items.get(movement.inventory_item_id)
            threshold = Decimal(item.min_threshold or 0) if item is not None else Decimal("0")
            if movement.new_quantity <= threshold:
                low.append(movement.item_name)
                if settings.low_stock_alerts_enabled:
                    logger.warning(
                        f"Low stock: '{movement.item_name}' at {movement.new_quantity} {movement.unit} "
                        f"(threshold {threshold})"
                    )
        return low

    @staticmethod
    def _untracked_labels(resolved: ResolvedCart) -> List[str]:
        labels = [line.label for line in resolved.untracked]
        for line in resolved.lines:
            labels.extend(line.missing_components)
        return labels

