"""Movement Ledger - append-only history of every stock change.

Sales are written by the deduction executor; this module adds the other
ways stock moves (adjustments, restocks, damage, transfers, conversions)
and the read side (filtered queries, reference lookups, chain checks).

Every write goes through the same guarded update as a sale, so no path can
push an item below zero, and every write leaves exactly one MovementRecord
per item touched. There is no update or delete: a correction is a new
offsetting row.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.exceptions import InvalidMovement, InventoryItemNotFound
from stockledger.db.repository import StockPort, StockRepository
from stockledger.models.inventory import InventoryItem
from stockledger.models.movement import MovementRecord, MovementType
from stockledger.services.unit_conversion_service import UnitConversionService, quantize_up

logger = logging.getLogger(__name__)

COMPENSATION_PREFIX = "compensation:"


@dataclass
class MovementFilter:
    store_id: Optional[int] = None
    inventory_item_id: Optional[int] = None
    movement_type: Optional[MovementType] = None
    reference_id: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = 100
    offset: int = 0


@dataclass
class HistoryGap:
    movement_id: int
    expected_previous: Decimal
    recorded_previous: Decimal


@dataclass
class HistoryCheck:
    """Result of replaying an item's movement chain."""

    inventory_item_id: int
    movement_count: int
    current_quantity: Decimal
    ledger_quantity: Optional[Decimal]
    gaps: List[HistoryGap] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        if self.gaps:
            return False
        return self.ledger_quantity is None or self.ledger_quantity == self.current_quantity


class MovementLedger:
    """Queries and non-sale writes against the movement ledger."""

    def __init__(self, db: Session, repository: Optional[StockPort] = None):
        self.db = db
        self.repository = repository or StockRepository(db)
        self.conversions = UnitConversionService(db)

    # ===== QUERIES =====

    def query_movements(self, filters: Optional[MovementFilter] = None) -> List[MovementRecord]:
        """Movements matching ``filters``, newest first."""
        filters = filters or MovementFilter()
        stmt = select(MovementRecord)

        if filters.store_id is not None:
            stmt = stmt.where(MovementRecord.store_id == filters.store_id)
        if filters.inventory_item_id is not None:
            stmt = stmt.where(MovementRecord.inventory_item_id == filters.inventory_item_id)
        if filters.movement_type is not None:
            stmt = stmt.where(MovementRecord.movement_type == MovementType(filters.movement_type).value)
        if filters.reference_id is not None:
            stmt = stmt.where(MovementRecord.reference_id == filters.reference_id)
        if filters.since is not None:
            stmt = stmt.where(MovementRecord.created_at >= filters.since)
        if filters.until is not None:
            stmt = stmt.where(MovementRecord.created_at < filters.until)

        stmt = (
            stmt.order_by(MovementRecord.created_at.desc(), MovementRecord.id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        return list(self.db.scalars(stmt).all())

    def movements_for_reference(self, reference_id: str) -> List[MovementRecord]:
        return self.repository.movements_for_reference(reference_id)

    def verify_item_history(self, inventory_item_id: int) -> HistoryCheck:
        """Walk an item's movements oldest first checking each links to the previous one."""
        item = self._get_item(inventory_item_id)
        movements = self.db.scalars(
            select(MovementRecord)
            .where(MovementRecord.inventory_item_id == inventory_item_id)
            .order_by(MovementRecord.id)
        ).all()

        check = HistoryCheck(
            inventory_item_id=inventory_item_id,
            movement_count=len(movements),
            current_quantity=Decimal(self.repository.current_quantity(item.id)),
            ledger_quantity=None,
        )
        expected = None
        for movement in movements:
            if expected is not None and movement.previous_quantity != expected:
                check.gaps.append(HistoryGap(
                    movement_id=movement.id,
                    expected_previous=expected,
                    recorded_previous=movement.previous_quantity,
                ))
            expected = movement.new_quantity
        check.ledger_quantity = expected

        if not check.consistent:
            logger.warning(
                f"Ledger for item {inventory_item_id} is inconsistent: {len(check.gaps)} gaps, "
                f"ledger={check.ledger_quantity}, on hand={check.current_quantity}"
            )
        return check

    # ===== WRITES =====

    def record_adjustment(
        self,
        inventory_item_id: int,
        delta: Decimal,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> MovementRecord:
        """Manual correction by a signed ``delta`` (stock count, found goods...)."""
        delta = Decimal(str(delta))
        if delta == 0:
            raise InvalidMovement("Adjustment delta must not be zero", inventory_item_id=inventory_item_id)
        item = self._get_item(inventory_item_id)
        movement = self._move(item, MovementType.ADJUSTMENT, delta, actor, notes, reference_id)
        self.db.commit()
        return movement

    def record_restock(
        self,
        inventory_item_id: int,
        quantity: Decimal,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> MovementRecord:
        quantity = self._positive(quantity, "Restock quantity")
        item = self._get_item(inventory_item_id)
        movement = self._move(item, MovementType.RESTOCK, quantity, actor, notes, reference_id)
        self.db.commit()
        return movement

    def record_damage(
        self,
        inventory_item_id: int,
        quantity: Decimal,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> MovementRecord:
        quantity = self._positive(quantity, "Damaged quantity")
        item = self._get_item(inventory_item_id)
        movement = self._move(item, MovementType.DAMAGE, -quantity, actor, notes, reference_id)
        self.db.commit()
        return movement

    def record_transfer(
        self,
        from_item_id: int,
        to_item_id: int,
        quantity: Decimal,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> Tuple[MovementRecord, MovementRecord]:
        """Move ``quantity`` (in the source item's unit) to another item, possibly in another store.

        When the units differ the received quantity is converted with the
        source item's conversion table (1 pack -> 20 pieces).
        """
        quantity = self._positive(quantity, "Transfer quantity")
        if from_item_id == to_item_id:
            raise InvalidMovement("Cannot transfer an item to itself", inventory_item_id=from_item_id)

        source = self._get_item(from_item_id)
        target = self._get_item(to_item_id)
        factor = self.conversions.conversion_factor(source, target.unit)
        received = quantize_up(quantity * factor)
        reference_id = reference_id or f"transfer-{uuid.uuid4().hex[:12]}"

        out_note = notes or f"Transfer to '{target.name}' (store {target.store_id})"
        in_note = notes or f"Transfer from '{source.name}' (store {source.store_id})"
        outgoing = self._move(source, MovementType.TRANSFER_OUT, -quantity, actor, out_note, reference_id)
        incoming = self._move(target, MovementType.TRANSFER_IN, received, actor, in_note, reference_id)
        self.db.commit()

        logger.info(
            f"Transfer {reference_id}: {quantity} {source.unit} '{source.name}' -> "
            f"{received} {target.unit} '{target.name}'"
        )
        return outgoing, incoming

    def record_conversion(
        self,
        source_item_id: int,
        source_quantity: Decimal,
        target_item_id: int,
        target_quantity: Decimal,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> Tuple[MovementRecord, MovementRecord]:
        """Consume one item to produce another (dough -> croissants)."""
        source_quantity = self._positive(source_quantity, "Consumed quantity")
        target_quantity = self._positive(target_quantity, "Produced quantity")
        if source_item_id == target_item_id:
            raise InvalidMovement("Conversion source and target must differ", inventory_item_id=source_item_id)

        source = self._get_item(source_item_id)
        target = self._get_item(target_item_id)
        reference_id = reference_id or f"conversion-{uuid.uuid4().hex[:12]}"

        consumed = self._move(source, MovementType.CONVERSION, -source_quantity, actor, notes, reference_id)
        produced = self._move(target, MovementType.CONVERSION, target_quantity, actor, notes, reference_id)
        self.db.commit()
        return consumed, produced

    def compensate_sale(
        self,
        transaction_id: str,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> List[MovementRecord]:
        """Give back the stock a sale deducted, as offsetting adjustment rows.

        The sale's own rows are left untouched. A transaction can be
        compensated once.
        """
        sales = self.repository.movements_for_reference(transaction_id, MovementType.SALE)
        if not sales:
            raise InvalidMovement(
                f"No sale movements recorded for transaction '{transaction_id}'",
                transaction_id=transaction_id,
            )

        reference_id = f"{COMPENSATION_PREFIX}{transaction_id}"
        if self.repository.movements_for_reference(reference_id, MovementType.ADJUSTMENT):
            raise InvalidMovement(
                f"Transaction '{transaction_id}' was already compensated",
                transaction_id=transaction_id,
            )

        note = f"Compensation for sale {transaction_id}"
        if notes:
            note = f"{note}: {notes}"

        movements = []
        for sale in sorted(sales, key=lambda m: m.inventory_item_id):
            item = self._get_item(sale.inventory_item_id)
            movements.append(
                self._move(item, MovementType.ADJUSTMENT, -sale.quantity_change, actor, note, reference_id)
            )
        self.db.commit()

        logger.info(f"Compensated sale {transaction_id}: {len(movements)} items restored")
        return movements

    # ===== HELPERS =====

    def _get_item(self, inventory_item_id: int) -> InventoryItem:
        item = self.repository.get_item(inventory_item_id)
        if item is None:
            raise InventoryItemNotFound(inventory_item_id)
        return item

    @staticmethod
    def _positive(quantity: Decimal, label: str) -> Decimal:
        quantity = Decimal(str(quantity))
        if quantity <= 0:
            raise InvalidMovement(f"{label} must be positive, got {quantity}", quantity=quantity)
        return quantity

    def _move(
        self,
        item: InventoryItem,
        movement_type: MovementType,
        delta: Decimal,
        actor: Optional[str],
        notes: Optional[str],
        reference_id: Optional[str],
    ) -> MovementRecord:
        if delta < 0 and not item.is_active:
            self.db.rollback()
            raise InvalidMovement(
                f"Inventory item '{item.name}' is inactive",
                inventory_item_id=item.id,
            )

        new_quantity = self.repository.apply_delta(item.id, delta)
        if new_quantity is None:
            available = self.repository.current_quantity(item.id)
            self.db.rollback()
            raise InvalidMovement(
                f"Insufficient stock for '{item.name}': need {-delta} {item.unit}, have {available} {item.unit}",
                inventory_item_id=item.id,
                required=-delta,
                available=available,
            )

        new_quantity = Decimal(new_quantity)
        try:
            return self.repository.append_movement(
                store_id=item.store_id,
                inventory_item_id=item.id,
                movement_type=movement_type,
                quantity_change=delta,
                previous_quantity=new_quantity - delta,
                new_quantity=new_quantity,
                reference_id=reference_id,
                notes=notes,
                actor=actor,
            )
        except IntegrityError as e:
            self.db.rollback()
            raise InvalidMovement(
                f"Movement for '{item.name}' duplicates ledger entry '{reference_id}'",
                inventory_item_id=item.id,
                reference_id=reference_id,
            ) from e
