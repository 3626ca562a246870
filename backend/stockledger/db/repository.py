"""Stock storage port.

Everything that reads or mutates InventoryItem quantities and the movement
ledger goes through ``StockRepository``. Services receive it (or build it from
their session) instead of reaching for a process-wide handle, so the deduction
core can be exercised against any session/engine.

Quantity changes are single guarded UPDATE statements::

    UPDATE inventory_items SET quantity = quantity - :delta
    WHERE id = :id AND is_active AND quantity >= :delta

never a read-then-write pair, so concurrent terminals cannot lose updates or
push stock below zero.
"""

from decimal import Decimal
from typing import Iterable, List, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stockledger.models.inventory import InventoryItem
from stockledger.models.movement import MovementRecord, MovementType


class StockPort(Protocol):
    """Operations the deduction core needs from persistent storage."""

    def get_item(self, item_id: int) -> Optional[InventoryItem]: ...

    def get_items(self, item_ids: Iterable[int]) -> dict[int, InventoryItem]: ...

    def list_store_items(self, store_id: int, active_only: bool = True) -> List[InventoryItem]: ...

    def current_quantity(self, item_id: int) -> Optional[Decimal]: ...

    def decrement_if_available(self, item_id: int, delta: Decimal) -> Optional[Decimal]: ...

    def apply_delta(self, item_id: int, delta: Decimal) -> Optional[Decimal]: ...

    def append_movement(
        self,
        *,
        store_id: int,
        inventory_item_id: int,
        movement_type: MovementType,
        quantity_change: Decimal,
        previous_quantity: Decimal,
        new_quantity: Decimal,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> MovementRecord: ...

    def movements_for_reference(
        self, reference_id: str, movement_type: Optional[MovementType] = None
    ) -> List[MovementRecord]: ...


class StockRepository:
    """SQLAlchemy implementation of :class:`StockPort`."""

    def __init__(self, db: Session):
        self.db = db

    # ===== READS =====

    def get_item(self, item_id: int) -> Optional[InventoryItem]:
        return self.db.get(InventoryItem, item_id)

    def get_items(self, item_ids: Iterable[int]) -> dict[int, InventoryItem]:
        ids = set(item_ids)
        if not ids:
            return {}
        stmt = (
            select(InventoryItem)
            .where(InventoryItem.id.in_(ids))
            .execution_options(populate_existing=True)
        )
        items = self.db.scalars(stmt).all()
        return {item.id: item for item in items}

    def list_store_items(self, store_id: int, active_only: bool = True) -> List[InventoryItem]:
        stmt = select(InventoryItem).where(InventoryItem.store_id == store_id)
        if active_only:
            stmt = stmt.where(InventoryItem.active_only())
        return list(self.db.scalars(stmt.order_by(InventoryItem.name)).all())

    def current_quantity(self, item_id: int) -> Optional[Decimal]:
        """Read the committed/transaction-local quantity, bypassing the identity map."""
        return self.db.scalar(select(InventoryItem.quantity).where(InventoryItem.id == item_id))

    # ===== GUARDED WRITES =====

    def decrement_if_available(self, item_id: int, delta: Decimal) -> Optional[Decimal]:
        """Subtract ``delta`` only if at least ``delta`` is on hand.

        Returns the new quantity, or None when the guard rejected the update
        (insufficient stock, inactive or missing item).
        """
        stmt = (
            update(InventoryItem)
            .where(
                InventoryItem.id == item_id,
                InventoryItem.is_active.is_(True),
                InventoryItem.quantity >= delta,
            )
            .values(quantity=InventoryItem.quantity - delta)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            return None
        return self.current_quantity(item_id)

    def apply_delta(self, item_id: int, delta: Decimal) -> Optional[Decimal]:
        """Add a signed ``delta`` unless the result would be negative.

        Used by adjustments, restocks and transfers. Returns the new quantity
        or None when the guard rejected the update.
        """
        if delta < 0:
            return self.decrement_if_available(item_id, -delta)
        stmt = (
            update(InventoryItem)
            .where(InventoryItem.id == item_id)
            .values(quantity=InventoryItem.quantity + delta)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            return None
        return self.current_quantity(item_id)

    # ===== LEDGER =====

    def append_movement(
        self,
        *,
        store_id: int,
        inventory_item_id: int,
        movement_type: MovementType,
        quantity_change: Decimal,
        previous_quantity: Decimal,
        new_quantity: Decimal,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> MovementRecord:
        movement = MovementRecord(
            store_id=store_id,
            inventory_item_id=inventory_item_id,
            movement_type=MovementType(movement_type).value,
            quantity_change=quantity_change,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            reference_id=reference_id,
            notes=notes[:500] if notes else None,
            actor=actor,
        )
        self.db.add(movement)
        self.db.flush()
        return movement

    def movements_for_reference(
        self, reference_id: str, movement_type: Optional[MovementType] = None
    ) -> List[MovementRecord]:
        stmt = select(MovementRecord).where(MovementRecord.reference_id == reference_id)
        if movement_type is not None:
            stmt = stmt.where(MovementRecord.movement_type == MovementType(movement_type).value)
        return list(self.db.scalars(stmt.order_by(MovementRecord.id)).all())
