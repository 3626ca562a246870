"""Movement ledger model: MovementRecord."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.db.base import Base


class MovementType(str, Enum):
    """Kinds of stock change recorded in the ledger."""

    SALE = "sale"  # From a committed sale
    ADJUSTMENT = "adjustment"  # Manual correction or compensation
    TRANSFER_IN = "transfer_in"  # Received from another item/store
    TRANSFER_OUT = "transfer_out"  # Sent to another item/store
    RESTOCK = "restock"  # Goods received
    DAMAGE = "damage"  # Spoilage, breakage
    CONVERSION = "conversion"  # Raw material turned into another stocked item


UNIQUE_MOVEMENT_WHERE = text("movement_type = 'sale' OR substr(reference_id, 1, 13) = 'compensation:'")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MovementRecord(Base):
    """Immutable ledger entry for one stock change of one inventory item.

    Rows are never updated or deleted; corrections are new offsetting rows.
    ``previous_quantity`` / ``new_quantity`` let an item's history be
    replayed and checked for gaps.
    """

    __tablename__ = "movement_records"
    __table_args__ = (
        # A sale or its compensation touches each item once per reference.
        # Manual movements may share a batch reference.
        Index(
            "uq_movement_reference_item_type",
            "reference_id", "inventory_item_id", "movement_type",
            unique=True,
            sqlite_where=UNIQUE_MOVEMENT_WHERE,
            postgresql_where=UNIQUE_MOVEMENT_WHERE,
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False, index=True
    )
    store_id: Mapped[int] = mapped_column(
        ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    inventory_item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    movement_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    quantity_change: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    previous_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    new_quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    reference_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    actor: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Relationships
    inventory_item: Mapped["InventoryItem"] = relationship("InventoryItem")

    def __repr__(self) -> str:
        return (
            f"<MovementRecord {self.id} {self.movement_type} item={self.inventory_item_id} "
            f"{self.previous_quantity}->{self.new_quantity} ref={self.reference_id}>"
        )


# Forward references
from stockledger.models.inventory import InventoryItem
