"""Inventory models: InventoryItem and UnitConversion."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from stockledger.db.base import ActiveFlagMixin, Base, TimestampMixin
from stockledger.models.validators import non_negative, positive


class InventoryItem(Base, TimestampMixin, ActiveFlagMixin):
    """A store-scoped stock-keeping unit tracked in its canonical unit.

    Quantity is only changed through the deduction executor or the ledger's
    adjustment/transfer/restock operations, and every change leaves a
    MovementRecord behind. Items are deactivated, never deleted.
    """

    __tablename__ = "inventory_items"
    __table_args__ = (
        UniqueConstraint("store_id", "name", name="uq_inventory_item_store_name"),
        CheckConstraint("quantity >= 0", name="ck_inventory_item_quantity_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    store_id: Mapped[int] = mapped_column(
        ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="piece", nullable=False)  # canonical stock unit
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)
    min_threshold: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)
    # Partial-unit ingredients (half a croissant on a mini croffle)
    allows_fractional: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    store: Mapped["Store"] = relationship("Store", back_populates="inventory_items")
    conversions: Mapped[list["UnitConversion"]] = relationship(
        "UnitConversion", back_populates="inventory_item", cascade="all, delete-orphan"
    )

    @validates("quantity", "min_threshold", "unit_cost")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)

    @property
    def is_low_stock(self) -> bool:
        return self.quantity is not None and self.quantity <= (self.min_threshold or 0)

    def __repr__(self) -> str:
        return f"<InventoryItem {self.id} store={self.store_id} '{self.name}' {self.quantity} {self.unit}>"


class UnitConversion(Base):
    """Purchase-unit to recipe-unit factor for one inventory item.

    ``factor`` is the recipe-unit quantity that equals one canonical stock
    unit: a Croissant stocked in packs of 20 has ``recipe_unit="piece",
    factor=20``.
    """

    __tablename__ = "unit_conversions"
    __table_args__ = (
        UniqueConstraint("inventory_item_id", "recipe_unit", name="uq_unit_conversion_item_unit"),
        CheckConstraint("factor > 0", name="ck_unit_conversion_factor_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    inventory_item_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    recipe_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    factor: Mapped[Decimal] = mapped_column(Numeric(14, 6), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    inventory_item: Mapped["InventoryItem"] = relationship(
        "InventoryItem", back_populates="conversions"
    )

    @validates("factor")
    def _validate_factor(self, key, value):
        return positive(key, value)


# Forward references
from stockledger.models.store import Store
