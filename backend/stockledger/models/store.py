"""Store model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.db.base import ActiveFlagMixin, Base, TimestampMixin


class Store(Base, TimestampMixin, ActiveFlagMixin):
    """A selling location that owns its own inventory and recipes."""

    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    timezone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Relationships
    inventory_items: Mapped[list["InventoryItem"]] = relationship(
        "InventoryItem", back_populates="store"
    )
    recipes: Mapped[list["Recipe"]] = relationship("Recipe", back_populates="store")


# Forward references
from stockledger.models.inventory import InventoryItem
from stockledger.models.recipe import Recipe
