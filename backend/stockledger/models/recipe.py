"""Recipe (Bill of Materials) models.

A Recipe belongs to a store and maps a sold product (optionally a specific
variation) to the inventory it consumes. Templates are store-independent
master lists that store recipes can be derived from.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from stockledger.db.base import Base, TimestampMixin
from stockledger.models.validators import positive


class RecipeTemplate(Base, TimestampMixin):
    """Store-independent master recipe used for multi-store deployment."""

    __tablename__ = "recipe_templates"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    servings_per_batch: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    ingredients: Mapped[list["TemplateIngredient"]] = relationship(
        "TemplateIngredient",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateIngredient.position, TemplateIngredient.id",
    )


class TemplateIngredient(Base):
    """An ingredient of a template, named but not bound to any store's stock."""

    __tablename__ = "template_ingredients"
    __table_args__ = (
        CheckConstraint(
            "conversion_factor IS NULL OR conversion_factor > 0",
            name="ck_template_ingredient_factor_positive",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    template_id: Mapped[int] = mapped_column(
        ForeignKey("recipe_templates.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ingredient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="piece", nullable=False)
    conversion_factor: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 6), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    template: Mapped["RecipeTemplate"] = relationship("RecipeTemplate", back_populates="ingredients")

    @validates("quantity", "conversion_factor")
    def _validate_positive(self, key, value):
        return positive(key, value)


class Recipe(Base, TimestampMixin):
    """A store's recipe for one product or product variation."""

    __tablename__ = "recipes"
    __table_args__ = (
        Index("ix_recipes_store_product_variation", "store_id", "product_id", "variation_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    store_id: Mapped[int] = mapped_column(
        ForeignKey("stores.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    template_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recipe_templates.id", ondelete="SET NULL"), nullable=True, index=True
    )
    # Catalog identifiers are owned by the catalog service; opaque here
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    variation_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    servings_per_batch: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    store: Mapped["Store"] = relationship("Store", back_populates="recipes")
    template: Mapped[Optional["RecipeTemplate"]] = relationship("RecipeTemplate")
    lines: Mapped[list["IngredientLine"]] = relationship(
        "IngredientLine",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="IngredientLine.position, IngredientLine.id",
    )

    @validates("servings_per_batch")
    def _validate_servings(self, key, value):
        return positive(key, value)


class IngredientLine(Base):
    """A single ingredient of a recipe.

    ``quantity`` is per serving, in ``recipe_unit``. ``conversion_factor`` is
    the recipe-unit quantity equal to one canonical stock unit of the mapped
    item; NULL means "derive it from the unit conversion table".
    """

    __tablename__ = "ingredient_lines"
    __table_args__ = (
        CheckConstraint(
            "conversion_factor IS NULL OR conversion_factor > 0",
            name="ck_ingredient_line_factor_positive",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    recipe_id: Mapped[int] = mapped_column(
        ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    inventory_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("inventory_items.id", ondelete="SET NULL"), nullable=True, index=True
    )
    ingredient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    recipe_unit: Mapped[str] = mapped_column(String(20), default="piece", nullable=False)
    conversion_factor: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 6), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="lines")
    inventory_item: Mapped[Optional["InventoryItem"]] = relationship("InventoryItem")

    @validates("quantity", "conversion_factor")
    def _validate_positive(self, key, value):
        return positive(key, value)

    @property
    def is_unmapped(self) -> bool:
        return self.inventory_item_id is None


# Forward references
from stockledger.models.inventory import InventoryItem
from stockledger.models.store import Store
