"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Stores
    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("code", sa.String(50), nullable=True, unique=True),
        sa.Column("timezone", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Inventory items (store-scoped, canonical unit)
    op.create_table(
        "inventory_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("unit", sa.String(20), nullable=False, server_default="piece"),
        sa.Column("quantity", sa.Numeric(14, 4), nullable=False, server_default="0"),
        sa.Column("min_threshold", sa.Numeric(14, 4), nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Numeric(12, 4), nullable=True),
        sa.Column("allows_fractional", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("store_id", "name", name="uq_inventory_item_store_name"),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_item_quantity_non_negative"),
    )

    # Item-specific unit conversions
    op.create_table(
        "unit_conversions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("inventory_item_id", sa.Integer(),
                  sa.ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("recipe_unit", sa.String(20), nullable=False),
        sa.Column("factor", sa.Numeric(14, 6), nullable=False),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.UniqueConstraint("inventory_item_id", "recipe_unit", name="uq_unit_conversion_item_unit"),
        sa.CheckConstraint("factor > 0", name="ck_unit_conversion_factor_positive"),
    )

    # Recipe templates
    op.create_table(
        "recipe_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("servings_per_batch", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "template_ingredients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("template_id", sa.Integer(),
                  sa.ForeignKey("recipe_templates.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("ingredient_name", sa.String(200), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 4), nullable=False),
        sa.Column("unit", sa.String(20), nullable=False, server_default="piece"),
        sa.Column("conversion_factor", sa.Numeric(14, 6), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint(
            "conversion_factor IS NULL OR conversion_factor > 0",
            name="ck_template_ingredient_factor_positive",
        ),
    )

    # Store recipes
    op.create_table(
        "recipes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("template_id", sa.Integer(),
                  sa.ForeignKey("recipe_templates.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("product_id", sa.String(100), nullable=False),
        sa.Column("variation_id", sa.String(100), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("servings_per_batch", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_recipes_store_product_variation", "recipes", ["store_id", "product_id", "variation_id"]
    )

    op.create_table(
        "ingredient_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("recipe_id", sa.Integer(), sa.ForeignKey("recipes.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("inventory_item_id", sa.Integer(),
                  sa.ForeignKey("inventory_items.id", ondelete="SET NULL"), nullable=True, index=True),
        sa.Column("ingredient_name", sa.String(200), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 4), nullable=False),
        sa.Column("recipe_unit", sa.String(20), nullable=False, server_default="piece"),
        sa.Column("conversion_factor", sa.Numeric(14, 6), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint(
            "conversion_factor IS NULL OR conversion_factor > 0",
            name="ck_ingredient_line_factor_positive",
        ),
    )

    # Movement ledger (append-only)
    op.create_table(
        "movement_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("inventory_item_id", sa.Integer(),
                  sa.ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True),
        sa.Column("movement_type", sa.String(30), nullable=False, index=True),
        sa.Column("quantity_change", sa.Numeric(14, 4), nullable=False),
        sa.Column("previous_quantity", sa.Numeric(14, 4), nullable=False),
        sa.Column("new_quantity", sa.Numeric(14, 4), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=True, index=True),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("actor", sa.String(100), nullable=True),
    )
    # Sales and compensations only; manual movements may share a reference
    unique_where = sa.text("movement_type = 'sale' OR substr(reference_id, 1, 13) = 'compensation:'")
    op.create_index(
        "uq_movement_reference_item_type",
        "movement_records",
        ["reference_id", "inventory_item_id", "movement_type"],
        unique=True,
        sqlite_where=unique_where,
        postgresql_where=unique_where,
    )

    # Offline queue
    op.create_table(
        "queued_deductions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_id", sa.String(100), nullable=False, unique=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("device_id", sa.String(100), nullable=True),
        sa.Column("actor", sa.String(100), nullable=True),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("cart_lines", sa.JSON(), nullable=False),
        sa.Column("sale_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("conflict_details", sa.JSON(), nullable=True),
        sa.Column("resolution", sa.String(20), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.String(100), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("store_id", "sequence_number", name="uq_queued_deduction_store_sequence"),
    )


def downgrade() -> None:
    op.drop_table("queued_deductions")
    op.drop_table("movement_records")
    op.drop_table("ingredient_lines")
    op.drop_index("ix_recipes_store_product_variation", table_name="recipes")
    op.drop_table("recipes")
    op.drop_table("template_ingredients")
    op.drop_table("recipe_templates")
    op.drop_table("unit_conversions")
    op.drop_table("inventory_items")
    op.drop_table("stores")
