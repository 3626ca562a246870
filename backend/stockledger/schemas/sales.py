"""Sale, availability and commit schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from stockledger.services.sales import CartLine


class CartLineRequest(BaseModel):
    """One sold product in a cart."""

    product_id: str = Field(..., min_length=1, max_length=100)
    variation_id: Optional[str] = Field(None, max_length=100)
    quantity: Decimal = Field(Decimal("1"), gt=0)
    components: list[str] = []

    def to_cart_line(self) -> CartLine:
        return CartLine(
            product_id=self.product_id,
            quantity=self.quantity,
            variation_id=self.variation_id,
            components=list(self.components),
        )


class AvailabilityRequest(BaseModel):
    lines: list[CartLineRequest] = Field(..., min_length=1)


class SaleCommitRequest(BaseModel):
    """Commit a sale. The transaction id is the idempotency key."""

    transaction_id: str = Field(..., min_length=1, max_length=100)
    lines: list[CartLineRequest] = Field(..., min_length=1)
    timestamp: Optional[datetime] = None


class OfflineSaleRequest(SaleCommitRequest):
    device_id: Optional[str] = Field(None, max_length=100)


class ShortfallResponse(BaseModel):
    inventory_item_id: int
    item_name: str
    unit: str
    required: Decimal
    available: Decimal
    shortfall: Decimal

    model_config = {"from_attributes": True}


class ProductCapacityResponse(BaseModel):
    product_id: str
    variation_id: Optional[str] = None
    components: list[str] = []
    max_quantity: Optional[int] = None
    limiting_item_id: Optional[int] = None
    limiting_item: Optional[str] = None

    model_config = {"from_attributes": True}


class AvailabilityResponse(BaseModel):
    available: bool
    shortfalls: list[ShortfallResponse]
    products: list[ProductCapacityResponse]
    untracked: list[str]

    model_config = {"from_attributes": True}


class AppliedMovementResponse(BaseModel):
    movement_id: int
    inventory_item_id: int
    item_name: str
    unit: str
    quantity: Decimal
    previous_quantity: Decimal
    new_quantity: Decimal

    model_config = {"from_attributes": True}


class CommitResponse(BaseModel):
    transaction_id: str
    store_id: int
    applied_movements: list[AppliedMovementResponse]
    skipped_items: list[int]
    untracked_products: list[str]
    low_stock_items: list[str]
    already_applied: bool

    model_config = {"from_attributes": True}
