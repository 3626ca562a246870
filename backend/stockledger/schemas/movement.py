"""Movement ledger schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class MovementResponse(BaseModel):
    """Ledger entry."""

    id: int
    created_at: datetime
    store_id: int
    inventory_item_id: int
    movement_type: str
    quantity_change: Decimal
    previous_quantity: Decimal
    new_quantity: Decimal
    reference_id: Optional[str] = None
    notes: Optional[str] = None
    actor: Optional[str] = None

    model_config = {"from_attributes": True}


class AdjustmentRequest(BaseModel):
    """Manual stock adjustment (signed delta)."""

    inventory_item_id: int
    delta: Decimal
    notes: Optional[str] = Field(None, max_length=500)
    reference_id: Optional[str] = Field(None, max_length=100)


class RestockRequest(BaseModel):
    inventory_item_id: int
    quantity: Decimal = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)
    reference_id: Optional[str] = Field(None, max_length=100)


class DamageRequest(RestockRequest):
    pass


class TransferRequest(BaseModel):
    """Paired transfer_out / transfer_in between two items."""

    from_item_id: int
    to_item_id: int
    quantity: Decimal = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)
    reference_id: Optional[str] = Field(None, max_length=100)


class ConversionMovementRequest(BaseModel):
    """Consume one item to produce another (paired conversion rows)."""

    source_item_id: int
    source_quantity: Decimal = Field(..., gt=0)
    target_item_id: int
    target_quantity: Decimal = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)
    reference_id: Optional[str] = Field(None, max_length=100)


class CompensateRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=400)


class HistoryGapResponse(BaseModel):
    movement_id: int
    expected_previous: Decimal
    recorded_previous: Decimal

    model_config = {"from_attributes": True}


class HistoryCheckResponse(BaseModel):
    inventory_item_id: int
    movement_count: int
    current_quantity: Decimal
    ledger_quantity: Optional[Decimal] = None
    consistent: bool
    gaps: list[HistoryGapResponse]

    model_config = {"from_attributes": True}
