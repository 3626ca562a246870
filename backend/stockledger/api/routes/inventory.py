"""Inventory routes - store stock levels and unit conversions."""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from stockledger.api.deps import CurrentStore, PositiveIntId
from stockledger.core.exceptions import InventoryItemNotFound
from stockledger.core.rate_limit import limiter
from stockledger.db.repository import StockRepository
from stockledger.db.session import DbSession
from stockledger.schemas.inventory import InventoryItemResponse, UnitConversionResponse
from stockledger.services.unit_conversion_service import UnitConversionService

logger = logging.getLogger(__name__)

router = APIRouter()


class ConversionRequest(BaseModel):
    recipe_unit: str = Field(..., min_length=1, max_length=20)
    factor: Decimal = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)


@router.get("/{store_id}/inventory", response_model=list[InventoryItemResponse])
@limiter.limit("60/minute")
def list_inventory(request: Request, db: DbSession, store: CurrentStore, include_inactive: bool = False):
    """Inventory items of a store, by name."""
    return StockRepository(db).list_store_items(store.id, active_only=not include_inactive)


@router.put(
    "/{store_id}/inventory/{item_id}/conversions",
    response_model=UnitConversionResponse,
)
@limiter.limit("30/minute")
def put_unit_conversion(
    request: Request,
    db: DbSession,
    store: CurrentStore,
    item_id: PositiveIntId,
    body: ConversionRequest,
):
    """Create or update an item's recipe-unit conversion (1 stock unit = factor recipe units)."""
    item = StockRepository(db).get_item(item_id)
    if item is None or item.store_id != store.id:
        raise InventoryItemNotFound(item_id)

    conversion = UnitConversionService(db).register_conversion(item, body.recipe_unit, body.factor, body.notes)
    db.commit()
    db.refresh(conversion)
    return conversion
