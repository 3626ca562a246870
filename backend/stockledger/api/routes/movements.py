"""Movement ledger routes - history queries and non-sale stock movements."""

import logging
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from stockledger.api.deps import Actor, CurrentStore, PositiveIntId
from stockledger.core.exceptions import InventoryItemNotFound
from stockledger.core.rate_limit import limiter
from stockledger.db.session import DbSession
from stockledger.models.movement import MovementType
from stockledger.schemas.movement import (
    AdjustmentRequest,
    CompensateRequest,
    ConversionMovementRequest,
    DamageRequest,
    HistoryCheckResponse,
    MovementResponse,
    RestockRequest,
    TransferRequest,
)
from stockledger.services.movement_ledger import MovementFilter, MovementLedger

logger = logging.getLogger(__name__)

router = APIRouter()


def _ensure_store_item(ledger: MovementLedger, store_id: int, item_id: int) -> None:
    item = ledger.repository.get_item(item_id)
    if item is None or item.store_id != store_id:
        raise InventoryItemNotFound(item_id)


# ==================== QUERIES ====================

@router.get("/movements", response_model=list[MovementResponse])
@limiter.limit("60/minute")
def query_movements(
    request: Request,
    db: DbSession,
    store_id: Optional[int] = Query(None, gt=0),
    inventory_item_id: Optional[int] = Query(None, gt=0),
    movement_type: Optional[MovementType] = None,
    reference_id: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    """Ledger entries, newest first."""
    filters = MovementFilter(
        store_id=store_id,
        inventory_item_id=inventory_item_id,
        movement_type=movement_type,
        reference_id=reference_id,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return MovementLedger(db).query_movements(filters)


@router.get("/movements/reference/{reference_id}", response_model=list[MovementResponse])
@limiter.limit("60/minute")
def get_movements_for_reference(request: Request, db: DbSession, reference_id: str):
    return MovementLedger(db).movements_for_reference(reference_id)


@router.get("/inventory-items/{item_id}/history-check", response_model=HistoryCheckResponse)
@limiter.limit("30/minute")
def check_item_history(request: Request, db: DbSession, item_id: PositiveIntId):
    """Replay an item's ledger chain and compare it with the stock on hand."""
    check = MovementLedger(db).verify_item_history(item_id)
    return HistoryCheckResponse(
        inventory_item_id=check.inventory_item_id,
        movement_count=check.movement_count,
        current_quantity=check.current_quantity,
        ledger_quantity=check.ledger_quantity,
        consistent=check.consistent,
        gaps=[asdict(gap) for gap in check.gaps],
    )


# ==================== WRITES ====================

@router.post(
    "/stores/{store_id}/adjustments",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def create_adjustment(request: Request, db: DbSession, store: CurrentStore, actor: Actor, body: AdjustmentRequest):
    ledger = MovementLedger(db)
    _ensure_store_item(ledger, store.id, body.inventory_item_id)
    return ledger.record_adjustment(
        body.inventory_item_id, body.delta, actor=actor, notes=body.notes, reference_id=body.reference_id
    )


@router.post(
    "/stores/{store_id}/restocks",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def create_restock(request: Request, db: DbSession, store: CurrentStore, actor: Actor, body: RestockRequest):
    ledger = MovementLedger(db)
    _ensure_store_item(ledger, store.id, body.inventory_item_id)
    return ledger.record_restock(
        body.inventory_item_id, body.quantity, actor=actor, notes=body.notes, reference_id=body.reference_id
    )


@router.post(
    "/stores/{store_id}/damages",
    response_model=MovementResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def create_damage(request: Request, db: DbSession, store: CurrentStore, actor: Actor, body: DamageRequest):
    ledger = MovementLedger(db)
    _ensure_store_item(ledger, store.id, body.inventory_item_id)
    return ledger.record_damage(
        body.inventory_item_id, body.quantity, actor=actor, notes=body.notes, reference_id=body.reference_id
    )


@router.post(
    "/stores/{store_id}/transfers",
    response_model=list[MovementResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def create_transfer(request: Request, db: DbSession, store: CurrentStore, actor: Actor, body: TransferRequest):
    """Send stock from one of this store's items to another item (any store)."""
    ledger = MovementLedger(db)
    _ensure_store_item(ledger, store.id, body.from_item_id)
    outgoing, incoming = ledger.record_transfer(
        body.from_item_id, body.to_item_id, body.quantity,
        actor=actor, notes=body.notes, reference_id=body.reference_id,
    )
    return [outgoing, incoming]


@router.post(
    "/stores/{store_id}/conversions",
    response_model=list[MovementResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("30/minute")
def create_conversion(
    request: Request,
    db: DbSession,
    store: CurrentStore,
    actor: Actor,
    body: ConversionMovementRequest,
):
    """Turn stock of one item into another (unpacking, prep)."""
    ledger = MovementLedger(db)
    _ensure_store_item(ledger, store.id, body.source_item_id)
    _ensure_store_item(ledger, store.id, body.target_item_id)
    consumed, produced = ledger.record_conversion(
        body.source_item_id, body.source_quantity, body.target_item_id, body.target_quantity,
        actor=actor, notes=body.notes, reference_id=body.reference_id,
    )
    return [consumed, produced]


@router.post(
    "/sales/{transaction_id}/compensate",
    response_model=list[MovementResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("10/minute")
def compensate_sale(request: Request, db: DbSession, actor: Actor, transaction_id: str, body: CompensateRequest):
    """Return a disputed sale's stock with offsetting adjustment rows."""
    return MovementLedger(db).compensate_sale(transaction_id, actor=actor, notes=body.notes)
