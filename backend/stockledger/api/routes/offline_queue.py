"""Offline queue routes - capture, replay and conflict handling for offline sales."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from stockledger.api.deps import Actor, CurrentStore
from stockledger.core.exceptions import QueuedDeductionNotFound
from stockledger.core.rate_limit import limiter
from stockledger.db.session import DbSession
from stockledger.models.offline_queue import QueuedDeduction, QueueStatus
from stockledger.schemas.offline_queue import (
    AbandonRequest,
    QueuedDeductionResponse,
    QueueStatsResponse,
    ReplayResponse,
    ResolveConflictRequest,
)
from stockledger.schemas.sales import OfflineSaleRequest
from stockledger.services.offline_queue_service import OfflineQueueService
from stockledger.services.sales import SaleRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _store_item(service: OfflineQueueService, store_id: int, transaction_id: str) -> QueuedDeduction:
    item = service.get(transaction_id)
    if item.store_id != store_id:
        raise QueuedDeductionNotFound(transaction_id)
    return item


@router.post(
    "/{store_id}/offline-queue",
    response_model=QueuedDeductionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("120/minute")
def enqueue_offline_sale(request: Request, db: DbSession, store: CurrentStore, actor: Actor, body: OfflineSaleRequest):
    """Queue a sale captured while the terminal was offline."""
    sale = SaleRequest(
        transaction_id=body.transaction_id,
        store_id=store.id,
        lines=[line.to_cart_line() for line in body.lines],
        online=False,
        actor=actor,
    )
    if body.timestamp is not None:
        sale.timestamp = body.timestamp
    return OfflineQueueService(db).enqueue(sale, device_id=body.device_id)


@router.get("/{store_id}/offline-queue", response_model=list[QueuedDeductionResponse])
@limiter.limit("60/minute")
def list_offline_queue(
    request: Request,
    db: DbSession,
    store: CurrentStore,
    status_filter: Optional[list[QueueStatus]] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Queued sales in replay order."""
    return OfflineQueueService(db).list_queue(store.id, statuses=status_filter, limit=limit, offset=offset)


@router.get("/{store_id}/offline-queue/stats", response_model=QueueStatsResponse)
@limiter.limit("60/minute")
def get_offline_queue_stats(request: Request, db: DbSession, store: CurrentStore):
    return OfflineQueueService(db).queue_stats(store.id)


@router.post("/{store_id}/offline-queue/replay", response_model=ReplayResponse)
@limiter.limit("10/minute")
def replay_offline_queue(request: Request, db: DbSession, store: CurrentStore, actor: Actor):
    """Replay pending sales in capture order. Conflicts are parked, not fatal."""
    result = OfflineQueueService(db).replay(store.id, actor=actor)
    return ReplayResponse.model_validate(result)


@router.post("/{store_id}/offline-queue/purge")
@limiter.limit("10/minute")
def purge_offline_queue(request: Request, db: DbSession, store: CurrentStore):
    """Remove applied, resolved and abandoned rows."""
    removed = OfflineQueueService(db).purge_settled(store.id)
    return {"store_id": store.id, "removed": removed}


@router.delete("/{store_id}/offline-queue/{transaction_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
def cancel_offline_sale(request: Request, db: DbSession, store: CurrentStore, transaction_id: str):
    """Withdraw a pending sale before it is replayed."""
    service = OfflineQueueService(db)
    _store_item(service, store.id, transaction_id)
    service.cancel(transaction_id)


@router.post("/{store_id}/offline-queue/{transaction_id}/resolve", response_model=QueuedDeductionResponse)
@limiter.limit("30/minute")
def resolve_offline_conflict(
    request: Request,
    db: DbSession,
    store: CurrentStore,
    actor: Actor,
    transaction_id: str,
    body: ResolveConflictRequest,
):
    service = OfflineQueueService(db)
    _store_item(service, store.id, transaction_id)
    return service.resolve_conflict(transaction_id, actor=actor, strategy=body.strategy, notes=body.notes)


@router.post("/{store_id}/offline-queue/{transaction_id}/abandon", response_model=QueuedDeductionResponse)
@limiter.limit("30/minute")
def abandon_offline_sale(
    request: Request,
    db: DbSession,
    store: CurrentStore,
    actor: Actor,
    transaction_id: str,
    body: AbandonRequest,
):
    service = OfflineQueueService(db)
    _store_item(service, store.id, transaction_id)
    return service.abandon(transaction_id, actor=actor, notes=body.notes)
