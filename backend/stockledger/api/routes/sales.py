"""Sale routes - availability quotes and sale commits."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from stockledger.api.deps import Actor, CurrentStore
from stockledger.core.rate_limit import limiter
from stockledger.db.session import DbSession
from stockledger.schemas.sales import (
    AvailabilityRequest,
    AvailabilityResponse,
    CommitResponse,
    ProductCapacityResponse,
    SaleCommitRequest,
)
from stockledger.services.availability_service import AvailabilityService
from stockledger.services.deduction_service import DeductionExecutor

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{store_id}/availability", response_model=AvailabilityResponse)
@limiter.limit("120/minute")
def check_availability(request: Request, db: DbSession, store: CurrentStore, body: AvailabilityRequest):
    """Advisory stock check for a cart. Nothing is reserved."""
    lines = [line.to_cart_line() for line in body.lines]
    return AvailabilityService(db).check_availability(store.id, lines)


@router.get("/{store_id}/products/{product_id}/capacity", response_model=ProductCapacityResponse)
@limiter.limit("120/minute")
def get_product_capacity(
    request: Request,
    db: DbSession,
    store: CurrentStore,
    product_id: str,
    variation_id: Optional[str] = None,
    components: list[str] = Query([]),
):
    """How many units of a product current stock can cover."""
    return AvailabilityService(db).max_sellable(store.id, product_id, variation_id, components)


@router.post("/{store_id}/sales", response_model=CommitResponse)
@limiter.limit("120/minute")
def commit_sale(request: Request, db: DbSession, store: CurrentStore, actor: Actor, body: SaleCommitRequest):
    """Deduct the inventory consumed by a sale.

    Safe to retry with the same transaction id: an already committed sale
    comes back with ``already_applied`` set and deducts nothing.
    """
    lines = [line.to_cart_line() for line in body.lines]
    return DeductionExecutor(db).commit_sale(body.transaction_id, store.id, lines, actor=actor)
