"""Ingredient mapping routes - find and repair cross-store recipe mappings."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Request

from stockledger.api.deps import CurrentStore
from stockledger.core.rate_limit import limiter
from stockledger.db.session import DbSession
from stockledger.schemas.mapping import IngredientLineResponse, RepairedLineResponse, RepairResponse
from stockledger.services.mapping_validator import MappingValidator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{store_id}/mappings/foreign", response_model=list[IngredientLineResponse])
@limiter.limit("30/minute")
def list_foreign_mappings(request: Request, db: DbSession, store: CurrentStore):
    """Ingredient lines of this store's recipes that point at another store's stock."""
    return MappingValidator(db).detect_foreign_mappings(store.id)


@router.get("/{store_id}/mappings/unmapped", response_model=list[IngredientLineResponse])
@limiter.limit("30/minute")
def list_unmapped_ingredients(request: Request, db: DbSession, store: CurrentStore):
    return MappingValidator(db).detect_unmapped(store.id)


@router.post("/{store_id}/mappings/repair", response_model=RepairResponse)
@limiter.limit("5/minute")
def repair_foreign_mappings(request: Request, db: DbSession, store: CurrentStore, include_unmapped: bool = False):
    """Rebind foreign-mapped lines to this store's items with the same name."""
    result = MappingValidator(db).repair_foreign_mappings(store.id, include_unmapped=include_unmapped)
    return RepairResponse(
        fixed=result.fixed,
        repaired=[RepairedLineResponse(**asdict(line)) for line in result.repaired],
        unresolved=[IngredientLineResponse.model_validate(line) for line in result.unresolved],
    )
