"""API routes."""

import logging
from fastapi import APIRouter

logger = logging.getLogger(__name__)

from stockledger.api.routes import inventory, mappings, movements, offline_queue, sales

api_router = APIRouter()

# Store-scoped routes
api_router.include_router(inventory.router, prefix="/stores", tags=["inventory"])
api_router.include_router(sales.router, prefix="/stores", tags=["sales", "availability"])
api_router.include_router(offline_queue.router, prefix="/stores", tags=["offline-queue"])
api_router.include_router(mappings.router, prefix="/stores", tags=["mappings"])

# Ledger routes
api_router.include_router(movements.router, tags=["movements"])
