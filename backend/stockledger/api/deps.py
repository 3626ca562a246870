"""Request dependencies shared by the routers."""

from typing import Annotated, Optional

from fastapi import Depends, Header, Path

from stockledger.core.exceptions import StoreNotFound
from stockledger.db.session import DbSession
from stockledger.models.store import Store

# Positive integer ID validator for path parameters
PositiveIntId = Annotated[int, Path(gt=0, description="Resource ID (must be positive)")]


def get_actor(x_actor_id: Annotated[Optional[str], Header(max_length=100)] = None) -> Optional[str]:
    """Opaque actor id forwarded by the POS front end / auth proxy."""
    return x_actor_id or None


def get_store(store_id: PositiveIntId, db: DbSession) -> Store:
    store = db.get(Store, store_id)
    if store is None or not store.is_active:
        raise StoreNotFound(store_id)
    return store


Actor = Annotated[Optional[str], Depends(get_actor)]
CurrentStore = Annotated[Store, Depends(get_store)]
