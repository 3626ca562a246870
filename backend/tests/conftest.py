"""Pytest configuration and fixtures."""

import os

# Keep the app's own engine off the on-disk development database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stockledger.db.base import Base
from stockledger.db.session import enable_sqlite_foreign_keys, get_db
from stockledger.main import app
# Import all models to ensure they're registered with Base.metadata
from stockledger.models import *
from stockledger.models.inventory import InventoryItem, UnitConversion
from stockledger.models.recipe import IngredientLine, Recipe
from stockledger.models.store import Store

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiter during tests to avoid flaky failures
    from stockledger.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()


def add_recipe(db: Session, store: Store, product_id: str, lines, variation_id=None, name=None) -> Recipe:
    """Create a recipe from ``(item_or_None, ingredient_name, quantity, unit)`` tuples."""
    recipe = Recipe(
        store_id=store.id,
        product_id=product_id,
        variation_id=variation_id,
        name=name or product_id.replace("-", " ").title(),
    )
    db.add(recipe)
    db.flush()
    for position, (item, ingredient_name, quantity, unit) in enumerate(lines):
        db.add(IngredientLine(
            recipe_id=recipe.id,
            inventory_item_id=item.id if item is not None else None,
            ingredient_name=ingredient_name,
            quantity=Decimal(str(quantity)),
            recipe_unit=unit,
            position=position,
        ))
    db.flush()
    return recipe


@pytest.fixture
def make_recipe():
    return add_recipe


@pytest.fixture
def cafe(db_session: Session) -> dict:
    """Two stores with stock and recipes.

    Downtown sells croffles, lattes (base and large) and a caramel shot
    component; Uptown only has its own Croissant and Milk.
    """
    store = Store(name="Downtown", code="DT")
    other = Store(name="Uptown", code="UP")
    db_session.add_all([store, other])
    db_session.flush()

    croissant = InventoryItem(store_id=store.id, name="Croissant", unit="piece",
                              quantity=Decimal("5"), min_threshold=Decimal("1"))
    croissant_pack = InventoryItem(store_id=store.id, name="Croissant Pack", unit="pack",
                                   quantity=Decimal("10"), min_threshold=Decimal("2"))
    milk = InventoryItem(store_id=store.id, name="Milk", unit="l",
                         quantity=Decimal("5"), allows_fractional=True)
    beans = InventoryItem(store_id=store.id, name="Espresso Beans", unit="kg", quantity=Decimal("1"))
    cup = InventoryItem(store_id=store.id, name="Cup", unit="piece",
                        quantity=Decimal("50"), min_threshold=Decimal("10"))
    syrup = InventoryItem(store_id=store.id, name="Caramel Syrup", unit="ml", quantity=Decimal("100"))
    other_croissant = InventoryItem(store_id=other.id, name="Croissant", unit="piece", quantity=Decimal("50"))
    other_milk = InventoryItem(store_id=other.id, name="Milk", unit="l", quantity=Decimal("10"),
                               allows_fractional=True)
    db_session.add_all([croissant, croissant_pack, milk, beans, cup, syrup, other_croissant, other_milk])
    db_session.flush()

    db_session.add(UnitConversion(inventory_item_id=croissant_pack.id, recipe_unit="piece", factor=Decimal("20")))

    croffle = add_recipe(db_session, store, "classic-croffle", [(croissant, "Croissant", 1, "piece")])
    mini = add_recipe(db_session, store, "mini-croffle", [(croissant_pack, "Croissant", 2, "piece")])
    latte = add_recipe(db_session, store, "latte", [
        (beans, "Espresso Beans", 18, "g"),
        (milk, "Milk", 200, "ml"),
        (cup, "Cup", 1, "piece"),
    ])
    large_latte = add_recipe(db_session, store, "latte", [
        (beans, "Espresso Beans", 18, "g"),
        (milk, "Milk", 300, "ml"),
        (cup, "Cup", 1, "piece"),
    ], variation_id="large")
    caramel = add_recipe(db_session, store, "caramel-shot", [(syrup, "Caramel Syrup", 15, "ml")])
    db_session.commit()

    return {
        "store": store,
        "other": other,
        "croissant": croissant,
        "croissant_pack": croissant_pack,
        "milk": milk,
        "beans": beans,
        "cup": cup,
        "syrup": syrup,
        "other_croissant": other_croissant,
        "other_milk": other_milk,
        "croffle": croffle,
        "mini_croffle": mini,
        "latte": latte,
        "large_latte": large_latte,
        "caramel": caramel,
        "db": db_session,
    }
