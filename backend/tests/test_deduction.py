"""Tests for the deduction executor."""

import logging
import pytest
from decimal import Decimal

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from stockledger.core.exceptions import (
    ForeignMapping,
    InsufficientStockAtCommit,
    RecipeNotFound,
    UnmappedIngredient,
)
from stockledger.db.base import Base
from stockledger.db.session import enable_sqlite_foreign_keys
from stockledger.models.inventory import InventoryItem
from stockledger.models.movement import MovementRecord, MovementType
from stockledger.models.store import Store
from stockledger.services.availability_service import AvailabilityService
from stockledger.services.deduction_service import DeductionExecutor
from stockledger.services.sales import CartLine, SaleRequest


def _movements(db, reference_id=None):
    stmt = select(MovementRecord).order_by(MovementRecord.id)
    if reference_id is not None:
        stmt = stmt.where(MovementRecord.reference_id == reference_id)
    return list(db.scalars(stmt).all())


class TestCommitSale:

    def test_deducts_and_records_movement(self, cafe):
        db = cafe["db"]
        result = DeductionExecutor(db).commit_sale(
            "txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle", quantity=5)], actor="cashier-1"
        )

        db.refresh(cafe["croissant"])
        assert cafe["croissant"].quantity == Decimal("0")
        assert result.already_applied is False
        assert len(result.applied_movements) == 1

        applied = result.applied_movements[0]
        assert applied.previous_quantity == Decimal("5")
        assert applied.new_quantity == Decimal("0")

        movements = _movements(db, "txn-1")
        assert len(movements) == 1
        movement = movements[0]
        assert movement.movement_type == MovementType.SALE.value
        assert movement.quantity_change == Decimal("-5")
        assert movement.previous_quantity == Decimal("5")
        assert movement.new_quantity == Decimal("0")
        assert movement.store_id == cafe["store"].id
        assert movement.actor == "cashier-1"
        assert movement.notes == "Sale: Croissant"

    def test_next_sale_after_sellout_is_rejected(self, cafe):
        db = cafe["db"]
        executor = DeductionExecutor(db)
        executor.commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle", quantity=5)])

        with pytest.raises(InsufficientStockAtCommit) as exc:
            executor.commit_sale("txn-2", cafe["store"].id, [CartLine(product_id="classic-croffle")])
        assert exc.value.item_name == "Croissant"
        assert exc.value.required == Decimal("1")
        assert exc.value.available == Decimal("0")
        assert exc.value.transaction_id == "txn-2"
        assert _movements(db, "txn-2") == []

    def test_one_movement_per_item_across_lines(self, cafe):
        db = cafe["db"]
        DeductionExecutor(db).commit_sale("txn-1", cafe["store"].id, [
            CartLine(product_id="latte"),
            CartLine(product_id="latte", variation_id="large"),
        ])
        movements = _movements(db, "txn-1")
        assert sorted(m.inventory_item_id for m in movements) == sorted(
            [cafe["beans"].id, cafe["milk"].id, cafe["cup"].id]
        )
        milk = next(m for m in movements if m.inventory_item_id == cafe["milk"].id)
        assert milk.quantity_change == Decimal("-0.5")

    def test_pack_conversion(self, cafe):
        db = cafe["db"]
        DeductionExecutor(db).commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="mini-croffle")])
        db.refresh(cafe["croissant_pack"])
        assert cafe["croissant_pack"].quantity == Decimal("9.9")

    def test_mix_and_match_components(self, cafe):
        db = cafe["db"]
        DeductionExecutor(db).commit_sale("txn-1", cafe["store"].id, [
            CartLine(product_id="latte", quantity=2, components=["caramel-shot"]),
        ])
        db.refresh(cafe["syrup"])
        assert cafe["syrup"].quantity == Decimal("70")

    def test_commit_request(self, cafe):
        db = cafe["db"]
        request = SaleRequest(
            transaction_id="txn-1",
            store_id=cafe["store"].id,
            lines=[CartLine(product_id="classic-croffle")],
            actor="cashier-2",
        )
        result = DeductionExecutor(db).commit_request(request)
        assert result.transaction_id == "txn-1"
        assert _movements(db, "txn-1")[0].actor == "cashier-2"


class TestAtomicity:

    def test_failure_rolls_back_every_item(self, cafe):
        db = cafe["db"]
        # Croissant fits, milk (30 x 0.2 l) does not
        with pytest.raises(InsufficientStockAtCommit) as exc:
            DeductionExecutor(db).commit_sale("txn-1", cafe["store"].id, [
                CartLine(product_id="classic-croffle"),
                CartLine(product_id="latte", quantity=30),
            ])
        assert exc.value.item_name == "Milk"

        for key, expected in [("croissant", "5"), ("milk", "5"), ("beans", "1"), ("cup", "50")]:
            db.refresh(cafe[key])
            assert cafe[key].quantity == Decimal(expected)
        assert _movements(db) == []

    def test_inactive_item_rejected(self, cafe):
        db = cafe["db"]
        cafe["croissant"].is_active = False
        db.commit()
        with pytest.raises(InsufficientStockAtCommit) as exc:
            DeductionExecutor(db).commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle")])
        assert exc.value.available == Decimal("0")
        db.refresh(cafe["croissant"])
        assert cafe["croissant"].quantity == Decimal("5")

    def test_foreign_mapping_blocks_without_writes(self, cafe, make_recipe):
        db = cafe["db"]
        make_recipe(db, cafe["other"], "classic-croffle", [(cafe["croissant"], "Croissant", 1, "piece")])
        db.commit()
        with pytest.raises(ForeignMapping):
            DeductionExecutor(db).commit_sale("txn-1", cafe["other"].id, [CartLine(product_id="classic-croffle")])
        db.refresh(cafe["croissant"])
        assert cafe["croissant"].quantity == Decimal("5")
        assert _movements(db) == []

    def test_unmapped_ingredient_blocks(self, cafe, make_recipe):
        db = cafe["db"]
        make_recipe(db, cafe["store"], "muffin", [(None, "Muffin", 1, "piece")])
        db.commit()
        with pytest.raises(UnmappedIngredient):
            DeductionExecutor(db).commit_sale("txn-1", cafe["store"].id, [
                CartLine(product_id="classic-croffle"),
                CartLine(product_id="muffin"),
            ])
        db.refresh(cafe["croissant"])
        assert cafe["croissant"].quantity == Decimal("5")


class TestIdempotency:

    def test_repeat_commit_is_noop(self, cafe):
        db = cafe["db"]
        executor = DeductionExecutor(db)
        executor.commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle")])
        result = executor.commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle")])

        assert result.already_applied is True
        assert result.applied_movements == []
        assert result.skipped_items == [cafe["croissant"].id]
        db.refresh(cafe["croissant"])
        assert cafe["croissant"].quantity == Decimal("4")
        assert len(_movements(db, "txn-1")) == 1

    def test_only_unrecorded_items_are_deducted(self, cafe):
        db = cafe["db"]
        executor = DeductionExecutor(db)
        executor.commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle")])
        result = executor.commit_sale("txn-1", cafe["store"].id, [
            CartLine(product_id="classic-croffle"),
            CartLine(product_id="caramel-shot"),
        ])

        assert result.already_applied is False
        assert result.skipped_items == [cafe["croissant"].id]
        assert [m.inventory_item_id for m in result.applied_movements] == [cafe["syrup"].id]
        db.refresh(cafe["croissant"])
        assert cafe["croissant"].quantity == Decimal("4")

    def test_concurrent_duplicate_is_already_applied(self, cafe, monkeypatch):
        db = cafe["db"]
        DeductionExecutor(db).commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle")])

        late = DeductionExecutor(db)
        real_recorded = late._recorded_items
        calls = []

        def recorded_late(transaction_id):
            # The first lookup races ahead of the other terminal's commit
            calls.append(transaction_id)
            return set() if len(calls) == 1 else real_recorded(transaction_id)

        monkeypatch.setattr(late, "_recorded_items", recorded_late)
        result = late.commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle")])

        assert result.already_applied is True
        db.refresh(cafe["croissant"])
        assert cafe["croissant"].quantity == Decimal("4")
        assert len(_movements(db, "txn-1")) == 1


class TestUntrackedAndAlerts:

    def test_product_without_recipe_sells_untracked(self, cafe):
        db = cafe["db"]
        result = DeductionExecutor(db).commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="water")])
        assert result.untracked_products == ["water"]
        assert result.applied_movements == []
        assert result.already_applied is False

    def test_missing_component_listed_as_untracked(self, cafe):
        result = DeductionExecutor(cafe["db"]).commit_sale("txn-1", cafe["store"].id, [
            CartLine(product_id="latte", components=["whipped-cream"]),
        ])
        assert result.untracked_products == ["whipped-cream"]
        assert len(result.applied_movements) == 3

    def test_strict_tracking_blocks_untracked(self, cafe, monkeypatch):
        from stockledger.core.config import settings
        monkeypatch.setattr(settings, "strict_recipe_tracking", True)
        with pytest.raises(RecipeNotFound):
            DeductionExecutor(cafe["db"]).commit_sale("txn-1", cafe["store"].id, [CartLine(product_id="water")])

    def test_low_stock_reported(self, cafe, caplog):
        with caplog.at_level(logging.WARNING, logger="stockledger.services.deduction_service"):
            result = DeductionExecutor(cafe["db"]).commit_sale(
                "txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle", quantity=4)]
            )
        assert result.low_stock_items == ["Croissant"]
        assert "Low stock: 'Croissant'" in caplog.text

    def test_above_threshold_not_reported(self, cafe):
        result = DeductionExecutor(cafe["db"]).commit_sale(
            "txn-1", cafe["store"].id, [CartLine(product_id="classic-croffle", quantity=2)]
        )
        assert result.low_stock_items == []


class TestSaleRequestValidation:

    def test_transaction_id_required(self, cafe):
        with pytest.raises(ValueError):
            DeductionExecutor(cafe["db"]).commit_sale(" ", cafe["store"].id, [CartLine(product_id="latte")])

    def test_empty_cart_rejected(self, cafe):
        with pytest.raises(ValueError):
            DeductionExecutor(cafe["db"]).commit_sale("txn-1", cafe["store"].id, [])

    def test_non_positive_quantity_rejected(self):
        with pytest.raises(ValueError):
            CartLine(product_id="latte", quantity=0)


@pytest.fixture
def shared_engine(tmp_path):
    """File-backed database so two sessions see each other's commits."""
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False})
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


class TestCommitRace:

    def test_second_terminal_loses_the_last_croissant(self, shared_engine, make_recipe):
        Session = sessionmaker(autocommit=False, autoflush=False, bind=shared_engine)

        setup = Session()
        store = Store(name="Downtown", code="DT")
        setup.add(store)
        setup.flush()
        croissant = InventoryItem(store_id=store.id, name="Croissant", unit="piece", quantity=Decimal("1"))
        setup.add(croissant)
        setup.flush()
        make_recipe(setup, store, "classic-croffle", [(croissant, "Croissant", 1, "piece")])
        setup.commit()
        store_id, item_id = store.id, croissant.id
        setup.close()

        terminal_a, terminal_b = Session(), Session()
        try:
            cart = [CartLine(product_id="classic-croffle")]
            # Both terminals quote the same last croissant
            assert AvailabilityService(terminal_a).check_availability(store_id, cart).available
            assert AvailabilityService(terminal_b).check_availability(store_id, cart).available

            DeductionExecutor(terminal_a).commit_sale("txn-a", store_id, cart)
            with pytest.raises(InsufficientStockAtCommit) as exc:
                DeductionExecutor(terminal_b).commit_sale("txn-b", store_id, cart)
            assert exc.value.available == Decimal("0")
        finally:
            terminal_a.close()
            terminal_b.close()

        check = Session()
        try:
            assert check.get(InventoryItem, item_id).quantity == Decimal("0")
            movements = _movements(check)
            assert [m.reference_id for m in movements] == ["txn-a"]
        finally:
            check.close()
