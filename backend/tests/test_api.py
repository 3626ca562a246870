"""API endpoint tests."""

from decimal import Decimal

from fastapi.testclient import TestClient

API = "/api/v1"


def _croffles(quantity=1):
    return [{"product_id": "classic-croffle", "quantity": str(quantity)}]


class TestHealthCheck:
    """Test health check endpoints."""

    def test_health_check(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client: TestClient):
        assert client.get("/").json()["health"] == "/health"


class TestInventory:
    """Test store inventory endpoints."""

    def test_list_inventory(self, client: TestClient, cafe):
        response = client.get(f"{API}/stores/{cafe['store'].id}/inventory")
        assert response.status_code == 200
        items = {item["name"]: item for item in response.json()}
        assert set(items) == {"Caramel Syrup", "Croissant", "Croissant Pack", "Cup", "Espresso Beans", "Milk"}
        assert Decimal(items["Croissant"]["quantity"]) == Decimal("5")
        assert items["Croissant Pack"]["conversions"][0]["recipe_unit"] == "piece"

    def test_inactive_items_hidden_by_default(self, client: TestClient, cafe):
        cafe["cup"].is_active = False
        cafe["db"].commit()
        names = [item["name"] for item in client.get(f"{API}/stores/{cafe['store'].id}/inventory").json()]
        assert "Cup" not in names
        names = [
            item["name"]
            for item in client.get(f"{API}/stores/{cafe['store'].id}/inventory?include_inactive=true").json()
        ]
        assert "Cup" in names

    def test_unknown_store(self, client: TestClient, cafe):
        response = client.get(f"{API}/stores/999/inventory")
        assert response.status_code == 404
        assert response.json()["error"] == "store_not_found"

    def test_put_conversion(self, client: TestClient, cafe):
        response = client.put(
            f"{API}/stores/{cafe['store'].id}/inventory/{cafe['cup'].id}/conversions",
            json={"recipe_unit": "Sleeve", "factor": "50"},
        )
        assert response.status_code == 200
        assert response.json()["recipe_unit"] == "sleeve"
        assert Decimal(response.json()["factor"]) == Decimal("50")

    def test_put_conversion_other_store_item(self, client: TestClient, cafe):
        response = client.put(
            f"{API}/stores/{cafe['other'].id}/inventory/{cafe['cup'].id}/conversions",
            json={"recipe_unit": "sleeve", "factor": "50"},
        )
        assert response.status_code == 404


class TestSales:
    """Test availability and sale commit endpoints."""

    def test_availability_shortfall(self, client: TestClient, cafe):
        response = client.post(
            f"{API}/stores/{cafe['store'].id}/availability",
            json={"lines": _croffles(6)},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["available"] is False
        assert data["shortfalls"][0]["item_name"] == "Croissant"
        assert Decimal(data["shortfalls"][0]["shortfall"]) == Decimal("1")
        assert data["products"][0]["max_quantity"] == 5

    def test_capacity(self, client: TestClient, cafe):
        response = client.get(
            f"{API}/stores/{cafe['store'].id}/products/latte/capacity",
            params={"components": ["caramel-shot"]},
        )
        assert response.status_code == 200
        assert response.json()["max_quantity"] == 6
        assert response.json()["limiting_item"] == "Caramel Syrup"

    def test_capacity_without_recipe(self, client: TestClient, cafe):
        response = client.get(f"{API}/stores/{cafe['store'].id}/products/water/capacity")
        assert response.status_code == 404
        assert response.json()["error"] == "recipe_not_found"

    def test_capacity_with_foreign_mapping(self, client: TestClient, cafe, make_recipe):
        make_recipe(cafe["db"], cafe["store"], "uptown-croffle", [(cafe["other_croissant"], "Croissant", 1, "piece")])
        cafe["db"].commit()
        response = client.get(f"{API}/stores/{cafe['store'].id}/products/uptown-croffle/capacity")
        assert response.status_code == 422
        assert response.json()["error"] == "foreign_mapping"

    def test_commit_sale(self, client: TestClient, cafe):
        """Committing deducts stock and records who sold it."""
        response = client.post(
            f"{API}/stores/{cafe['store'].id}/sales",
            json={"transaction_id": "txn-1", "lines": _croffles(2)},
            headers={"X-Actor-Id": "cashier-7"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["already_applied"] is False
        assert Decimal(data["applied_movements"][0]["new_quantity"]) == Decimal("3")

        movements = client.get(f"{API}/movements/reference/txn-1").json()
        assert movements[0]["actor"] == "cashier-7"

    def test_commit_sale_is_idempotent(self, client: TestClient, cafe):
        url = f"{API}/stores/{cafe['store'].id}/sales"
        body = {"transaction_id": "txn-1", "lines": _croffles(2)}
        client.post(url, json=body)
        response = client.post(url, json=body)
        assert response.status_code == 200
        assert response.json()["already_applied"] is True

        cafe["db"].refresh(cafe["croissant"])
        assert cafe["croissant"].quantity == Decimal("3")

    def test_insufficient_stock_is_conflict(self, client: TestClient, cafe):
        response = client.post(
            f"{API}/stores/{cafe['store'].id}/sales",
            json={"transaction_id": "txn-1", "lines": _croffles(6)},
        )
        assert response.status_code == 409
        data = response.json()
        assert data["error"] == "insufficient_stock_at_commit"
        assert data["item_name"] == "Croissant"
        assert Decimal(data["available"]) == Decimal("5")

    def test_foreign_mapping_is_unprocessable(self, client: TestClient, cafe, make_recipe):
        make_recipe(cafe["db"], cafe["other"], "classic-croffle", [(cafe["croissant"], "Croissant", 1, "piece")])
        cafe["db"].commit()
        response = client.post(
            f"{API}/stores/{cafe['other'].id}/sales",
            json={"transaction_id": "txn-1", "lines": _croffles()},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "foreign_mapping"

    def test_invalid_quantity(self, client: TestClient, cafe):
        response = client.post(
            f"{API}/stores/{cafe['store'].id}/sales",
            json={"transaction_id": "txn-1", "lines": _croffles(0)},
        )
        assert response.status_code == 422

    def test_blank_transaction_id(self, client: TestClient, cafe):
        response = client.post(
            f"{API}/stores/{cafe['store'].id}/sales",
            json={"transaction_id": "   ", "lines": _croffles()},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_request"


class TestOfflineQueue:
    """Test offline queue endpoints."""

    def _enqueue(self, client, store_id, transaction_id, quantity):
        return client.post(
            f"{API}/stores/{store_id}/offline-queue",
            json={"transaction_id": transaction_id, "lines": _croffles(quantity), "device_id": "till-2"},
        )

    def test_enqueue_and_replay(self, client: TestClient, cafe):
        store_id = cafe["store"].id
        response = self._enqueue(client, store_id, "t1", 2)
        assert response.status_code == 201
        assert response.json()["sequence_number"] == 1
        self._enqueue(client, store_id, "t2", 4)
        self._enqueue(client, store_id, "t3", 1)

        response = client.post(f"{API}/stores/{store_id}/offline-queue/replay")
        assert response.status_code == 200
        data = response.json()
        assert data["applied"] == 2
        assert data["applied_transactions"] == ["t1", "t3"]
        assert data["already_applied"] == []
        assert data["remaining"] == 0
        assert [item["transaction_id"] for item in data["conflicted"]] == ["t2"]
        assert data["conflicted"][0]["status"] == "conflicted"
        assert data["conflicted"][0]["conflict_details"]["error"] == "insufficient_stock_at_commit"

        conflicted = client.get(f"{API}/stores/{store_id}/offline-queue", params={"status": "conflicted"}).json()
        assert [item["transaction_id"] for item in conflicted] == ["t2"]

        stats = client.get(f"{API}/stores/{store_id}/offline-queue/stats").json()
        assert stats["by_status"]["applied"] == 2

    def test_resolve_partial_and_purge(self, client: TestClient, cafe):
        store_id = cafe["store"].id
        self._enqueue(client, store_id, "t1", 9)
        client.post(f"{API}/stores/{store_id}/offline-queue/replay")

        response = client.post(
            f"{API}/stores/{store_id}/offline-queue/t1/resolve",
            json={"strategy": "partial", "notes": "sold from display"},
            headers={"X-Actor-Id": "manager"},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "resolved"
        assert response.json()["resolved_by"] == "manager"

        response = client.post(f"{API}/stores/{store_id}/offline-queue/purge")
        assert response.json()["removed"] == 1

    def test_abandon(self, client: TestClient, cafe):
        store_id = cafe["store"].id
        self._enqueue(client, store_id, "t1", 9)
        client.post(f"{API}/stores/{store_id}/offline-queue/replay")
        response = client.post(f"{API}/stores/{store_id}/offline-queue/t1/abandon", json={})
        assert response.status_code == 200
        assert response.json()["status"] == "abandoned"

    def test_cancel(self, client: TestClient, cafe):
        store_id = cafe["store"].id
        self._enqueue(client, store_id, "t1", 1)
        assert client.delete(f"{API}/stores/{store_id}/offline-queue/t1").status_code == 204
        assert client.get(f"{API}/stores/{store_id}/offline-queue").json() == []

    def test_invalid_transition_is_conflict(self, client: TestClient, cafe):
        store_id = cafe["store"].id
        self._enqueue(client, store_id, "t1", 1)
        response = client.post(f"{API}/stores/{store_id}/offline-queue/t1/abandon", json={})
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_queue_transition"

    def test_unknown_strategy_rejected(self, client: TestClient, cafe):
        store_id = cafe["store"].id
        self._enqueue(client, store_id, "t1", 9)
        client.post(f"{API}/stores/{store_id}/offline-queue/replay")
        response = client.post(f"{API}/stores/{store_id}/offline-queue/t1/resolve", json={"strategy": "force"})
        assert response.status_code == 422

    def test_other_store_cannot_touch_item(self, client: TestClient, cafe):
        self._enqueue(client, cafe["store"].id, "t1", 1)
        response = client.delete(f"{API}/stores/{cafe['other'].id}/offline-queue/t1")
        assert response.status_code == 404


class TestMovements:
    """Test movement ledger endpoints."""

    def test_restock_and_query(self, client: TestClient, cafe):
        store_id = cafe["store"].id
        response = client.post(
            f"{API}/stores/{store_id}/restocks",
            json={"inventory_item_id": cafe["croissant"].id, "quantity": "10"},
        )
        assert response.status_code == 201
        assert response.json()["movement_type"] == "restock"

        response = client.get(f"{API}/movements", params={"inventory_item_id": cafe["croissant"].id})
        assert [m["movement_type"] for m in response.json()] == ["restock"]

    def test_adjustment_below_zero(self, client: TestClient, cafe):
        response = client.post(
            f"{API}/stores/{cafe['store'].id}/adjustments",
            json={"inventory_item_id": cafe["croissant"].id, "delta": "-10"},
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_movement"

    def test_damage(self, client: TestClient, cafe):
        response = client.post(
            f"{API}/stores/{cafe['store'].id}/damages",
            json={"inventory_item_id": cafe["milk"].id, "quantity": "0.5", "notes": "spilled"},
        )
        assert response.status_code == 201
        assert Decimal(response.json()["quantity_change"]) == Decimal("-0.5")

    def test_item_of_other_store(self, client: TestClient, cafe):
        response = client.post(
            f"{API}/stores/{cafe['other'].id}/restocks",
            json={"inventory_item_id": cafe["croissant"].id, "quantity": "1"},
        )
        assert response.status_code == 404

    def test_transfer(self, client: TestClient, cafe):
        response = client.post(
            f"{API}/stores/{cafe['store'].id}/transfers",
            json={"from_item_id": cafe["milk"].id, "to_item_id": cafe["other_milk"].id, "quantity": "1"},
        )
        assert response.status_code == 201
        assert [m["movement_type"] for m in response.json()] == ["transfer_out", "transfer_in"]

    def test_conversion(self, client: TestClient, cafe):
        response = client.post(
            f"{API}/stores/{cafe['store'].id}/conversions",
            json={
                "source_item_id": cafe["croissant_pack"].id,
                "source_quantity": "1",
                "target_item_id": cafe["croissant"].id,
                "target_quantity": "20",
            },
        )
        assert response.status_code == 201
        assert [Decimal(m["quantity_change"]) for m in response.json()] == [Decimal("-1"), Decimal("20")]

    def test_compensate(self, client: TestClient, cafe):
        client.post(
            f"{API}/stores/{cafe['store'].id}/sales",
            json={"transaction_id": "txn-1", "lines": _croffles(2)},
        )
        response = client.post(f"{API}/sales/txn-1/compensate", json={"notes": "refund"})
        assert response.status_code == 201
        assert response.json()[0]["reference_id"] == "compensation:txn-1"

        cafe["db"].refresh(cafe["croissant"])
        assert cafe["croissant"].quantity == Decimal("5")

    def test_history_check(self, client: TestClient, cafe):
        client.post(
            f"{API}/stores/{cafe['store'].id}/sales",
            json={"transaction_id": "txn-1", "lines": _croffles(2)},
        )
        response = client.get(f"{API}/inventory-items/{cafe['croissant'].id}/history-check")
        assert response.status_code == 200
        assert response.json()["consistent"] is True
        assert response.json()["movement_count"] == 1

    def test_history_check_unknown_item(self, client: TestClient, cafe):
        assert client.get(f"{API}/inventory-items/9999/history-check").status_code == 404


class TestMappings:
    """Test mapping repair endpoints."""

    def test_detect_and_repair(self, client: TestClient, cafe, make_recipe):
        make_recipe(cafe["db"], cafe["other"], "classic-croffle", [(cafe["croissant"], "Croissant", 1, "piece")])
        cafe["db"].commit()
        store_id = cafe["other"].id

        foreign = client.get(f"{API}/stores/{store_id}/mappings/foreign").json()
        assert [line["ingredient_name"] for line in foreign] == ["Croissant"]

        response = client.post(f"{API}/stores/{store_id}/mappings/repair")
        assert response.status_code == 200
        assert response.json()["fixed"] == 1
        assert response.json()["repaired"][0]["new_inventory_item_id"] == cafe["other_croissant"].id

        assert client.get(f"{API}/stores/{store_id}/mappings/foreign").json() == []
