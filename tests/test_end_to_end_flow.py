"""
End-to-end plant flow through the API.

Walks one product from catalog to delivery:
- Catalog (machine, product, recipe)
- Production (95 cycles yesterday)
- Palletization (count puts 900 pieces in stock)
- Order of 1200 pieces, stock check, production order
- Delivery refused above stock, accepted at stock, then cancelled

Dates are relative to the real today because the API reads the clock.
"""

import pytest
from datetime import date, timedelta

YESTERDAY = date.today() - timedelta(days=1)


@pytest.fixture
def catalog(test_client):
    """Machine and product with a 10 per cycle, 100 per pallet recipe."""
    machine = test_client.post("/api/products/machines", json={"name": "VIBROPRESS 1"})
    assert machine.status_code == 201

    product = test_client.post("/api/products", json={"name": "paver holanda 6cm"})
    assert product.status_code == 201

    recipe = test_client.put(
        f"/api/products/{product.json()['id']}/recipe",
        json={"pieces_per_cycle": 10, "pieces_per_pallet": 100, "pieces_per_m2": "40"}
    )
    assert recipe.status_code == 200

    return {"machine_id": machine.json()["id"], "product_id": product.json()["id"]}


@pytest.fixture
def stocked(test_client, catalog):
    """95 cycles yesterday, counted as 9 pallets and 50 loose pieces."""
    production = test_client.post("/api/production", json={
        "machine_id": catalog["machine_id"],
        "production_date": YESTERDAY.isoformat(),
        "items": [{"product_id": catalog["product_id"], "cycles": 95}],
    })
    assert production.status_code == 201

    palletization = test_client.post("/api/palletization", json={
        "product_id": catalog["product_id"],
        "production_date": YESTERDAY.isoformat(),
        "complete_pallets": 9,
        "loose_pieces_after": 50,
    })
    assert palletization.status_code == 201
    return catalog


def available(test_client, product_id):
    data = test_client.get("/api/stock").json()["data"]
    return next(item["available_pieces"] for item in data if item["product_id"] == product_id)


class TestCatalogAndProduction:

    def test_product_name_is_normalized(self, test_client, catalog):
        response = test_client.get(f"/api/products/{catalog['product_id']}")

        assert response.json()["name"] == "PAVER HOLANDA 6CM"
        assert response.json()["has_recipe"] is True

    def test_unknown_product_is_404(self, test_client):
        response = test_client.get("/api/products/missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PRODUCT_NOT_FOUND"

    def test_production_waits_for_count(self, test_client, catalog):
        test_client.post("/api/production", json={
            "machine_id": catalog["machine_id"],
            "production_date": YESTERDAY.isoformat(),
            "items": [{"product_id": catalog["product_id"], "cycles": 95}],
        })

        pending = test_client.get("/api/palletization/pending").json()["pending"]

        assert len(pending) == 1
        assert pending[0]["theoretical_pieces"] == 950
        assert pending[0]["pieces_per_pallet"] == 100

    def test_duplicate_production_day_is_409(self, test_client, stocked):
        response = test_client.post("/api/production", json={
            "machine_id": stocked["machine_id"],
            "production_date": YESTERDAY.isoformat(),
            "items": [{"product_id": stocked["product_id"], "cycles": 5}],
        })

        assert response.status_code == 409


class TestPalletizationToStock:

    def test_count_puts_pieces_in_stock(self, test_client, stocked):
        assert available(test_client, stocked["product_id"]) == 900
        assert test_client.get("/api/palletization/pending").json()["pending"] == []

    def test_overcount_is_rejected(self, test_client, catalog):
        test_client.post("/api/production", json={
            "machine_id": catalog["machine_id"],
            "production_date": YESTERDAY.isoformat(),
            "items": [{"product_id": catalog["product_id"], "cycles": 95}],
        })

        response = test_client.post("/api/palletization", json={
            "product_id": catalog["product_id"],
            "production_date": YESTERDAY.isoformat(),
            "complete_pallets": 10,
            "loose_pieces_after": 0,
        })

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "NEGATIVE_LOSS"

    def test_delete_reverts_stock(self, test_client, stocked):
        history = test_client.get("/api/palletization", params={"product_id": stocked["product_id"]}).json()

        response = test_client.delete(f"/api/palletization/{history[0]['id']}")

        assert response.status_code == 204
        assert available(test_client, stocked["product_id"]) == 0

    def test_ledger_replays_cleanly(self, test_client, stocked):
        report = test_client.get(f"/api/stock/{stocked['product_id']}/integrity").json()

        assert report["matches"] is True
        assert report["aggregate_balance"] == 900


class TestOrderToDelivery:

    @pytest.fixture
    def order(self, test_client, stocked):
        response = test_client.post("/api/orders", json={
            "customer_name": "Construtora Horizonte",
            "items": [{"product_id": stocked["product_id"], "quantity": "1200", "unit_price": "2.50"}],
        })
        assert response.status_code == 201
        return response.json()

    def test_stock_check_suggests_shortfall(self, test_client, order):
        response = test_client.get(f"/api/orders/{order['id']}/stock-check")

        item = response.json()["items"][0]
        assert item["available_for_this_order"] == 900
        assert item["suggested_to_produce"] == 300

    def test_full_flow(self, test_client, stocked, order):
        item_id = order["items"][0]["id"]

        generated = test_client.post(f"/api/orders/{order['id']}/production-orders", json={
            "items": [{"order_item_id": item_id, "to_produce_pieces": 300}]
        })
        assert generated.status_code == 201
        assert generated.json()[0]["code"] == "PO-0001"
        assert test_client.get(f"/api/orders/{order['id']}").json()["status"] == "IN_PRODUCTION"

        refused = test_client.post(f"/api/orders/{order['id']}/deliveries", json={
            "items": [{"order_item_id": item_id, "quantity_pieces": 1000}]
        })
        assert refused.status_code == 422
        assert refused.json()["error"]["code"] == "INSUFFICIENT_STOCK"

        delivery = test_client.post(f"/api/orders/{order['id']}/deliveries", json={
            "items": [{"order_item_id": item_id, "quantity_pieces": 900}]
        })
        assert delivery.status_code == 201
        assert available(test_client, stocked["product_id"]) == 0

        outs = test_client.get("/api/stock/movements", params={"type": "OUT"}).json()
        assert outs["total"] == 1

        cancelled = test_client.patch(
            f"/api/deliveries/{delivery.json()['id']}/status", json={"status": "CANCELLED"}
        )
        assert cancelled.status_code == 200
        assert available(test_client, stocked["product_id"]) == 900

        kpis = test_client.get("/api/production-orders/kpis").json()
        assert kpis["in_progress"] == 1
        assert kpis["pieces_to_produce"] == 300

    def test_cancel_order_releases_claims(self, test_client, order):
        item_id = order["items"][0]["id"]
        test_client.post(f"/api/orders/{order['id']}/production-orders", json={
            "items": [{"order_item_id": item_id, "to_produce_pieces": 300}]
        })

        response = test_client.patch(f"/api/orders/{order['id']}/status", json={"status": "CANCELLED"})

        assert response.status_code == 200
        kpis = test_client.get("/api/production-orders/kpis").json()
        assert kpis["cancelled"] == 1
        assert kpis["pieces_to_produce"] == 0

    def test_manual_status_skip_is_rejected(self, test_client, order):
        response = test_client.patch(f"/api/orders/{order['id']}/status", json={"status": "DELIVERED"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"

    def test_unknown_order_is_404(self, test_client):
        response = test_client.get("/api/orders/missing/stock-check")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ORDER_NOT_FOUND"
