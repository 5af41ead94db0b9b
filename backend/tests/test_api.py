"""
HTTP API tests.

Verifies:
- Envelope shape ({success, message?, data?, pagination?})
- Error mapping (400 / 401 / 403 / 404 / 409)
- The main workflows end to end through the routes
"""

from datetime import timedelta

from stockroom.time_utils import utcnow


# =============================================================================
# SYSTEM
# =============================================================================


class TestSystem:
    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["data"]["database"]["status"] == "healthy"
        assert body["data"]["writeMode"] == "transactional"

    def test_unknown_route(self, client, db_session):
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        assert response.get_json() == {"success": False, "message": "Route not found"}


# =============================================================================
# CATALOG / INVENTORY
# =============================================================================


class TestProductsApi:
    def _payload(self, category, **extra):
        payload = {
            "sku": "bolt-10", "name": "Bolt", "categoryId": category.id,
            "costPrice": "0.20", "sellingPrice": "0.50", "openingStock": 100,
        }
        payload.update(extra)
        return payload

    def test_create_and_fetch(self, client, admin_headers, category):
        response = client.post("/api/products", headers=admin_headers, json=self._payload(category))
        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["sku"] == "BOLT-10"
        assert data["currentStock"] == 100
        assert data["stockStatus"] == "in_stock"

        fetched = client.get(f"/api/products/{data['id']}", headers=admin_headers)
        assert fetched.get_json()["data"]["name"] == "Bolt"

    def test_duplicate_sku_conflict(self, client, admin_headers, category):
        client.post("/api/products", headers=admin_headers, json=self._payload(category))
        response = client.post("/api/products", headers=admin_headers, json=self._payload(category))
        assert response.status_code == 409
        assert response.get_json()["success"] is False

    def test_missing_fields(self, client, admin_headers):
        response = client.post("/api/products", headers=admin_headers, json={"name": "Nameless"})
        assert response.status_code == 400
        assert "Missing required fields" in response.get_json()["message"]

    def test_unknown_product(self, client, admin_headers):
        assert client.get("/api/products/987654", headers=admin_headers).status_code == 404

    def test_delete_deactivates(self, client, admin_headers, product):
        response = client.delete(f"/api/products/{product.id}", headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()["data"]["isActive"] is False

    def test_pagination_meta(self, client, admin_headers, make_product):
        make_product()
        make_product()
        response = client.get("/api/products?limit=1", headers=admin_headers)
        pagination = response.get_json()["pagination"]
        assert pagination["total"] == 2
        assert pagination["totalPages"] == 2
        assert pagination["hasNext"] is True

    def test_low_stock_alert(self, client, admin_headers, make_product, product):
        low = make_product(openingStock=2)
        response = client.get("/api/products/alerts/low-stock", headers=admin_headers)
        assert [p["id"] for p in response.get_json()["data"]] == [low.id]


class TestCategoriesApi:
    def test_tree_update_and_delete(self, client, manager_headers, category):
        created = client.post("/api/categories", headers=manager_headers, json={
            "name": "Fasteners", "parentCategoryId": category.id,
        })
        assert created.status_code == 201
        child_id = created.get_json()["data"]["id"]

        tree = client.get("/api/categories/tree", headers=manager_headers).get_json()["data"]
        assert [node["id"] for node in tree] == [category.id]
        assert [node["id"] for node in tree[0]["subcategories"]] == [child_id]

        blocked = client.delete(f"/api/categories/{category.id}", headers=manager_headers)
        assert blocked.status_code == 409
        assert blocked.get_json()["success"] is False

        moved = client.put(f"/api/categories/{child_id}", headers=manager_headers, json={
            "parentCategoryId": None, "sortOrder": 5,
        })
        assert moved.status_code == 200
        assert moved.get_json()["data"]["parentCategory"] is None
        assert moved.get_json()["data"]["sortOrder"] == 5

        deleted = client.delete(f"/api/categories/{category.id}", headers=manager_headers)
        assert deleted.status_code == 200
        assert client.get(f"/api/categories/{category.id}", headers=manager_headers).status_code == 404

    def test_delete_refused_with_products(self, client, admin_headers, product):
        response = client.delete(f"/api/categories/{product.category_id}", headers=admin_headers)
        assert response.status_code == 409


class TestInventoryApi:
    def test_record_movement(self, client, admin_headers, product):
        response = client.post("/api/inventory/movements", headers=admin_headers, json={
            "productId": product.id, "type": "out", "reason": "damage", "quantity": 3,
        })
        assert response.status_code == 201
        data = response.get_json()["data"]
        assert (data["previousStock"], data["newStock"]) == (50, 47)
        assert data["performedBy"]["id"] is not None

    def test_insufficient_stock_details(self, client, admin_headers, product):
        response = client.post("/api/inventory/movements", headers=admin_headers, json={
            "productId": product.id, "type": "out", "reason": "loss", "quantity": 500,
        })
        assert response.status_code == 400
        body = response.get_json()
        assert body["details"]["available"] == 50
        assert body["details"]["requested"] == 500

    def test_transfer_type_rejected_on_movements(self, client, admin_headers, product):
        response = client.post("/api/inventory/movements", headers=admin_headers, json={
            "productId": product.id, "type": "transfer", "reason": "transfer", "quantity": 1,
        })
        assert response.status_code == 400

    def test_transfer_and_breakdown(self, client, admin_headers, make_product, warehouse, shop):
        p = make_product(openingStock=30, openingLocationId=warehouse.id)

        response = client.post("/api/inventory/transfer", headers=admin_headers, json={
            "productId": p.id, "fromLocationId": warehouse.id, "toLocationId": shop.id, "quantity": 12,
        })
        assert response.status_code == 201

        stock = client.get(f"/api/inventory/products/{p.id}/stock", headers=admin_headers).get_json()["data"]
        assert stock["currentStock"] == 30
        assert {row["location"]["id"]: row["quantity"] for row in stock["locations"]} == {
            warehouse.id: 18, shop.id: 12,
        }
        assert stock["recentMovements"][0]["type"] == "transfer"

    def test_same_location_transfer(self, client, admin_headers, make_product, warehouse):
        p = make_product(openingStock=5, openingLocationId=warehouse.id)
        response = client.post("/api/inventory/transfer", headers=admin_headers, json={
            "productId": p.id, "fromLocationId": warehouse.id, "toLocationId": warehouse.id, "quantity": 1,
        })
        assert response.status_code == 400

    def test_movement_list_and_summary(self, client, admin_headers, product):
        client.post("/api/inventory/movements", headers=admin_headers, json={
            "productId": product.id, "type": "in", "reason": "return", "quantity": 4,
        })

        listing = client.get(f"/api/inventory/movements?product={product.id}", headers=admin_headers).get_json()
        assert listing["pagination"]["total"] == 2
        assert listing["data"][0]["reason"] == "return"

        summary = client.get("/api/inventory/movements/summary?groupBy=reason", headers=admin_headers).get_json()
        by_reason = {row["reason"]: row for row in summary["data"]}
        assert by_reason["opening_stock"]["totalQuantity"] == 50
        assert by_reason["return"]["count"] == 1

    def test_location_delete_conflict(self, client, admin_headers, make_product, warehouse):
        make_product(openingStock=5, openingLocationId=warehouse.id)
        response = client.delete(f"/api/inventory/locations/{warehouse.id}", headers=admin_headers)
        assert response.status_code == 409


# =============================================================================
# WORKFLOWS
# =============================================================================


class TestPurchasesApi:
    def test_order_and_receive(self, client, admin_headers, product, supplier):
        created = client.post("/api/purchases", headers=admin_headers, json={
            "supplier": supplier.id,
            "status": "ordered",
            "items": [{"product": product.id, "quantity": 6, "unitPrice": 3}],
        })
        assert created.status_code == 201
        purchase = created.get_json()["data"]
        assert purchase["purchaseOrderNumber"] == "PO-000001"

        received = client.post(f"/api/purchases/{purchase['id']}/receive", headers=admin_headers, json={
            "receivedItems": [{"itemId": purchase["items"][0]["id"], "quantity": 6}],
        })
        assert received.status_code == 200
        assert received.get_json()["data"]["status"] == "received"

        frozen = client.put(f"/api/purchases/{purchase['id']}", headers=admin_headers, json={"notes": "x"})
        assert frozen.status_code == 409

    def test_receive_over_outstanding(self, client, admin_headers, product, supplier):
        purchase = client.post("/api/purchases", headers=admin_headers, json={
            "supplier": supplier.id,
            "status": "ordered",
            "items": [{"product": product.id, "quantity": 2, "unitPrice": 3}],
        }).get_json()["data"]

        response = client.post(f"/api/purchases/{purchase['id']}/receive", headers=admin_headers, json={
            "receivedItems": [{"itemId": purchase["items"][0]["id"], "quantity": 3}],
        })
        assert response.status_code == 400

    def test_staff_cannot_create(self, client, staff_headers, product, supplier):
        response = client.post("/api/purchases", headers=staff_headers, json={
            "supplier": supplier.id,
            "items": [{"product": product.id, "quantity": 1, "unitPrice": 1}],
        })
        assert response.status_code == 403


class TestSalesApi:
    def test_staff_sells(self, client, staff_headers, product, customer):
        response = client.post("/api/sales", headers=staff_headers, json={
            "customer": customer.id,
            "status": "confirmed",
            "items": [{"product": product.id, "quantity": 4}],
        })
        assert response.status_code == 201
        data = response.get_json()["data"]
        assert data["invoiceNumber"] == "INV-000001"
        assert data["grandTotal"] == 60.0
        assert data["salesPerson"] is not None

    def test_invalid_transition_conflict(self, client, admin_headers, product, customer):
        sale = client.post("/api/sales", headers=admin_headers, json={
            "customer": customer.id,
            "items": [{"product": product.id, "quantity": 1}],
        }).get_json()["data"]

        response = client.patch(f"/api/sales/{sale['id']}/status", headers=admin_headers, json={"status": "delivered"})
        assert response.status_code == 409
        assert response.get_json()["details"] == {"from": "draft", "to": "delivered"}

    def test_insufficient_stock_is_400(self, client, admin_headers, product, customer):
        response = client.post("/api/sales", headers=admin_headers, json={
            "customer": customer.id,
            "status": "confirmed",
            "items": [{"product": product.id, "quantity": 51}],
        })
        assert response.status_code == 400
        assert response.get_json()["message"] == "Insufficient stock for Widget. Available: 50, Required: 51"

        stock = client.get(f"/api/products/{product.id}", headers=admin_headers).get_json()["data"]
        assert stock["currentStock"] == 50

    def test_check_overdue(self, client, admin_headers, product, credit_customer):
        client.post("/api/sales", headers=admin_headers, json={
            "customer": credit_customer.id,
            "status": "confirmed",
            "saleDate": (utcnow() - timedelta(days=40)).isoformat(),
            "items": [{"product": product.id, "quantity": 1}],
        })

        response = client.post("/api/sales/check-overdue", headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()["data"]["updated"] == 1

        listing = client.get("/api/sales?paymentStatus=overdue", headers=admin_headers).get_json()
        assert listing["pagination"]["total"] == 1


class TestPartnersApi:
    def test_customer_history(self, client, admin_headers, product, customer):
        client.post("/api/sales", headers=admin_headers, json={
            "customer": customer.id,
            "status": "confirmed",
            "items": [{"product": product.id, "quantity": 1}],
        })

        response = client.get(f"/api/customers/{customer.id}/history", headers=admin_headers)
        body = response.get_json()
        assert response.status_code == 200
        assert body["data"]["customer"]["id"] == customer.id
        assert len(body["data"]["documents"]) == 1

    def test_create_supplier(self, client, admin_headers):
        response = client.post("/api/suppliers", headers=admin_headers, json={
            "name": "Bolt Bros", "email": "Sales@BoltBros.test",
        })
        assert response.status_code == 201
        assert response.get_json()["data"]["email"] == "sales@boltbros.test"


# =============================================================================
# SETTINGS / MAINTENANCE
# =============================================================================


class TestSettingsApi:
    def test_get_and_update(self, client, admin_headers):
        current = client.get("/api/settings", headers=admin_headers).get_json()["data"]
        assert set(current) >= {"company", "currency", "inventory"}

        response = client.put("/api/settings", headers=admin_headers, json={
            "company": {"name": "Stockroom Ltd"},
            "currency": {"code": "eur"},
            "inventory": {"lowStockThreshold": 8},
        })
        data = response.get_json()["data"]
        assert data["company"]["name"] == "Stockroom Ltd"
        assert data["currency"]["code"] == "EUR"
        assert data["inventory"]["lowStockThreshold"] == 8

    def test_unknown_section(self, client, admin_headers):
        response = client.put("/api/settings", headers=admin_headers, json={"theme": {"dark": True}})
        assert response.status_code == 400


class TestMaintenanceApi:
    def test_verify_ledger(self, client, admin_headers, product):
        response = client.get("/api/maintenance/verify-ledger", headers=admin_headers)
        data = response.get_json()["data"]
        assert data["consistent"] is True
        assert data["checked"] == 1
