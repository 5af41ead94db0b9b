"""
Authorization tests.

Verifies:
- Unauthenticated requests return 401
- Staff denied catalog, purchasing, settings and maintenance writes (403)
- Manager may run maintenance but not change settings
- Login / me / logout session lifecycle
"""

import pytest


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/categories"),
            ("GET", "/api/inventory/movements"),
            ("POST", "/api/inventory/transfer"),
            ("GET", "/api/inventory/locations"),
            ("GET", "/api/suppliers"),
            ("GET", "/api/customers"),
            ("GET", "/api/purchases"),
            ("POST", "/api/sales"),
            ("POST", "/api/sales/check-overdue"),
            ("GET", "/api/settings"),
            ("GET", "/api/maintenance/verify-ledger"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.get_json()["success"] is False

    def test_bad_token(self, client, db_session):
        resp = client.get("/api/products", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Invalid or expired token"

    def test_wrong_scheme(self, client, db_session):
        resp = client.get("/api/products", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401


# =============================================================================
# STAFF DENIED - 403
# =============================================================================


class TestStaffDenied:
    """Staff can sell and read, nothing else."""

    @pytest.mark.parametrize(
        "method,path,permission",
        [
            ("POST", "/api/products", "products.write"),
            ("POST", "/api/categories", "categories.write"),
            ("PUT", "/api/categories/1", "categories.write"),
            ("DELETE", "/api/categories/1", "categories.delete"),
            ("POST", "/api/inventory/movements", "inventory.write"),
            ("POST", "/api/inventory/transfer", "inventory.write"),
            ("POST", "/api/inventory/locations", "locations.write"),
            ("POST", "/api/suppliers", "suppliers.write"),
            ("POST", "/api/purchases", "purchases.write"),
            ("PUT", "/api/settings", "settings.write"),
            ("GET", "/api/maintenance/verify-counters", "maintenance.read"),
            ("GET", "/api/maintenance/verify-ledger", "maintenance.read"),
        ],
    )
    def test_denied(self, client, staff_headers, method, path, permission):
        resp = getattr(client, method.lower())(path, headers=staff_headers, json={})
        assert resp.status_code == 403
        body = resp.get_json()
        assert body["success"] is False
        assert body["requiredPermission"] == permission

    def test_can_read_catalog(self, client, staff_headers, product):
        assert client.get("/api/products", headers=staff_headers).status_code == 200
        assert client.get("/api/inventory/movements", headers=staff_headers).status_code == 200

    def test_can_create_customer(self, client, staff_headers):
        resp = client.post("/api/customers", headers=staff_headers, json={
            "name": "Walk In", "email": "walkin@example.test",
        })
        assert resp.status_code == 201


# =============================================================================
# MANAGER / ADMIN
# =============================================================================


class TestManagerAccess:
    def test_can_fix_counters(self, client, manager_headers):
        resp = client.get("/api/maintenance/verify-counters?fix=true", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.get_json()["data"]["consistent"] is True

    def test_can_move_stock(self, client, manager_headers, product):
        resp = client.post("/api/inventory/movements", headers=manager_headers, json={
            "productId": product.id, "type": "adjustment", "reason": "adjustment", "quantity": 45,
        })
        assert resp.status_code == 201
        assert resp.get_json()["data"]["reference"]["type"] == "adjustment"

    def test_cannot_write_settings(self, client, manager_headers):
        resp = client.put("/api/settings", headers=manager_headers, json={"company": {"name": "X"}})
        assert resp.status_code == 403


class TestAdminAccess:
    def test_can_write_settings(self, client, admin_headers):
        resp = client.put("/api/settings", headers=admin_headers, json={"company": {"name": "Stockroom Ltd"}})
        assert resp.status_code == 200

    def test_permissions_in_me(self, client, admin_headers):
        data = client.get("/api/auth/me", headers=admin_headers).get_json()["data"]
        assert "settings.write" in data["permissions"]
        assert data["user"]["role"] == "admin"


# =============================================================================
# SESSIONS
# =============================================================================


class TestLogin:
    def test_login_me_logout(self, client, manager_user):
        resp = client.post("/api/auth/login", json={"email": "manager@stockroom.test", "password": "Password123!"})
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["user"]["email"] == "manager@stockroom.test"
        assert "maintenance.write" in data["permissions"]
        assert "settings.write" not in data["permissions"]
        assert data["expiresAt"].endswith("Z")

        headers = {"Authorization": f"Bearer {data['token']}"}
        assert client.get("/api/auth/me", headers=headers).status_code == 200
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_wrong_password(self, client, admin_user):
        resp = client.post("/api/auth/login", json={"email": "admin@stockroom.test", "password": "nope12345"})
        assert resp.status_code == 401
        assert resp.get_json()["message"] == "Invalid credentials"

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={"email": "x@y.z"}).status_code == 400
