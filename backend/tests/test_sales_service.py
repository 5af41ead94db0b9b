"""
Sales workflow tests.

Verifies:
- Due dates from payment terms
- Stock leaves on confirm (all-or-nothing) and returns on cancel/return/delete,
  to the locations it was drawn from
- Item edits on confirmed sales re-check stock
- Customer books follow status, payment and customer changes
- Frozen statuses
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from stockroom.errors import InsufficientStock, InvalidTransition, SaleFrozen, ValidationFailure
from stockroom.models import Sale, StockMovement
from stockroom.services import sales_service
from stockroom.services.ledger_service import product_movements, replay_product_ledger
from stockroom.services.sales_service import compute_due_date
from stockroom.services.stock_service import location_entries, transfer_stock


def _sale(customer, product, *, quantity=10, status="confirmed", **extra):
    payload = {
        "customer": customer.id,
        "status": status,
        "items": [{"product": product.id, "quantity": quantity, "unitPrice": 15}],
    }
    payload.update(extra)
    return sales_service.create_sale(payload)


def _books(customer) -> tuple:
    return customer.total_orders, customer.total_sales_amount, customer.current_balance


class TestComputeDueDate:
    def test_cash_has_no_due_date(self):
        assert compute_due_date("cash", datetime(2026, 1, 1)) is None

    @pytest.mark.parametrize("terms,days", [("net_15", 15), ("net_30", 30), ("net_60", 60)])
    def test_net_terms(self, terms, days):
        assert compute_due_date(terms, datetime(2026, 1, 1)) == datetime(2026, 1, 1) + timedelta(days=days)

    def test_missing_sale_date(self):
        assert compute_due_date("net_30", None) is None


# =============================================================================
# CREATE
# =============================================================================


class TestCreateSale:
    def test_draft_moves_nothing(self, product, credit_customer):
        sale = _sale(credit_customer, product, status="draft")

        assert sale.status == "draft"
        assert product.current_stock == 50
        assert len(product_movements(product.id)) == 1
        assert _books(credit_customer) == (0, Decimal("0.00"), Decimal("0.00"))

    def test_terms_snapshot_and_due_date(self, product, credit_customer):
        sale = _sale(credit_customer, product, status="draft", saleDate="2026-03-01")
        assert sale.payment_terms == "net_30"
        assert sale.due_date == datetime(2026, 3, 31)

    def test_cash_sale_has_no_due_date(self, product, customer):
        sale = _sale(customer, product, status="draft")
        assert sale.due_date is None

    def test_unit_price_defaults_to_selling_price(self, product, customer):
        sale = sales_service.create_sale({
            "customer": customer.id,
            "items": [{"product": product.id, "quantity": 2}],
        })
        assert sale.items[0].unit_price == Decimal("15.00")
        assert sale.grand_total == Decimal("30.00")

    def test_cannot_start_shipped(self, product, customer):
        with pytest.raises(ValidationFailure):
            _sale(customer, product, status="shipped")

    def test_aggregated_quantity_checked(self, db_session, product, customer):
        payload = {
            "customer": customer.id,
            "status": "confirmed",
            "items": [
                {"product": product.id, "quantity": 30, "unitPrice": 15},
                {"product": product.id, "quantity": 30, "unitPrice": 15},
            ],
        }
        with pytest.raises(InsufficientStock) as exc:
            sales_service.create_sale(payload)
        db_session.rollback()

        assert exc.value.requested == 60
        assert exc.value.message == "Insufficient stock for Widget. Available: 50, Required: 60"
        assert product.current_stock == 50

    def test_multi_product_all_or_nothing(self, db_session, make_product, customer):
        plenty = make_product(openingStock=100)
        scarce = make_product(openingStock=1)

        with pytest.raises(InsufficientStock):
            sales_service.create_sale({
                "customer": customer.id,
                "status": "confirmed",
                "items": [
                    {"product": plenty.id, "quantity": 5, "unitPrice": 15},
                    {"product": scarce.id, "quantity": 2, "unitPrice": 15},
                ],
            })
        db_session.rollback()

        assert plenty.current_stock == 100
        assert db_session.query(StockMovement).filter_by(reason="sale").count() == 0
        assert db_session.query(Sale).count() == 0


# =============================================================================
# STATE MACHINE
# =============================================================================


class TestSaleStatus:
    def test_confirm_draft_takes_stock(self, product, credit_customer):
        sale = _sale(credit_customer, product, status="draft")
        sales_service.update_sale_status(sale.id, "confirmed")

        assert product.current_stock == 40
        assert _books(credit_customer) == (1, Decimal("150.00"), Decimal("150.00"))

    def test_confirm_without_stock_keeps_draft(self, db_session, make_product, customer):
        p = make_product(openingStock=3)
        sale = _sale(customer, p, quantity=5, status="draft")

        with pytest.raises(InsufficientStock):
            sales_service.update_sale_status(sale.id, "confirmed")
        db_session.rollback()

        assert db_session.get(Sale, sale.id).status == "draft"
        assert p.current_stock == 3

    def test_ship_deliver_return(self, product, credit_customer):
        sale = _sale(credit_customer, product)

        sales_service.update_sale_status(sale.id, "shipped")
        assert product.current_stock == 40

        sales_service.update_sale_status(sale.id, "delivered")
        assert sale.delivery_date is not None

        sales_service.update_sale_status(sale.id, "returned")
        assert product.current_stock == 50
        assert product.total_sold == 0
        assert _books(credit_customer) == (0, Decimal("0.00"), Decimal("0.00"))
        assert replay_product_ledger(product).consistent

    def test_cancel_draft_is_silent(self, product, customer):
        sale = _sale(customer, product, status="draft")
        sales_service.update_sale_status(sale.id, "cancelled")
        assert sale.status == "cancelled"
        assert [m.reason for m in product_movements(product.id)] == ["opening_stock"]

    @pytest.mark.parametrize("start,target", [
        ("draft", "shipped"),
        ("draft", "delivered"),
        ("confirmed", "delivered"),
        ("confirmed", "returned"),
    ])
    def test_invalid_transitions(self, product, customer, start, target):
        sale = _sale(customer, product, status=start)
        with pytest.raises(InvalidTransition) as exc:
            sales_service.update_sale_status(sale.id, target)
        assert exc.value.status_code == 409

    def test_cancelled_is_terminal(self, product, customer):
        sale = _sale(customer, product)
        sales_service.update_sale_status(sale.id, "cancelled")
        with pytest.raises(InvalidTransition):
            sales_service.update_sale_status(sale.id, "confirmed")

    def test_shipped_cannot_be_cancelled(self, product, customer):
        sale = _sale(customer, product)
        sales_service.update_sale_status(sale.id, "shipped")
        with pytest.raises(InvalidTransition):
            sales_service.update_sale_status(sale.id, "cancelled")

    def test_unknown_status(self, product, customer):
        sale = _sale(customer, product)
        with pytest.raises(ValidationFailure):
            sales_service.update_sale_status(sale.id, "approved")


# =============================================================================
# EDITS
# =============================================================================


class TestUpdateSale:
    def test_confirmed_item_edit_moves_stock(self, product, credit_customer):
        sale = _sale(credit_customer, product, quantity=10)

        sales_service.update_sale(sale.id, {
            "items": [{"product": product.id, "quantity": 20, "unitPrice": 15}],
        })

        assert product.current_stock == 30
        assert product.total_sold == 20
        assert sale.grand_total == Decimal("300.00")
        assert _books(credit_customer) == (1, Decimal("300.00"), Decimal("300.00"))
        assert replay_product_ledger(product).consistent

    def test_insufficient_edit_changes_nothing(self, db_session, product, credit_customer):
        sale = _sale(credit_customer, product, quantity=10)

        with pytest.raises(InsufficientStock):
            sales_service.update_sale(sale.id, {
                "items": [{"product": product.id, "quantity": 80, "unitPrice": 15}],
            })
        db_session.rollback()

        sale = db_session.get(Sale, sale.id)
        assert [item.quantity for item in sale.items] == [10]
        assert product.current_stock == 40
        assert credit_customer.total_sales_amount == Decimal("150.00")

    def test_draft_edit_moves_no_stock(self, product, customer):
        sale = _sale(customer, product, status="draft")
        sales_service.update_sale(sale.id, {
            "items": [{"product": product.id, "quantity": 3, "unitPrice": 15}],
        })
        assert product.current_stock == 50
        assert sale.grand_total == Decimal("45.00")

    def test_customer_change_moves_books(self, product, customer, credit_customer):
        sale = _sale(customer, product)
        assert _books(customer) == (1, Decimal("150.00"), Decimal("0.00"))

        sales_service.update_sale(sale.id, {"customer": credit_customer.id})

        assert _books(customer) == (0, Decimal("0.00"), Decimal("0.00"))
        assert _books(credit_customer) == (1, Decimal("150.00"), Decimal("150.00"))
        assert sale.payment_terms == "net_30"
        assert sale.due_date == sale.sale_date + timedelta(days=30)

    @pytest.mark.parametrize("final", ["cancelled"])
    def test_frozen_sale(self, product, customer, final):
        sale = _sale(customer, product)
        sales_service.update_sale_status(sale.id, final)
        with pytest.raises(SaleFrozen):
            sales_service.update_sale(sale.id, {"notes": "too late"})

    def test_delivered_sale_accepts_payment(self, product, credit_customer):
        sale = _sale(credit_customer, product)
        sales_service.update_sale_status(sale.id, "shipped")
        sales_service.update_sale_status(sale.id, "delivered")

        sales_service.update_sale(sale.id, {"paymentStatus": "paid", "paymentMethod": "bank_transfer"})

        assert sale.payment_status == "paid"
        assert credit_customer.current_balance == Decimal("0.00")


class TestSalePayment:
    def test_paid_clears_balance(self, product, credit_customer):
        sale = _sale(credit_customer, product)

        sales_service.update_sale_payment(sale.id, "paid", "cash")
        assert credit_customer.current_balance == Decimal("0.00")

        sales_service.update_sale_payment(sale.id, "overdue")
        assert credit_customer.current_balance == Decimal("150.00")
        assert credit_customer.total_orders == 1

    def test_invalid_payment_status(self, product, customer):
        sale = _sale(customer, product)
        with pytest.raises(ValidationFailure):
            sales_service.update_sale_payment(sale.id, "refunded")


# =============================================================================
# LOCATIONS
# =============================================================================


class TestSaleLocations:
    @pytest.fixture
    def spread(self, make_product, warehouse, shop):
        """10 units: 4 in the warehouse, 6 in the shop."""
        p = make_product(openingStock=10, openingLocationId=warehouse.id)
        transfer_stock(product_id=p.id, from_location_id=warehouse.id, to_location_id=shop.id, quantity=6)
        return p

    def test_each_sale_row_names_its_location(self, db_session, spread, customer):
        _sale(customer, spread, quantity=7)

        rows = db_session.query(StockMovement).filter_by(reference_kind="sale", reason="sale").all()
        assert all(m.from_location_id is not None for m in rows)
        assert sum(m.quantity for m in rows) == 7
        assert sum(location_entries(spread).values()) == 3

    def test_cancel_puts_units_back_where_they_were(self, spread, customer, warehouse, shop):
        sale = _sale(customer, spread, quantity=7)

        sales_service.update_sale_status(sale.id, "cancelled")

        assert location_entries(spread) == {warehouse.id: 4, shop.id: 6}
        assert spread.current_stock == 10
        assert replay_product_ledger(spread).consistent

    def test_return_puts_units_back_where_they_were(self, spread, customer, warehouse, shop):
        sale = _sale(customer, spread, quantity=9)
        for status in ("shipped", "delivered", "returned"):
            sales_service.update_sale_status(sale.id, status)

        assert location_entries(spread) == {warehouse.id: 4, shop.id: 6}

    def test_edit_redraws_from_restored_locations(self, spread, customer, warehouse, shop):
        sale = _sale(customer, spread, quantity=7)

        sales_service.update_sale(sale.id, {"items": [{"product": spread.id, "quantity": 2, "unitPrice": 15}]})

        expected = {warehouse.id: 4, shop.id: 6}
        expected[min(expected)] -= 2
        assert location_entries(spread) == expected
        assert spread.current_stock == 8

        sales_service.delete_sale(sale.id)
        assert location_entries(spread) == {warehouse.id: 4, shop.id: 6}


# =============================================================================
# TWO-PHASE WRITES
# =============================================================================


class TestTwoPhaseSale:
    @pytest.fixture(autouse=True)
    def two_phase(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "STOCK_WRITE_MODE", "two_phase")

    def test_confirm_and_cancel_commit_every_row(self, db_session, make_product, customer, warehouse, shop):
        located = make_product(openingStock=10, openingLocationId=warehouse.id)
        transfer_stock(product_id=located.id, from_location_id=warehouse.id, to_location_id=shop.id, quantity=6)
        bucket = make_product(openingStock=8)

        sale = sales_service.create_sale({
            "customer": customer.id,
            "status": "confirmed",
            "items": [
                {"product": located.id, "quantity": 7, "unitPrice": 15},
                {"product": bucket.id, "quantity": 3, "unitPrice": 15},
            ],
        })
        assert (located.current_stock, bucket.current_stock) == (3, 5)

        sales_service.update_sale_status(sale.id, "cancelled")

        assert location_entries(located) == {warehouse.id: 4, shop.id: 6}
        assert bucket.current_stock == 8
        rows = db_session.query(StockMovement).filter_by(reference_kind="sale").all()
        assert {m.status for m in rows} == {"committed"}
        assert db_session.query(StockMovement).filter_by(status="pending").count() == 0
        assert replay_product_ledger(located).consistent
        assert replay_product_ledger(bucket).consistent

    def test_failed_edit_keeps_original_rows(self, db_session, product, credit_customer):
        sale = _sale(credit_customer, product, quantity=10)

        with pytest.raises(InsufficientStock):
            sales_service.update_sale(sale.id, {
                "items": [{"product": product.id, "quantity": 80, "unitPrice": 15}],
            })
        db_session.rollback()

        assert product.current_stock == 40
        rows = db_session.query(StockMovement).filter_by(reference_kind="sale").all()
        assert [(m.reason, m.quantity, m.status) for m in rows] == [("sale", 10, "committed")]


# =============================================================================
# DELETE / LIST / PROFIT
# =============================================================================


class TestDeleteSale:
    def test_delete_confirmed_returns_stock(self, db_session, product, credit_customer):
        sale = _sale(credit_customer, product)
        sales_service.delete_sale(sale.id)

        assert db_session.get(Sale, sale.id) is None
        assert product.current_stock == 50
        assert _books(credit_customer) == (0, Decimal("0.00"), Decimal("0.00"))
        assert product_movements(product.id)[-1].reason == "return"

    def test_delete_shipped_refused(self, product, customer):
        sale = _sale(customer, product)
        sales_service.update_sale_status(sale.id, "shipped")
        with pytest.raises(SaleFrozen):
            sales_service.delete_sale(sale.id)

    def test_delete_draft(self, db_session, product, customer):
        sale = _sale(customer, product, status="draft")
        sales_service.delete_sale(sale.id)
        assert db_session.query(Sale).count() == 0


class TestProfitAndList:
    def test_profit_fields(self, product, customer):
        sale = _sale(customer, product, quantity=10)
        assert sale.flat_profit == Decimal("45.00")
        assert sale.margin_profit == Decimal("50.00")

        data = sale.to_dict()
        assert data["flatProfit"] == 45.0
        assert data["marginProfit"] == 50.0

    def test_list_filters(self, product, customer, credit_customer):
        _sale(customer, product, status="draft")
        confirmed = _sale(credit_customer, product, quantity=1)

        rows, meta = sales_service.list_sales({"status": "confirmed"})
        assert [s.id for s in rows] == [confirmed.id]

        rows, meta = sales_service.list_sales({"customer_id": customer.id})
        assert meta["total"] == 1

        rows, meta = sales_service.list_sales({"search": "INV-"}, page=2, limit=1)
        assert meta["total"] == 2
        assert meta["hasPrev"] is True
        assert len(rows) == 1
