"""
Maintenance tests: overdue sweep, counter and ledger verification, the
scheduler loop and the Flask CLI commands that wrap them.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stockroom.models import Customer, Product, Supplier
from stockroom.services import maintenance_service, purchase_service, sales_service
from stockroom.time_utils import parse_duration, utcnow


def _credit_sale(customer, product, *, days_ago=31, quantity=1, **extra):
    payload = {
        "customer": customer.id,
        "status": "confirmed",
        "saleDate": (utcnow() - timedelta(days=days_ago)).isoformat(),
        "items": [{"product": product.id, "quantity": quantity, "unitPrice": 15}],
    }
    payload.update(extra)
    return sales_service.create_sale(payload)


# =============================================================================
# OVERDUE SWEEP
# =============================================================================


class TestOverdueSweep:
    def test_only_unpaid_open_past_due_sales(self, product, customer, credit_customer):
        due = _credit_sale(credit_customer, product)
        _credit_sale(credit_customer, product, status="draft")
        _credit_sale(credit_customer, product, paymentStatus="paid")
        _credit_sale(credit_customer, product, days_ago=5)
        _credit_sale(customer, product)

        result = maintenance_service.run_overdue_sweep()

        assert result == {"checked": 1, "updated": 1, "invoiceNumbers": [due.invoice_number]}
        assert due.payment_status == "overdue"

    def test_second_sweep_is_noop(self, product, credit_customer):
        _credit_sale(credit_customer, product)
        maintenance_service.run_overdue_sweep()

        assert maintenance_service.run_overdue_sweep()["updated"] == 0

    def test_cancelled_sale_is_skipped(self, product, credit_customer):
        sale = _credit_sale(credit_customer, product)
        sales_service.update_sale_status(sale.id, "cancelled")

        assert maintenance_service.run_overdue_sweep()["checked"] == 0


# =============================================================================
# COUNTER VERIFICATION
# =============================================================================


class TestVerifyPartnerCounters:
    def test_consistent_books(self, product, supplier, credit_customer):
        purchase_service.create_purchase({
            "supplier": supplier.id,
            "status": "ordered",
            "items": [{"product": product.id, "quantity": 2, "unitPrice": 4}],
        })
        _credit_sale(credit_customer, product, quantity=3)

        result = maintenance_service.verify_partner_counters()

        assert result["consistent"] is True
        assert result["drift"] == []
        assert result["checked"] == 2

    def test_drift_reported_then_fixed(self, db_session, product, supplier, credit_customer):
        _credit_sale(credit_customer, product, quantity=2)
        db_session.query(Customer).filter_by(id=credit_customer.id).update({"total_orders": 7})
        db_session.query(Supplier).filter_by(id=supplier.id).update({"current_balance": Decimal("12.50")})
        db_session.commit()

        report = maintenance_service.verify_partner_counters()
        assert report["consistent"] is False
        assert report["fixed"] is False
        assert {(d["kind"], d["id"]) for d in report["drift"]} == {
            ("customer", credit_customer.id),
            ("supplier", supplier.id),
        }
        customer_drift = next(d for d in report["drift"] if d["kind"] == "customer")
        assert customer_drift["stored"]["totalOrders"] == 7
        assert customer_drift["expected"]["totalOrders"] == 1

        fixed = maintenance_service.verify_partner_counters(fix=True)
        assert fixed["fixed"] is True

        db_session.expire_all()
        assert credit_customer.total_orders == 1
        assert credit_customer.current_balance == Decimal("30.00")
        assert supplier.current_balance == Decimal("0.00")
        assert maintenance_service.verify_partner_counters()["consistent"] is True


# =============================================================================
# LEDGER VERIFICATION
# =============================================================================


class TestVerifyStockLedger:
    def test_clean_ledger(self, product, customer, make_product, warehouse):
        make_product(openingStock=4, openingLocationId=warehouse.id)
        sales_service.create_sale({
            "customer": customer.id,
            "status": "confirmed",
            "items": [{"product": product.id, "quantity": 5}],
        })

        result = maintenance_service.verify_stock_ledger()

        assert result["consistent"] is True
        assert result["checked"] == 2

    def test_tampered_stock_is_reported(self, db_session, product):
        db_session.query(Product).filter_by(id=product.id).update({"current_stock": 99})
        db_session.commit()

        result = maintenance_service.verify_stock_ledger()

        assert result["consistent"] is False
        (problem,) = result["problems"]
        assert problem["productId"] == product.id
        assert problem["currentStock"] == 99
        assert problem["replayedStock"] == 50


# =============================================================================
# SCHEDULER
# =============================================================================


class TestScheduler:
    def test_sleeps_between_runs_only(self, db_session):
        naps = []
        runs = maintenance_service.run_scheduler(iterations=2, interval="15m", sleep=naps.append)

        assert runs == 2
        assert naps == [900.0]

    def test_default_interval_from_config(self, app, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "OVERDUE_SWEEP_INTERVAL", "2h")
        naps = []
        maintenance_service.run_scheduler(iterations=3, sleep=naps.append)
        assert naps == [7200.0, 7200.0]

    def test_runs_sweep(self, product, credit_customer):
        sale = _credit_sale(credit_customer, product)
        maintenance_service.run_scheduler(iterations=1, sleep=lambda _: None)
        assert sale.payment_status == "overdue"


class TestParseDuration:
    @pytest.mark.parametrize("value,seconds", [
        ("3600", 3600),
        ("90s", 90),
        ("15m", 900),
        ("1h", 3600),
        ("2d", 172800),
        (45, 45),
    ])
    def test_valid(self, value, seconds):
        assert parse_duration(value) == timedelta(seconds=seconds)

    @pytest.mark.parametrize("value", ["0", "abc", "-5", "1w", ""])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


# =============================================================================
# CLI
# =============================================================================


@pytest.fixture(scope='function')
def runner(app):
    return app.test_cli_runner()


class TestCli:
    def test_system_init_is_idempotent(self, runner, db_session):
        first = runner.invoke(args=["system", "init", "--admin-email", "root@stockroom.test"])
        assert first.exit_code == 0, first.output
        assert "Created admin user: root@stockroom.test" in first.output
        assert "DONE" in first.output

        second = runner.invoke(args=["system", "init", "--admin-email", "root@stockroom.test"])
        assert second.exit_code == 0, second.output
        assert "Using existing admin user" in second.output

    def test_users_list_and_create(self, runner, admin_user):
        result = runner.invoke(args=["users", "list"])
        assert "admin@stockroom.test" in result.output

        result = runner.invoke(args=[
            "users", "create",
            "--name", "Jo", "--email", "jo@stockroom.test",
            "--password", "Password123!", "--role", "manager",
        ])
        assert result.exit_code == 0, result.output
        assert "Created manager user jo@stockroom.test" in result.output

    def test_users_list_empty(self, runner, db_session):
        result = runner.invoke(args=["users", "list"])
        assert "No users found." in result.output

    def test_verify_counters_exit_codes(self, runner, db_session, credit_customer):
        result = runner.invoke(args=["maintenance", "verify-counters"])
        assert result.exit_code == 0

        db_session.query(Customer).filter_by(id=credit_customer.id).update({"total_orders": 3})
        db_session.commit()

        result = runner.invoke(args=["maintenance", "verify-counters"])
        assert result.exit_code == 1
        assert '"consistent": false' in result.output

        result = runner.invoke(args=["maintenance", "verify-counters", "--fix"])
        assert result.exit_code == 0
        assert '"fixed": true' in result.output

    def test_verify_ledger_exit_code(self, runner, db_session, product):
        assert runner.invoke(args=["maintenance", "verify-ledger"]).exit_code == 0

        db_session.query(Product).filter_by(id=product.id).update({"current_stock": 1})
        db_session.commit()
        assert runner.invoke(args=["maintenance", "verify-ledger"]).exit_code == 1

    def test_overdue_sweep(self, runner, product, credit_customer):
        _credit_sale(credit_customer, product)
        result = runner.invoke(args=["maintenance", "overdue-sweep"])
        assert "Checked 1 sales, marked 1 overdue." in result.output

    def test_reconcile_pending(self, runner, db_session):
        result = runner.invoke(args=["maintenance", "reconcile-pending", "--grace-seconds", "0"])
        assert result.exit_code == 0
        assert "Checked 0 pending movements: 0 committed, 0 voided." in result.output

    def test_scheduler_iterations(self, runner, db_session):
        result = runner.invoke(args=["maintenance", "scheduler", "--iterations", "1"])
        assert result.exit_code == 0, result.output
        assert "Scheduler stopped after 1 runs." in result.output
