# Overview: Scheduled maintenance: overdue sweep, counter/ledger verification and the scheduler loop.

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import Customer, Product, Purchase, Sale, Supplier
from .concurrency import run_with_retry
from .ledger_service import reconcile_pending_movements, replay_product_ledger
from .partner_counters import ZERO, purchase_contribution, sale_contribution
from .stock_service import location_entries
from stockroom.time_utils import parse_duration, utcnow

logger = logging.getLogger(__name__)

OVERDUE_EXCLUDED_STATUSES = ("draft", "cancelled", "returned")


def run_overdue_sweep(now: datetime | None = None) -> dict:
    """
    Promote unpaid sales past their due date to paymentStatus=overdue.

    Each invoice is updated and committed on its own. Balances are not
    touched: an overdue sale is still unpaid.
    """
    now = now or utcnow()
    sale_ids = [
        sale_id
        for (sale_id,) in db.session.query(Sale.id)
        .filter(
            Sale.payment_status == "unpaid",
            Sale.due_date.isnot(None),
            Sale.due_date < now,
            Sale.status.notin_(OVERDUE_EXCLUDED_STATUSES),
        )
        .order_by(Sale.id.asc())
        .all()
    ]

    updated: list[str] = []
    for sale_id in sale_ids:
        def _mark(sale_id=sale_id):
            sale = db.session.get(Sale, sale_id)
            if sale is None or sale.payment_status != "unpaid":
                return None
            sale.payment_status = "overdue"
            db.session.commit()
            return sale.invoice_number

        number = run_with_retry(_mark)
        if number:
            updated.append(number)

    if updated:
        logger.info("Overdue sweep marked %d sales overdue: %s", len(updated), ", ".join(updated))
    return {"checked": len(sale_ids), "updated": len(updated), "invoiceNumbers": updated}


def _expected_counters(model, documents, contribution_for) -> dict[int, dict]:
    expected = {
        partner_id: {"totalOrders": 0, "totalAmount": ZERO, "currentBalance": ZERO}
        for (partner_id,) in db.session.query(model.id).all()
    }
    for document in documents:
        contribution = contribution_for(document)
        if not contribution.counted or contribution.partner_id not in expected:
            continue
        row = expected[contribution.partner_id]
        row["totalOrders"] += contribution.orders
        row["totalAmount"] += contribution.amount
        row["currentBalance"] += contribution.balance
    return expected


def _compare_counters(kind: str, model, amount_attr: str, expected: dict[int, dict], *, fix: bool) -> list[dict]:
    drift = []
    for partner in db.session.query(model).order_by(model.id.asc()).all():
        want = expected.get(partner.id)
        have = {
            "totalOrders": partner.total_orders or 0,
            "totalAmount": getattr(partner, amount_attr) or ZERO,
            "currentBalance": partner.current_balance or ZERO,
        }
        if have == want:
            continue
        drift.append({
            "kind": kind,
            "id": partner.id,
            "name": partner.name,
            "stored": {k: float(v) if k != "totalOrders" else v for k, v in have.items()},
            "expected": {k: float(v) if k != "totalOrders" else v for k, v in want.items()},
        })
        if fix:
            partner.total_orders = want["totalOrders"]
            setattr(partner, amount_attr, want["totalAmount"])
            partner.current_balance = want["currentBalance"]
    return drift


def verify_partner_counters(*, fix: bool = False) -> dict:
    """
    Recompute supplier and customer counters from purchases and sales.

    Returns the partners whose stored totalOrders / amount / currentBalance
    differ from the recomputed values. With fix=True the stored values are
    overwritten and committed.
    """
    supplier_expected = _expected_counters(Supplier, db.session.query(Purchase).all(), purchase_contribution)
    customer_expected = _expected_counters(Customer, db.session.query(Sale).all(), sale_contribution)

    drift = _compare_counters("supplier", Supplier, "total_purchase_amount", supplier_expected, fix=fix)
    drift += _compare_counters("customer", Customer, "total_sales_amount", customer_expected, fix=fix)

    if fix and drift:
        db.session.commit()
        logger.warning("Repaired counter drift on %d partners", len(drift))
    elif drift:
        logger.warning("Counter drift detected on %d partners", len(drift))

    return {
        "checked": len(supplier_expected) + len(customer_expected),
        "drift": drift,
        "fixed": bool(fix and drift),
        "consistent": not drift,
    }


def verify_stock_ledger() -> dict:
    """Replay every product's ledger and check its location breakdown."""
    problems = []
    products = db.session.query(Product).order_by(Product.id.asc()).all()
    for product in products:
        replay = replay_product_ledger(product)
        entries = location_entries(product)
        location_sum_ok = not entries or sum(entries.values()) == product.current_stock
        if not replay.consistent or not location_sum_ok or product.current_stock < 0:
            report = replay.to_dict()
            report["locationSum"] = sum(entries.values()) if entries else None
            report["locationSumConsistent"] = location_sum_ok
            problems.append(report)

    if problems:
        logger.warning("Stock ledger verification found %d inconsistent products", len(problems))
    return {"checked": len(products), "problems": problems, "consistent": not problems}


def run_scheduler(*, iterations: int | None = None, interval=None, sleep=time.sleep) -> int:
    """
    Blocking maintenance loop: reconcile pending movements, then sweep overdue
    sales, every OVERDUE_SWEEP_INTERVAL. Runs forever unless iterations is set.
    """
    if interval is None:
        interval = current_app.config.get("OVERDUE_SWEEP_INTERVAL", "1h")
    if not isinstance(interval, timedelta):
        interval = parse_duration(interval)
    seconds = interval.total_seconds()

    runs = 0
    while iterations is None or runs < iterations:
        if runs:
            sleep(seconds)
        reconcile_pending_movements()
        result = run_overdue_sweep()
        runs += 1
        logger.info("Maintenance run %d complete (overdue updated=%d)", runs, result["updated"])
    return runs
