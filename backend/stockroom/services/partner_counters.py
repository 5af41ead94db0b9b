# Overview: Supplier/customer counters derived from purchases and sales, applied as reverse-then-reapply.

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..extensions import db
from ..models import Customer, Purchase, Sale, Supplier
from .concurrency import lock_for_update
"""
A committed document contributes to its partner's books:

    total_orders        += 1
    total_*_amount      += grand_total
    current_balance     += grand_total   (only while the balance rule holds)

Every change to a document (status, payment status, partner, grand total)
is applied as "remove the old contribution, add the new one", so a document
is counted exactly once for as long as it is committed. The maintenance
verifier sums the same contributions to detect drift.
"""

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

PURCHASE_UNCOMMITTED = ("draft", "cancelled")
SALE_COMMITTED = ("confirmed", "shipped", "delivered")


@dataclass(frozen=True)
class Contribution:
    partner_id: int | None
    orders: int = 0
    amount: Decimal = ZERO
    balance: Decimal = ZERO

    @property
    def counted(self) -> bool:
        return self.orders > 0


def purchase_is_committed(status: str) -> bool:
    return status not in PURCHASE_UNCOMMITTED


def sale_is_committed(status: str) -> bool:
    return status in SALE_COMMITTED


def purchase_contribution(purchase: Purchase) -> Contribution:
    if not purchase_is_committed(purchase.status):
        return Contribution(partner_id=purchase.supplier_id)
    total = purchase.grand_total or ZERO
    return Contribution(
        partner_id=purchase.supplier_id,
        orders=1,
        amount=total,
        balance=total if purchase.payment_status != "paid" else ZERO,
    )


def sale_contribution(sale: Sale) -> Contribution:
    if not sale_is_committed(sale.status):
        return Contribution(partner_id=sale.customer_id)
    total = sale.grand_total or ZERO
    on_account = sale.payment_terms != "cash" and sale.payment_status != "paid"
    return Contribution(
        partner_id=sale.customer_id,
        orders=1,
        amount=total,
        balance=total if on_account else ZERO,
    )


def _load_partner(model, partner_id: int):
    return lock_for_update(db.session.query(model).filter_by(id=partner_id)).first()


def _shift(partner, amount_attr: str, contribution: Contribution, sign: int) -> None:
    partner.total_orders = (partner.total_orders or 0) + sign * contribution.orders
    setattr(partner, amount_attr, (getattr(partner, amount_attr) or ZERO) + sign * contribution.amount)
    balance = (partner.current_balance or ZERO) + sign * contribution.balance
    if balance < 0:
        logger.warning(
            "%s %s balance would go negative (%s); clamping to 0. Run verify-counters.",
            partner.__class__.__name__, partner.id, balance,
        )
        balance = ZERO
    partner.current_balance = balance
    if partner.total_orders < 0:
        logger.warning("%s %s order count went negative; clamping to 0", partner.__class__.__name__, partner.id)
        partner.total_orders = 0


def _rebook(model, amount_attr: str, old: Contribution, new: Contribution, now) -> None:
    if old == new:
        return
    if old.counted and old.partner_id is not None:
        partner = _load_partner(model, old.partner_id)
        if partner is not None:
            _shift(partner, amount_attr, old, -1)
    if new.counted and new.partner_id is not None:
        partner = _load_partner(model, new.partner_id)
        if partner is not None:
            _shift(partner, amount_attr, new, +1)
            # lastOrderDate advances when a document starts counting for this partner
            if not old.counted or old.partner_id != new.partner_id:
                partner.last_order_date = now


def rebook_supplier(old: Contribution, new: Contribution, now) -> None:
    _rebook(Supplier, "total_purchase_amount", old, new, now)


def rebook_customer(old: Contribution, new: Contribution, now) -> None:
    _rebook(Customer, "total_sales_amount", old, new, now)
