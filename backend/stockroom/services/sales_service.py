# Overview: Sales invoice workflow; stock outs on confirmation, compensation on cancel/return/edit.

from __future__ import annotations

import logging
import re
from datetime import timedelta

from ..extensions import db
from ..models import Customer, Product, Sale, SaleItem
from ..models.documents import PAYMENT_METHODS, SALE_PAYMENT_STATUSES, SALE_STATUSES
from ..models.partners import PAYMENT_TERMS
from ..validation import require_choice, to_datetime, to_int, to_money
from .concurrency import lock_for_update, product_locks
from .document_service import INVOICE, next_document_number, parse_line_items
from .ledger_service import MovementReference
from .partner_counters import Contribution, rebook_customer, sale_contribution, sale_is_committed
from .stock_service import apply_movement, commit_movements, location_draws, reverse_document_stock
from stockroom.errors import (
    CustomerNotFound,
    InsufficientStock,
    InvalidTransition,
    SaleFrozen,
    SaleNotFound,
    ValidationFailure,
)
from stockroom.pagination import paginate
from stockroom.time_utils import utcnow
"""
Sales lifecycle (authoritative)

- draft -> confirmed -> shipped -> delivered
- draft | confirmed -> cancelled
- shipped | delivered -> returned
- Stock is out while the sale is confirmed, shipped or delivered: one
  "out/sale" movement per item and location drawn from on entering
  confirmed; leaving that set puts each unit back at the location it
  left with an "in/return" movement.
- Entering confirmed is all-or-nothing: every product is checked against
  live stock (quantities aggregated per product) before anything moves.
"""

logger = logging.getLogger(__name__)


SALE_STATUS_DRAFT = "draft"
SALE_STATUS_CONFIRMED = "confirmed"
SALE_STATUS_SHIPPED = "shipped"
SALE_STATUS_DELIVERED = "delivered"
SALE_STATUS_CANCELLED = "cancelled"
SALE_STATUS_RETURNED = "returned"

INITIAL_STATUSES = (SALE_STATUS_DRAFT, SALE_STATUS_CONFIRMED)

SALE_TRANSITIONS = {
    SALE_STATUS_DRAFT: {SALE_STATUS_CONFIRMED, SALE_STATUS_CANCELLED},
    SALE_STATUS_CONFIRMED: {SALE_STATUS_SHIPPED, SALE_STATUS_CANCELLED},
    SALE_STATUS_SHIPPED: {SALE_STATUS_DELIVERED, SALE_STATUS_RETURNED},
    SALE_STATUS_DELIVERED: {SALE_STATUS_RETURNED},
    SALE_STATUS_CANCELLED: set(),
    SALE_STATUS_RETURNED: set(),
}

FROZEN = (SALE_STATUS_DELIVERED, SALE_STATUS_CANCELLED, SALE_STATUS_RETURNED)
UNDELETABLE = (SALE_STATUS_SHIPPED, SALE_STATUS_DELIVERED)

EDITABLE_FIELDS = ("items", "customer", "customerId", "shippingCost", "saleDate", "notes")

_NET_TERMS_RE = re.compile(r"^net_(\d+)$")


def compute_due_date(payment_terms: str, sale_date):
    """cash -> None; net_N -> sale_date + N days."""
    match = _NET_TERMS_RE.match(payment_terms or "")
    if match is None or sale_date is None:
        return None
    return sale_date + timedelta(days=int(match.group(1)))


def _reference(sale: Sale) -> MovementReference:
    return MovementReference(kind="sale", id=sale.id, number=sale.invoice_number)


def get_sale(sale_id: int, *, lock: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise SaleNotFound("Sale not found")
    return sale


def _resolve_customer(value) -> Customer:
    if isinstance(value, dict):
        value = value.get("id")
    if value in (None, ""):
        raise ValidationFailure("Customer is required")
    customer = db.session.get(Customer, to_int(value, "customer", minimum=1))
    if customer is None:
        raise CustomerNotFound("Customer not found")
    if not customer.is_active:
        raise ValidationFailure("Customer is inactive")
    return customer


def _requested_by_product(items) -> dict[int, int]:
    requested: dict[int, int] = {}
    for item in items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
    return requested


def check_stock_available(items) -> None:
    """
    Raise InsufficientStock for the first product whose aggregated requested
    quantity exceeds its current stock. Call with the product locks held.
    """
    for product_id, requested in sorted(_requested_by_product(items).items()):
        product = (
            lock_for_update(db.session.query(Product).filter_by(id=product_id))
            .populate_existing()
            .first()
        )
        available = product.current_stock if product is not None else 0
        if available < requested:
            name = product.name if product is not None else product_id
            raise InsufficientStock(
                available, requested, product_id,
                message=f"Insufficient stock for {name}. Available: {available}, Required: {requested}",
            )


def _take_stock(sale: Sale, *, user_id: int | None) -> None:
    check_stock_available(sale.items)
    for item in sale.items:
        for location_id, quantity in location_draws(item.product_id, item.quantity):
            apply_movement(
                product_id=item.product_id,
                movement_type="out",
                reason="sale",
                quantity=quantity,
                from_location_id=location_id,
                reference=_reference(sale),
                performed_by=user_id,
            )


def _return_stock(sale: Sale, *, user_id: int | None, note: str) -> None:
    """Put the sale's units back at the locations they were taken from."""
    reverse_document_stock(_reference(sale), reverses="sale", performed_by=user_id, notes=note)


def _build_items(sale: Sale, lines) -> None:
    for line in lines:
        sale.items.append(SaleItem(
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price=line.unit_price,
            discount=line.discount,
            tax=line.tax,
        ))


def _check_totals(sale: Sale) -> None:
    sale.recompute_totals()
    if sale.grand_total < 0:
        raise ValidationFailure("Grand total cannot be negative (discounts exceed invoice value)")


def create_sale(payload: dict, *, user_id: int | None = None) -> Sale:
    """
    Create an invoice, in draft or directly confirmed.

    Args:
        payload: {customer, items[], status?, paymentStatus?, paymentMethod?,
            saleDate?, shippingCost?, notes?}
        user_id: Sales person

    Returns:
        Sale: The committed sale

    Raises:
        CustomerNotFound, ProductNotFound, InsufficientStock, ValidationFailure

    A draft sale moves no stock. A confirmed sale takes every item out of
    stock in the same transaction or not at all.
    """
    customer = _resolve_customer(payload.get("customer", payload.get("customerId")))
    lines = parse_line_items(payload.get("items"), default_price="selling_price")

    status = payload.get("status") or SALE_STATUS_DRAFT
    if status not in INITIAL_STATUSES:
        raise ValidationFailure(f"Invalid initial status. Must be one of: {', '.join(INITIAL_STATUSES)}")
    payment_status = payload.get("paymentStatus") or "unpaid"
    require_choice(payment_status, SALE_PAYMENT_STATUSES, "payment status")
    payment_method = payload.get("paymentMethod") or None
    if payment_method is not None:
        require_choice(payment_method, PAYMENT_METHODS, "payment method")

    now = utcnow()
    sale_date = to_datetime(payload.get("saleDate"), "saleDate") or now
    sale = Sale(
        invoice_number=next_document_number(INVOICE),
        customer_id=customer.id,
        status=status,
        payment_status=payment_status,
        payment_method=payment_method,
        payment_terms=customer.payment_terms,
        sale_date=sale_date,
        due_date=compute_due_date(customer.payment_terms, sale_date),
        shipping_cost=to_money(payload.get("shippingCost"), "shippingCost"),
        notes=payload.get("notes"),
        sales_person_user_id=user_id,
    )
    _build_items(sale, lines)
    _check_totals(sale)
    db.session.add(sale)
    db.session.flush()

    with product_locks(line.product_id for line in lines):
        if sale_is_committed(status):
            _take_stock(sale, user_id=user_id)
        rebook_customer(Contribution(partner_id=customer.id), sale_contribution(sale), now)
        commit_movements()

    logger.info(
        "Created sale %s for customer %s status=%s total=%s",
        sale.invoice_number, customer.id, status, sale.grand_total,
    )
    return sale


def _transition(sale: Sale, new_status: str, *, user_id: int | None, now) -> None:
    current = sale.status
    if new_status == current:
        return
    if new_status not in SALE_TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, new_status)

    before = sale_contribution(sale)
    was_out = sale_is_committed(current)
    will_be_out = sale_is_committed(new_status)

    with product_locks(item.product_id for item in sale.items):
        if will_be_out and not was_out:
            _take_stock(sale, user_id=user_id)
        elif was_out and not will_be_out:
            _return_stock(sale, user_id=user_id, note=f"Sale {sale.invoice_number} {new_status}")

        if new_status == SALE_STATUS_DELIVERED:
            sale.delivery_date = now
        sale.status = new_status
        rebook_customer(before, sale_contribution(sale), now)


def update_sale_status(sale_id: int, new_status, *, user_id: int | None = None) -> Sale:
    """
    Move a sale through its state machine.

    Raises:
        InvalidTransition: Transition not permitted
        InsufficientStock: Confirming with too little stock (nothing moves)
    """
    if not new_status:
        raise ValidationFailure("Status is required")
    require_choice(new_status, SALE_STATUSES, "status")

    sale = get_sale(sale_id, lock=True)
    previous = sale.status
    _transition(sale, new_status, user_id=user_id, now=utcnow())
    commit_movements()
    if previous != sale.status:
        logger.info("Sale %s: %s -> %s", sale.invoice_number, previous, sale.status)
    return sale


def _set_payment(sale: Sale, payment_status, payment_method) -> None:
    if not payment_status:
        raise ValidationFailure("Payment status is required")
    require_choice(payment_status, SALE_PAYMENT_STATUSES, "payment status")
    if payment_method:
        require_choice(payment_method, PAYMENT_METHODS, "payment method")

    before = sale_contribution(sale)
    sale.payment_status = payment_status
    if payment_method:
        sale.payment_method = payment_method
    rebook_customer(before, sale_contribution(sale), utcnow())


def update_sale_payment(sale_id: int, payment_status, payment_method=None) -> Sale:
    sale = get_sale(sale_id, lock=True)
    previous = sale.payment_status
    _set_payment(sale, payment_status, payment_method)
    db.session.commit()
    logger.info("Sale %s payment: %s -> %s", sale.invoice_number, previous, payment_status)
    return sale


def update_sale(sale_id: int, payload: dict, *, user_id: int | None = None) -> Sale:
    """
    Edit an open sale (items, customer, shipping, sale date, notes).

    On a sale whose stock is out, the old items are returned to stock, the
    new quantities are checked against live stock and taken out again, all
    in one transaction. status / paymentStatus in the same payload are
    applied afterwards through the usual transition rules.

    Raises:
        SaleFrozen: Editing a delivered, cancelled or returned sale
        InsufficientStock: New quantities exceed stock (nothing changes)
    """
    sale = get_sale(sale_id, lock=True)
    now = utcnow()
    editing = [key for key in EDITABLE_FIELDS if key in payload]

    if editing and sale.status in FROZEN:
        raise SaleFrozen(f"Cannot update {sale.status} sale")

    if editing:
        before = sale_contribution(sale)

        if "customer" in payload or "customerId" in payload:
            customer = _resolve_customer(payload.get("customer", payload.get("customerId")))
            if customer.id != sale.customer_id:
                sale.customer_id = customer.id
                sale.payment_terms = customer.payment_terms
                sale.due_date = compute_due_date(sale.payment_terms, sale.sale_date)
        if "saleDate" in payload:
            sale.sale_date = to_datetime(payload["saleDate"], "saleDate") or sale.sale_date
            sale.due_date = compute_due_date(sale.payment_terms, sale.sale_date)
        if "shippingCost" in payload:
            sale.shipping_cost = to_money(payload["shippingCost"], "shippingCost")
        if "notes" in payload:
            sale.notes = payload["notes"]

        if "items" in payload:
            lines = parse_line_items(payload["items"], default_price="selling_price")
            touched = {item.product_id for item in sale.items} | {line.product_id for line in lines}
            with product_locks(touched):
                stock_out = sale_is_committed(sale.status)
                if stock_out:
                    _return_stock(sale, user_id=user_id, note=f"Sale {sale.invoice_number} edited")
                sale.items.clear()
                _build_items(sale, lines)
                db.session.flush()
                if stock_out:
                    _take_stock(sale, user_id=user_id)

        _check_totals(sale)
        db.session.flush()
        rebook_customer(before, sale_contribution(sale), now)

    if payload.get("status") and payload["status"] != sale.status:
        require_choice(payload["status"], SALE_STATUSES, "status")
        _transition(sale, payload["status"], user_id=user_id, now=now)
    if payload.get("paymentStatus") and payload["paymentStatus"] != sale.payment_status:
        _set_payment(sale, payload["paymentStatus"], payload.get("paymentMethod"))

    commit_movements()
    logger.info("Updated sale %s", sale.invoice_number)
    return sale


def delete_sale(sale_id: int, *, user_id: int | None = None) -> None:
    """
    Delete a sale. Shipped or delivered sales cannot be deleted; a confirmed
    sale returns its stock and leaves the customer's books first.
    """
    sale = get_sale(sale_id, lock=True)
    if sale.status in UNDELETABLE:
        raise SaleFrozen(f"Cannot delete {sale.status} sale")

    with product_locks(item.product_id for item in sale.items):
        if sale_is_committed(sale.status):
            _return_stock(sale, user_id=user_id, note=f"Sale {sale.invoice_number} deleted")
        rebook_customer(sale_contribution(sale), Contribution(partner_id=sale.customer_id), utcnow())
        number = sale.invoice_number
        db.session.delete(sale)
        commit_movements()

    logger.info("Deleted sale %s", number)


def list_sales(filters: dict | None = None, *, page: int = 1, limit: int = 20):
    filters = filters or {}
    query = db.session.query(Sale)
    if filters.get("status"):
        query = query.filter(Sale.status == filters["status"])
    if filters.get("payment_status"):
        query = query.filter(Sale.payment_status == filters["payment_status"])
    if filters.get("customer_id"):
        query = query.filter(Sale.customer_id == filters["customer_id"])
    if filters.get("start_date"):
        query = query.filter(Sale.sale_date >= filters["start_date"])
    if filters.get("end_date"):
        query = query.filter(Sale.sale_date <= filters["end_date"])
    if filters.get("search"):
        query = query.filter(Sale.invoice_number.ilike(f"%{filters['search'].strip()}%"))
    query = query.order_by(Sale.sale_date.desc(), Sale.id.desc())
    return paginate(query, page=page, limit=limit)
