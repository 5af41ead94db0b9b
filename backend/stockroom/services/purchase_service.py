# backend/stockroom/services/purchase_service.py
"""
Purchase order workflow.

LIFECYCLE:
1. DRAFT: Order being prepared, no side effects
2. PENDING: Submitted; supplier books now reflect the order
3. APPROVED: Manager approved (approved_by / approved_at recorded)
4. ORDERED: Sent to supplier
5. PARTIALLY_RECEIVED / RECEIVED: Set only by receive_purchase_items()
6. CANCELLED: Supplier books reversed, received stock returned;
   may be re-opened to PENDING

Stock enters only through receive_purchase_items(), one "in/purchase"
movement per received line. Supplier counters follow partner_counters.
"""
from __future__ import annotations

import logging
from collections import OrderedDict

from ..extensions import db
from ..models import Purchase, PurchaseItem, Supplier
from ..models.documents import PAYMENT_METHODS, PURCHASE_PAYMENT_STATUSES, PURCHASE_STATUSES
from ..models.partners import PAYMENT_TERMS
from ..validation import require_choice, to_datetime, to_int, to_money
from .concurrency import lock_for_update, product_locks
from .document_service import PURCHASE_ORDER, next_document_number, parse_line_items
from .ledger_service import MovementReference
from .partner_counters import Contribution, purchase_contribution, purchase_is_committed, rebook_supplier
from .stock_service import apply_movement, commit_movements, reverse_document_stock
from stockroom.errors import (
    Conflict,
    InvalidQuantity,
    InvalidTransition,
    PurchaseFrozen,
    PurchaseNotFound,
    ReceiveExceedsOrdered,
    SupplierNotFound,
    ValidationFailure,
)
from stockroom.pagination import paginate
from stockroom.time_utils import utcnow

logger = logging.getLogger(__name__)


PURCHASE_STATUS_DRAFT = "draft"
PURCHASE_STATUS_PENDING = "pending"
PURCHASE_STATUS_APPROVED = "approved"
PURCHASE_STATUS_ORDERED = "ordered"
PURCHASE_STATUS_PARTIALLY_RECEIVED = "partially_received"
PURCHASE_STATUS_RECEIVED = "received"
PURCHASE_STATUS_CANCELLED = "cancelled"

INITIAL_STATUSES = (
    PURCHASE_STATUS_DRAFT,
    PURCHASE_STATUS_PENDING,
    PURCHASE_STATUS_APPROVED,
    PURCHASE_STATUS_ORDERED,
)

# Manual transitions. partially_received/received are entered by receiving.
PURCHASE_TRANSITIONS = {
    PURCHASE_STATUS_DRAFT: {PURCHASE_STATUS_PENDING, PURCHASE_STATUS_CANCELLED},
    PURCHASE_STATUS_PENDING: {PURCHASE_STATUS_APPROVED, PURCHASE_STATUS_CANCELLED},
    PURCHASE_STATUS_APPROVED: {PURCHASE_STATUS_ORDERED, PURCHASE_STATUS_CANCELLED},
    PURCHASE_STATUS_ORDERED: {PURCHASE_STATUS_CANCELLED},
    PURCHASE_STATUS_PARTIALLY_RECEIVED: {PURCHASE_STATUS_CANCELLED},
    PURCHASE_STATUS_RECEIVED: set(),
    PURCHASE_STATUS_CANCELLED: {PURCHASE_STATUS_PENDING},
}

RECEIVE_DRIVEN = (PURCHASE_STATUS_PARTIALLY_RECEIVED, PURCHASE_STATUS_RECEIVED)
FROZEN = (PURCHASE_STATUS_RECEIVED, PURCHASE_STATUS_CANCELLED)

EDITABLE_FIELDS = ("items", "supplier", "supplierId", "shippingCost", "orderDate",
                   "expectedDeliveryDate", "notes", "paymentTerms")


def _reference(purchase: Purchase) -> MovementReference:
    return MovementReference(kind="purchase", id=purchase.id, number=purchase.purchase_order_number)


def get_purchase(purchase_id: int, *, lock: bool = False) -> Purchase:
    query = db.session.query(Purchase).filter_by(id=purchase_id)
    if lock:
        query = lock_for_update(query)
    purchase = query.first()
    if purchase is None:
        raise PurchaseNotFound("Purchase not found")
    return purchase


def _resolve_supplier(value) -> Supplier:
    if isinstance(value, dict):
        value = value.get("id")
    if value in (None, ""):
        raise ValidationFailure("Supplier is required")
    supplier = db.session.get(Supplier, to_int(value, "supplier", minimum=1))
    if supplier is None:
        raise SupplierNotFound("Supplier not found")
    if not supplier.is_active:
        raise ValidationFailure("Supplier is inactive")
    return supplier


def _build_items(purchase: Purchase, lines) -> None:
    for line in lines:
        purchase.items.append(PurchaseItem(
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price=line.unit_price,
            discount=line.discount,
            tax=line.tax,
            received_quantity=0,
        ))


def _check_totals(purchase: Purchase) -> None:
    purchase.recompute_totals()
    if purchase.grand_total < 0:
        raise ValidationFailure("Grand total cannot be negative (discounts exceed order value)")


def create_purchase(payload: dict, *, user_id: int | None = None) -> Purchase:
    """
    Create a purchase order.

    Args:
        payload: {supplier, items[], status?, paymentStatus?, paymentMethod?,
            paymentTerms?, orderDate?, expectedDeliveryDate?, shippingCost?, notes?}
        user_id: Creating user

    Returns:
        Purchase: The committed purchase

    Raises:
        SupplierNotFound, ProductNotFound, ValidationFailure
    """
    supplier = _resolve_supplier(payload.get("supplier", payload.get("supplierId")))
    lines = parse_line_items(payload.get("items"))

    status = payload.get("status") or PURCHASE_STATUS_DRAFT
    if status not in INITIAL_STATUSES:
        raise ValidationFailure(f"Invalid initial status. Must be one of: {', '.join(INITIAL_STATUSES)}")
    payment_status = payload.get("paymentStatus") or "unpaid"
    require_choice(payment_status, PURCHASE_PAYMENT_STATUSES, "payment status")
    payment_method = payload.get("paymentMethod") or None
    if payment_method is not None:
        require_choice(payment_method, PAYMENT_METHODS, "payment method")
    payment_terms = payload.get("paymentTerms") or supplier.payment_terms
    require_choice(payment_terms, PAYMENT_TERMS, "payment terms")

    now = utcnow()
    purchase = Purchase(
        purchase_order_number=next_document_number(PURCHASE_ORDER),
        supplier_id=supplier.id,
        status=status,
        payment_status=payment_status,
        payment_method=payment_method,
        payment_terms=payment_terms,
        order_date=to_datetime(payload.get("orderDate"), "orderDate") or now,
        expected_delivery_date=to_datetime(payload.get("expectedDeliveryDate"), "expectedDeliveryDate"),
        shipping_cost=to_money(payload.get("shippingCost"), "shippingCost"),
        notes=payload.get("notes"),
        created_by_user_id=user_id,
    )
    _build_items(purchase, lines)
    _check_totals(purchase)

    if status == PURCHASE_STATUS_APPROVED or status == PURCHASE_STATUS_ORDERED:
        purchase.approved_by_user_id = user_id
        purchase.approved_at = now

    db.session.add(purchase)
    db.session.flush()

    rebook_supplier(
        Contribution(partner_id=supplier.id),
        purchase_contribution(purchase),
        now,
    )

    db.session.commit()
    logger.info(
        "Created purchase %s for supplier %s status=%s total=%s",
        purchase.purchase_order_number, supplier.id, status, purchase.grand_total,
    )
    return purchase


def _return_received_stock(purchase: Purchase, *, user_id: int | None, note: str) -> None:
    """Take received units back out of the locations they arrived at and reset received quantities."""
    received = [item for item in purchase.items if item.received_quantity > 0]
    if not received:
        return
    with product_locks(item.product_id for item in received):
        reverse_document_stock(
            _reference(purchase),
            reverses="purchase",
            performed_by=user_id,
            notes=note,
            unit_costs={item.product_id: item.unit_price for item in received},
        )
        for item in received:
            item.received_quantity = 0
    purchase.actual_delivery_date = None


def _transition(purchase: Purchase, new_status: str, *, user_id: int | None, now) -> None:
    current = purchase.status
    if new_status == current:
        return
    if new_status in RECEIVE_DRIVEN:
        raise InvalidTransition(
            current, new_status,
            message=f"Status {new_status} is set by receiving items",
        )
    if new_status not in PURCHASE_TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, new_status)

    before = purchase_contribution(purchase)

    if new_status == PURCHASE_STATUS_CANCELLED:
        _return_received_stock(purchase, user_id=user_id, note=f"Purchase {purchase.purchase_order_number} cancelled")
    if new_status == PURCHASE_STATUS_APPROVED:
        purchase.approved_by_user_id = user_id
        purchase.approved_at = now

    purchase.status = new_status
    rebook_supplier(before, purchase_contribution(purchase), now)


def update_purchase_status(purchase_id: int, new_status, *, user_id: int | None = None) -> Purchase:
    """
    Move a purchase through its state machine.

    Raises:
        InvalidTransition: Transition not permitted (or receive-driven)
        InsufficientStock: Cancelling would return more than is on hand
    """
    if not new_status:
        raise ValidationFailure("Status is required")
    require_choice(new_status, PURCHASE_STATUSES, "status")

    purchase = get_purchase(purchase_id, lock=True)
    previous = purchase.status
    _transition(purchase, new_status, user_id=user_id, now=utcnow())
    commit_movements()
    if previous != purchase.status:
        logger.info("Purchase %s: %s -> %s", purchase.purchase_order_number, previous, purchase.status)
    return purchase


def _set_payment(purchase: Purchase, payment_status, payment_method) -> None:
    if not payment_status:
        raise ValidationFailure("Payment status is required")
    require_choice(payment_status, PURCHASE_PAYMENT_STATUSES, "payment status")
    if payment_method:
        require_choice(payment_method, PAYMENT_METHODS, "payment method")

    before = purchase_contribution(purchase)
    purchase.payment_status = payment_status
    if payment_method:
        purchase.payment_method = payment_method
    rebook_supplier(before, purchase_contribution(purchase), utcnow())


def update_purchase_payment(purchase_id: int, payment_status, payment_method=None) -> Purchase:
    purchase = get_purchase(purchase_id, lock=True)
    previous = purchase.payment_status
    _set_payment(purchase, payment_status, payment_method)
    db.session.commit()
    logger.info("Purchase %s payment: %s -> %s", purchase.purchase_order_number, previous, payment_status)
    return purchase


def _replace_items(purchase: Purchase, lines) -> None:
    """
    Apply an edited item list. Items are matched by id; an item that has
    received units keeps its product and cannot drop below what arrived.
    """
    existing = {item.id: item for item in purchase.items}
    seen: set[int] = set()

    for line in lines:
        item = existing.get(line.item_id) if line.item_id else None
        if item is None:
            purchase.items.append(PurchaseItem(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount=line.discount,
                tax=line.tax,
                received_quantity=0,
            ))
            continue
        seen.add(item.id)
        if item.received_quantity > 0:
            if line.product_id != item.product_id:
                raise ValidationFailure(f"Cannot change the product of item {item.id}: units already received")
            if line.quantity < item.received_quantity:
                raise ValidationFailure(
                    f"Item {item.id} quantity cannot be below the {item.received_quantity} units already received"
                )
        item.product_id = line.product_id
        item.quantity = line.quantity
        item.unit_price = line.unit_price
        item.discount = line.discount
        item.tax = line.tax

    for item_id, item in existing.items():
        if item_id in seen:
            continue
        if item.received_quantity > 0:
            raise ValidationFailure(f"Cannot remove item {item_id}: units already received")
        purchase.items.remove(item)


def update_purchase(purchase_id: int, payload: dict, *, user_id: int | None = None) -> Purchase:
    """
    Edit an open purchase (items, supplier, shipping, dates, notes).

    status / paymentStatus in the same payload are applied after the edit,
    through the same rules as the dedicated endpoints, in one transaction.

    Raises:
        PurchaseFrozen: Editing a received or cancelled purchase
    """
    purchase = get_purchase(purchase_id, lock=True)
    now = utcnow()
    editing = [key for key in EDITABLE_FIELDS if key in payload]

    if editing and purchase.status in FROZEN:
        raise PurchaseFrozen(f"Cannot update {purchase.status} purchase order")

    if editing:
        before = purchase_contribution(purchase)

        if "supplier" in payload or "supplierId" in payload:
            supplier = _resolve_supplier(payload.get("supplier", payload.get("supplierId")))
            purchase.supplier_id = supplier.id
        if "items" in payload:
            _replace_items(purchase, parse_line_items(payload["items"]))
        if "shippingCost" in payload:
            purchase.shipping_cost = to_money(payload["shippingCost"], "shippingCost")
        if "orderDate" in payload:
            purchase.order_date = to_datetime(payload["orderDate"], "orderDate") or purchase.order_date
        if "expectedDeliveryDate" in payload:
            purchase.expected_delivery_date = to_datetime(payload["expectedDeliveryDate"], "expectedDeliveryDate")
        if "notes" in payload:
            purchase.notes = payload["notes"]
        if "paymentTerms" in payload:
            require_choice(payload["paymentTerms"], PAYMENT_TERMS, "payment terms")
            purchase.payment_terms = payload["paymentTerms"]

        _check_totals(purchase)
        if (
            purchase.status == PURCHASE_STATUS_PARTIALLY_RECEIVED
            and purchase.total_received == purchase.total_ordered
        ):
            purchase.status = PURCHASE_STATUS_RECEIVED
            purchase.actual_delivery_date = now

        db.session.flush()
        rebook_supplier(before, purchase_contribution(purchase), now)

    if payload.get("status") and payload["status"] != purchase.status:
        require_choice(payload["status"], PURCHASE_STATUSES, "status")
        _transition(purchase, payload["status"], user_id=user_id, now=now)
    if payload.get("paymentStatus") and payload["paymentStatus"] != purchase.payment_status:
        _set_payment(purchase, payload["paymentStatus"], payload.get("paymentMethod"))

    commit_movements()
    logger.info("Updated purchase %s", purchase.purchase_order_number)
    return purchase


def receive_purchase_items(
    purchase_id: int,
    received_items,
    *,
    location_id: int | None = None,
    user_id: int | None = None,
) -> Purchase:
    """
    Receive some or all ordered units.

    Args:
        purchase_id: Purchase to receive against
        received_items: [{itemId, quantity, locationId?}]
        location_id: Default destination location for the stock
        user_id: Receiving user

    Returns:
        Purchase: Updated purchase (partially_received or received)

    Raises:
        InvalidTransition: Purchase is draft/cancelled/received
        ReceiveExceedsOrdered: More than the outstanding quantity of an item
        InvalidQuantity, ValidationFailure: Malformed entries

    Every entry is validated before any stock moves.
    """
    if not isinstance(received_items, list) or not received_items:
        raise ValidationFailure("Received items are required")

    purchase = get_purchase(purchase_id, lock=True)
    if not purchase_is_committed(purchase.status) or purchase.status == PURCHASE_STATUS_RECEIVED:
        raise InvalidTransition(
            purchase.status, PURCHASE_STATUS_RECEIVED,
            message=f"Cannot receive items for {purchase.status} purchase order",
        )

    items = {item.id: item for item in purchase.items}
    default_location = to_int(location_id, "locationId", minimum=1) if location_id not in (None, "") else None

    # (item_id, location_id) -> quantity, in request order
    plan: "OrderedDict[tuple[int, int | None], int]" = OrderedDict()
    per_item: dict[int, int] = {}
    for index, entry in enumerate(received_items):
        if not isinstance(entry, dict):
            raise ValidationFailure(f"receivedItems[{index}] must be an object")
        item_id = to_int(entry.get("itemId"), f"receivedItems[{index}].itemId")
        item = items.get(item_id)
        if item is None:
            raise ValidationFailure(f"Item not found: {item_id}")
        quantity = to_int(entry.get("quantity"), f"receivedItems[{index}].quantity")
        if quantity <= 0:
            raise InvalidQuantity("Quantity must be greater than zero")
        loc = entry.get("locationId")
        loc = to_int(loc, f"receivedItems[{index}].locationId", minimum=1) if loc not in (None, "") else default_location

        per_item[item_id] = per_item.get(item_id, 0) + quantity
        if per_item[item_id] > item.remaining_quantity:
            raise ReceiveExceedsOrdered(
                f"Quantity exceeds remaining quantity for {item.product.name}. Remaining: {item.remaining_quantity}",
                details={"itemId": item_id, "remaining": item.remaining_quantity, "requested": per_item[item_id]},
            )
        plan[(item_id, loc)] = plan.get((item_id, loc), 0) + quantity

    with product_locks(items[item_id].product_id for item_id in per_item):
        for (item_id, loc), quantity in plan.items():
            item = items[item_id]
            item.received_quantity += quantity
            apply_movement(
                product_id=item.product_id,
                movement_type="in",
                reason="purchase",
                quantity=quantity,
                to_location_id=loc,
                unit_cost=item.unit_price,
                reference=_reference(purchase),
                performed_by=user_id,
            )

        if all(item.received_quantity >= item.quantity for item in purchase.items):
            purchase.status = PURCHASE_STATUS_RECEIVED
            purchase.actual_delivery_date = utcnow()
        else:
            purchase.status = PURCHASE_STATUS_PARTIALLY_RECEIVED
        commit_movements()

    logger.info(
        "Received %s units against purchase %s; status=%s",
        sum(per_item.values()), purchase.purchase_order_number, purchase.status,
    )
    return purchase


def delete_purchase(purchase_id: int) -> None:
    """Refused once anything has been received; otherwise reverses supplier books."""
    purchase = get_purchase(purchase_id, lock=True)
    if purchase.total_received > 0 or purchase.status in RECEIVE_DRIVEN:
        raise Conflict("Cannot delete purchase order with received items")

    rebook_supplier(
        purchase_contribution(purchase),
        Contribution(partner_id=purchase.supplier_id),
        utcnow(),
    )
    number = purchase.purchase_order_number
    db.session.delete(purchase)
    db.session.commit()
    logger.info("Deleted purchase %s", number)


def list_purchases(filters: dict | None = None, *, page: int = 1, limit: int = 20):
    filters = filters or {}
    query = db.session.query(Purchase)
    if filters.get("status"):
        query = query.filter(Purchase.status == filters["status"])
    if filters.get("payment_status"):
        query = query.filter(Purchase.payment_status == filters["payment_status"])
    if filters.get("supplier_id"):
        query = query.filter(Purchase.supplier_id == filters["supplier_id"])
    if filters.get("start_date"):
        query = query.filter(Purchase.order_date >= filters["start_date"])
    if filters.get("end_date"):
        query = query.filter(Purchase.order_date <= filters["end_date"])
    if filters.get("search"):
        query = query.filter(Purchase.purchase_order_number.ilike(f"%{filters['search'].strip()}%"))
    query = query.order_by(Purchase.order_date.desc(), Purchase.id.desc())
    return paginate(query, page=page, limit=limit)
