# Overview: Document numbering (PO-/INV-) and line-item parsing shared by purchases and sales.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence, Product
from ..validation import to_int, to_money
from stockroom.errors import InvalidQuantity, ProductNotFound, ValidationFailure


PURCHASE_ORDER = "purchase_order"
INVOICE = "invoice"

PREFIXES = {
    PURCHASE_ORDER: "PO",
    INVOICE: "INV",
}


def _advance(document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(document_type: str, *, pad: int = 6) -> str:
    """
    Atomically allocate the next number for a document type, e.g. PO-000001.

    Runs inside the caller's transaction: a rolled-back purchase or sale
    gives its number back. The first allocation of a type inserts the
    counter row under a SAVEPOINT so a concurrent first insert only loses
    the race instead of poisoning the outer transaction.
    """
    prefix = PREFIXES.get(document_type)
    if prefix is None:
        raise ValueError(f"Unknown document type: {document_type}")

    next_num = _advance(document_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _advance(document_type)
            if next_num is None:
                raise

    return f"{prefix}-{next_num:0{pad}d}"


# =============================================================================
# Line items shared by purchases and sales
# =============================================================================

@dataclass(frozen=True)
class LineInput:
    """One validated item from a purchase/sale payload."""
    item_id: int | None
    product_id: int
    quantity: int
    unit_price: Decimal
    discount: Decimal
    tax: Decimal


def parse_line_items(raw_items, *, default_price: str | None = None) -> list[LineInput]:
    """
    Validate an items[] payload.

    Each item names its product as "product" (id or {"id": ...}) or
    "productId". unitPrice may be omitted when default_price names a product
    column to fall back on (sellingPrice for sales).
    """
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationFailure("At least one item is required")

    lines: list[LineInput] = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationFailure(f"items[{index}] must be an object")

        product_ref = raw.get("productId", raw.get("product"))
        if isinstance(product_ref, dict):
            product_ref = product_ref.get("id")
        if product_ref in (None, ""):
            raise ValidationFailure(f"items[{index}].product is required")
        product_id = to_int(product_ref, f"items[{index}].product", minimum=1)

        product = db.session.get(Product, product_id)
        if product is None:
            raise ProductNotFound(f"Product not found: {product_id}", details={"productId": product_id})

        quantity = to_int(raw.get("quantity"), f"items[{index}].quantity")
        if quantity < 1:
            raise InvalidQuantity(f"items[{index}].quantity must be at least 1")

        if raw.get("unitPrice") in (None, ""):
            if default_price is None:
                raise ValidationFailure(f"items[{index}].unitPrice is required")
            unit_price = getattr(product, default_price)
        else:
            unit_price = to_money(raw.get("unitPrice"), f"items[{index}].unitPrice")

        item_id = raw.get("id", raw.get("itemId"))
        lines.append(LineInput(
            item_id=to_int(item_id, f"items[{index}].id", minimum=1) if item_id not in (None, "") else None,
            product_id=product_id,
            quantity=quantity,
            unit_price=unit_price,
            discount=to_money(raw.get("discount"), f"items[{index}].discount"),
            tax=to_money(raw.get("tax"), f"items[{index}].tax"),
        ))
    return lines
