# Overview: Suppliers and customers: CRUD, status and document history.

from __future__ import annotations

import logging

from sqlalchemy import func, or_

from ..extensions import db
from ..models import Customer, Purchase, Sale, Supplier
from ..validation import ModelValidationPolicy, enforce_rules_partner, validate_payload
from stockroom.errors import CustomerNotFound, DuplicateValue, SupplierNotFound, ValidationFailure
from stockroom.pagination import paginate

logger = logging.getLogger(__name__)

_COMMON_FIELDS = {"name", "email", "phone", "address", "taxNumber", "notes", "paymentTerms", "creditLimit"}

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields=_COMMON_FIELDS | {"contactPerson", "rating"},
    required_on_create={"name", "email"},
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=_COMMON_FIELDS | {"type", "businessName", "customerGroup", "discountPercentage"},
    required_on_create={"name", "email"},
)

# Counters and balances are maintained by the purchase/sales workflows only.
_KINDS = {
    "supplier": (Supplier, SUPPLIER_POLICY, SupplierNotFound, "Supplier"),
    "customer": (Customer, CUSTOMER_POLICY, CustomerNotFound, "Customer"),
}


def _kind(kind: str):
    try:
        return _KINDS[kind]
    except KeyError:
        raise ValueError(f"unknown partner kind: {kind}")


def get_partner(kind: str, partner_id: int):
    model, _, not_found, label = _kind(kind)
    partner = db.session.get(model, partner_id)
    if partner is None:
        raise not_found(f"{label} not found")
    return partner


def get_supplier(supplier_id: int) -> Supplier:
    return get_partner("supplier", supplier_id)


def get_customer(customer_id: int) -> Customer:
    return get_partner("customer", customer_id)


def _ensure_unique_email(model, email: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(model.id).filter(func.lower(model.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first():
        raise DuplicateValue("Email already exists", details={"field": "email", "value": email})


def _enforce_partner_numbers(patch: dict) -> None:
    if patch.get("rating") is not None and not 1 <= patch["rating"] <= 5:
        raise ValidationFailure("rating must be between 1 and 5")
    if patch.get("discount_percentage") is not None and patch["discount_percentage"] > 100:
        raise ValidationFailure("discountPercentage cannot exceed 100")


def create_partner(kind: str, payload: dict):
    model, policy, _, label = _kind(kind)
    patch = validate_payload(model=model, payload=payload, policy=policy, partial=False)
    enforce_rules_partner(patch)
    _enforce_partner_numbers(patch)
    _ensure_unique_email(model, patch["email"])
    partner = model(**patch)
    db.session.add(partner)
    db.session.commit()
    logger.info("Created %s %s (%s)", kind, partner.id, partner.email)
    return partner


def update_partner(kind: str, partner_id: int, payload: dict):
    model, policy, _, _ = _kind(kind)
    partner = get_partner(kind, partner_id)
    patch = validate_payload(model=model, payload=payload, policy=policy, partial=True)
    enforce_rules_partner(patch)
    _enforce_partner_numbers(patch)
    if "email" in patch:
        _ensure_unique_email(model, patch["email"], exclude_id=partner.id)
    for key, value in patch.items():
        setattr(partner, key, value)
    db.session.commit()
    return partner


def set_partner_status(kind: str, partner_id: int, is_active) -> object:
    if not isinstance(is_active, bool):
        raise ValidationFailure("isActive must be a boolean")
    partner = get_partner(kind, partner_id)
    partner.is_active = is_active
    db.session.commit()
    logger.info("%s %s %s", kind.capitalize(), partner.id, "activated" if is_active else "deactivated")
    return partner


def list_partners(kind: str, filters: dict | None = None, *, page: int = 1, limit: int = 20):
    model, _, _, _ = _kind(kind)
    filters = filters or {}
    query = db.session.query(model)
    if filters.get("is_active") is not None:
        query = query.filter(model.is_active.is_(filters["is_active"]))
    if filters.get("payment_terms"):
        query = query.filter(model.payment_terms == filters["payment_terms"])
    if kind == "customer" and filters.get("customer_group"):
        query = query.filter(Customer.customer_group == filters["customer_group"])
    if filters.get("search"):
        term = f"%{filters['search'].strip()}%"
        query = query.filter(or_(model.name.ilike(term), model.email.ilike(term), model.phone.ilike(term)))
    query = query.order_by(model.name.asc(), model.id.asc())
    return paginate(query, page=page, limit=limit)


def partner_history(kind: str, partner_id: int, *, page: int = 1, limit: int = 20):
    """Purchases of a supplier or sales of a customer, newest first."""
    partner = get_partner(kind, partner_id)
    if kind == "supplier":
        query = (
            db.session.query(Purchase)
            .filter(Purchase.supplier_id == partner.id)
            .order_by(Purchase.order_date.desc(), Purchase.id.desc())
        )
    else:
        query = (
            db.session.query(Sale)
            .filter(Sale.customer_id == partner.id)
            .order_by(Sale.sale_date.desc(), Sale.id.desc())
        )
    documents, meta = paginate(query, page=page, limit=limit)
    return partner, documents, meta
