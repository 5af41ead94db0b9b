# Overview: Categories, products and locations: CRUD, uniqueness rules, alerts and delete guards.

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Location, Product, StockLocation, StockMovement, Supplier
from ..models.catalog import PRODUCT_UNITS
from ..validation import (
    ModelValidationPolicy,
    enforce_rules_location,
    enforce_rules_product,
    require_choice,
    to_int,
    validate_payload,
)
from .stock_service import apply_movement, commit_movements
from stockroom.errors import (
    CategoryNotFound,
    Conflict,
    DuplicateValue,
    LocationInUse,
    LocationNotFound,
    ProductNotFound,
    SupplierNotFound,
    ValidationFailure,
)
from stockroom.pagination import paginate
from stockroom.time_utils import utcnow

logger = logging.getLogger(__name__)


CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "parentCategoryId", "sortOrder", "isActive"},
    required_on_create={"name"},
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "barcode", "name", "description", "brand",
        "categoryId", "supplierId", "unit",
        "costPrice", "sellingPrice", "minimumStock",
        "isPerishable", "expiryDate", "isActive",
    },
    required_on_create={"sku", "name", "categoryId", "costPrice", "sellingPrice"},
)

LOCATION_POLICY = ModelValidationPolicy(
    writable_fields={"name", "code", "type", "address", "capacity"},
    required_on_create={"name", "code"},
)


# =============================================================================
# Categories
# =============================================================================

def _category_patch(payload: dict, *, partial: bool) -> dict:
    payload = dict(payload or {})
    if "parentCategory" in payload and "parentCategoryId" not in payload:
        parent = payload.pop("parentCategory")
        payload["parentCategoryId"] = parent.get("id") if isinstance(parent, dict) else parent
    if payload.get("parentCategoryId") == "":
        payload["parentCategoryId"] = None
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=partial)
    if patch.get("sort_order") is not None and patch["sort_order"] < 0:
        raise ValidationFailure("sortOrder cannot be negative")
    return patch


def _ensure_unique_category_name(name: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Category.id).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise DuplicateValue("Category name already exists", details={"field": "name", "value": name})


def _check_parent(parent_id: int | None, *, category_id: int | None = None) -> None:
    """The parent must exist and must not be the category itself or one of its descendants."""
    if parent_id is None:
        return
    if parent_id == category_id:
        raise ValidationFailure("Category cannot be its own parent")
    parent = db.session.get(Category, parent_id)
    if parent is None:
        raise CategoryNotFound("Parent category not found")
    seen = set()
    while parent is not None and parent.id not in seen:
        if category_id is not None and parent.parent_category_id == category_id:
            raise ValidationFailure("Category cannot be moved under one of its subcategories")
        seen.add(parent.id)
        parent = parent.parent


def create_category(payload: dict) -> Category:
    patch = _category_patch(payload, partial=False)
    _ensure_unique_category_name(patch["name"])
    _check_parent(patch.get("parent_category_id"))
    category = Category(**patch)
    db.session.add(category)
    db.session.commit()
    logger.info("Created category %s (%s)", category.id, category.name)
    return category


def update_category(category_id: int, payload: dict) -> Category:
    category = get_category(category_id)
    patch = _category_patch(payload, partial=True)
    if "name" in patch:
        _ensure_unique_category_name(patch["name"], exclude_id=category.id)
    if "parent_category_id" in patch:
        _check_parent(patch["parent_category_id"], category_id=category.id)
    for key, value in patch.items():
        setattr(category, key, value)
    db.session.commit()
    return category


def delete_category(category_id: int) -> None:
    """Refused while any product (active or not) or subcategory points at the category."""
    category = get_category(category_id)
    products = db.session.query(func.count(Product.id)).filter(Product.category_id == category.id).scalar()
    if products:
        raise Conflict(
            f"Cannot delete category with {products} existing products. Please move or delete the products first.",
            details={"products": products},
        )
    children = (
        db.session.query(func.count(Category.id)).filter(Category.parent_category_id == category.id).scalar()
    )
    if children:
        raise Conflict(
            f"Cannot delete category with {children} subcategories. Please move or delete the subcategories first.",
            details={"subcategories": children},
        )
    name = category.name
    db.session.delete(category)
    db.session.commit()
    logger.info("Deleted category %s (%s)", category_id, name)


def list_categories(*, include_inactive: bool = False, parent_only: bool = False) -> list[Category]:
    query = db.session.query(Category)
    if not include_inactive:
        query = query.filter(Category.is_active.is_(True))
    if parent_only:
        query = query.filter(Category.parent_category_id.is_(None))
    return query.order_by(Category.sort_order.asc(), Category.name.asc()).all()


def category_tree(*, include_inactive: bool = False) -> list[dict]:
    """
    Nested [{...category, productCount, subcategories: [...]}] ordered by
    sortOrder then name. Children of an inactive category are dropped with it.
    """
    categories = list_categories(include_inactive=include_inactive)
    counts = dict(
        db.session.query(Product.category_id, func.count(Product.id))
        .filter(Product.is_active.is_(True))
        .group_by(Product.category_id)
        .all()
    )
    children: dict[int | None, list[Category]] = {}
    for category in categories:
        children.setdefault(category.parent_category_id, []).append(category)

    def build(parent_id):
        nodes = []
        for category in children.get(parent_id, []):
            node = category.to_dict()
            node["productCount"] = counts.get(category.id, 0)
            node["subcategories"] = build(category.id)
            nodes.append(node)
        return nodes

    return build(None)


def get_category(category_id: int) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise CategoryNotFound("Category not found")
    return category


# =============================================================================
# Products
# =============================================================================

def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound("Product not found")
    return product


def _ensure_unique_sku(sku: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Product.id).filter(Product.sku == sku, Product.is_active.is_(True))
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise DuplicateValue("SKU already exists", details={"field": "sku", "value": sku})


def _ensure_unique_barcode(barcode: str | None, *, exclude_id: int | None = None) -> None:
    if not barcode:
        return
    query = db.session.query(Product.id).filter(Product.barcode == barcode)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise DuplicateValue("Barcode already exists", details={"field": "barcode", "value": barcode})


def _check_product_refs(patch: dict) -> None:
    if "category_id" in patch and db.session.get(Category, patch["category_id"]) is None:
        raise CategoryNotFound("Category not found")
    if patch.get("supplier_id") is not None and db.session.get(Supplier, patch["supplier_id"]) is None:
        raise SupplierNotFound("Supplier not found")
    if "unit" in patch:
        require_choice(patch["unit"], PRODUCT_UNITS, "unit")


def create_product(payload: dict, *, user_id: int | None = None) -> Product:
    """
    Create a product, optionally with opening stock.

    openingStock (alias currentStock) is not written to the product directly:
    it is recorded as an in/opening_stock movement, into openingLocationId
    when given.
    """
    opening_raw = payload.get("openingStock", payload.get("currentStock"))
    opening = to_int(opening_raw, "openingStock", minimum=0) if opening_raw not in (None, "") else 0
    opening_location = payload.get("openingLocationId")
    if opening_location is not None:
        opening_location = to_int(opening_location, "openingLocationId", minimum=1)

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)
    _check_product_refs(patch)
    _ensure_unique_sku(patch["sku"])
    _ensure_unique_barcode(patch.get("barcode"))

    product = Product(**patch)
    product.current_stock = 0
    product.created_by_user_id = user_id
    product.last_stock_update = utcnow()
    db.session.add(product)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateValue("SKU or barcode already exists")

    if opening > 0:
        apply_movement(
            product_id=product.id,
            movement_type="in",
            reason="opening_stock",
            quantity=opening,
            to_location_id=opening_location,
            unit_cost=product.cost_price,
            performed_by=user_id,
            notes="Opening stock",
        )
    elif opening_location is not None:
        raise ValidationFailure("openingLocationId requires a positive openingStock")

    commit_movements()
    logger.info("Created product %s (%s) with opening stock %s", product.id, product.sku, opening)
    return product


def update_product(product_id: int, payload: dict) -> Product:
    """Descriptive and price fields only; stock fields are not writable here."""
    product = get_product(product_id)
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch, is_perishable=product.is_perishable, expiry_date=product.expiry_date)
    _check_product_refs(patch)

    becomes_active = patch.get("is_active", product.is_active)
    sku = patch.get("sku", product.sku)
    if becomes_active and ("sku" in patch or (patch.get("is_active") and not product.is_active)):
        _ensure_unique_sku(sku, exclude_id=product.id)
    if "barcode" in patch:
        _ensure_unique_barcode(patch["barcode"], exclude_id=product.id)

    for key, value in patch.items():
        setattr(product, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateValue("SKU or barcode already exists")
    return product


def deactivate_product(product_id: int) -> Product:
    product = get_product(product_id)
    product.is_active = False
    db.session.commit()
    logger.info("Deactivated product %s (%s)", product.id, product.sku)
    return product


def _stock_status_filter(query, status: str):
    if status == "out_of_stock":
        return query.filter(Product.current_stock == 0)
    if status == "low_stock":
        return query.filter(Product.current_stock > 0, Product.current_stock <= Product.minimum_stock)
    if status == "in_stock":
        return query.filter(Product.current_stock > Product.minimum_stock)
    raise ValidationFailure("Invalid stockStatus. Must be one of: in_stock, low_stock, out_of_stock")


def list_products(filters: dict | None = None, *, page: int = 1, limit: int = 20) -> tuple[list[Product], dict]:
    filters = filters or {}
    query = db.session.query(Product)

    if filters.get("is_active") is not None:
        query = query.filter(Product.is_active.is_(filters["is_active"]))
    if filters.get("category_id"):
        query = query.filter(Product.category_id == filters["category_id"])
    if filters.get("supplier_id"):
        query = query.filter(Product.supplier_id == filters["supplier_id"])
    if filters.get("stock_status"):
        query = _stock_status_filter(query, filters["stock_status"])
    if filters.get("search"):
        term = f"%{filters['search'].strip()}%"
        query = query.filter(or_(
            Product.name.ilike(term),
            Product.sku.ilike(term),
            Product.barcode.ilike(term),
        ))

    query = query.order_by(Product.name.asc(), Product.id.asc())
    return paginate(query, page=page, limit=limit)


def low_stock_products() -> list[Product]:
    """Active products at or below their minimum (out-of-stock included)."""
    return (
        db.session.query(Product)
        .filter(Product.is_active.is_(True), Product.current_stock <= Product.minimum_stock)
        .order_by(Product.current_stock.asc(), Product.name.asc())
        .all()
    )


def expiring_products(*, days: int = 30, now=None) -> list[dict]:
    """Active perishable products expiring within `days` (already expired included)."""
    now = now or utcnow()
    horizon = now + timedelta(days=days)
    products = (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.is_perishable.is_(True),
            Product.expiry_date.isnot(None),
            Product.expiry_date <= horizon,
        )
        .order_by(Product.expiry_date.asc())
        .all()
    )
    result = []
    for product in products:
        data = product.to_dict(include_locations=False)
        data["expired"] = product.expiry_date <= now
        data["daysUntilExpiry"] = (product.expiry_date - now).days
        result.append(data)
    return result


# =============================================================================
# Locations
# =============================================================================

def get_location(location_id: int) -> Location:
    location = db.session.get(Location, location_id)
    if location is None:
        raise LocationNotFound("Location not found")
    return location


def _ensure_unique_location(patch: dict, *, exclude_id: int | None = None) -> None:
    for key, label in (("name", "Location name"), ("code", "Location code")):
        if key not in patch:
            continue
        column = getattr(Location, key)
        query = db.session.query(Location.id).filter(func.lower(column) == patch[key].lower())
        if exclude_id is not None:
            query = query.filter(Location.id != exclude_id)
        if query.first():
            raise DuplicateValue(f"{label} already exists", details={"field": key, "value": patch[key]})


def create_location(payload: dict) -> Location:
    patch = validate_payload(model=Location, payload=payload, policy=LOCATION_POLICY, partial=False)
    enforce_rules_location(patch)
    _ensure_unique_location(patch)
    location = Location(**patch)
    location.current_utilization = 0
    db.session.add(location)
    db.session.commit()
    logger.info("Created location %s (%s)", location.id, location.code)
    return location


def update_location(location_id: int, payload: dict) -> Location:
    location = get_location(location_id)
    patch = validate_payload(model=Location, payload=payload, policy=LOCATION_POLICY, partial=True)
    enforce_rules_location(patch)
    _ensure_unique_location(patch, exclude_id=location.id)
    for key, value in patch.items():
        setattr(location, key, value)
    db.session.commit()
    return location


def set_location_status(location_id: int, is_active) -> Location:
    if not isinstance(is_active, bool):
        raise ValidationFailure("isActive must be a boolean")
    location = get_location(location_id)
    location.is_active = is_active
    db.session.commit()
    logger.info("Location %s %s", location.code, "activated" if is_active else "deactivated")
    return location


def list_locations(filters: dict | None = None) -> list[Location]:
    filters = filters or {}
    query = db.session.query(Location)
    if filters.get("is_active") is not None:
        query = query.filter(Location.is_active.is_(filters["is_active"]))
    if filters.get("type"):
        query = query.filter(Location.type == filters["type"])
    if filters.get("search"):
        term = f"%{filters['search'].strip()}%"
        query = query.filter(or_(Location.name.ilike(term), Location.code.ilike(term)))
    return query.order_by(Location.name.asc()).all()


def location_detail(location_id: int) -> dict:
    """Location plus the products stocked there."""
    location = get_location(location_id)
    rows = (
        db.session.query(StockLocation)
        .filter(StockLocation.location_id == location.id)
        .order_by(StockLocation.product_id.asc())
        .all()
    )
    data = location.to_dict()
    data["products"] = [
        {"product": row.product.to_ref(), "quantity": row.quantity}
        for row in rows
    ]
    return data


def delete_location(location_id: int) -> None:
    """Refused while any product holds stock here or any movement references it."""
    location = get_location(location_id)

    stocked = (
        db.session.query(func.count(StockLocation.id))
        .filter(StockLocation.location_id == location.id, StockLocation.quantity > 0)
        .scalar()
    )
    if stocked:
        raise LocationInUse(
            f"Cannot delete location with {stocked} products. Please move all products first.",
            details={"products": stocked},
        )

    movements = (
        db.session.query(func.count(StockMovement.id))
        .filter(or_(
            StockMovement.from_location_id == location.id,
            StockMovement.to_location_id == location.id,
        ))
        .scalar()
    )
    if movements:
        raise LocationInUse(
            f"Cannot delete location with {movements} stock movements. Please deactivate instead.",
            details={"movements": movements},
        )

    db.session.delete(location)
    db.session.commit()
    logger.info("Deleted location %s (%s)", location_id, location.code)
