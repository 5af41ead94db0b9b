from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockroom.time_utils import to_utc_z
from stockroom.validation import money_json


LOCATION_TYPES = ("warehouse", "store", "outlet", "factory", "office")
PRODUCT_UNITS = ("pcs", "kg", "gm", "ltr", "ml", "mtr", "cm", "box", "pack", "dozen", "pair", "set")

STOCK_OUT = "out_of_stock"
STOCK_LOW = "low_stock"
STOCK_IN = "in_stock"


class Category(db.Model):
    """Product category. Categories nest through parent_category_id."""
    __tablename__ = "categories"
    __table_args__ = (
        db.Index("ix_categories_parent_active", "parent_category_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    description = db.Column(db.String(500), nullable=True)
    parent_category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    parent = db.relationship("Category", remote_side=[id], backref="subcategories")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "parentCategory": self.parent_category_id,
            "sortOrder": self.sort_order,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
        }


class Location(db.Model):
    """
    A place stock can sit: warehouse, shop floor, outlet...

    current_utilization is the number of units currently held here. It is
    maintained by the stock primitive, never written by clients.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.CheckConstraint("current_utilization >= 0", name="ck_locations_utilization_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)
    code = db.Column(db.String(20), nullable=False, unique=True)
    type = db.Column(db.String(16), nullable=False, default="warehouse")
    address = db.Column(db.String(255), nullable=True)
    capacity = db.Column(db.Integer, nullable=True)
    current_utilization = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Location id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        utilization_pct = None
        if self.capacity:
            utilization_pct = round(self.current_utilization * 100.0 / self.capacity, 2)
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "type": self.type,
            "address": self.address,
            "capacity": self.capacity,
            "currentUtilization": self.current_utilization,
            "utilizationPercentage": utilization_pct,
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }

    def to_ref(self) -> dict:
        return {"id": self.id, "name": self.name, "code": self.code}


class Product(db.Model):
    """
    Product master data plus its stock aggregate.

    current_stock, total_sold, total_purchased, last_stock_update and the
    stock_locations rows are written only by services.stock_service.apply_movement.

    SKU uniqueness is enforced among ACTIVE products only (partial index);
    a deactivated product frees its SKU for reuse.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index(
            "uq_products_sku_active",
            "sku",
            unique=True,
            sqlite_where=db.text("is_active = 1"),
            postgresql_where=db.text("is_active"),
        ),
        db.Index("ix_products_category_active", "category_id", "is_active"),
        db.Index("ix_products_stock_minimum", "current_stock", "minimum_stock"),
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_nonneg"),
        db.CheckConstraint("minimum_stock >= 0", name="ck_products_minimum_nonneg"),
        db.CheckConstraint("total_sold >= 0", name="ck_products_total_sold_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, index=True)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=True)
    brand = db.Column(db.String(50), nullable=True)

    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    unit = db.Column(db.String(16), nullable=False, default="pcs")
    cost_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    selling_price = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=10)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    is_perishable = db.Column(db.Boolean, nullable=False, default=False)
    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True)

    last_stock_update = db.Column(db.DateTime(timezone=True), nullable=True)
    total_sold = db.Column(db.Integer, nullable=False, default=0)
    total_purchased = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))
    stock_locations = db.relationship(
        "StockLocation",
        back_populates="product",
        order_by="StockLocation.location_id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.current_stock}>"

    @property
    def stock_status(self) -> str:
        return stock_status(self.current_stock, self.minimum_stock)

    @property
    def stock_value(self) -> Decimal:
        return (self.cost_price or Decimal("0")) * self.current_stock

    @property
    def profit_amount(self) -> Decimal:
        return (self.selling_price or Decimal("0")) - (self.cost_price or Decimal("0"))

    @property
    def profit_margin(self) -> float:
        if not self.cost_price:
            return 0.0
        return round(float(self.profit_amount / self.cost_price * 100), 2)

    def to_dict(self, include_locations: bool = True) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "barcode": self.barcode,
            "name": self.name,
            "description": self.description,
            "brand": self.brand,
            "category": self.category.to_dict() if self.category else None,
            "categoryId": self.category_id,
            "supplierId": self.supplier_id,
            "unit": self.unit,
            "costPrice": money_json(self.cost_price),
            "sellingPrice": money_json(self.selling_price),
            "currentStock": self.current_stock,
            "minimumStock": self.minimum_stock,
            "stockStatus": self.stock_status,
            "stockValue": money_json(self.stock_value),
            "profitAmount": money_json(self.profit_amount),
            "profitMargin": self.profit_margin,
            "isActive": self.is_active,
            "isPerishable": self.is_perishable,
            "expiryDate": to_utc_z(self.expiry_date),
            "lastStockUpdate": to_utc_z(self.last_stock_update),
            "totalSold": self.total_sold,
            "totalPurchased": self.total_purchased,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
        if include_locations:
            data["stockLocations"] = [sl.to_dict() for sl in self.stock_locations]
        return data

    def to_ref(self) -> dict:
        return {"id": self.id, "name": self.name, "sku": self.sku, "unit": self.unit}


class StockLocation(db.Model):
    """
    Per-location quantity for a product.

    Rows exist only while quantity > 0. When a product has any rows, their
    quantities sum to products.current_stock; with no rows the product is in
    single-bucket mode.
    """
    __tablename__ = "stock_locations"
    __table_args__ = (
        db.UniqueConstraint("product_id", "location_id", name="uq_stock_locations_product_location"),
        db.CheckConstraint("quantity > 0", name="ck_stock_locations_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product", back_populates="stock_locations")
    location = db.relationship("Location", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "location": self.location.to_ref() if self.location else {"id": self.location_id},
            "quantity": self.quantity,
        }


def stock_status(current_stock: int, minimum_stock: int) -> str:
    """out_of_stock at zero, low_stock up to and including the minimum."""
    if current_stock == 0:
        return STOCK_OUT
    if current_stock <= minimum_stock:
        return STOCK_LOW
    return STOCK_IN
