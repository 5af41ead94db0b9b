from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockroom.time_utils import to_utc_z
from stockroom.validation import money_json


PURCHASE_STATUSES = ("draft", "pending", "approved", "ordered", "partially_received", "received", "cancelled")
PURCHASE_PAYMENT_STATUSES = ("unpaid", "partially_paid", "paid")

SALE_STATUSES = ("draft", "confirmed", "shipped", "delivered", "cancelled", "returned")
SALE_PAYMENT_STATUSES = ("unpaid", "partially_paid", "paid", "overdue")

PAYMENT_METHODS = ("cash", "check", "bank_transfer", "credit_card", "other")

ZERO = Decimal("0.00")


class DocumentTotalsMixin:
    """Monetary totals shared by purchases and sales.

    grand_total = subtotal - total_discount + total_tax + shipping_cost
    """
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_discount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    total_tax = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    shipping_cost = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    grand_total = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    def recompute_totals(self) -> None:
        subtotal = ZERO
        discount = ZERO
        tax = ZERO
        for item in self.items:
            item.total_price = item.unit_price * item.quantity
            subtotal += item.total_price
            discount += item.discount or ZERO
            tax += item.tax or ZERO
        self.subtotal = subtotal
        self.total_discount = discount
        self.total_tax = tax
        self.grand_total = subtotal - discount + tax + (self.shipping_cost or ZERO)

    def _totals_dict(self) -> dict:
        return {
            "subtotal": money_json(self.subtotal),
            "totalDiscount": money_json(self.total_discount),
            "totalTax": money_json(self.total_tax),
            "shippingCost": money_json(self.shipping_cost),
            "grandTotal": money_json(self.grand_total),
        }


class LineItemMixin:
    id = db.Column(db.Integer, primary_key=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=ZERO)

    def _line_dict(self) -> dict:
        return {
            "id": self.id,
            "product": self.product.to_ref() if self.product else {"id": self.product_id},
            "productId": self.product_id,
            "quantity": self.quantity,
            "unitPrice": money_json(self.unit_price),
            "totalPrice": money_json(self.total_price),
            "discount": money_json(self.discount),
            "tax": money_json(self.tax),
        }


class Purchase(DocumentTotalsMixin, db.Model):
    """
    Purchase order to a supplier.

    LIFECYCLE:
    draft -> pending -> approved -> ordered -> partially_received -> received
    Any open state may be cancelled; cancelled may be re-opened to pending.

    A purchase is "committed" (reflected in the supplier's counters and
    balance) whenever its status is neither draft nor cancelled.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.Index("ix_purchases_supplier_order_date", "supplier_id", "order_date"),
        db.Index("ix_purchases_status_payment", "status", "payment_status"),
        db.CheckConstraint("grand_total >= 0", name="ck_purchases_grand_total_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_number = db.Column(db.String(32), nullable=False, unique=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)

    status = db.Column(db.String(24), nullable=False, default="draft", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")
    payment_method = db.Column(db.String(16), nullable=True)
    payment_terms = db.Column(db.String(16), nullable=False, default="net_30")

    order_date = db.Column(db.DateTime(timezone=True), nullable=False)
    expected_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.String(500), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("Supplier", backref=db.backref("purchases", lazy=True))
    items = db.relationship(
        "PurchaseItem",
        back_populates="purchase",
        order_by="PurchaseItem.id",
        cascade="all, delete-orphan",
    )
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Purchase id={self.id} number={self.purchase_order_number!r} status={self.status}>"

    @property
    def total_ordered(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total_received(self) -> int:
        return sum(item.received_quantity for item in self.items)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "purchaseOrderNumber": self.purchase_order_number,
            "supplier": self.supplier.to_ref() if self.supplier else {"id": self.supplier_id},
            "supplierId": self.supplier_id,
            "items": [item.to_dict() for item in self.items],
            "status": self.status,
            "paymentStatus": self.payment_status,
            "paymentMethod": self.payment_method,
            "paymentTerms": self.payment_terms,
            "orderDate": to_utc_z(self.order_date),
            "expectedDeliveryDate": to_utc_z(self.expected_delivery_date),
            "actualDeliveryDate": to_utc_z(self.actual_delivery_date),
            "notes": self.notes,
            "createdBy": self.created_by_user_id,
            "approvedBy": self.approved_by_user_id,
            "approvedAt": to_utc_z(self.approved_at),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
        data.update(self._totals_dict())
        return data


class PurchaseItem(LineItemMixin, db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
        db.CheckConstraint(
            "received_quantity >= 0 AND received_quantity <= quantity",
            name="ck_purchase_items_received_bounds",
        ),
        {"sqlite_autoincrement": True},
    )

    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    received_quantity = db.Column(db.Integer, nullable=False, default=0)

    purchase = db.relationship("Purchase", back_populates="items")
    product = db.relationship("Product")

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - (self.received_quantity or 0)

    def to_dict(self) -> dict:
        data = self._line_dict()
        data["receivedQuantity"] = self.received_quantity
        data["remainingQuantity"] = self.remaining_quantity
        return data


class Sale(DocumentTotalsMixin, db.Model):
    """
    Sales invoice to a customer.

    LIFECYCLE:
    draft -> confirmed -> shipped -> delivered
    draft/confirmed may be cancelled; shipped/delivered may be returned.

    Stock is taken out while the status is confirmed, shipped or delivered.
    payment_terms is snapshotted from the customer at creation so later
    changes to the customer do not move existing balances.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_customer_sale_date", "customer_id", "sale_date"),
        db.Index("ix_sales_payment_status_due_date", "payment_status", "due_date"),
        db.CheckConstraint("grand_total >= 0", name="ck_sales_grand_total_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")
    payment_method = db.Column(db.String(16), nullable=True)
    payment_terms = db.Column(db.String(16), nullable=False, default="cash")

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.String(500), nullable=True)
    sales_person_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        order_by="SaleItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} number={self.invoice_number!r} status={self.status}>"

    @property
    def flat_profit(self) -> Decimal:
        """Revenue-based estimate: 30% of grand total."""
        return (self.grand_total * Decimal("0.30")).quantize(Decimal("0.01"))

    @property
    def margin_profit(self) -> Decimal:
        """Sum of (unit price - product cost price) x quantity, less document discount."""
        gross = sum(
            ((item.unit_price - (item.product.cost_price if item.product else ZERO)) * item.quantity
             for item in self.items),
            ZERO,
        )
        return gross - (self.total_discount or ZERO)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "customer": self.customer.to_ref() if self.customer else {"id": self.customer_id},
            "customerId": self.customer_id,
            "items": [item.to_dict() for item in self.items],
            "status": self.status,
            "paymentStatus": self.payment_status,
            "paymentMethod": self.payment_method,
            "paymentTerms": self.payment_terms,
            "saleDate": to_utc_z(self.sale_date),
            "dueDate": to_utc_z(self.due_date),
            "deliveryDate": to_utc_z(self.delivery_date),
            "notes": self.notes,
            "salesPerson": self.sales_person_user_id,
            "flatProfit": money_json(self.flat_profit),
            "marginProfit": money_json(self.margin_profit),
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }
        data.update(self._totals_dict())
        return data


class SaleItem(LineItemMixin, db.Model):
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return self._line_dict()


class DocumentSequence(db.Model):
    """
    Atomic document counters (PO-000001, INV-000001).

    One row per document type; next_number is only ever advanced by a single
    UPDATE so two concurrent creates never share a number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "documentType": self.document_type,
            "nextNumber": self.next_number,
            "updatedAt": to_utc_z(self.updated_at),
        }
