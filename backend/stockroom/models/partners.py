from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockroom.time_utils import to_utc_z
from stockroom.validation import money_json


PAYMENT_TERMS = ("cash", "net_15", "net_30", "net_45", "net_60")
CUSTOMER_GROUPS = ("regular", "vip", "wholesale", "retail")
CUSTOMER_TYPES = ("individual", "business")


class PartnerMixin:
    """
    Columns shared by suppliers and customers.

    total_orders, current_balance and last_order_date are denormalised from
    purchases/sales. Only the workflow services write them; the maintenance
    verify routine recomputes them from the documents.
    """
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    tax_number = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.String(500), nullable=True)

    credit_limit = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    current_balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_orders = db.Column(db.Integer, nullable=False, default=0)
    last_order_date = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "taxNumber": self.tax_number,
            "notes": self.notes,
            "paymentTerms": self.payment_terms,
            "creditLimit": money_json(self.credit_limit),
            "currentBalance": money_json(self.current_balance),
            "totalOrders": self.total_orders,
            "lastOrderDate": to_utc_z(self.last_order_date),
            "isActive": self.is_active,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }

    def to_ref(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email}


class Supplier(PartnerMixin, db.Model):
    __tablename__ = "suppliers"
    __table_args__ = (
        db.CheckConstraint("current_balance >= 0", name="ck_suppliers_balance_nonneg"),
        {"sqlite_autoincrement": True},
    )

    contact_person = db.Column(db.String(100), nullable=True)
    payment_terms = db.Column(db.String(16), nullable=False, default="net_30")
    rating = db.Column(db.Integer, nullable=True)
    total_purchase_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} email={self.email!r}>"

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "contactPerson": self.contact_person,
            "rating": self.rating,
            "totalPurchaseAmount": money_json(self.total_purchase_amount),
        })
        return data


class Customer(PartnerMixin, db.Model):
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint("current_balance >= 0", name="ck_customers_balance_nonneg"),
        {"sqlite_autoincrement": True},
    )

    type = db.Column(db.String(16), nullable=False, default="individual")
    business_name = db.Column(db.String(100), nullable=True)
    customer_group = db.Column(db.String(16), nullable=False, default="regular")
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0.00"))
    payment_terms = db.Column(db.String(16), nullable=False, default="cash")
    total_sales_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))

    def __repr__(self) -> str:
        return f"<Customer id={self.id} email={self.email!r}>"

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update({
            "type": self.type,
            "businessName": self.business_name,
            "customerGroup": self.customer_group,
            "discountPercentage": money_json(self.discount_percentage),
            "totalSalesAmount": money_json(self.total_sales_amount),
        })
        return data
