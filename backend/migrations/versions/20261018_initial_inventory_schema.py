"""Initial inventory schema

Revision ID: 20261018_initial_inventory
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial_inventory"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*, updated: bool = True):
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return cols


def _money(name: str, precision: int = 12):
    return sa.Column(name, sa.Numeric(precision, 2), nullable=False, server_default="0")


def _partner_columns():
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("tax_number", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        _money("credit_limit"),
        _money("current_balance"),
        sa.Column("total_orders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_order_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    ]


def _document_totals():
    return [
        _money("subtotal"),
        _money("total_discount"),
        _money("total_tax"),
        _money("shipping_cost"),
        _money("grand_total"),
    ]


def _line_columns():
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        _money("total_price"),
        _money("discount"),
        _money("tax"),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="staff"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "session_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hash", sa.String(length=255), nullable=False),
        *_timestamps(updated=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_session_tokens_token_hash", "session_tokens", ["token_hash"], unique=True)
    op.create_index("ix_session_tokens_user_id", "session_tokens", ["user_id"])
    op.create_index("ix_session_tokens_expires_at", "session_tokens", ["expires_at"])
    op.create_index("ix_session_tokens_user_active", "session_tokens", ["user_id", "is_revoked"])

    op.create_table(
        "settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_name", sa.String(length=100), nullable=False),
        sa.Column("company_email", sa.String(length=255), nullable=True),
        sa.Column("company_phone", sa.String(length=32), nullable=True),
        sa.Column("company_address", sa.String(length=500), nullable=True),
        sa.Column("currency_code", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("currency_symbol", sa.String(length=8), nullable=False, server_default="$"),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("low_stock_alert", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("parent_category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_categories_parent_active", "categories", ["parent_category_id", "is_active"])

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("code", sa.String(length=20), nullable=False, unique=True),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="warehouse"),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("current_utilization", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("current_utilization >= 0", name="ck_locations_utilization_nonneg"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_locations_is_active", "locations", ["is_active"])

    op.create_table(
        "suppliers",
        *_partner_columns(),
        sa.Column("contact_person", sa.String(length=100), nullable=True),
        sa.Column("payment_terms", sa.String(length=16), nullable=False, server_default="net_30"),
        sa.Column("rating", sa.Integer(), nullable=True),
        _money("total_purchase_amount", 14),
        sa.CheckConstraint("current_balance >= 0", name="ck_suppliers_balance_nonneg"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_suppliers_is_active", "suppliers", ["is_active"])

    op.create_table(
        "customers",
        *_partner_columns(),
        sa.Column("type", sa.String(length=16), nullable=False, server_default="individual"),
        sa.Column("business_name", sa.String(length=100), nullable=True),
        sa.Column("customer_group", sa.String(length=16), nullable=False, server_default="regular"),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("payment_terms", sa.String(length=16), nullable=False, server_default="cash"),
        _money("total_sales_amount", 14),
        sa.CheckConstraint("current_balance >= 0", name="ck_customers_balance_nonneg"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customers_is_active", "customers", ["is_active"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("barcode", sa.String(length=64), nullable=True, unique=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("brand", sa.String(length=50), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id"), nullable=True),
        sa.Column("unit", sa.String(length=16), nullable=False, server_default="pcs"),
        _money("cost_price"),
        _money("selling_price"),
        sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("minimum_stock", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_perishable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_stock_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_sold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_purchased", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("current_stock >= 0", name="ck_products_stock_nonneg"),
        sa.CheckConstraint("minimum_stock >= 0", name="ck_products_minimum_nonneg"),
        sa.CheckConstraint("total_sold >= 0", name="ck_products_total_sold_nonneg"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_sku", "products", ["sku"])
    op.create_index(
        "uq_products_sku_active",
        "products",
        ["sku"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )
    op.create_index("ix_products_category_id", "products", ["category_id"])
    op.create_index("ix_products_supplier_id", "products", ["supplier_id"])
    op.create_index("ix_products_is_active", "products", ["is_active"])
    op.create_index("ix_products_category_active", "products", ["category_id", "is_active"])
    op.create_index("ix_products_stock_minimum", "products", ["current_stock", "minimum_stock"])

    op.create_table(
        "stock_locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.UniqueConstraint("product_id", "location_id", name="uq_stock_locations_product_location"),
        sa.CheckConstraint("quantity > 0", name="ck_stock_locations_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_locations_product_id", "stock_locations", ["product_id"])
    op.create_index("ix_stock_locations_location_id", "stock_locations", ["location_id"])

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_order_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id"), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="draft"),
        sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="unpaid"),
        sa.Column("payment_method", sa.String(length=16), nullable=True),
        sa.Column("payment_terms", sa.String(length=16), nullable=False, server_default="net_30"),
        sa.Column("order_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expected_delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        *_document_totals(),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("grand_total >= 0", name="ck_purchases_grand_total_nonneg"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_purchases_supplier_id", "purchases", ["supplier_id"])
    op.create_index("ix_purchases_status", "purchases", ["status"])
    op.create_index("ix_purchases_supplier_order_date", "purchases", ["supplier_id", "order_date"])
    op.create_index("ix_purchases_status_payment", "purchases", ["status", "payment_status"])

    op.create_table(
        "purchase_items",
        *_line_columns(),
        sa.Column("purchase_id", sa.Integer(), sa.ForeignKey("purchases.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("received_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
        sa.CheckConstraint(
            "received_quantity >= 0 AND received_quantity <= quantity",
            name="ck_purchase_items_received_bounds",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_purchase_items_purchase_id", "purchase_items", ["purchase_id"])
    op.create_index("ix_purchase_items_product_id", "purchase_items", ["product_id"])

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_number", sa.String(length=32), nullable=False, unique=True),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="unpaid"),
        sa.Column("payment_method", sa.String(length=16), nullable=True),
        sa.Column("payment_terms", sa.String(length=16), nullable=False, server_default="cash"),
        sa.Column("sale_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        *_document_totals(),
        sa.Column("sales_person_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("grand_total >= 0", name="ck_sales_grand_total_nonneg"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_customer_id", "sales", ["customer_id"])
    op.create_index("ix_sales_status", "sales", ["status"])
    op.create_index("ix_sales_customer_sale_date", "sales", ["customer_id", "sale_date"])
    op.create_index("ix_sales_payment_status_due_date", "sales", ["payment_status", "due_date"])

    op.create_table(
        "sale_items",
        *_line_columns(),
        sa.Column("sale_id", sa.Integer(), sa.ForeignKey("sales.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"])
    op.create_index("ix_sale_items_product_id", "sale_items", ["product_id"])

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_type", sa.String(length=32), nullable=False, unique=True),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("previous_stock", sa.Integer(), nullable=False),
        sa.Column("new_stock", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("total_cost", sa.Numeric(14, 2), nullable=True),
        sa.Column("from_location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("to_location_id", sa.Integer(), sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("reference_kind", sa.String(length=16), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("reference_number", sa.String(length=32), nullable=True),
        sa.Column("notes", sa.String(length=200), nullable=True),
        sa.Column("performed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="committed"),
        sa.Column("movement_date", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(updated=False),
        sa.CheckConstraint(
            "quantity > 0 OR (type = 'adjustment' AND quantity >= 0)",
            name="ck_stock_movements_quantity",
        ),
        sa.CheckConstraint("new_stock >= 0 AND previous_stock >= 0", name="ck_stock_movements_snapshots_nonneg"),
        sa.CheckConstraint(
            "(type = 'transfer' AND from_location_id IS NOT NULL AND to_location_id IS NOT NULL"
            " AND from_location_id <> to_location_id)"
            " OR (type <> 'transfer' AND (from_location_id IS NULL OR to_location_id IS NULL))",
            name="ck_stock_movements_location_pair",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_movements_product_date", "stock_movements", ["product_id", "movement_date", "id"])
    op.create_index("ix_stock_movements_type_reason", "stock_movements", ["type", "reason"])
    op.create_index("ix_stock_movements_reference", "stock_movements", ["reference_kind", "reference_id"])
    op.create_index("ix_stock_movements_status_date", "stock_movements", ["status", "movement_date"])
    op.create_index("ix_stock_movements_from_location_id", "stock_movements", ["from_location_id"])
    op.create_index("ix_stock_movements_to_location_id", "stock_movements", ["to_location_id"])
    op.create_index("ix_stock_movements_performed_by_user_id", "stock_movements", ["performed_by_user_id"])


def downgrade():
    for table in (
        "stock_movements",
        "document_sequences",
        "sale_items",
        "sales",
        "purchase_items",
        "purchases",
        "stock_locations",
        "products",
        "customers",
        "suppliers",
        "locations",
        "categories",
        "settings",
        "session_tokens",
        "users",
    ):
        op.drop_table(table)
