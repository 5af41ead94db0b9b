from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from stockroom.errors import LedgerEntryImmutable
from stockroom.time_utils import to_utc_z
from stockroom.validation import money_json


MOVEMENT_TYPES = ("in", "out", "transfer", "adjustment")
MOVEMENT_REASONS = (
    "purchase", "sale", "return", "damage", "loss", "theft",
    "transfer", "adjustment", "opening_stock", "manufacturing",
)
REFERENCE_KINDS = ("purchase", "sale", "transfer", "adjustment")

STATUS_COMMITTED = "committed"
STATUS_PENDING = "pending"
STATUS_VOID = "void"
MOVEMENT_STATUSES = (STATUS_COMMITTED, STATUS_PENDING, STATUS_VOID)


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    One row per change to a product's stock. previous_stock/new_stock are
    snapshots of products.current_stock around the change, so folding a
    product's committed rows in (movement_date, id) order reproduces its
    current stock.

    Rows are never updated or deleted. The single exception is the
    two-phase write protocol: a row written as "pending" is later flipped
    to "committed" or "void", once.

    quantity is always > 0, except for adjustments where it is the absolute
    stock level that was set (and may be 0).
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_date", "product_id", "movement_date", "id"),
        db.Index("ix_stock_movements_type_reason", "type", "reason"),
        db.Index("ix_stock_movements_reference", "reference_kind", "reference_id"),
        db.Index("ix_stock_movements_status_date", "status", "movement_date"),
        db.CheckConstraint(
            "quantity > 0 OR (type = 'adjustment' AND quantity >= 0)",
            name="ck_stock_movements_quantity",
        ),
        db.CheckConstraint("new_stock >= 0 AND previous_stock >= 0", name="ck_stock_movements_snapshots_nonneg"),
        db.CheckConstraint(
            "(type = 'transfer' AND from_location_id IS NOT NULL AND to_location_id IS NOT NULL"
            " AND from_location_id <> to_location_id)"
            " OR (type <> 'transfer' AND (from_location_id IS NULL OR to_location_id IS NULL))",
            name="ck_stock_movements_location_pair",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    type = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    unit_cost = db.Column(db.Numeric(12, 2), nullable=True)
    total_cost = db.Column(db.Numeric(14, 2), nullable=True)

    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    reference_kind = db.Column(db.String(16), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    reference_number = db.Column(db.String(32), nullable=True)

    notes = db.Column(db.String(200), nullable=True)
    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_COMMITTED)
    movement_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    from_location = db.relationship("Location", foreign_keys=[from_location_id])
    to_location = db.relationship("Location", foreign_keys=[to_location_id])
    performed_by = db.relationship("User", foreign_keys=[performed_by_user_id])

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} type={self.type} "
            f"qty={self.quantity} {self.previous_stock}->{self.new_stock}>"
        )

    def to_dict(self) -> dict:
        reference = None
        if self.reference_kind:
            reference = {
                "type": self.reference_kind,
                "id": self.reference_id,
                "number": self.reference_number,
            }
        return {
            "id": self.id,
            "product": self.product.to_ref() if self.product else {"id": self.product_id},
            "productId": self.product_id,
            "type": self.type,
            "reason": self.reason,
            "quantity": self.quantity,
            "previousStock": self.previous_stock,
            "newStock": self.new_stock,
            "unitCost": money_json(self.unit_cost),
            "totalCost": money_json(self.total_cost),
            "location": {
                "from": self.from_location.to_ref() if self.from_location else None,
                "to": self.to_location.to_ref() if self.to_location else None,
            },
            "reference": reference,
            "notes": self.notes,
            "performedBy": self.performed_by.to_ref() if self.performed_by else None,
            "status": self.status,
            "movementDate": to_utc_z(self.movement_date),
            "createdAt": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def prevent_movement_update(mapper, connection, target):
    """Only a pending row's status may change; everything else is frozen."""
    state = inspect(target)
    for attr in state.mapper.column_attrs:
        history = state.attrs[attr.key].history
        if not history.has_changes():
            continue
        if attr.key == "status" and history.deleted and history.deleted[0] == STATUS_PENDING:
            continue
        raise LedgerEntryImmutable(
            f"Stock movement {target.id} is immutable (attempted change to {attr.key})"
        )


@event.listens_for(StockMovement, "before_delete")
def prevent_movement_delete(mapper, connection, target):
    raise LedgerEntryImmutable(f"Stock movement {target.id} cannot be deleted")
