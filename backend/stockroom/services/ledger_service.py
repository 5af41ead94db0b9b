# Overview: Append-only stock movement ledger: writes, reads, summaries, replay and pending reconciliation.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, StockMovement
from ..models.ledger import (
    MOVEMENT_REASONS,
    MOVEMENT_TYPES,
    STATUS_COMMITTED,
    STATUS_PENDING,
    STATUS_VOID,
)
from stockroom.errors import LedgerWriteFailed, MovementNotFound, ValidationFailure
from stockroom.time_utils import utcnow
"""
Stock ledger invariants (authoritative)

- One StockMovement row per change to a product's stock; rows are never
  updated or deleted (see the mapper guards in models/ledger.py).
- Rows for one product are strictly ordered by (movement_date, id) and
  movement_date is strictly increasing per product.
- Only status='committed' rows count. 'pending' rows exist briefly under the
  two-phase write mode; 'void' rows are pending rows whose product update
  never landed.
- Folding a product's committed rows with fold_stock() from 0 reproduces
  products.current_stock.
"""

logger = logging.getLogger(__name__)

MIN_STEP = timedelta(microseconds=1)

SUMMARY_GROUPS = ("type", "reason", "product", "location", "day")


def fold_stock(previous: int, movement_type: str, quantity: int) -> int:
    """in adds, out subtracts, transfer leaves the aggregate alone, adjustment sets it."""
    if movement_type == "in":
        return previous + quantity
    if movement_type == "out":
        return previous - quantity
    if movement_type == "transfer":
        return previous
    if movement_type == "adjustment":
        return quantity
    raise ValueError(f"unknown movement type: {movement_type}")


@dataclass(frozen=True)
class MovementReference:
    """Back-pointer from a movement to the document that caused it."""
    kind: str
    id: int | None
    number: str | None = None


def next_movement_date(product_id: int, now: datetime | None = None) -> datetime:
    """Strictly after the product's latest movement, and never before now."""
    now = now or utcnow()
    last = (
        db.session.query(func.max(StockMovement.movement_date))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    if last is not None and last >= now:
        return last + MIN_STEP
    return now


def append_movement(movement: StockMovement) -> StockMovement:
    """
    Append a fully formed movement (snapshots and references resolved).

    Flushes inside the caller's transaction; never commits. Store failures
    surface as LedgerWriteFailed so the caller's transaction rolls back with
    the paired product update.
    """
    if movement.type not in MOVEMENT_TYPES:
        raise ValidationFailure(f"Invalid movement type: {movement.type}")
    if movement.reason not in MOVEMENT_REASONS:
        raise ValidationFailure(f"Invalid movement reason: {movement.reason}")
    if movement.movement_date is None:
        movement.movement_date = next_movement_date(movement.product_id)

    try:
        db.session.add(movement)
        db.session.flush()
    except SQLAlchemyError as exc:
        raise LedgerWriteFailed(f"Failed to write stock movement: {exc.__class__.__name__}") from exc
    return movement


def set_movement_status(movement: StockMovement, status: str) -> StockMovement:
    """Resolve a pending movement. Only pending -> committed|void is allowed."""
    if movement.status != STATUS_PENDING:
        raise ValidationFailure(f"Movement {movement.id} is not pending")
    if status not in (STATUS_COMMITTED, STATUS_VOID):
        raise ValidationFailure(f"Invalid movement status: {status}")
    movement.status = status
    try:
        db.session.flush()
    except SQLAlchemyError as exc:
        raise LedgerWriteFailed(f"Failed to resolve stock movement {movement.id}") from exc
    return movement


# =============================================================================
# Reads
# =============================================================================

def _apply_filters(query, filters: dict):
    if filters.get("product_id"):
        query = query.filter(StockMovement.product_id == filters["product_id"])
    if filters.get("type"):
        query = query.filter(StockMovement.type == filters["type"])
    if filters.get("reason"):
        query = query.filter(StockMovement.reason == filters["reason"])
    if filters.get("location_id"):
        loc = filters["location_id"]
        query = query.filter(or_(
            StockMovement.from_location_id == loc,
            StockMovement.to_location_id == loc,
        ))
    if filters.get("reference_kind"):
        query = query.filter(StockMovement.reference_kind == filters["reference_kind"])
    if filters.get("reference_id"):
        query = query.filter(StockMovement.reference_id == filters["reference_id"])
    if filters.get("start_date"):
        query = query.filter(StockMovement.movement_date >= filters["start_date"])
    if filters.get("end_date"):
        query = query.filter(StockMovement.movement_date <= filters["end_date"])
    status = filters.get("status", STATUS_COMMITTED)
    if status:
        query = query.filter(StockMovement.status == status)
    return query


def list_movements(filters: dict | None = None, *, page: int = 1, limit: int = 20) -> tuple[list[StockMovement], int]:
    """Newest first. Returns (rows, total)."""
    query = _apply_filters(db.session.query(StockMovement), filters or {})
    total = query.count()
    rows = (
        query.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def get_movement(movement_id: int) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None:
        raise MovementNotFound("Stock movement not found")
    return movement


def product_movements(product_id: int, *, status: str | None = STATUS_COMMITTED) -> list[StockMovement]:
    """All of a product's movements in ledger order."""
    query = db.session.query(StockMovement).filter(StockMovement.product_id == product_id)
    if status:
        query = query.filter(StockMovement.status == status)
    return query.order_by(StockMovement.movement_date.asc(), StockMovement.id.asc()).all()


def document_positions(reference_kind: str, reference_id: int) -> dict[tuple[int, int | None], int]:
    """
    Net units a document has moved, keyed by (product_id, location_id).

    "in" rows count towards their destination, "out" rows against their
    source; compensating rows carry the same reference and cancel out.
    Void rows are ignored, pending rows of the current unit of work count.
    """
    rows = (
        db.session.query(StockMovement)
        .filter(
            StockMovement.reference_kind == reference_kind,
            StockMovement.reference_id == reference_id,
            StockMovement.type.in_(("in", "out")),
            StockMovement.status != STATUS_VOID,
        )
        .order_by(StockMovement.id.asc())
        .all()
    )
    positions: dict[tuple[int, int | None], int] = {}
    for movement in rows:
        if movement.type == "in":
            key = (movement.product_id, movement.to_location_id)
            positions[key] = positions.get(key, 0) + movement.quantity
        else:
            key = (movement.product_id, movement.from_location_id)
            positions[key] = positions.get(key, 0) - movement.quantity
    return {key: quantity for key, quantity in positions.items() if quantity}


def movement_summary(filters: dict | None = None, *, group_by: str = "type") -> list[dict]:
    """
    Aggregate movements by type, reason, product, location or day.

    "location" groups by destination for in/transfer and by source for out.
    """
    if group_by not in SUMMARY_GROUPS:
        raise ValidationFailure(f"Invalid groupBy. Must be one of: {', '.join(SUMMARY_GROUPS)}")

    key_columns = {
        "type": StockMovement.type,
        "reason": StockMovement.reason,
        "product": StockMovement.product_id,
        "location": func.coalesce(StockMovement.to_location_id, StockMovement.from_location_id),
        "day": func.date(StockMovement.movement_date),
    }
    key = key_columns[group_by].label("key")

    query = db.session.query(
        key,
        func.count(StockMovement.id).label("count"),
        func.coalesce(func.sum(StockMovement.quantity), 0).label("total_quantity"),
        func.coalesce(func.sum(StockMovement.total_cost), 0).label("total_cost"),
    )
    query = _apply_filters(query, filters or {})
    rows = query.group_by(key).order_by(key).all()

    return [
        {
            group_by: row.key,
            "count": int(row.count),
            "totalQuantity": int(row.total_quantity or 0),
            "totalCost": float(row.total_cost or 0),
        }
        for row in rows
    ]


# =============================================================================
# Verification
# =============================================================================

@dataclass
class ReplayResult:
    product_id: int
    current_stock: int
    replayed_stock: int
    movement_count: int
    broken_links: list[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return self.replayed_stock == self.current_stock and not self.broken_links

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "currentStock": self.current_stock,
            "replayedStock": self.replayed_stock,
            "movementCount": self.movement_count,
            "brokenLinks": self.broken_links,
            "consistent": self.consistent,
        }


def replay_product_ledger(product: Product) -> ReplayResult:
    """
    Fold the product's committed movements from zero and compare the result
    with products.current_stock.

    A "broken link" is a movement whose previous_stock or new_stock does not
    match the running fold.
    """
    running = 0
    broken: list[int] = []
    movements = product_movements(product.id)
    for movement in movements:
        expected_new = fold_stock(running, movement.type, movement.quantity)
        if movement.previous_stock != running or movement.new_stock != expected_new:
            broken.append(movement.id)
        running = expected_new
    return ReplayResult(
        product_id=product.id,
        current_stock=product.current_stock,
        replayed_stock=running,
        movement_count=len(movements),
        broken_links=broken,
    )


def reconcile_pending_movements(now: datetime | None = None, *, grace_seconds: int | None = None) -> dict:
    """
    Resolve pending movements older than the grace window.

    A unit of work may leave several pending rows for one product. Walking
    them newest first, a row whose new_stock equals the stock the product
    is known to hold at that point landed with its product update and is
    committed; the walk then continues from its previous_stock. Any other
    row is voided. Meant to run before traffic is accepted (start-up,
    scheduler) so no writer is mid-protocol.
    """
    now = now or utcnow()
    if grace_seconds is None:
        grace_seconds = int(current_app.config.get("PENDING_GRACE_SECONDS", 300))
    cutoff = now - timedelta(seconds=grace_seconds)

    pending = (
        db.session.query(StockMovement)
        .filter(StockMovement.status == STATUS_PENDING, StockMovement.movement_date <= cutoff)
        .order_by(StockMovement.product_id.asc(), StockMovement.movement_date.asc(), StockMovement.id.asc())
        .all()
    )

    by_product: dict[int, list[StockMovement]] = {}
    for movement in pending:
        by_product.setdefault(movement.product_id, []).append(movement)

    committed: list[int] = []
    voided: list[int] = []
    for product_id, movements in by_product.items():
        product = db.session.get(Product, product_id)
        expected = product.current_stock if product is not None else None
        for movement in reversed(movements):
            if expected is not None and movement.new_stock == expected:
                set_movement_status(movement, STATUS_COMMITTED)
                committed.append(movement.id)
                expected = movement.previous_stock
            else:
                set_movement_status(movement, STATUS_VOID)
                voided.append(movement.id)

    committed.sort()
    voided.sort()
    db.session.commit()
    if committed or voided:
        logger.info("Reconciled pending movements: committed=%s voided=%s", committed, voided)
    return {"committed": committed, "voided": voided, "checked": len(pending)}
