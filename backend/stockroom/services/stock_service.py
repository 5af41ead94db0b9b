# Overview: The stock primitive. Every change to a product's stock goes through apply_movement().

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import inspect

from ..extensions import db
from ..models import Location, Product, StockLocation, StockMovement
from ..models.catalog import stock_status as _stock_status
from ..models.ledger import MOVEMENT_REASONS, STATUS_COMMITTED, STATUS_PENDING
from .concurrency import lock_for_update, product_locks
from .ledger_service import (
    MovementReference,
    append_movement,
    document_positions,
    fold_stock,
    list_movements,
    next_movement_date,
    set_movement_status,
)
from stockroom.errors import (
    InsufficientStock,
    Internal,
    InvalidLocationPair,
    InvalidQuantity,
    LocationNotFound,
    ProductNotFound,
    ValidationFailure,
)
from stockroom.time_utils import utcnow
"""
Stock state invariants (authoritative)

- products.current_stock >= 0 at all times.
- A product either has no stock_locations rows (single-bucket mode) or rows
  whose quantities sum to current_stock. Rows with quantity 0 are deleted.
- current_stock, the location rows and the ledger change together: the
  product update and its StockMovement are flushed in the caller's
  transaction and committed once with the rest of the workflow. Under the
  two_phase write mode the row is flushed as "pending" ahead of the
  product update and commit_movements() marks it committed afterwards.
- An unlocated "in" or "out" that resolves to exactly one location row
  records that location on the ledger row, so compensation can put the
  units back where they came from.
- Single-bucket stock has no location. A located "in" or adjustment on a
  single-bucket product moves the whole bucket to that location; a located
  "out" draws from the bucket. Transfers always need a source row.
"""

logger = logging.getLogger(__name__)

REQUIRED = "required"
OPTIONAL = "optional"
FORBIDDEN = "forbidden"

# session.info key holding the pending ledger rows of the current unit of work
PENDING_MOVEMENTS = "stockroom.pending_movements"


@dataclass(frozen=True)
class MovementRule:
    min_quantity: int
    from_location: str
    to_location: str
    checks_on_hand: bool


MOVEMENT_RULES = {
    "in": MovementRule(min_quantity=1, from_location=FORBIDDEN, to_location=OPTIONAL, checks_on_hand=False),
    "out": MovementRule(min_quantity=1, from_location=OPTIONAL, to_location=FORBIDDEN, checks_on_hand=True),
    "transfer": MovementRule(min_quantity=1, from_location=REQUIRED, to_location=REQUIRED, checks_on_hand=False),
    "adjustment": MovementRule(min_quantity=0, from_location=OPTIONAL, to_location=OPTIONAL, checks_on_hand=False),
}


# Location planners: given the current {location_id: quantity} rows, return
# the new quantity of every location the movement touches (0 deletes a row).

def _plan_in(entries, previous, new, quantity, from_id, to_id, product_id):
    if to_id:
        if not entries:
            return {to_id: new}
        return {to_id: entries.get(to_id, 0) + quantity}
    if entries:
        first = min(entries)
        return {first: entries[first] + quantity}
    return {}


def _plan_out(entries, previous, new, quantity, from_id, to_id, product_id):
    if not entries:
        return {}
    if from_id:
        have = entries.get(from_id, 0)
        if have < quantity:
            raise InsufficientStock(
                have, quantity, product_id,
                message=f"Insufficient stock at location. Available: {have}, Required: {quantity}",
            )
        return {from_id: have - quantity}
    plan = {}
    remaining = quantity
    for location_id in sorted(entries):
        take = min(entries[location_id], remaining)
        plan[location_id] = entries[location_id] - take
        remaining -= take
        if remaining == 0:
            break
    return plan


def _plan_transfer(entries, previous, new, quantity, from_id, to_id, product_id):
    if from_id == to_id:
        raise InvalidLocationPair("Source and destination locations must be different")
    have = entries.get(from_id, 0)
    if have < quantity:
        raise InsufficientStock(
            have, quantity, product_id,
            message=f"Insufficient stock at source location. Available: {have}, Required: {quantity}",
        )
    return {from_id: have - quantity, to_id: entries.get(to_id, 0) + quantity}


def _plan_adjustment(entries, previous, new, quantity, from_id, to_id, product_id):
    if from_id and to_id:
        raise InvalidLocationPair("An adjustment takes a single location")
    location_id = to_id or from_id
    delta = new - previous
    if location_id:
        if not entries:
            return {location_id: new}
        have = entries.get(location_id, 0)
        if have + delta < 0:
            raise InsufficientStock(
                have, -delta, product_id,
                message=f"Insufficient stock at location. Available: {have}, Required: {-delta}",
            )
        return {location_id: have + delta}
    if not entries or delta == 0:
        return {}
    if len(entries) == 1:
        only = next(iter(entries))
        return {only: new}
    raise ValidationFailure(
        "Stock is held at several locations; specify the location to adjust",
        details={"locations": sorted(entries)},
    )


LOCATION_PLANNERS = {
    "in": _plan_in,
    "out": _plan_out,
    "transfer": _plan_transfer,
    "adjustment": _plan_adjustment,
}


def stock_status(product: Product) -> str:
    return _stock_status(product.current_stock, product.minimum_stock)


def location_entries(product: Product) -> dict[int, int]:
    return {sl.location_id: sl.quantity for sl in product.stock_locations}


def _load_product_for_update(product_id: int) -> Product:
    product = (
        lock_for_update(db.session.query(Product).filter_by(id=product_id))
        .populate_existing()
        .first()
    )
    if product is None:
        raise ProductNotFound("Product not found", details={"productId": product_id})
    return product


def _check_location(location_id: int | None, *, receiving: bool) -> Location | None:
    if location_id is None:
        return None
    location = db.session.get(Location, location_id)
    if location is None:
        raise LocationNotFound(f"Location {location_id} not found", details={"locationId": location_id})
    if receiving and not location.is_active:
        raise ValidationFailure(f"Location {location.code} is inactive")
    return location


def _check_rule(rule: MovementRule, movement_type: str, reason: str, quantity, from_id, to_id) -> None:
    if reason not in MOVEMENT_REASONS:
        raise ValidationFailure(f"Invalid movement reason: {reason}")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity("Quantity must be an integer")
    if quantity < rule.min_quantity:
        raise InvalidQuantity(
            "Quantity must be greater than 0" if rule.min_quantity else "Quantity cannot be negative"
        )
    for label, value, policy in (("from", from_id, rule.from_location), ("to", to_id, rule.to_location)):
        if policy == REQUIRED and not value:
            raise ValidationFailure(f"A {label} location is required for {movement_type} movements")
        if policy == FORBIDDEN and value:
            raise InvalidLocationPair(f"A {label} location is not allowed for {movement_type} movements")


def _apply_location_plan(product: Product, plan: dict[int, int]) -> None:
    rows = {sl.location_id: sl for sl in product.stock_locations}
    for location_id, quantity in plan.items():
        row = rows.get(location_id)
        old = row.quantity if row is not None else 0
        if quantity <= 0:
            if row is not None:
                product.stock_locations.remove(row)
        elif row is not None:
            row.quantity = quantity
        else:
            product.stock_locations.append(StockLocation(location_id=location_id, quantity=quantity))

        location = db.session.get(Location, location_id)
        location.current_utilization = max(0, (location.current_utilization or 0) + max(quantity, 0) - old)


def _apply_product_effects(
    product: Product,
    *,
    new_stock: int,
    plan: dict[int, int],
    movement_type: str,
    reason: str,
    quantity: int,
    reverses: str | None,
    now,
) -> None:
    product.current_stock = new_stock
    _apply_location_plan(product, plan)

    if reason == "sale" and movement_type == "out":
        product.total_sold = (product.total_sold or 0) + quantity
    elif reason == "purchase" and movement_type == "in":
        product.total_purchased = (product.total_purchased or 0) + quantity
    if reverses == "sale":
        product.total_sold = max(0, (product.total_sold or 0) - quantity)
    elif reverses == "purchase":
        product.total_purchased = max(0, (product.total_purchased or 0) - quantity)

    product.last_stock_update = now

    entries = location_entries(product)
    if entries and sum(entries.values()) != product.current_stock:
        raise Internal(
            "Stock location breakdown does not match current stock",
            details={"productId": product.id, "currentStock": product.current_stock, "locations": entries},
        )


def apply_movement(
    *,
    product_id: int,
    movement_type: str,
    reason: str,
    quantity: int,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    unit_cost: Decimal | None = None,
    reference: MovementReference | None = None,
    performed_by: int | None = None,
    notes: str | None = None,
    reverses: str | None = None,
) -> StockMovement:
    """
    Apply one stock movement to a product and record it in the ledger.

    Args:
        product_id: Product to move
        movement_type: in, out, transfer or adjustment
        reason: Ledger reason (purchase, sale, return, ...)
        quantity: Units moved; for adjustments the absolute stock level to set
        from_location_id / to_location_id: Location rows touched
        unit_cost: Cost snapshot (defaults to the product's cost price)
        reference: Document that caused the movement
        performed_by: Acting user id
        notes: Free text
        reverses: "sale" or "purchase" when compensating; decrements the
            matching lifetime counter

    Returns:
        StockMovement: The ledger row ("pending" under the two_phase write
        mode until commit_movements() runs)

    Raises:
        ProductNotFound, LocationNotFound, InsufficientStock,
        InvalidLocationPair, InvalidQuantity, LedgerWriteFailed, Timeout

    Nothing is committed here: the caller owns the transaction and commits
    once for the whole workflow through commit_movements().
    """
    rule = MOVEMENT_RULES.get(movement_type)
    if rule is None:
        raise ValidationFailure(f"Invalid movement type: {movement_type}")
    _check_rule(rule, movement_type, reason, quantity, from_location_id, to_location_id)

    with product_locks([product_id]):
        product = _load_product_for_update(product_id)
        _check_location(from_location_id, receiving=False)
        _check_location(
            to_location_id,
            receiving=movement_type in ("in", "transfer") and reverses is None,
        )

        previous = product.current_stock
        if rule.checks_on_hand and previous < quantity:
            raise InsufficientStock(previous, quantity, product.id)
        new_stock = fold_stock(previous, movement_type, quantity)

        plan = LOCATION_PLANNERS[movement_type](
            location_entries(product), previous, new_stock, quantity,
            from_location_id, to_location_id, product.id,
        )
        if len(plan) == 1:
            resolved = next(iter(plan))
            if movement_type == "in" and to_location_id is None:
                to_location_id = resolved
            elif movement_type == "out" and from_location_id is None:
                from_location_id = resolved

        cost = Decimal(str(unit_cost)) if unit_cost is not None else (product.cost_price or Decimal("0"))
        moved = abs(new_stock - previous) if movement_type == "adjustment" else quantity
        now = utcnow()

        movement = StockMovement(
            product_id=product.id,
            type=movement_type,
            reason=reason,
            quantity=quantity,
            previous_stock=previous,
            new_stock=new_stock,
            unit_cost=cost,
            total_cost=cost * moved,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            reference_kind=reference.kind if reference else None,
            reference_id=reference.id if reference else None,
            reference_number=reference.number if reference else None,
            performed_by_user_id=performed_by,
            notes=notes,
            movement_date=next_movement_date(product.id, now),
        )
        effects = dict(
            new_stock=new_stock,
            plan=plan,
            movement_type=movement_type,
            reason=reason,
            quantity=quantity,
            reverses=reverses,
            now=now,
        )

        if current_app.config.get("STOCK_WRITE_MODE") == "two_phase":
            # Ledger row first, product second; both land in the caller's commit.
            movement.status = STATUS_PENDING
            append_movement(movement)
            _apply_product_effects(product, **effects)
            db.session.info.setdefault(PENDING_MOVEMENTS, []).append(movement)
            return movement

        _apply_product_effects(product, **effects)
        movement.status = STATUS_COMMITTED
        return append_movement(movement)


def commit_movements() -> None:
    """
    Commit the caller's unit of work.

    Under the two_phase write mode the pending ledger rows written by
    apply_movement() land in that same commit as the product and document
    changes, so a failure anywhere in the workflow leaves nothing behind. A
    second commit then marks them committed; a crash between the two
    leaves pending rows that reconcile_pending_movements() resolves
    against the product snapshot.
    """
    pending = db.session.info.pop(PENDING_MOVEMENTS, [])
    db.session.commit()

    # Rows discarded by an earlier rollback are transient again.
    landed = [m for m in pending if inspect(m).persistent and m.status == STATUS_PENDING]
    if not landed:
        return
    for movement in landed:
        set_movement_status(movement, STATUS_COMMITTED)
    db.session.commit()


# =============================================================================
# Workflow helpers
# =============================================================================

def location_draws(product_id: int, quantity: int) -> list[tuple[int | None, int]]:
    """
    Split an outgoing quantity over the product's location rows, lowest
    location id first, so each ledger row names the location it drew from.
    Single-bucket stock (or a shortfall) is drawn as one unlocated out.
    """
    product = db.session.get(Product, product_id)
    entries = location_entries(product) if product is not None else {}
    if not entries:
        return [(None, quantity)]

    draws: list[tuple[int | None, int]] = []
    remaining = quantity
    for location_id in sorted(entries):
        take = min(entries[location_id], remaining)
        if take:
            draws.append((location_id, take))
            remaining -= take
        if remaining == 0:
            return draws
    return [(None, quantity)]


def reverse_document_stock(
    reference: MovementReference,
    *,
    reverses: str,
    performed_by: int | None = None,
    notes: str | None = None,
    unit_costs: dict[int, Decimal] | None = None,
) -> list[StockMovement]:
    """
    Undo the stock a document still has moved, location by location.

    Units the document brought in leave the location they arrived at;
    units it took out come back to the location they left. Positions are
    read from the document's own ledger rows, so earlier compensations are
    already netted out. Call with the product locks held.
    """
    positions = document_positions(reference.kind, reference.id)
    unit_costs = unit_costs or {}
    movements = []
    for (product_id, location_id), net in sorted(positions.items(), key=lambda kv: (kv[0][0], kv[0][1] or 0)):
        if net > 0:
            locations = dict(movement_type="out", from_location_id=location_id)
        else:
            locations = dict(movement_type="in", to_location_id=location_id)
        movements.append(apply_movement(
            product_id=product_id,
            reason="return",
            quantity=abs(net),
            unit_cost=unit_costs.get(product_id),
            reference=reference,
            performed_by=performed_by,
            notes=notes,
            reverses=reverses,
            **locations,
        ))
    return movements


# =============================================================================
# Direct operations
# =============================================================================

DIRECT_TYPES = ("in", "out", "adjustment")


def record_movement(
    *,
    product_id: int,
    movement_type: str,
    reason: str,
    quantity: int,
    location_id: int | None = None,
    unit_cost: Decimal | None = None,
    performed_by: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    """
    Manual stock movement (receipt outside a purchase, damage, count correction).

    location_id is the destination for "in", the source for "out" and the
    adjusted location for "adjustment".
    """
    if movement_type not in DIRECT_TYPES:
        raise ValidationFailure(
            f"Invalid movement type. Must be one of: {', '.join(DIRECT_TYPES)}; use the transfer endpoint for transfers"
        )
    if reason in ("purchase", "sale"):
        raise ValidationFailure(f"Movements with reason {reason} are recorded by the {reason} workflow")

    from_id = location_id if movement_type == "out" else None
    to_id = location_id if movement_type in ("in", "adjustment") else None

    movement = apply_movement(
        product_id=product_id,
        movement_type=movement_type,
        reason=reason,
        quantity=quantity,
        from_location_id=from_id,
        to_location_id=to_id,
        unit_cost=unit_cost,
        reference=MovementReference(kind="adjustment", id=None) if movement_type == "adjustment" else None,
        performed_by=performed_by,
        notes=notes,
    )
    commit_movements()
    logger.info(
        "Stock movement %s: product=%s type=%s reason=%s qty=%s %s->%s",
        movement.id, product_id, movement_type, reason, quantity, movement.previous_stock, movement.new_stock,
    )
    return movement


def transfer_stock(
    *,
    product_id: int,
    from_location_id: int,
    to_location_id: int,
    quantity: int,
    performed_by: int | None = None,
    notes: str | None = None,
) -> StockMovement:
    """Move units between two locations; the product's aggregate stock is unchanged."""
    if from_location_id == to_location_id:
        raise InvalidLocationPair("Source and destination locations must be different")

    movement = apply_movement(
        product_id=product_id,
        movement_type="transfer",
        reason="transfer",
        quantity=quantity,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        reference=MovementReference(kind="transfer", id=None),
        performed_by=performed_by,
        notes=notes,
    )
    commit_movements()
    logger.info(
        "Transferred %s of product %s from location %s to %s",
        quantity, product_id, from_location_id, to_location_id,
    )
    return movement


def product_stock_breakdown(product_id: int, *, recent: int = 10) -> dict:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound("Product not found")
    movements, _ = list_movements({"product_id": product_id}, page=1, limit=recent)
    return {
        "product": product.to_ref(),
        "currentStock": product.current_stock,
        "minimumStock": product.minimum_stock,
        "stockStatus": stock_status(product),
        "locations": [sl.to_dict() for sl in product.stock_locations],
        "unassigned": 0 if product.stock_locations else product.current_stock,
        "recentMovements": [m.to_dict() for m in movements],
    }
