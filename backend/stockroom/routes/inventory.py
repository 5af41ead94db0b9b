# Overview: Flask API routes for stock movements, transfers and locations.

"""
Inventory routes.

Every stock change goes through the movement primitive: direct movements
(in/out/adjustment), transfers, and the purchase/sales workflows. The
ledger is read-only over HTTP.
"""

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth, require_permission
from ..errors import ValidationFailure
from ..pagination import page_args, pagination_meta
from ..request_args import arg_bool, arg_datetime, arg_int
from ..services import catalog_service, ledger_service, stock_service
from ..validation import to_int, to_money

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _movement_filters(args) -> dict:
    return {
        "product_id": arg_int(args, "product"),
        "type": args.get("type"),
        "reason": args.get("reason"),
        "location_id": arg_int(args, "location"),
        "reference_kind": args.get("referenceType"),
        "reference_id": arg_int(args, "referenceId"),
        "start_date": arg_datetime(args, "startDate"),
        "end_date": arg_datetime(args, "endDate"),
        "status": args.get("status") or "committed",
    }


def _optional_int(payload: dict, key: str):
    value = payload.get(key)
    if value in (None, ""):
        return None
    return to_int(value, key, minimum=1)


@inventory_bp.get("/movements")
@require_auth
@require_permission("inventory.read")
def list_movements_route():
    """
    Query params: type, reason, product, location, referenceType, referenceId,
    startDate, endDate, page, limit
    """
    page, limit = page_args(request.args)
    rows, total = ledger_service.list_movements(_movement_filters(request.args), page=page, limit=limit)
    return {
        "success": True,
        "data": [m.to_dict() for m in rows],
        "pagination": pagination_meta(page=page, limit=limit, total=total),
    }


@inventory_bp.get("/movements/summary")
@require_auth
@require_permission("inventory.read")
def movement_summary_route():
    group_by = request.args.get("groupBy", "type")
    summary = ledger_service.movement_summary(_movement_filters(request.args), group_by=group_by)
    return {"success": True, "data": summary}


@inventory_bp.get("/movements/<int:movement_id>")
@require_auth
@require_permission("inventory.read")
def get_movement_route(movement_id: int):
    return {"success": True, "data": ledger_service.get_movement(movement_id).to_dict()}


@inventory_bp.post("/movements")
@require_auth
@require_permission("inventory.write")
def create_movement_route():
    """
    Body: {productId, type: in|out|adjustment, reason, quantity, locationId?,
    unitCost?, notes?}. For adjustments, quantity is the new stock level.
    """
    payload = request.get_json(silent=True) or {}
    for key in ("productId", "type", "reason"):
        if payload.get(key) in (None, ""):
            raise ValidationFailure(f"{key} is required")
    if payload.get("quantity") in (None, ""):
        raise ValidationFailure("quantity is required")

    unit_cost = payload.get("unitCost")
    movement = stock_service.record_movement(
        product_id=to_int(payload["productId"], "productId", minimum=1),
        movement_type=payload["type"],
        reason=payload["reason"],
        quantity=to_int(payload["quantity"], "quantity"),
        location_id=_optional_int(payload, "locationId"),
        unit_cost=to_money(unit_cost, "unitCost") if unit_cost not in (None, "") else None,
        performed_by=current_user_id(),
        notes=payload.get("notes"),
    )
    return {"success": True, "message": "Stock movement recorded successfully", "data": movement.to_dict()}, 201


@inventory_bp.post("/transfer")
@require_auth
@require_permission("inventory.write")
def transfer_route():
    """Body: {productId, fromLocationId, toLocationId, quantity, notes?}"""
    payload = request.get_json(silent=True) or {}
    for key in ("productId", "fromLocationId", "toLocationId", "quantity"):
        if payload.get(key) in (None, ""):
            raise ValidationFailure(f"{key} is required")

    movement = stock_service.transfer_stock(
        product_id=to_int(payload["productId"], "productId", minimum=1),
        from_location_id=to_int(payload["fromLocationId"], "fromLocationId", minimum=1),
        to_location_id=to_int(payload["toLocationId"], "toLocationId", minimum=1),
        quantity=to_int(payload["quantity"], "quantity"),
        performed_by=current_user_id(),
        notes=payload.get("notes"),
    )
    return {"success": True, "message": "Stock transferred successfully", "data": movement.to_dict()}, 201


@inventory_bp.get("/products/<int:product_id>/stock")
@require_auth
@require_permission("inventory.read")
def product_stock_route(product_id: int):
    return {"success": True, "data": stock_service.product_stock_breakdown(product_id)}


# =============================================================================
# Locations
# =============================================================================

@inventory_bp.get("/locations")
@require_auth
@require_permission("locations.read")
def list_locations_route():
    filters = {
        "is_active": arg_bool(request.args, "isActive"),
        "type": request.args.get("type"),
        "search": request.args.get("search"),
    }
    locations = catalog_service.list_locations(filters)
    return {"success": True, "data": [loc.to_dict() for loc in locations]}


@inventory_bp.post("/locations")
@require_auth
@require_permission("locations.write")
def create_location_route():
    location = catalog_service.create_location(request.get_json(silent=True) or {})
    return {"success": True, "message": "Location created successfully", "data": location.to_dict()}, 201


@inventory_bp.get("/locations/<int:location_id>")
@require_auth
@require_permission("locations.read")
def get_location_route(location_id: int):
    return {"success": True, "data": catalog_service.location_detail(location_id)}


@inventory_bp.put("/locations/<int:location_id>")
@require_auth
@require_permission("locations.write")
def update_location_route(location_id: int):
    location = catalog_service.update_location(location_id, request.get_json(silent=True) or {})
    return {"success": True, "message": "Location updated successfully", "data": location.to_dict()}


@inventory_bp.patch("/locations/<int:location_id>/status")
@require_auth
@require_permission("locations.write")
def location_status_route(location_id: int):
    payload = request.get_json(silent=True) or {}
    location = catalog_service.set_location_status(location_id, payload.get("isActive"))
    state = "activated" if location.is_active else "deactivated"
    return {"success": True, "message": f"Location {state} successfully", "data": location.to_dict()}


@inventory_bp.delete("/locations/<int:location_id>")
@require_auth
@require_permission("locations.delete")
def delete_location_route(location_id: int):
    catalog_service.delete_location(location_id)
    return {"success": True, "message": "Location deleted successfully"}
