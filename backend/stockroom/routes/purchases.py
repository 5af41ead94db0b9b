# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth, require_permission
from ..pagination import page_args
from ..request_args import arg_datetime, arg_int
from ..services import purchase_service

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.get("")
@require_auth
@require_permission("purchases.read")
def list_purchases_route():
    """Query params: status, paymentStatus, supplier, startDate, endDate, search, page, limit"""
    page, limit = page_args(request.args)
    filters = {
        "status": request.args.get("status"),
        "payment_status": request.args.get("paymentStatus"),
        "supplier_id": arg_int(request.args, "supplier"),
        "start_date": arg_datetime(request.args, "startDate"),
        "end_date": arg_datetime(request.args, "endDate"),
        "search": request.args.get("search"),
    }
    purchases, meta = purchase_service.list_purchases(filters, page=page, limit=limit)
    return {"success": True, "data": [p.to_dict() for p in purchases], "pagination": meta}


@purchases_bp.post("")
@require_auth
@require_permission("purchases.write")
def create_purchase_route():
    purchase = purchase_service.create_purchase(request.get_json(silent=True) or {}, user_id=current_user_id())
    return {"success": True, "message": "Purchase order created successfully", "data": purchase.to_dict()}, 201


@purchases_bp.get("/<int:purchase_id>")
@require_auth
@require_permission("purchases.read")
def get_purchase_route(purchase_id: int):
    return {"success": True, "data": purchase_service.get_purchase(purchase_id).to_dict()}


@purchases_bp.put("/<int:purchase_id>")
@require_auth
@require_permission("purchases.write")
def update_purchase_route(purchase_id: int):
    purchase = purchase_service.update_purchase(
        purchase_id, request.get_json(silent=True) or {}, user_id=current_user_id()
    )
    return {"success": True, "message": "Purchase order updated successfully", "data": purchase.to_dict()}


@purchases_bp.patch("/<int:purchase_id>/status")
@require_auth
@require_permission("purchases.write")
def update_purchase_status_route(purchase_id: int):
    payload = request.get_json(silent=True) or {}
    purchase = purchase_service.update_purchase_status(purchase_id, payload.get("status"), user_id=current_user_id())
    return {"success": True, "message": "Purchase status updated successfully", "data": purchase.to_dict()}


@purchases_bp.patch("/<int:purchase_id>/payment")
@require_auth
@require_permission("purchases.write")
def update_purchase_payment_route(purchase_id: int):
    payload = request.get_json(silent=True) or {}
    purchase = purchase_service.update_purchase_payment(
        purchase_id, payload.get("paymentStatus"), payload.get("paymentMethod")
    )
    return {"success": True, "message": "Payment status updated successfully", "data": purchase.to_dict()}


@purchases_bp.post("/<int:purchase_id>/receive")
@require_auth
@require_permission("purchases.write")
def receive_purchase_route(purchase_id: int):
    """Body: {receivedItems: [{itemId, quantity, locationId?}], locationId?}"""
    payload = request.get_json(silent=True) or {}
    purchase = purchase_service.receive_purchase_items(
        purchase_id,
        payload.get("receivedItems"),
        location_id=payload.get("locationId"),
        user_id=current_user_id(),
    )
    return {"success": True, "message": "Items received successfully", "data": purchase.to_dict()}


@purchases_bp.delete("/<int:purchase_id>")
@require_auth
@require_permission("purchases.delete")
def delete_purchase_route(purchase_id: int):
    purchase_service.delete_purchase(purchase_id)
    return {"success": True, "message": "Purchase order deleted successfully"}
