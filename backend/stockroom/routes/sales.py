# Overview: Flask API routes for sales invoices; parses input and returns JSON responses.

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth, require_permission
from ..pagination import page_args
from ..request_args import arg_datetime, arg_int
from ..services import maintenance_service, sales_service

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
@require_permission("sales.read")
def list_sales_route():
    """Query params: status, paymentStatus, customer, startDate, endDate, search, page, limit"""
    page, limit = page_args(request.args)
    filters = {
        "status": request.args.get("status"),
        "payment_status": request.args.get("paymentStatus"),
        "customer_id": arg_int(request.args, "customer"),
        "start_date": arg_datetime(request.args, "startDate"),
        "end_date": arg_datetime(request.args, "endDate"),
        "search": request.args.get("search"),
    }
    sales, meta = sales_service.list_sales(filters, page=page, limit=limit)
    return {"success": True, "data": [s.to_dict() for s in sales], "pagination": meta}


@sales_bp.post("")
@require_auth
@require_permission("sales.write")
def create_sale_route():
    sale = sales_service.create_sale(request.get_json(silent=True) or {}, user_id=current_user_id())
    return {"success": True, "message": "Sale created successfully", "data": sale.to_dict()}, 201


@sales_bp.post("/check-overdue")
@require_auth
@require_permission("sales.write")
def check_overdue_route():
    result = maintenance_service.run_overdue_sweep()
    return {"success": True, "message": f"Updated {result['updated']} overdue sales", "data": result}


@sales_bp.get("/<int:sale_id>")
@require_auth
@require_permission("sales.read")
def get_sale_route(sale_id: int):
    return {"success": True, "data": sales_service.get_sale(sale_id).to_dict()}


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_permission("sales.write")
def update_sale_route(sale_id: int):
    sale = sales_service.update_sale(sale_id, request.get_json(silent=True) or {}, user_id=current_user_id())
    return {"success": True, "message": "Sale updated successfully", "data": sale.to_dict()}


@sales_bp.patch("/<int:sale_id>/status")
@require_auth
@require_permission("sales.write")
def update_sale_status_route(sale_id: int):
    payload = request.get_json(silent=True) or {}
    sale = sales_service.update_sale_status(sale_id, payload.get("status"), user_id=current_user_id())
    return {"success": True, "message": "Sale status updated successfully", "data": sale.to_dict()}


@sales_bp.patch("/<int:sale_id>/payment")
@require_auth
@require_permission("sales.write")
def update_sale_payment_route(sale_id: int):
    payload = request.get_json(silent=True) or {}
    sale = sales_service.update_sale_payment(sale_id, payload.get("paymentStatus"), payload.get("paymentMethod"))
    return {"success": True, "message": "Payment status updated successfully", "data": sale.to_dict()}


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_permission("sales.delete")
def delete_sale_route(sale_id: int):
    sales_service.delete_sale(sale_id, user_id=current_user_id())
    return {"success": True, "message": "Sale deleted successfully"}
