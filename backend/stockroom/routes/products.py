# Overview: Flask API routes for products operations; parses input and returns JSON responses.

"""
Product catalog routes.

Stock levels are read-only here: currentStock changes only through
inventory movements, purchases and sales.
"""

from flask import Blueprint, request

from ..decorators import current_user_id, require_auth, require_permission
from ..pagination import page_args
from ..request_args import arg_bool, arg_int
from ..services import catalog_service

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@require_permission("products.read")
def list_products_route():
    """
    Query params: page, limit, isActive, category, supplier, stockStatus, search
    """
    page, limit = page_args(request.args)
    filters = {
        "is_active": arg_bool(request.args, "isActive"),
        "category_id": arg_int(request.args, "category"),
        "supplier_id": arg_int(request.args, "supplier"),
        "stock_status": request.args.get("stockStatus"),
        "search": request.args.get("search"),
    }
    products, meta = catalog_service.list_products(filters, page=page, limit=limit)
    return {"success": True, "data": [p.to_dict() for p in products], "pagination": meta}


@products_bp.get("/alerts/low-stock")
@require_auth
@require_permission("products.read")
def low_stock_route():
    products = catalog_service.low_stock_products()
    return {"success": True, "data": [p.to_dict(include_locations=False) for p in products]}


@products_bp.get("/alerts/expiry")
@require_auth
@require_permission("products.read")
def expiry_route():
    days = arg_int(request.args, "days") or 30
    return {"success": True, "data": catalog_service.expiring_products(days=days)}


@products_bp.post("")
@require_auth
@require_permission("products.write")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    product = catalog_service.create_product(payload, user_id=current_user_id())
    return {"success": True, "message": "Product created successfully", "data": product.to_dict()}, 201


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission("products.read")
def get_product_route(product_id: int):
    return {"success": True, "data": catalog_service.get_product(product_id).to_dict()}


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission("products.write")
def update_product_route(product_id: int):
    product = catalog_service.update_product(product_id, request.get_json(silent=True) or {})
    return {"success": True, "message": "Product updated successfully", "data": product.to_dict()}


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission("products.delete")
def delete_product_route(product_id: int):
    """Soft delete: the product is deactivated, its ledger kept."""
    product = catalog_service.deactivate_product(product_id)
    return {"success": True, "message": "Product deactivated successfully", "data": product.to_dict()}
