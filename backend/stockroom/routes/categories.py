# Overview: Flask API routes for product categories.

from flask import Blueprint, request

from ..decorators import require_auth, require_permission
from ..request_args import arg_bool
from ..services import catalog_service

categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_auth
@require_permission("categories.read")
def list_categories_route():
    include_inactive = arg_bool(request.args, "includeInactive") or False
    parent_only = arg_bool(request.args, "parentOnly") or False
    categories = catalog_service.list_categories(include_inactive=include_inactive, parent_only=parent_only)
    return {"success": True, "data": [c.to_dict() for c in categories]}


@categories_bp.get("/tree")
@require_auth
@require_permission("categories.read")
def category_tree_route():
    include_inactive = arg_bool(request.args, "includeInactive") or False
    return {"success": True, "data": catalog_service.category_tree(include_inactive=include_inactive)}


@categories_bp.post("")
@require_auth
@require_permission("categories.write")
def create_category_route():
    category = catalog_service.create_category(request.get_json(silent=True) or {})
    return {"success": True, "message": "Category created successfully", "data": category.to_dict()}, 201


@categories_bp.get("/<int:category_id>")
@require_auth
@require_permission("categories.read")
def get_category_route(category_id: int):
    return {"success": True, "data": catalog_service.get_category(category_id).to_dict()}


@categories_bp.put("/<int:category_id>")
@require_auth
@require_permission("categories.write")
def update_category_route(category_id: int):
    category = catalog_service.update_category(category_id, request.get_json(silent=True) or {})
    return {"success": True, "message": "Category updated successfully", "data": category.to_dict()}


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_permission("categories.delete")
def delete_category_route(category_id: int):
    catalog_service.delete_category(category_id)
    return {"success": True, "message": "Category deleted successfully"}
