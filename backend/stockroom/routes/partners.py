# Overview: Flask API routes for suppliers and customers; one blueprint per partner kind.

"""
Supplier and customer routes.

Both kinds share the same surface; counters and balances are read-only
here and move only with purchases and sales.
"""

from flask import Blueprint, request

from ..decorators import require_auth, require_permission
from ..pagination import page_args
from ..request_args import arg_bool
from ..services import partner_service


def _partner_blueprint(kind: str, resource: str) -> Blueprint:
    bp = Blueprint(resource, __name__, url_prefix=f"/api/{resource}")
    label = kind.capitalize()

    @bp.get("")
    @require_auth
    @require_permission(f"{resource}.read")
    def list_route():
        page, limit = page_args(request.args)
        filters = {
            "is_active": arg_bool(request.args, "isActive"),
            "payment_terms": request.args.get("paymentTerms"),
            "customer_group": request.args.get("customerGroup"),
            "search": request.args.get("search"),
        }
        partners, meta = partner_service.list_partners(kind, filters, page=page, limit=limit)
        return {"success": True, "data": [p.to_dict() for p in partners], "pagination": meta}

    @bp.post("")
    @require_auth
    @require_permission(f"{resource}.write")
    def create_route():
        partner = partner_service.create_partner(kind, request.get_json(silent=True) or {})
        return {"success": True, "message": f"{label} created successfully", "data": partner.to_dict()}, 201

    @bp.get("/<int:partner_id>")
    @require_auth
    @require_permission(f"{resource}.read")
    def get_route(partner_id: int):
        return {"success": True, "data": partner_service.get_partner(kind, partner_id).to_dict()}

    @bp.put("/<int:partner_id>")
    @require_auth
    @require_permission(f"{resource}.write")
    def update_route(partner_id: int):
        partner = partner_service.update_partner(kind, partner_id, request.get_json(silent=True) or {})
        return {"success": True, "message": f"{label} updated successfully", "data": partner.to_dict()}

    @bp.patch("/<int:partner_id>/status")
    @require_auth
    @require_permission(f"{resource}.write")
    def status_route(partner_id: int):
        payload = request.get_json(silent=True) or {}
        partner = partner_service.set_partner_status(kind, partner_id, payload.get("isActive"))
        state = "activated" if partner.is_active else "deactivated"
        return {"success": True, "message": f"{label} {state} successfully", "data": partner.to_dict()}

    @bp.get("/<int:partner_id>/history")
    @require_auth
    @require_permission(f"{resource}.read")
    def history_route(partner_id: int):
        page, limit = page_args(request.args)
        partner, documents, meta = partner_service.partner_history(kind, partner_id, page=page, limit=limit)
        return {
            "success": True,
            "data": {
                kind: partner.to_ref(),
                "documents": [d.to_dict() for d in documents],
            },
            "pagination": meta,
        }

    return bp


suppliers_bp = _partner_blueprint("supplier", "suppliers")
customers_bp = _partner_blueprint("customer", "customers")
