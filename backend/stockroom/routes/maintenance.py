# Overview: Flask API routes exposing the consistency checks.

from flask import Blueprint, g, request

from ..decorators import require_auth, require_permission
from ..request_args import arg_bool
from ..services import maintenance_service

maintenance_bp = Blueprint("maintenance", __name__, url_prefix="/api/maintenance")


@maintenance_bp.get("/verify-counters")
@require_auth
@require_permission("maintenance.read")
def verify_counters_route():
    """?fix=true repairs drift (requires maintenance.write)."""
    fix = arg_bool(request.args, "fix") or False
    if fix:
        if "maintenance.write" not in g.permissions:
            return {"success": False, "message": "Permission denied: requires maintenance.write"}, 403
    return {"success": True, "data": maintenance_service.verify_partner_counters(fix=fix)}


@maintenance_bp.get("/verify-ledger")
@require_auth
@require_permission("maintenance.read")
def verify_ledger_route():
    return {"success": True, "data": maintenance_service.verify_stock_ledger()}
