# Overview: Flask API routes for the company settings document.

from flask import Blueprint, request

from ..decorators import require_auth, require_permission
from ..services import settings_service

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
@require_auth
@require_permission("settings.read")
def get_settings_route():
    return {"success": True, "data": settings_service.get_settings().to_dict()}


@settings_bp.put("")
@require_auth
@require_permission("settings.write")
def update_settings_route():
    settings = settings_service.update_settings(request.get_json(silent=True) or {})
    return {"success": True, "message": "Settings updated successfully", "data": settings.to_dict()}
