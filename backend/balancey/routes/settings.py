# Overview: Flask API routes for the settings singleton.

from flask import Blueprint, request

from ..services import settings_service
from ..validation import require_json_object

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
def get_settings():
    return settings_service.get_settings().to_dict()


@settings_bp.patch("")
def update_settings():
    """Partial update; unknown keys and out-of-range values are rejected."""
    payload = require_json_object(request.get_json(silent=True))
    return settings_service.update_settings(payload).to_dict()
