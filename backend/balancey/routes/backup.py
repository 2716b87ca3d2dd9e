# Overview: Flask API routes for JSON backup export/import and the data clear.

from flask import Blueprint, request

from ..errors import ValidationError
from ..services import backup_service
from ..validation import parse_bool_arg

backup_bp = Blueprint("backup", __name__, url_prefix="/api/backup")


@backup_bp.get("/export")
def export_backup():
    return backup_service.export_backup()


@backup_bp.post("/import")
def import_backup():
    """
    Restore a backup.

    Query params:
    - mode: "replace" (default) or "merge"
    """
    mode = request.args.get("mode", backup_service.IMPORT_REPLACE)
    counts = backup_service.import_backup(request.get_json(silent=True), mode)
    return {"mode": mode, "counts": counts}


@backup_bp.post("/clear")
def clear_data():
    """Delete all data. Requires ?confirm=true."""
    if not parse_bool_arg(request.args.get("confirm")):
        raise ValidationError("Pass confirm=true to delete all data")
    backup_service.clear_all_data()
    return {"cleared": True}
