# Overview: Flask API routes for backup export and restore.

# backend/posledger/routes/backup.py
"""
Backup API Routes

SECURITY:
- backup.export required to download a snapshot
- backup.restore required to replace all ledger data (admin only by default)
"""

from flask import Blueprint, jsonify, g

from ..errors import LedgerError
from ..services import backup_service
from ..decorators import (
    require_auth,
    require_permission,
    error_response,
    internal_error_response,
    json_body,
)


backup_bp = Blueprint("backup", __name__, url_prefix="/api/backup")


@backup_bp.get("/export")
@require_auth
@require_permission("backup", "export")
def export_route():
    try:
        return jsonify({"success": True, "backup": backup_service.export_backup()}), 200
    except Exception:
        return internal_error_response("Failed to export backup")


@backup_bp.post("/restore")
@require_auth
@require_permission("backup", "restore")
def restore_route():
    """Request body: the document produced by GET /api/backup/export ("backup" value)."""
    try:
        result = backup_service.restore_backup(json_body(), actor_id=g.current_user.id)
        return jsonify({"success": True, **result}), 200
    except LedgerError as e:
        return error_response(e)
    except Exception:
        return internal_error_response("Failed to restore backup")
