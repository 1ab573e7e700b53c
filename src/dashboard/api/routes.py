"""API route handlers for the backup dashboard.

    GET    /api/status                 - Scheduler state and per-rule status
    GET    /api/backups                - List archives (optional ?rule=<name>)
    POST   /api/backups/persist        - Request a backup cycle
    DELETE /api/backups/<filename>     - Delete one archive
    POST   /api/consolidate            - Consolidate one archive
    POST   /api/restore                - Recover content from one archive
    GET    /api/config                 - Get configuration
"""

import logging
from datetime import datetime

from flask import Blueprint, jsonify, request

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

# These are set by app.py at init time via init_routes()
_backup_manager = None
_scheduler = None
_config = None


def init_routes(backup_manager, scheduler, config: dict):
    """Wire up shared application state into the route handlers.

    Live events reach WebSocket clients through the manager's ``on_event``.
    """
    global _backup_manager, _scheduler, _config
    _backup_manager = backup_manager
    _scheduler = scheduler
    _config = config


def _filename_from_body():
    data = request.get_json(silent=True) or {}
    filename = data.get("filename")
    if not isinstance(filename, str) or not filename:
        return None
    return filename


# ------------------------------------------------------------------
# GET /api/status
# ------------------------------------------------------------------

@api.route("/status", methods=["GET"])
def get_status():
    """Scheduler health, crash marker and per-rule backup status."""
    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    return jsonify({
        "status": "running",
        "timestamp": datetime.now().isoformat(),
        "scheduler_running": bool(_scheduler and _scheduler.is_running),
        "backup_in_progress": _backup_manager.had_interrupted_backup(),
        "backup_directory": str(_backup_manager.backup_directory),
        "rules": _backup_manager.get_rule_status(),
    })


# ------------------------------------------------------------------
# GET /api/backups
# ------------------------------------------------------------------

@api.route("/backups", methods=["GET"])
def get_backups():
    """List archives, optionally only those of one rule."""
    if not _backup_manager:
        return jsonify({"backups": [], "total": 0})

    rule = request.args.get("rule")
    if rule and _backup_manager.rule_store.get(rule) is None:
        return jsonify({"error": f"Unknown rule: {rule}"}), 404

    backups = _backup_manager.get_all_backups()
    if rule:
        backups = [b for b in backups if b["rule"] == rule]

    return jsonify({"backups": backups, "total": len(backups)})


# ------------------------------------------------------------------
# POST /api/backups/persist
# ------------------------------------------------------------------

@api.route("/backups/persist", methods=["POST"])
def request_persist():
    """Ask the scheduler worker to run a backup cycle on its next tick."""
    if not _scheduler or not _scheduler.is_running:
        return jsonify({"error": "Backup scheduler not running"}), 503

    _scheduler.request_persist()
    return jsonify({"requested": True}), 202


# ------------------------------------------------------------------
# DELETE /api/backups/<filename>
# ------------------------------------------------------------------

@api.route("/backups/<filename>", methods=["DELETE"])
def delete_backup(filename):
    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    if not _backup_manager.delete_backup(filename):
        return jsonify({"error": f"Could not delete {filename}"}), 404

    return jsonify({"deleted": filename})


# ------------------------------------------------------------------
# POST /api/consolidate
# ------------------------------------------------------------------

@api.route("/consolidate", methods=["POST"])
def consolidate_backup():
    """Consolidate an archive.

    Body: {"filename": "backup-daily-2024-06-01_00-00-00.zip"}
    """
    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    filename = _filename_from_body()
    if filename is None:
        return jsonify({"error": "Provide filename"}), 400

    result = _backup_manager.consolidate(filename)
    body = {
        "filename": result.filename,
        "consolidated_path": result.consolidated_path,
        "success": result.success,
        "error": result.error,
    }
    if not result.success:
        status = 404 if result.error == "Backup not found" else 500
        return jsonify(body), status
    return jsonify(body)


# ------------------------------------------------------------------
# POST /api/restore
# ------------------------------------------------------------------

@api.route("/restore", methods=["POST"])
def restore_backup():
    """Recover content from one archive.

    Body: {"filename": "backup-daily-2024-06-01_00-00-00.zip"}
    """
    if not _backup_manager:
        return jsonify({"error": "Backup manager not available"}), 503

    filename = _filename_from_body()
    if filename is None:
        return jsonify({"error": "Provide filename"}), 400

    if not _backup_manager.recover_from_backup(filename):
        return jsonify({"filename": filename, "success": False,
                        "error": "Could not recover from backup"}), 404

    return jsonify({"filename": filename, "success": True})


# ------------------------------------------------------------------
# GET /api/config
# ------------------------------------------------------------------

@api.route("/config", methods=["GET"])
def get_config():
    """Return current configuration."""
    return jsonify(_config or {})
