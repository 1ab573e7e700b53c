"""Flask application for the backup dashboard.

Serves the REST API and WebSocket endpoint:

    GET    /api/status
    GET    /api/backups
    POST   /api/backups/persist
    DELETE /api/backups/<filename>
    POST   /api/consolidate
    POST   /api/restore
    GET    /api/config
    WS     /ws/live
"""

import logging
import os

from flask import Flask, jsonify
from flask_sock import Sock

from src.backup.backup_manager import ContentBackupManager
from src.backup.scheduler import BackupScheduler
from src.backup.settings import (
    DEFAULT_CONFIG,
    build_backup_manager,
    get_persist_interval,
    load_config,
)
from src.dashboard.api.routes import api, init_routes
from src.dashboard.websocket_handler import WebSocketHandler

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = str(DEFAULT_CONFIG)


def create_app(
    config_path: str = None,
    backup_manager: ContentBackupManager = None,
    scheduler: BackupScheduler = None,
    ws_handler: WebSocketHandler = None,
) -> Flask:
    """Application factory.

    Accepts pre-built service instances (for testing) or constructs
    defaults from config. Manager events are broadcast on /ws/live.
    """
    cfg_path = config_path or DEFAULT_CONFIG_PATH
    config = {}
    if os.path.isfile(cfg_path):
        config = load_config(cfg_path)

    if ws_handler is None:
        ws_handler = WebSocketHandler()

    if backup_manager is None:
        backup_manager = build_backup_manager(config, on_event=ws_handler.broadcast)
    elif backup_manager.on_event is None:
        backup_manager.on_event = ws_handler.broadcast

    if scheduler is None:
        scheduler = BackupScheduler(
            backup_manager,
            persist_interval=get_persist_interval(config),
        )

    app = Flask(__name__)
    sock = Sock(app)

    init_routes(
        backup_manager=backup_manager,
        scheduler=scheduler,
        config=config,
    )
    app.register_blueprint(api)

    # WebSocket: /ws/live
    @sock.route("/ws/live")
    def ws_live(ws):
        ws_handler.register(ws)
        try:
            while True:
                # Keep connection alive; client can send pings
                data = ws.receive(timeout=60)
                if data is None:
                    break
        except Exception:
            logger.debug("WebSocket client dropped")
        finally:
            ws_handler.unregister(ws)

    @app.route("/")
    def index():
        return jsonify({
            "service": "content-backup",
            "api": "/api/status",
            "live": "/ws/live",
        })

    # Store references for test access
    app.backup_manager = backup_manager
    app.scheduler = scheduler
    app.ws_handler = ws_handler

    return app
