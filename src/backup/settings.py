"""Config file loading and manager construction."""

import json
import logging
import os
from pathlib import Path

from src.backup.backup_config import DEFAULT_BACKUP_DIRECTORY, DEFAULT_PERSIST_INTERVAL
from src.backup.backup_manager import ContentBackupManager
from src.backup.backup_rules import parse_backup_rules
from src.backup.handlers import ContentDirectoryHandler

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG = PROJECT_ROOT / "config" / "config.json"


def load_config(config_path: str = None) -> dict:
    path = Path(config_path or DEFAULT_CONFIG)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path) as f:
        return json.load(f)


def resolve_path(path_str: str) -> Path:
    return Path(os.path.expanduser(os.path.expandvars(path_str))).resolve()


def get_persist_interval(config: dict) -> float:
    value = config.get("backup", {}).get("persist_interval", DEFAULT_PERSIST_INTERVAL)
    try:
        interval = float(value)
    except (TypeError, ValueError):
        logger.warning("Invalid persist_interval %r; using %ds",
                       value, DEFAULT_PERSIST_INTERVAL)
        return DEFAULT_PERSIST_INTERVAL
    return max(interval, 0.0)


def build_backup_manager(config: dict, on_event=None) -> ContentBackupManager:
    """Construct a manager from the ``backup`` section of a config dict."""
    backup_cfg = config.get("backup", {})
    directory = resolve_path(backup_cfg.get("directory", DEFAULT_BACKUP_DIRECTORY))
    rules = parse_backup_rules(backup_cfg.get("rules"))

    manager = ContentBackupManager(
        backup_directory=str(directory),
        rules=rules,
        on_event=on_event,
    )

    content_dir = backup_cfg.get("content_directory")
    if content_dir:
        manager.add_backup_handler(ContentDirectoryHandler(resolve_path(content_dir)))
    else:
        logger.warning("No content_directory configured; archives will be empty")

    return manager
