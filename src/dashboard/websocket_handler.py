"""WebSocket handler for live backup events.

Every message sent on /ws/live is one JSON object::

    {"type": "backup_created", "timestamp": "2024-06-01T12:00:00", "data": {...}}

Event types raised by ContentBackupManager and the keys of their ``data``:

    backup_created    rule, filename, path
    backup_removed    rule, filename      (rule is null for foreign archives)
    persist_skipped   error
    consolidated      filename, path
    recovered         filename

A client that connects late is first sent the most recent events, oldest
first, so the dashboard can show what happened before it attached.
"""

import json
import logging
import threading
from collections import deque
from datetime import datetime

logger = logging.getLogger(__name__)

MANAGER_EVENTS = (
    "backup_created",
    "backup_removed",
    "persist_skipped",
    "consolidated",
    "recovered",
)

DEFAULT_HISTORY_SIZE = 50


class WebSocketHandler:
    """Thread-safe registry of live clients for backup manager events."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self._clients: list = []
        self._history: deque[str] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def register(self, ws):
        with self._lock:
            backlog = list(self._history)
            try:
                for message in backlog:
                    ws.send(message)
            except Exception:
                logger.debug("WebSocket client failed during event replay")
                return
            self._clients.append(ws)
            count = len(self._clients)
        logger.debug("WebSocket client connected (%d total, %d replayed)",
                     count, len(backlog))

    def unregister(self, ws):
        with self._lock:
            if ws in self._clients:
                self._clients.remove(ws)
            count = len(self._clients)
        logger.debug("WebSocket client disconnected (%d remaining)", count)

    def broadcast(self, event_type: str, data: dict):
        """Record a manager event and push it to every client.

        Used directly as ``ContentBackupManager.on_event``.
        """
        if event_type not in MANAGER_EVENTS:
            logger.warning("Broadcasting unknown backup event type %r", event_type)
        message = json.dumps({
            "type": event_type,
            "timestamp": datetime.now().isoformat(timespec="seconds"),
            "data": data,
        })
        with self._lock:
            self._history.append(message)
            alive = []
            for ws in self._clients:
                try:
                    ws.send(message)
                except Exception:
                    logger.debug("Dropping WebSocket client after failed send")
                    continue
                alive.append(ws)
            self._clients = alive

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)
