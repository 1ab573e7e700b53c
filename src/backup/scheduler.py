"""Background persist loop.

A single worker thread owns every persist cycle, so rule bookkeeping is
only ever mutated from that thread. The loop itself holds no backup logic:
it wakes every tick and gates ``ContentBackupManager.persist`` on elapsed
time.
"""

import logging
import threading
import time

from src.backup.backup_config import DEFAULT_PERSIST_INTERVAL, SCHEDULER_TICK_SECONDS
from src.backup.backup_manager import ContentBackupManager

logger = logging.getLogger(__name__)


class BackupScheduler:
    """Runs ``manager.persist()`` every ``persist_interval`` seconds.

    Parameters
    ----------
    manager:
        The backup manager to drive.
    persist_interval:
        Seconds that must elapse between two persist checks (default 30).
    tick:
        Wake-up period of the worker loop (default 10ms).
    load_on_start:
        Replay existing archives through the handlers before the first tick.
    """

    def __init__(
        self,
        manager: ContentBackupManager,
        persist_interval: float = DEFAULT_PERSIST_INTERVAL,
        tick: float = SCHEDULER_TICK_SECONDS,
        load_on_start: bool = True,
    ):
        self.manager = manager
        self.persist_interval = persist_interval
        self.tick = tick
        self.load_on_start = load_on_start

        self._last_check = time.monotonic()
        self._stop_event = threading.Event()
        self._force_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="backup-scheduler",
        )
        self._thread.start()
        logger.info("Backup scheduler started (check every %ss)", self.persist_interval)

    def stop(self, timeout: float | None = None):
        """Stop the loop after one final persist and wait for the worker.

        A cycle already in progress is allowed to finish.
        """
        if not self.is_running:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        logger.info("Backup scheduler stopped.")

    def request_persist(self):
        """Run a cycle on the next tick regardless of elapsed time."""
        self._force_event.set()

    def process(self, now: float | None = None) -> bool:
        """One tick: persist if the check interval has passed.

        Returns True when a cycle was run.
        """
        now = time.monotonic() if now is None else now
        forced = self._force_event.is_set()
        if not forced and now - self._last_check <= self.persist_interval:
            return False

        self._force_event.clear()
        self._last_check = now
        self._persist()
        return True

    def _persist(self):
        try:
            self.manager.persist()
        except Exception:
            logger.exception("Backup cycle failed")

    def _run(self):
        if self.load_on_start:
            try:
                self.manager.load()
            except Exception:
                logger.exception("Loading existing backups failed")

        while not self._stop_event.wait(self.tick):
            self.process()

        logger.info("Persist thread about to finish...")
        self._persist()
