"""Tests for the background persist loop."""

import threading
import time

import pytest

from src.backup.backup_config import LOCK_FILE_NAME
from src.backup.backup_manager import ContentBackupManager
from src.backup.backup_rules import BackupRule
from src.backup.scheduler import BackupScheduler


class CountingManager:
    """Stands in for ContentBackupManager and counts calls per thread."""

    def __init__(self, fail=False):
        self.persists = 0
        self.loads = 0
        self.fail = fail
        self.threads = set()
        self.order = []

    def persist(self):
        self.persists += 1
        self.order.append("persist")
        self.threads.add(threading.current_thread().name)
        if self.fail:
            raise RuntimeError("cycle exploded")
        return True

    def load(self):
        self.loads += 1
        self.order.append("load")
        self.threads.add(threading.current_thread().name)
        return 0


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ---------------------------------------------------------------------------
# Timer gate
# ---------------------------------------------------------------------------

class TestProcess:
    def test_no_persist_before_interval(self):
        mgr = CountingManager()
        sched = BackupScheduler(mgr, persist_interval=30)
        start = sched._last_check

        assert sched.process(now=start + 10) is False
        assert sched.process(now=start + 30) is False
        assert mgr.persists == 0

    def test_persist_after_interval(self):
        mgr = CountingManager()
        sched = BackupScheduler(mgr, persist_interval=30)
        start = sched._last_check

        assert sched.process(now=start + 31) is True
        assert mgr.persists == 1
        # Last check was reset
        assert sched.process(now=start + 50) is False
        assert sched.process(now=start + 62) is True
        assert mgr.persists == 2

    def test_request_persist_forces_next_tick(self):
        mgr = CountingManager()
        sched = BackupScheduler(mgr, persist_interval=3600)

        sched.request_persist()
        assert sched.process() is True
        assert sched.process() is False
        assert mgr.persists == 1

    def test_failed_cycle_is_contained(self, caplog):
        mgr = CountingManager(fail=True)
        sched = BackupScheduler(mgr, persist_interval=0)

        assert sched.process(now=sched._last_check + 1) is True
        assert "Backup cycle failed" in caplog.text


# ---------------------------------------------------------------------------
# Worker thread
# ---------------------------------------------------------------------------

class TestWorker:
    def test_loads_before_first_cycle_and_persists_on_stop(self):
        mgr = CountingManager()
        sched = BackupScheduler(mgr, persist_interval=3600, tick=0.01)

        sched.start()
        assert sched.is_running
        assert wait_until(lambda: mgr.loads == 1)
        sched.stop()

        assert not sched.is_running
        assert mgr.order == ["load", "persist"]

    def test_all_work_on_one_worker_thread(self):
        mgr = CountingManager()
        sched = BackupScheduler(mgr, persist_interval=0.02, tick=0.005)

        sched.start()
        assert wait_until(lambda: mgr.persists >= 2)
        sched.stop()

        assert mgr.threads == {"backup-scheduler"}

    def test_load_disabled(self):
        mgr = CountingManager()
        sched = BackupScheduler(mgr, persist_interval=3600, load_on_start=False)
        sched.start()
        sched.stop()
        assert mgr.loads == 0
        assert mgr.persists == 1

    def test_request_persist_from_other_thread(self):
        mgr = CountingManager()
        sched = BackupScheduler(mgr, persist_interval=3600, tick=0.005,
                                load_on_start=False)
        sched.start()
        sched.request_persist()
        assert wait_until(lambda: mgr.persists == 1)
        sched.stop()
        assert mgr.persists == 2

    def test_stop_when_not_started(self):
        sched = BackupScheduler(CountingManager())
        sched.stop()
        assert not sched.is_running

    def test_start_twice_keeps_one_worker(self):
        mgr = CountingManager()
        sched = BackupScheduler(mgr, persist_interval=3600, load_on_start=False)
        sched.start()
        first = sched._thread
        sched.start()
        assert sched._thread is first
        sched.stop()

    def test_survives_failing_cycles(self):
        mgr = CountingManager(fail=True)
        sched = BackupScheduler(mgr, persist_interval=0.01, tick=0.005,
                                load_on_start=False)
        sched.start()
        assert wait_until(lambda: mgr.persists >= 3)
        assert sched.is_running
        sched.stop()


# ---------------------------------------------------------------------------
# With a real manager
# ---------------------------------------------------------------------------

class TestSchedulerIntegration:
    @pytest.fixture
    def manager(self, tmp_path):
        return ContentBackupManager(str(tmp_path / "backups"), rules=[
            BackupRule(name="Daily", interval_seconds=86400, max_versions=3),
        ])

    def test_final_persist_writes_due_backup(self, manager, tmp_path):
        sched = BackupScheduler(manager, persist_interval=3600, tick=0.01)
        sched.start()
        sched.stop()

        backup_dir = tmp_path / "backups"
        archives = list(backup_dir.glob("backup-daily-*.zip"))
        assert len(archives) == 1
        assert not (backup_dir / LOCK_FILE_NAME).exists()

    def test_periodic_cycle_writes_backup(self, manager, tmp_path):
        backup_dir = tmp_path / "backups"
        sched = BackupScheduler(manager, persist_interval=0.05, tick=0.01)
        sched.start()
        assert wait_until(lambda: any(backup_dir.glob("backup-daily-*.zip")))
        sched.stop()

        # Interval of a day: later cycles and the final one add nothing
        assert len(list(backup_dir.glob("backup-daily-*.zip"))) == 1
        assert manager.rules[0].last_backup_seconds > 0
