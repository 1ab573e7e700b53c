"""Backup orchestration.

Decides per rule when to snapshot content into a timestamped zip archive,
fans every archive operation out to the registered handlers, and keeps the
backup directory trimmed to each rule's version cap. Driven periodically by
``BackupScheduler``; load/consolidate/recover are called on demand.
"""

import logging
import os
import shutil
import tempfile
import threading
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from src.backup.archive_index import (
    archive_filename,
    list_all_archives,
    parse_archive_timestamp,
)
from src.backup.backup_config import DEFAULT_BACKUP_DIRECTORY, LOCK_FILE_NAME
from src.backup.backup_rules import BackupRule, RuleStore
from src.backup.handlers import BackupHandler
from src.backup.retention import remove_old_backup_versions

logger = logging.getLogger(__name__)


@dataclass
class ConsolidationResult:
    filename: str
    consolidated_path: str | None
    success: bool
    error: str | None = None


class ContentBackupManager:
    """Rule-driven archive creation, loading, consolidation and retention.

    Usage::

        mgr = ContentBackupManager("data/backups", rules=parse_backup_rules(raw))
        mgr.add_backup_handler(ContentDirectoryHandler("data/content"))
        mgr.load()                  # once, at startup
        mgr.persist()               # from the scheduler worker
        result = mgr.consolidate("backup-daily-2024-06-01_00-00-00.zip")

    Parameters
    ----------
    backup_directory:
        Flat directory holding every rule's archives.
    rules:
        ``BackupRule`` objects; their last-backup times are seeded from the
        archives already on disk.
    handlers:
        Initial handlers, invoked in registration order.
    on_event:
        Optional callback ``(event_type, data)`` for backup_created,
        backup_removed, persist_skipped, consolidated and recovered.
    clock:
        Returns the current local ``datetime`` (defaults to ``datetime.now``).
    """

    def __init__(
        self,
        backup_directory: str = None,
        rules: list[BackupRule] | None = None,
        handlers: list[BackupHandler] | None = None,
        on_event=None,
        clock=None,
    ):
        self.backup_directory = Path(backup_directory or DEFAULT_BACKUP_DIRECTORY)
        try:
            self.backup_directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Could not create backup directory %s: %s",
                         self.backup_directory, exc)

        self.rule_store = RuleStore(rules or [], self.backup_directory)
        self._handlers: list[BackupHandler] = list(handlers or [])
        self.on_event = on_event
        self._clock = clock or datetime.now
        # Serializes persist/load/consolidate/recover/delete within the process
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Handlers & events
    # ------------------------------------------------------------------

    def add_backup_handler(self, handler: BackupHandler):
        self._handlers.append(handler)

    @property
    def handlers(self) -> list[BackupHandler]:
        return list(self._handlers)

    @property
    def rules(self) -> list[BackupRule]:
        return self.rule_store.rules

    @property
    def lock_path(self) -> Path:
        return self.backup_directory / LOCK_FILE_NAME

    def _emit(self, event_type: str, data: dict):
        if self.on_event is None:
            return
        try:
            self.on_event(event_type, data)
        except Exception:
            logger.exception("Backup event callback failed for %s", event_type)

    def _run_handlers(self, operation: str, zip_file: zipfile.ZipFile, archive_name: str):
        for handler in self._handlers:
            try:
                getattr(handler, operation)(zip_file)
            except Exception:
                logger.exception("%s.%s failed for %s",
                                 type(handler).__name__, operation, archive_name)

    # ------------------------------------------------------------------
    # Persist cycle
    # ------------------------------------------------------------------

    def had_interrupted_backup(self) -> bool:
        """True if a crash marker was left behind by an unfinished cycle."""
        return self.lock_path.exists()

    def persist(self) -> bool:
        """Run one backup cycle wrapped in the ``running.lock`` marker.

        The marker is advisory: it tells outside tooling a cycle is in
        progress but does not stop a second process from running one.
        Returns False if the cycle was skipped.
        """
        with self._lock:
            try:
                self.backup_directory.mkdir(parents=True, exist_ok=True)
                lock_file = open(self.lock_path, "wb")
            except OSError as exc:
                logger.error("Skipping backup cycle, could not create %s: %s",
                             self.lock_path, exc)
                self._emit("persist_skipped", {"error": str(exc)})
                return False

            try:
                self.backup()
            finally:
                lock_file.close()
                try:
                    os.remove(self.lock_path)
                except OSError as exc:
                    logger.error("Could not remove lock file %s: %s", self.lock_path, exc)
            return True

    def backup(self, now: datetime | None = None) -> list[Path]:
        """Create an archive for every rule whose interval has elapsed.

        Returns the paths of the archives created.
        """
        with self._lock:
            now = now or self._clock()
            now_seconds = int(now.timestamp())
            created: list[Path] = []

            for rule in self.rule_store.rules:
                since_last = now_seconds - rule.last_backup_seconds
                logger.debug(
                    "Checking [%s] - Time since last backup [%d] compared to backup interval [%d]...",
                    rule.name, since_last, rule.interval_seconds,
                )
                if since_last <= rule.interval_seconds:
                    logger.debug("Backup not needed for this rule [%s]...", rule.name)
                    continue

                logger.info("Backup for rule [%s] due (%ds since last, interval %ds)",
                            rule.name, since_last, rule.interval_seconds)
                path = self._create_archive(rule, now)
                self.rule_store.advance(rule, now_seconds)
                if path is None:
                    continue

                created.append(path)
                self._emit("backup_created", {
                    "rule": rule.name,
                    "filename": path.name,
                    "path": str(path),
                })
                for removed in remove_old_backup_versions(self.backup_directory, rule):
                    self._emit("backup_removed", {"rule": rule.name, "filename": removed.name})

            return created

    def _create_archive(self, rule: BackupRule, now: datetime) -> Path | None:
        filename = archive_filename(rule.filename_prefix, now)
        path = self.backup_directory / filename
        try:
            zip_file = zipfile.ZipFile(path, "x", compression=zipfile.ZIP_DEFLATED)
        except OSError as exc:
            logger.error("Could not open backup archive %s: %s", path, exc)
            return None

        self._run_handlers("create_backup", zip_file, filename)

        try:
            zip_file.close()
        except (OSError, ValueError) as exc:
            logger.error("Failed to write backup archive %s: %s", path, exc)
            try:
                os.remove(path)
            except OSError:
                pass
            return None

        logger.info("Created backup: %s", filename)
        return path

    # ------------------------------------------------------------------
    # Loading & recovery
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Replay every archive, oldest first, through each handler.

        Returns the number of archives that could be opened.
        """
        with self._lock:
            if self.had_interrupted_backup():
                logger.warning("Found %s: a previous backup cycle did not finish",
                               self.lock_path)

            archives = list_all_archives(self.backup_directory)
            loaded = sum(1 for path in archives if self._load_archive(path))
            if archives:
                logger.info("Loaded %d of %d backup archive(s)", loaded, len(archives))
            return loaded

    def _load_archive(self, path: Path) -> bool:
        try:
            zip_file = zipfile.ZipFile(path, "r")
        except (OSError, zipfile.BadZipFile) as exc:
            logger.error("Could not open backup archive %s: %s", path, exc)
            return False

        with zip_file:
            self._run_handlers("load_backup", zip_file, path.name)
        return True

    def recover_from_backup(self, filename: str) -> bool:
        """Load a single archive through every handler."""
        with self._lock:
            path = self._resolve_archive(filename)
            if path is None or not self._load_archive(path):
                return False
            logger.info("Recovered content from %s", filename)
            self._emit("recovered", {"filename": filename})
            return True

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    def consolidate(self, filename: str, scratch_directory: str = None) -> ConsolidationResult:
        """Copy an archive to a scratch directory and let handlers extend it.

        Where the consolidated copy ends up afterwards is up to the caller.
        """
        with self._lock:
            path = self._resolve_archive(filename)
            if path is None:
                return ConsolidationResult(filename=filename, consolidated_path=None,
                                           success=False, error="Backup not found")

            scratch = None
            try:
                scratch = Path(tempfile.mkdtemp(prefix="consolidate-", dir=scratch_directory))
                copy_path = scratch / path.name
                shutil.copy2(path, copy_path)
            except OSError as exc:
                logger.error("Failed to create full backup of %s: %s", filename, exc)
                if scratch is not None:
                    shutil.rmtree(scratch, ignore_errors=True)
                return ConsolidationResult(filename=filename, consolidated_path=None,
                                           success=False, error=f"Copy failed: {exc}")

            try:
                # Append mode would silently start a new archive after non-zip data
                if not zipfile.is_zipfile(copy_path):
                    raise zipfile.BadZipFile(f"{path.name} is not a zip archive")
                zip_file = zipfile.ZipFile(copy_path, "a", compression=zipfile.ZIP_DEFLATED)
            except (OSError, zipfile.BadZipFile) as exc:
                logger.error("Could not open backup archive %s: %s", copy_path, exc)
                shutil.rmtree(scratch, ignore_errors=True)
                return ConsolidationResult(filename=filename, consolidated_path=None,
                                           success=False, error=f"Open failed: {exc}")

            self._run_handlers("consolidate_backup", zip_file, filename)

            try:
                zip_file.close()
            except (OSError, ValueError) as exc:
                logger.error("Failed to write consolidated archive %s: %s", copy_path, exc)
                shutil.rmtree(scratch, ignore_errors=True)
                return ConsolidationResult(filename=filename, consolidated_path=None,
                                           success=False, error=f"Write failed: {exc}")

            logger.info("Consolidated %s -> %s", filename, copy_path)
            self._emit("consolidated", {"filename": filename, "path": str(copy_path)})
            return ConsolidationResult(filename=filename, consolidated_path=str(copy_path),
                                       success=True)

    # ------------------------------------------------------------------
    # Queries & maintenance
    # ------------------------------------------------------------------

    def _resolve_archive(self, filename: str) -> Path | None:
        if not filename or os.path.basename(filename) != filename or filename in (".", ".."):
            logger.warning("Rejecting backup name %r", filename)
            return None
        path = self.backup_directory / filename
        if not path.is_file():
            logger.warning("Backup not found: %s", path)
            return None
        return path

    def delete_backup(self, filename: str) -> bool:
        with self._lock:
            path = self._resolve_archive(filename)
            if path is None:
                return False
            try:
                os.remove(path)
            except OSError as exc:
                logger.error("Failed to delete backup %s: %s", filename, exc)
                return False
            logger.info("Deleted backup: %s", filename)
            self._emit("backup_removed", {"rule": self._rule_for(filename), "filename": filename})
            return True

    def _rule_for(self, filename: str) -> str | None:
        for rule in self.rule_store.rules:
            if parse_archive_timestamp(filename, rule.filename_prefix) is not None:
                return rule.name
        return None

    def get_all_backups(self) -> list[dict]:
        """Every archive in the backup directory, oldest name first."""
        backups = []
        for path in list_all_archives(self.backup_directory):
            rule_name = None
            created_at = None
            for rule in self.rule_store.rules:
                created_at = parse_archive_timestamp(path.name, rule.filename_prefix)
                if created_at is not None:
                    rule_name = rule.name
                    break
            try:
                size = path.stat().st_size
            except OSError:
                size = None
            backups.append({
                "filename": path.name,
                "path": str(path),
                "rule": rule_name,
                "timestamp": created_at.isoformat() if created_at else None,
                "size_bytes": size,
            })
        return backups

    def get_rule_status(self, now: datetime | None = None) -> list[dict]:
        """Per-rule schedule summary. ``next_backup_in`` is 0 once the rule is due."""
        now_seconds = int((now or self._clock()).timestamp())
        status = []
        for rule in self.rule_store.rules:
            last = rule.last_backup_seconds
            status.append({
                "name": rule.name,
                "format": rule.filename_prefix,
                "interval_seconds": rule.interval_seconds,
                "max_versions": rule.max_versions,
                "last_backup": datetime.fromtimestamp(last).isoformat() if last > 0 else None,
                # Due only once elapsed time exceeds the interval
                "next_backup_in": max(rule.interval_seconds - (now_seconds - last) + 1, 0),
            })
        return status
