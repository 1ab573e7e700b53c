"""Backup rules and their last-backup bookkeeping.

Rules come from the ``backup.rules`` section of the config file::

    {"Name": "Daily", "backupInterval": 86400, "maxBackupVersions": "7"}

Integer fields may be given as numbers or as numeric strings. A ``format``
key is ignored; the filename prefix is always derived from ``Name``.
"""

import logging
import time
from dataclasses import dataclass, field

from src.backup.archive_index import format_prefix, get_most_recent_backup

logger = logging.getLogger(__name__)


@dataclass
class BackupRule:
    """How often one category of content is archived and how many to keep."""
    name: str
    interval_seconds: int
    max_versions: int
    last_backup_seconds: int = 0
    filename_prefix: str = field(init=False)

    def __post_init__(self):
        self.filename_prefix = format_prefix(self.name)


def format_sec_time(seconds: int) -> str:
    """Human readable duration, e.g. ``1d 2h 3m 4s``."""
    days, rem = divmod(max(int(seconds), 0), 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{secs}s")
    return " ".join(parts)


def _coerce_int(value, field_name: str, rule_name: str) -> int:
    if isinstance(value, bool):
        logger.warning("Rule %r: %s must be a number, got %r; using 0",
                       rule_name, field_name, value)
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    logger.warning("Rule %r: invalid %s %r; using 0", rule_name, field_name, value)
    return 0


def parse_backup_rules(raw_rules) -> list[BackupRule]:
    """Turn raw rule settings into BackupRule objects.

    Malformed entries never raise; bad fields fall back to zero/empty.
    """
    if not isinstance(raw_rules, list):
        logger.info("BACKUP RULES: NONE")
        return []

    rules = []
    for entry in raw_rules:
        if not isinstance(entry, dict):
            logger.warning("Skipping malformed backup rule: %r", entry)
            continue

        name = entry.get("Name")
        if not isinstance(name, str):
            logger.warning("Backup rule without a valid Name: %r", entry)
            name = ""

        interval = _coerce_int(entry.get("backupInterval"), "backupInterval", name)
        if interval < 0:
            logger.warning("Rule %r: negative backupInterval %d; using 0", name, interval)
            interval = 0
        count = _coerce_int(entry.get("maxBackupVersions"), "maxBackupVersions", name)

        rules.append(BackupRule(name=name, interval_seconds=interval, max_versions=count))
    return rules


class RuleStore:
    """Holds the configured rules and seeds their last-backup times from disk.

    The rule list is fixed once built; only ``last_backup_seconds`` changes,
    and only through ``advance()``.
    """

    def __init__(self, rules: list[BackupRule], backup_directory):
        self.backup_directory = backup_directory
        self._rules: list[BackupRule] = []

        logger.info("BACKUP RULES:")
        seen_prefixes: set[str] = set()
        for rule in rules:
            if rule.filename_prefix in seen_prefixes:
                logger.warning(
                    "Skipping rule %r: its archives (%s*) collide with an earlier rule",
                    rule.name, rule.filename_prefix,
                )
                continue
            seen_prefixes.add(rule.filename_prefix)
            self._seed(rule)
            self._rules.append(rule)

    def _seed(self, rule: BackupRule):
        latest = get_most_recent_backup(self.backup_directory, rule.filename_prefix)
        rule.last_backup_seconds = latest.epoch_seconds if latest else 0

        logger.info("    Name: %s", rule.name)
        logger.info("        format: %s", rule.filename_prefix)
        logger.info("        interval: %d", rule.interval_seconds)
        logger.info("        count: %d", rule.max_versions)
        if rule.last_backup_seconds > 0:
            since = int(time.time()) - rule.last_backup_seconds
            logger.info("        lastBackup: %s ago", format_sec_time(since))
        else:
            logger.info("        lastBackup: NEVER")

    @property
    def rules(self) -> list[BackupRule]:
        return list(self._rules)

    def get(self, name: str) -> BackupRule | None:
        for rule in self._rules:
            if rule.name == name:
                return rule
        return None

    def advance(self, rule: BackupRule, epoch_seconds: int):
        """Record a backup for ``rule``. Never moves the timestamp backwards."""
        if epoch_seconds < rule.last_backup_seconds:
            logger.debug("Ignoring older backup time %d for rule %s",
                         epoch_seconds, rule.name)
            return
        rule.last_backup_seconds = epoch_seconds

    def __iter__(self):
        return iter(self.rules)

    def __len__(self):
        return len(self._rules)
