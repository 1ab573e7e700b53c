"""Retention: keep only the newest ``max_versions`` archives per rule."""

import logging
import os
from pathlib import Path

from src.backup.archive_index import list_archives
from src.backup.backup_rules import BackupRule

logger = logging.getLogger(__name__)


def remove_old_backup_versions(directory, rule: BackupRule) -> list[Path]:
    """Delete the oldest archives of ``rule`` beyond its version cap.

    Returns the paths actually removed. A failed deletion is logged and the
    remaining candidates are still attempted.
    """
    if rule.max_versions <= 0:
        logger.debug(
            "Rolling backups for rule %s. Max rolled backup versions less than 1 [%d]."
            " No need to roll backups...", rule.name, rule.max_versions,
        )
        return []
    if not os.path.isdir(directory):
        return []

    logger.debug("Rolling old backup versions for rule %s...", rule.name)
    archives = list_archives(directory, rule.filename_prefix)
    to_delete = len(archives) - rule.max_versions

    removed: list[Path] = []
    for archive in archives[:max(to_delete, 0)]:
        try:
            os.remove(archive.path)
        except OSError as exc:
            logger.error("Failed to remove old backup %s: %s", archive.filename, exc)
            continue
        removed.append(archive.path)
        logger.info("Removed old backup: %s", archive.filename)

    if removed:
        logger.info("Retention for rule %s: removed %d old backup(s)",
                    rule.name, len(removed))
    return removed
