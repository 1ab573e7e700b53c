"""Archive discovery by filename.

There is no index database: the backup directory itself is the index.
Every archive carries its creation time in its name::

    backup_dir/
    +-- backup-daily-2024-06-01_00-00-00.zip
    +-- backup-daily-2024-06-02_00-00-00.zip
    +-- backup-half_hourly-2024-06-02_00-30-00.zip
    +-- running.lock              (only while a persist cycle runs)

All helpers here recompute their answer from the directory on every call.
"""

import fnmatch
import glob
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from src.backup.backup_config import (
    ARCHIVE_DATETIME_FORMAT,
    ARCHIVE_GLOB,
    ARCHIVE_PREFIX,
    ARCHIVE_SUFFIX,
    archive_name_pattern,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveInfo:
    """One archive file found in the backup directory."""
    path: Path
    filename: str
    timestamp: datetime

    @property
    def epoch_seconds(self) -> int:
        return int(self.timestamp.timestamp())


def format_prefix(name: str) -> str:
    """Derive a rule's filename prefix from its name.

    "Half Hourly"  ->  "half_hourly-"
    """
    return name.replace(" ", "_").lower() + "-"


def archive_filename(prefix: str, when: datetime) -> str:
    return ARCHIVE_PREFIX + prefix + when.strftime(ARCHIVE_DATETIME_FORMAT) + ARCHIVE_SUFFIX


def parse_archive_timestamp(filename: str, prefix: str) -> datetime | None:
    """Return the timestamp embedded in an archive name, or None.

    None is returned both for names that do not belong to ``prefix`` and
    for names whose timestamp has the right shape but is not a real date.
    """
    match = archive_name_pattern(prefix).fullmatch(filename)
    if not match:
        return None
    try:
        return datetime.strptime(match.group(1), ARCHIVE_DATETIME_FORMAT)
    except ValueError:
        logger.warning("Skipping backup with invalid timestamp: %s", filename)
        return None


def _rule_glob(prefix: str) -> str:
    # Rule names may contain glob metacharacters such as "[".
    return glob.escape(ARCHIVE_PREFIX + prefix) + "*" + ARCHIVE_SUFFIX


def _iter_archive_files(directory, pattern: str):
    """Yield (name, path) for regular files matching a glob, in directory order."""
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if not fnmatch.fnmatchcase(entry.name, pattern):
                    continue
                try:
                    if entry.is_symlink() or not entry.is_file():
                        continue
                except OSError:
                    continue
                yield entry.name, Path(entry.path)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.error("Could not read backup directory %s: %s", directory, exc)


def get_most_recent_backup(directory, prefix: str) -> ArchiveInfo | None:
    """Find the newest archive for ``prefix`` by its embedded timestamp.

    Ties keep whichever file the directory listing yielded first.
    """
    best: ArchiveInfo | None = None

    for name, path in _iter_archive_files(directory, _rule_glob(prefix)):
        created_at = parse_archive_timestamp(name, prefix)
        if created_at is None:
            logger.debug("No match: %s", name)
            continue
        logger.debug("Checking %s", path)
        if best is None or created_at > best.timestamp:
            best = ArchiveInfo(path=path, filename=name, timestamp=created_at)

    return best


def list_archives(directory, prefix: str) -> list[ArchiveInfo]:
    """All valid archives for one prefix, oldest first."""
    found = []
    for name, path in _iter_archive_files(directory, _rule_glob(prefix)):
        created_at = parse_archive_timestamp(name, prefix)
        if created_at is not None:
            found.append(ArchiveInfo(path=path, filename=name, timestamp=created_at))
    found.sort(key=lambda a: a.filename)
    return found


def list_all_archives(directory) -> list[Path]:
    """Every ``backup-*.zip`` in the directory regardless of rule, sorted by name."""
    return [path for _, path in sorted(_iter_archive_files(directory, ARCHIVE_GLOB))]
