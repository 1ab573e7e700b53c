"""Backup engine configuration constants and naming rules."""

import os
import re

# Default archive directory (relative to the working directory)
DEFAULT_BACKUP_DIRECTORY = os.path.join("data", "backups")

# Seconds between persist checks made by the scheduler
DEFAULT_PERSIST_INTERVAL = 30

# Scheduler wake-up period in seconds (every 10ms)
SCHEDULER_TICK_SECONDS = 0.01

# Archive filenames: backup-<prefix><timestamp>.zip
ARCHIVE_PREFIX = "backup-"
ARCHIVE_SUFFIX = ".zip"
ARCHIVE_GLOB = ARCHIVE_PREFIX + "*" + ARCHIVE_SUFFIX

# Timestamp embedded in archive filenames (fixed width, sorts chronologically)
ARCHIVE_DATETIME_FORMAT = "%Y-%m-%d_%H-%M-%S"
ARCHIVE_DATETIME_RE = r"\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}"

# Sentinel present while a persist cycle runs
LOCK_FILE_NAME = "running.lock"


def archive_name_pattern(prefix: str) -> re.Pattern:
    """Anchored pattern for one rule's archives; group 1 is the timestamp."""
    return re.compile(
        re.escape(ARCHIVE_PREFIX + prefix)
        + "(" + ARCHIVE_DATETIME_RE + ")"
        + re.escape(ARCHIVE_SUFFIX)
    )
