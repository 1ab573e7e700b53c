"""Backup handlers: the pluggable content serializers.

The manager never looks inside an archive. It hands each registered handler
an open ``zipfile.ZipFile`` and lets it write, read or extend the content:

    create_backup(zip_file)       archive opened for writing (new file)
    load_backup(zip_file)         archive opened for reading
    consolidate_backup(zip_file)  copy of an archive opened for appending
"""

import hashlib
import json
import logging
import os
import zipfile
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)


class BackupHandler:
    """Base class for content handlers registered with the backup manager."""

    def create_backup(self, zip_file: zipfile.ZipFile):
        raise NotImplementedError

    def load_backup(self, zip_file: zipfile.ZipFile):
        raise NotImplementedError

    def consolidate_backup(self, zip_file: zipfile.ZipFile):
        raise NotImplementedError


def file_sha256(path) -> str | None:
    """Return hex SHA-256 digest of a file, or None if unreadable."""
    h = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                h.update(chunk)
        return h.hexdigest()
    except OSError:
        return None


class ContentDirectoryHandler(BackupHandler):
    """Archives a directory tree under ``<arc_prefix>/`` with a manifest.

    Archive layout::

        content/manifest.json
        content/entities/models.json
        content/settings.json
        content/manifest-consolidated.json   (files added by consolidation)

    Zip entries cannot be rewritten in place, so consolidation records the
    files it adds in a second manifest instead of touching the first.
    """

    MANIFEST_NAME = "manifest.json"
    CONSOLIDATED_MANIFEST_NAME = "manifest-consolidated.json"

    def __init__(self, content_directory, arc_prefix: str = "content"):
        self.content_directory = Path(content_directory)
        self.arc_prefix = arc_prefix.strip("/")

    @property
    def manifest_arcname(self) -> str:
        return f"{self.arc_prefix}/{self.MANIFEST_NAME}"

    @property
    def consolidated_manifest_arcname(self) -> str:
        return f"{self.arc_prefix}/{self.CONSOLIDATED_MANIFEST_NAME}"

    def _is_manifest(self, arcname: str) -> bool:
        return arcname in (self.manifest_arcname, self.consolidated_manifest_arcname)

    def _content_files(self):
        if not self.content_directory.is_dir():
            return []
        return sorted(p for p in self.content_directory.rglob("*") if p.is_file())

    def _arcname(self, path: Path) -> str:
        return f"{self.arc_prefix}/{path.relative_to(self.content_directory).as_posix()}"

    def _add_files(self, zip_file: zipfile.ZipFile, skip: set[str]) -> list[dict]:
        entries = []
        for path in self._content_files():
            arcname = self._arcname(path)
            if arcname in skip or self._is_manifest(arcname):
                continue
            try:
                zip_file.write(path, arcname=arcname)
                size = path.stat().st_size
            except OSError as exc:
                logger.error("Could not add %s to backup: %s", path, exc)
                continue
            entries.append({
                "name": arcname,
                "size": size,
                "sha256": file_sha256(path),
            })
        return entries

    def create_backup(self, zip_file: zipfile.ZipFile):
        entries = self._add_files(zip_file, skip=set())
        zip_file.writestr(self.manifest_arcname, json.dumps(entries, indent=2))
        logger.info("Archived %d content file(s) from %s",
                    len(entries), self.content_directory)

    def consolidate_backup(self, zip_file: zipfile.ZipFile):
        """Add current content files that the archive does not have yet."""
        existing = set(zip_file.namelist())
        if self.consolidated_manifest_arcname in existing:
            logger.warning("Archive was already consolidated, not adding files again")
            return
        added = self._add_files(zip_file, skip=existing)
        zip_file.writestr(self.consolidated_manifest_arcname, json.dumps(added, indent=2))
        logger.info("Consolidated %d additional content file(s)", len(added))

    def load_backup(self, zip_file: zipfile.ZipFile):
        """Extract this handler's entries into the content directory.

        Loading several archives in order leaves the newest version of each
        file in place. Entries whose checksum disagrees with the manifest are
        still restored, with a warning.
        """
        expected = {e["name"]: e.get("sha256") for e in self.read_manifest(zip_file)}
        restored = 0
        root = self.content_directory.resolve()
        for info in zip_file.infolist():
            name = info.filename
            if info.is_dir() or not name.startswith(self.arc_prefix + "/"):
                continue
            if self._is_manifest(name):
                continue
            rel = PurePosixPath(name[len(self.arc_prefix) + 1:])
            if rel.is_absolute() or ".." in rel.parts:
                logger.warning("Refusing unsafe archive entry: %s", name)
                continue
            dest = root.joinpath(*rel.parts)
            h = hashlib.sha256()
            try:
                os.makedirs(dest.parent, exist_ok=True)
                with zip_file.open(info) as src, open(dest, "wb") as out:
                    for chunk in iter(lambda: src.read(65536), b""):
                        h.update(chunk)
                        out.write(chunk)
            except OSError as exc:
                logger.error("Could not restore %s: %s", name, exc)
                continue
            if expected.get(name) and expected[name] != h.hexdigest():
                logger.warning("Checksum mismatch for %s", name)
            restored += 1
        logger.info("Restored %d content file(s) into %s", restored, root)

    def read_manifest(self, zip_file: zipfile.ZipFile) -> list[dict]:
        """Manifest entries of the snapshot plus any added by consolidation."""
        entries = []
        for arcname in (self.manifest_arcname, self.consolidated_manifest_arcname):
            try:
                data = json.loads(zip_file.read(arcname))
            except (KeyError, ValueError):
                continue
            if isinstance(data, list):
                entries.extend(e for e in data if isinstance(e, dict) and "name" in e)
        return entries
