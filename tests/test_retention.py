"""Tests for per-rule retention (keep the newest N archives)."""

import os
import zipfile
from datetime import datetime, timedelta

import pytest

from src.backup.archive_index import archive_filename
from src.backup.backup_rules import BackupRule
from src.backup.retention import remove_old_backup_versions


@pytest.fixture
def backup_dir(tmp_path):
    d = tmp_path / "backups"
    d.mkdir()
    return d


def make_archives(directory, prefix, count, start=datetime(2024, 1, 1)):
    names = []
    for i in range(count):
        name = archive_filename(prefix, start + timedelta(hours=i))
        with zipfile.ZipFile(directory / name, "w") as zf:
            zf.writestr("x.txt", str(i))
        names.append(name)
    return names


def remaining(directory):
    return sorted(p.name for p in directory.iterdir())


class TestRemoveOldBackupVersions:
    def test_unlimited_when_zero(self, backup_dir):
        names = make_archives(backup_dir, "daily-", 5)
        rule = BackupRule(name="Daily", interval_seconds=1, max_versions=0)
        assert remove_old_backup_versions(backup_dir, rule) == []
        assert remaining(backup_dir) == names

    def test_unlimited_when_negative(self, backup_dir):
        names = make_archives(backup_dir, "daily-", 3)
        rule = BackupRule(name="Daily", interval_seconds=1, max_versions=-2)
        remove_old_backup_versions(backup_dir, rule)
        assert remaining(backup_dir) == names

    def test_keeps_newest(self, backup_dir):
        names = make_archives(backup_dir, "daily-", 5)
        rule = BackupRule(name="Daily", interval_seconds=1, max_versions=3)

        removed = remove_old_backup_versions(backup_dir, rule)
        assert [p.name for p in removed] == names[:2]
        assert remaining(backup_dir) == names[2:]

    @pytest.mark.parametrize("count,cap", [(0, 3), (2, 3), (3, 3), (4, 1), (7, 2)])
    def test_deletes_exactly_the_excess(self, backup_dir, count, cap):
        names = make_archives(backup_dir, "daily-", count)
        rule = BackupRule(name="Daily", interval_seconds=1, max_versions=cap)

        removed = remove_old_backup_versions(backup_dir, rule)
        assert len(removed) == max(0, count - cap)
        expected = names[-cap:] if count > cap else names
        assert remaining(backup_dir) == expected

    def test_rule_name_with_brackets(self, backup_dir):
        names = make_archives(backup_dir, "daily_[eu]-", 4)
        rule = BackupRule(name="Daily [EU]", interval_seconds=1, max_versions=2)

        removed = remove_old_backup_versions(backup_dir, rule)
        assert [p.name for p in removed] == names[:2]
        assert remaining(backup_dir) == names[2:]

    def test_other_rules_untouched(self, backup_dir):
        daily = make_archives(backup_dir, "daily-", 4)
        weekly = make_archives(backup_dir, "weekly-", 4)
        extra = make_archives(backup_dir, "daily-extra-", 2)
        rule = BackupRule(name="Daily", interval_seconds=1, max_versions=1)

        remove_old_backup_versions(backup_dir, rule)
        assert remaining(backup_dir) == sorted(daily[-1:] + weekly + extra)

    def test_missing_directory(self, tmp_path):
        rule = BackupRule(name="Daily", interval_seconds=1, max_versions=1)
        assert remove_old_backup_versions(tmp_path / "gone", rule) == []

    def test_failed_deletion_does_not_abort(self, backup_dir, monkeypatch):
        names = make_archives(backup_dir, "daily-", 4)
        rule = BackupRule(name="Daily", interval_seconds=1, max_versions=1)
        real_remove = os.remove
        stuck = str(backup_dir / names[0])

        def flaky_remove(path):
            if str(path) == stuck:
                raise PermissionError("locked")
            real_remove(path)

        monkeypatch.setattr(os, "remove", flaky_remove)
        removed = remove_old_backup_versions(backup_dir, rule)

        assert [p.name for p in removed] == names[1:3]
        assert remaining(backup_dir) == [names[0], names[3]]
