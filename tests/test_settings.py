"""Tests for config loading and manager construction."""

import json

import pytest

from src.backup.backup_config import DEFAULT_PERSIST_INTERVAL
from src.backup.handlers import ContentDirectoryHandler
from src.backup.settings import build_backup_manager, get_persist_interval, load_config


class TestLoadConfig:
    def test_reads_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"backup": {"persist_interval": 5}}))
        assert load_config(str(path)) == {"backup": {"persist_interval": 5}}

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.json"))


class TestGetPersistInterval:
    def test_default(self):
        assert get_persist_interval({}) == DEFAULT_PERSIST_INTERVAL

    def test_numeric_string(self):
        assert get_persist_interval({"backup": {"persist_interval": "2.5"}}) == 2.5

    def test_invalid_falls_back(self):
        assert get_persist_interval({"backup": {"persist_interval": "often"}}) == \
            DEFAULT_PERSIST_INTERVAL

    def test_negative_clamped(self):
        assert get_persist_interval({"backup": {"persist_interval": -3}}) == 0.0


class TestBuildBackupManager:
    def test_rules_directory_and_handler(self, tmp_path):
        config = {"backup": {
            "directory": str(tmp_path / "backups"),
            "content_directory": str(tmp_path / "content"),
            "rules": [
                {"Name": "Half Hourly", "backupInterval": "1800", "maxBackupVersions": 5},
            ],
        }}
        mgr = build_backup_manager(config)

        assert mgr.backup_directory == (tmp_path / "backups").resolve()
        assert mgr.backup_directory.is_dir()
        assert [(r.name, r.filename_prefix, r.interval_seconds) for r in mgr.rules] == \
            [("Half Hourly", "half_hourly-", 1800)]
        assert isinstance(mgr.handlers[0], ContentDirectoryHandler)

    def test_without_content_directory(self, tmp_path):
        mgr = build_backup_manager({"backup": {"directory": str(tmp_path / "b")}})
        assert mgr.handlers == []
        assert mgr.rules == []

    def test_event_callback_passed_through(self, tmp_path):
        events = []
        mgr = build_backup_manager(
            {"backup": {"directory": str(tmp_path / "b")}},
            on_event=lambda kind, data: events.append(kind),
        )
        mgr.on_event("ping", {})
        assert events == ["ping"]
