"""Tests for configuration layering."""

import json
import logging

from cmem.config import (
    DEFAULTS, MemoryConfig,
    apply_defaults, config_from_env, config_from_mapping, load_config,
    merge_config, read_config_file, write_default_config,
)


class TestDefaults:

    def test_apply_defaults_fills_everything(self):
        config = apply_defaults(MemoryConfig())
        assert config == DEFAULTS
        assert config.auto_session is True
        assert config.auto_session_hours == 4
        assert config.backup_interval == 10
        assert config.max_backup_days == 7
        assert config.token_optimization is True
        assert config.silent_mode is False

    def test_apply_defaults_keeps_set_values(self):
        config = apply_defaults(MemoryConfig(backup_interval=3, auto_session=False))
        assert config.backup_interval == 3
        assert config.auto_session is False
        assert config.auto_backup is True

    def test_apply_defaults_is_pure(self):
        partial = MemoryConfig(backup_interval=3)
        apply_defaults(partial)
        assert partial.auto_session is None


class TestMerge:

    def test_later_layers_win(self):
        merged = merge_config(
            MemoryConfig(backup_interval=5, auto_backup=False),
            MemoryConfig(backup_interval=8),
            None,
        )
        assert merged.backup_interval == 8
        assert merged.auto_backup is False


class TestMapping:

    def test_camel_and_snake_keys(self):
        config = config_from_mapping({"autoSessionHours": 2, "max_backup_days": 30})
        assert config.auto_session_hours == 2.0
        assert config.max_backup_days == 30

    def test_invalid_values_are_skipped(self, caplog):
        with caplog.at_level(logging.WARNING, logger="cmem.config"):
            config = config_from_mapping({
                "backupInterval": "lots", "autoBackup": "maybe", "maxBackupDays": -1,
                "autoSession": True, "somethingElse": 1,
            })
        assert config.backup_interval is None
        assert config.auto_backup is None
        assert config.max_backup_days is None
        assert config.auto_session is True
        assert "backupInterval" in caplog.text

    def test_bool_is_not_a_number(self):
        assert config_from_mapping({"backupInterval": True}).backup_interval is None


class TestEnvironment:

    def test_env_values_are_coerced(self):
        config = config_from_env({"CMEM_AUTO_BACKUP": "false", "CMEM_BACKUP_INTERVAL": "3"})
        assert config.auto_backup is False
        assert config.backup_interval == 3
        assert config.auto_session is None


class TestLoadConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(tmp_path / ".claude" / "config.json") == DEFAULTS

    def test_unparsable_file_gives_defaults(self, tmp_path, caplog):
        path = tmp_path / ".claude" / "config.json"
        path.parent.mkdir()
        path.write_text("{not json")
        with caplog.at_level(logging.WARNING, logger="cmem.config"):
            assert read_config_file(path) == MemoryConfig()
        assert "Could not read config" in caplog.text

    def test_precedence(self, tmp_path, monkeypatch):
        path = tmp_path / ".claude" / "config.json"
        path.parent.mkdir()
        path.write_text(json.dumps({"backupInterval": 20, "maxBackupDays": 14, "autoBackup": False}))
        monkeypatch.setenv("CMEM_BACKUP_INTERVAL", "15")

        config = load_config(path, overrides=MemoryConfig(auto_backup=True))
        assert config.max_backup_days == 14
        assert config.backup_interval == 15
        assert config.auto_backup is True

    def test_dotenv_file_is_loaded(self, tmp_path, monkeypatch):
        monkeypatch.delenv("CMEM_MAX_BACKUP_DAYS", raising=False)
        (tmp_path / ".env").write_text("CMEM_MAX_BACKUP_DAYS=21\n")
        config = load_config(tmp_path / ".claude" / "config.json")
        assert config.max_backup_days == 21


class TestWriteDefaultConfig:

    def test_writes_camel_case_defaults(self, tmp_path):
        path = tmp_path / ".claude" / "config.json"
        assert write_default_config(path) is True
        data = json.loads(path.read_text())
        assert data["autoSession"] is True
        assert data["backupInterval"] == 10

    def test_never_overwrites(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text('{"backupInterval": 2}')
        assert write_default_config(path) is False
        assert json.loads(path.read_text()) == {"backupInterval": 2}
