"""Tests for config modules."""

import pytest
from pathlib import Path

from src.vault.config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_VAULT_NAME, ShieldConfig
from src.watcher.config import WatcherConfig


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "SHIELD_VAULT_DIR",
        "SHIELD_MAX_BACKUP_AGE_DAYS",
        "SHIELD_RESTORE_LOCK_TIMEOUT",
        "SHIELD_EXCLUDE",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestShieldConfig:
    """Tests for ShieldConfig class."""

    def test_default_values(self, tmp_path):
        config = ShieldConfig(workspace=tmp_path)
        assert config.workspace == tmp_path.resolve()
        assert config.vault_dir == tmp_path.resolve() / DEFAULT_VAULT_NAME
        assert config.max_backup_age_days == 7
        assert config.restore_lock_timeout_s == 10.0
        assert config.exclude_patterns == DEFAULT_EXCLUDE_PATTERNS

    def test_derived_paths(self, tmp_path):
        config = ShieldConfig(workspace=tmp_path)
        assert config.snapshots_dir == config.vault_dir / "snapshots"
        assert config.index_path == config.vault_dir / "index.json"
        assert config.restore_lock_path == config.vault_dir / "restore.lock"

    def test_string_paths(self, tmp_path):
        config = ShieldConfig(workspace=str(tmp_path), vault_dir=str(tmp_path / "vault"))
        assert isinstance(config.workspace, Path)
        assert config.vault_dir == tmp_path / "vault"

    def test_exclude_patterns_not_shared(self, tmp_path):
        first = ShieldConfig(workspace=tmp_path)
        first.exclude_patterns.append("*.bak")
        second = ShieldConfig(workspace=tmp_path)
        assert "*.bak" not in second.exclude_patterns
        assert "*.bak" not in DEFAULT_EXCLUDE_PATTERNS

    def test_from_env_environment(self, tmp_path, clean_env):
        clean_env.setenv("SHIELD_MAX_BACKUP_AGE_DAYS", "3")
        clean_env.setenv("SHIELD_RESTORE_LOCK_TIMEOUT", "2.5")
        clean_env.setenv("SHIELD_EXCLUDE", "*.bak, secrets")

        config = ShieldConfig.from_env(tmp_path)

        assert config.max_backup_age_days == 3
        assert config.restore_lock_timeout_s == 2.5
        assert "*.bak" in config.exclude_patterns
        assert "secrets" in config.exclude_patterns

    def test_from_env_file(self, tmp_path, clean_env):
        vault = tmp_path / DEFAULT_VAULT_NAME
        vault.mkdir()
        (vault / "shield.env").write_text("SHIELD_MAX_BACKUP_AGE_DAYS=14\n")

        config = ShieldConfig.from_env(tmp_path)

        assert config.max_backup_age_days == 14

    def test_environment_overrides_file(self, tmp_path, clean_env):
        vault = tmp_path / DEFAULT_VAULT_NAME
        vault.mkdir()
        (vault / "shield.env").write_text("SHIELD_MAX_BACKUP_AGE_DAYS=14\n")
        clean_env.setenv("SHIELD_MAX_BACKUP_AGE_DAYS", "1")

        config = ShieldConfig.from_env(tmp_path)

        assert config.max_backup_age_days == 1

    def test_from_env_vault_dir(self, tmp_path, clean_env):
        clean_env.setenv("SHIELD_VAULT_DIR", str(tmp_path / "elsewhere"))
        config = ShieldConfig.from_env(tmp_path)
        assert config.vault_dir == tmp_path / "elsewhere"

    def test_extra_patterns_merged_once(self, tmp_path, clean_env):
        config = ShieldConfig.from_env(tmp_path, extra_patterns=["*.bak", ".git"])
        assert config.exclude_patterns.count("*.bak") == 1
        assert config.exclude_patterns.count(".git") == 1


class TestWatcherConfig:
    """Tests for WatcherConfig class."""

    def test_default_values(self):
        config = WatcherConfig()
        assert config.debounce_ms == 1000
        assert config.rename_grace_ms == 500
        assert config.batch_window_ms == 1500
        assert config.flush_interval_ms == 100
        assert config.match_content_on_rename is False
        assert config.recursive is True

    def test_restore_hold_covers_all_windows(self):
        config = WatcherConfig()
        assert config.restore_hold_seconds == 4.0

    def test_restore_hold_custom(self):
        config = WatcherConfig(
            debounce_ms=100,
            rename_grace_ms=50,
            batch_window_ms=200,
            restore_hold_margin_ms=150,
        )
        assert config.restore_hold_seconds == pytest.approx(0.5)
