"""Test YAML defaults and environment overrides."""

from internxt_backup.config import (
    BackupConfig,
    get_config_path,
    get_manifest_key,
    get_retry_delay_ms,
    load_backup_config,
)


class TestLoadBackupConfig:
    """Test config.yaml loading."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_backup_config(tmp_path / "missing.yaml") == BackupConfig()

    def test_env_override_path(self, tmp_path, monkeypatch):
        cfg = tmp_path / "custom.yaml"
        monkeypatch.setenv("INTERNXT_BACKUP_CONFIG", str(cfg))
        assert get_config_path() == cfg

    def test_backup_section(self, tmp_path):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("backup:\n  target: /Backups/Docs\n  cores: 3\n  resume: true\n  chunk_size_mb: 25\n")
        config = load_backup_config(cfg)
        assert config == BackupConfig(target="/Backups/Docs", cores=3, resume=True, chunk_size_mb=25)

    def test_top_level_keys(self, tmp_path):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("target: /Photos\n")
        assert load_backup_config(cfg).target == "/Photos"

    def test_loaded_from_env_path(self, tmp_path, monkeypatch):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("cores: 7\n")
        monkeypatch.setenv("INTERNXT_BACKUP_CONFIG", str(cfg))
        assert load_backup_config().cores == 7

    def test_malformed_yaml_gives_defaults(self, tmp_path):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("backup: [unclosed\n")
        assert load_backup_config(cfg) == BackupConfig()

    def test_non_mapping_gives_defaults(self, tmp_path):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("- just\n- a list\n")
        assert load_backup_config(cfg) == BackupConfig()

    def test_empty_file(self, tmp_path):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("")
        assert load_backup_config(cfg) == BackupConfig()


class TestEnvironment:
    """Test environment-only settings."""

    def test_manifest_key_unset(self):
        assert get_manifest_key() is None

    def test_manifest_key_empty(self, monkeypatch):
        monkeypatch.setenv("INTERNXT_BACKUP_MANIFEST_KEY", "")
        assert get_manifest_key() is None

    def test_manifest_key(self, monkeypatch):
        monkeypatch.setenv("INTERNXT_BACKUP_MANIFEST_KEY", "s3cret")
        assert get_manifest_key() == b"s3cret"

    def test_retry_delay(self, monkeypatch):
        monkeypatch.setenv("INTERNXT_BACKUP_RETRY_DELAY_MS", "150")
        assert get_retry_delay_ms() == 150

    def test_retry_delay_unset(self, monkeypatch):
        monkeypatch.delenv("INTERNXT_BACKUP_RETRY_DELAY_MS")
        assert get_retry_delay_ms() is None

    def test_retry_delay_invalid(self, monkeypatch):
        monkeypatch.setenv("INTERNXT_BACKUP_RETRY_DELAY_MS", "soon")
        assert get_retry_delay_ms() is None

    def test_retry_delay_negative_clamped(self, monkeypatch):
        monkeypatch.setenv("INTERNXT_BACKUP_RETRY_DELAY_MS", "-5")
        assert get_retry_delay_ms() == 0
