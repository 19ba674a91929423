"""Configuration helpers.

Defaults come from an optional YAML file; secrets and test overrides come
from environment variables.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import platformdirs
import yaml

from .constants import ENV_CONFIG, ENV_MANIFEST_KEY, ENV_RETRY_DELAY_MS

logger = logging.getLogger(__name__)


@dataclass
class BackupConfig:
    """Defaults applied to CLI options that were not given explicitly."""

    target: str = "/"
    cores: Optional[int] = None
    resume: bool = False
    chunk_size_mb: Optional[int] = None


def get_config_path() -> Path:
    """Location of config.yaml (``INTERNXT_BACKUP_CONFIG`` overrides)."""
    override = os.environ.get(ENV_CONFIG)
    if override:
        return Path(override)
    return platformdirs.user_config_path("internxt-backup") / "config.yaml"


def load_backup_config(path: Optional[Path] = None) -> BackupConfig:
    """Load config.yaml if present; missing or malformed files yield defaults."""

    cfg_path = path or get_config_path()
    if not cfg_path.exists():
        return BackupConfig()

    try:
        data = yaml.safe_load(cfg_path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", cfg_path, e)
        return BackupConfig()

    if not isinstance(data, dict):
        return BackupConfig()

    backup = data.get("backup", data)
    return BackupConfig(
        target=backup.get("target", "/"),
        cores=backup.get("cores"),
        resume=bool(backup.get("resume", False)),
        chunk_size_mb=backup.get("chunk_size_mb"),
    )


def get_manifest_key() -> Optional[bytes]:
    """HMAC key for manifest signing, or None when signing is disabled."""
    key = os.environ.get(ENV_MANIFEST_KEY)
    if not key:
        return None
    return key.encode("utf-8")


def get_retry_delay_ms() -> Optional[int]:
    """Fixed retry delay override for resumable uploads."""
    value = os.environ.get(ENV_RETRY_DELAY_MS)
    if value is None or value == "":
        return None
    try:
        return max(0, int(value))
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", ENV_RETRY_DELAY_MS, value)
        return None
