"""Utility functions for internxt-backup."""

import fnmatch
import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from .constants import ENV_STATE_DIR, PRIVATE_DIR_MODE, PRIVATE_FILE_MODE, STATE_DIR_NAME

logger = logging.getLogger(__name__)


# ============= State Directory =============

def get_state_dir() -> Path:
    """Return the per-user state directory, creating it owner-only if missing.

    ``INTERNXT_BACKUP_STATE_DIR`` overrides the default ``~/.internxt-backup``.
    """
    override = os.environ.get(ENV_STATE_DIR)
    state_dir = Path(override) if override else Path.home() / STATE_DIR_NAME
    if not state_dir.exists():
        state_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(state_dir, PRIVATE_DIR_MODE)
    return state_dir


# ============= Atomic Write Helpers =============

def atomic_write_text(path: Path, text: str, mode: int = PRIVATE_FILE_MODE) -> None:
    """Atomically write text to file with crash safety.

    1. Writes to temp file with fsync to ensure content is on disk
    2. Atomic rename to target path (appears all-at-once)
    3. Fsync parent directory to ensure rename is durable

    The file ends up with ``mode`` permissions (owner-only by default).
    Directory fsync is best-effort on platforms that do not support it.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        mode="w",
        delete=False,
        dir=path.parent,
        prefix=f".{path.name}.tmp-",
        suffix="",
        encoding="utf-8",
    ) as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
        tmp = Path(f.name)

    try:
        os.chmod(tmp, mode)
        os.replace(tmp, path)

        try:
            flags = os.O_RDONLY
            if hasattr(os, "O_DIRECTORY"):
                flags |= os.O_DIRECTORY
            dirfd = os.open(str(path.parent), flags)
            try:
                os.fsync(dirfd)
            finally:
                os.close(dirfd)
        except OSError:
            logger.debug("Directory fsync not supported for %s", path.parent)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def atomic_write_json(path: Path, data: Any, mode: int = PRIVATE_FILE_MODE) -> None:
    """Serialize ``data`` as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2), mode)


def load_json(path: Path, default: Any = None) -> Any:
    """Load JSON from ``path``; missing or malformed files yield ``default``."""
    if not path.exists():
        return default
    try:
        with path.open(encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable JSON file %s: %s", path, e)
        return default


# ============= Formatting =============

def humanize_size(size: float) -> str:
    """Convert bytes to human-readable format."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def get_iso_timestamp() -> str:
    """Get current UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ============= Concurrency =============

def get_optimal_concurrency(cores: Optional[int] = None) -> int:
    """Resolve the number of concurrent transfers.

    A positive user value wins; otherwise use two thirds of the CPU count.
    """
    if cores is not None and cores > 0:
        return int(cores)
    cpu_count = os.cpu_count() or 1
    return max(1, (cpu_count * 2) // 3)


# ============= Pattern Matching =============

_BRACE = re.compile(r"\{([^{}]*)\}")


def _expand_braces(pattern: str) -> List[str]:
    """Expand ``*.{jpg,png}`` into ``["*.jpg", "*.png"]`` (nested braces supported)."""
    match = _BRACE.search(pattern)
    if not match:
        return [pattern]
    head, tail = pattern[:match.start()], pattern[match.end():]
    expanded = []
    for option in match.group(1).split(","):
        expanded.extend(_expand_braces(f"{head}{option}{tail}"))
    return expanded


def match_pattern(filename: str, pattern: str) -> bool:
    """Match a file name against a glob pattern.

    Examples:
        match_pattern("a.jpg", "*.jpg") -> True
        match_pattern("a.png", "*.{jpg,png}") -> True
    """
    return any(fnmatch.fnmatchcase(filename, p) for p in _expand_braces(pattern))
