"""Remote path construction with traversal protection."""

import posixpath
import re
from dataclasses import dataclass

from .errors import PathTraversalError

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


@dataclass(frozen=True)
class PathInfo:
    """Paths derived from one relative file path under a remote target root."""

    normalized_path: str  # e.g. "photos/2024/a.jpg"
    directory: str  # e.g. "photos/2024" ("" for files at the root)
    target_path: str  # e.g. "/Backups/photos/2024/a.jpg"
    full_directory_path: str  # e.g. "/Backups/photos/2024"


def normalize_target_dir(target_dir: str) -> str:
    """Normalize a remote target root to "/" or "/a/b" (no trailing slash)."""
    cleaned = (target_dir or "").strip().replace("\\", "/")
    cleaned = re.sub(r"/+", "/", cleaned).rstrip("/")
    if not cleaned:
        return "/"
    if not cleaned.startswith("/"):
        cleaned = "/" + cleaned
    return cleaned


def join_remote(target_dir: str, relative_path: str) -> str:
    """Join a normalized target root and a safe relative path."""
    root = normalize_target_dir(target_dir)
    if not relative_path:
        return root
    return f"/{relative_path}" if root == "/" else f"{root}/{relative_path}"


def normalize_safe_relative_path(relative_path: str) -> str:
    """Normalize a relative path to POSIX form, rejecting anything that could escape the root.

    Rejected: empty paths, ".", "..", any ".." segment, absolute paths
    (leading slash or drive letter), in either slash convention.

    Raises:
        PathTraversalError: If the path is unsafe
    """
    if relative_path is None:
        raise PathTraversalError("")

    raw = relative_path.replace("\\", "/")
    if raw.startswith("/") or _DRIVE_PREFIX.match(raw):
        raise PathTraversalError(relative_path)
    if ".." in raw.split("/"):
        raise PathTraversalError(relative_path)

    normalized = posixpath.normpath(raw) if raw.strip() else ""
    if (
        normalized in ("", ".", "..")
        or normalized.startswith("../")
        or posixpath.isabs(normalized)
    ):
        raise PathTraversalError(relative_path)
    return normalized


def normalize_path_info(relative_path: str, target_dir: str) -> PathInfo:
    """Build the remote destination paths for a relative file path.

    This is the single place remote destinations are derived from relative
    paths, so every caller gets the same traversal checks.

    Raises:
        PathTraversalError: If the relative path is unsafe
    """
    normalized_path = normalize_safe_relative_path(relative_path)
    root = normalize_target_dir(target_dir)

    directory = posixpath.dirname(normalized_path)
    target_path = join_remote(root, normalized_path)
    full_directory_path = join_remote(root, directory) if directory else root

    return PathInfo(
        normalized_path=normalized_path,
        directory=directory,
        target_path=target_path,
        full_directory_path=full_directory_path,
    )


def relative_to_remote_root(remote_path: str, source_root: str) -> str:
    """Strip the remote source root from a remote path (result is not yet validated)."""
    path = (remote_path or "").replace("\\", "/")
    prefix = normalize_target_dir(source_root)
    if prefix != "/" and (path == prefix or path.startswith(prefix + "/")):
        path = path[len(prefix):]
    return path.lstrip("/")
