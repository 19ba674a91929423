"""Shared test fixtures and utilities."""

import posixpath
from pathlib import Path
from typing import Dict, List, Optional, Set

import pytest

from internxt_backup.constants import (
    ENV_CONFIG,
    ENV_MANIFEST_KEY,
    ENV_RETRY_DELAY_MS,
    ENV_STATE_DIR,
)
from internxt_backup.storage_models import (
    CLICheckResult,
    DownloadFileResult,
    FolderResult,
    ListResult,
    RemoteFile,
    UploadResult,
)


class FakeStorage:
    """In-memory RemoteStorage that records every call.

    Files are keyed by absolute remote path, which doubles as the file id.
    """

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.folders: Set[str] = {"/"}
        self.calls: List[tuple] = []
        self.installed = True
        self.authenticated = True
        self.fail_uploads: Set[str] = set()  # remote paths whose upload fails
        self.fail_downloads: Set[str] = set()
        self.fail_folders: Set[str] = set()
        self.upload_error = "Upload failed"

    def calls_named(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def put(self, remote_path: str, content: bytes) -> None:
        """Seed a remote file (and its parent folders)."""
        self.files[remote_path] = content
        parent = posixpath.dirname(remote_path)
        while parent not in self.folders:
            self.folders.add(parent)
            parent = posixpath.dirname(parent)

    async def check_cli(self) -> CLICheckResult:
        self.calls.append(("check_cli",))
        return CLICheckResult(
            installed=self.installed,
            authenticated=self.installed and self.authenticated,
            version="1.0.0" if self.installed else None,
            error=None if self.installed and self.authenticated else "not ready",
        )

    async def upload_file(self, local_path, remote_path: str) -> UploadResult:
        self.calls.append(("upload_file", str(local_path), remote_path))
        return self._store(local_path, remote_path)

    async def upload_file_with_progress(self, local_path, remote_path: str, on_progress=None) -> UploadResult:
        self.calls.append(("upload_file_with_progress", str(local_path), remote_path))
        if on_progress:
            on_progress(50)
        return self._store(local_path, remote_path)

    def _store(self, local_path, remote_path: str) -> UploadResult:
        if remote_path in self.fail_uploads:
            return UploadResult(
                success=False, file_path=str(local_path), remote_path=remote_path, error=self.upload_error
            )
        self.put(remote_path, Path(local_path).read_bytes())
        return UploadResult(success=True, file_path=str(local_path), remote_path=remote_path)

    async def download_file(self, file_id: str, target_dir) -> DownloadFileResult:
        self.calls.append(("download_file", file_id, str(target_dir)))
        if file_id in self.fail_downloads or file_id not in self.files:
            return DownloadFileResult(success=False, error=f"cannot download {file_id}")
        dest = Path(target_dir) / posixpath.basename(file_id)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.files[file_id])
        return DownloadFileResult(success=True, file_path=str(dest))

    async def create_folder(self, remote_path: str) -> FolderResult:
        self.calls.append(("create_folder", remote_path))
        if remote_path in self.fail_folders:
            return FolderResult(success=False, path=remote_path, error="create failed")
        self.folders.add(remote_path)
        return FolderResult(success=True, path=remote_path, uuid=remote_path)

    async def list_files(self, remote_path: str = "/") -> ListResult:
        self.calls.append(("list_files", remote_path))
        folder = remote_path.rstrip("/") or "/"
        if folder not in self.folders:
            return ListResult(success=False, error=f"Folder not found: {remote_path}")
        entries = [
            RemoteFile(name=posixpath.basename(p), path=p, size=len(data), uuid=p)
            for p, data in sorted(self.files.items())
            if posixpath.dirname(p) == folder
        ]
        entries += [
            RemoteFile(name=posixpath.basename(p), path=p, is_folder=True, uuid=p)
            for p in sorted(self.folders)
            if p != "/" and posixpath.dirname(p) == folder
        ]
        return ListResult(success=True, files=entries)

    async def list_files_recursive(self, remote_path: str = "/") -> List[RemoteFile]:
        self.calls.append(("list_files_recursive", remote_path))
        prefix = remote_path.rstrip("/") + "/"
        return [
            RemoteFile(name=posixpath.basename(p), path=p, size=len(data), uuid=p)
            for p, data in sorted(self.files.items())
            if p.startswith(prefix)
        ]

    async def delete_file(self, remote_path: str) -> bool:
        self.calls.append(("delete_file", remote_path))
        return self.files.pop(remote_path, None) is not None


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point state and config at tmp_path and clear signing/retry overrides."""
    state_dir = tmp_path / "state"
    monkeypatch.setenv(ENV_STATE_DIR, str(state_dir))
    monkeypatch.setenv(ENV_CONFIG, str(tmp_path / "no-config.yaml"))
    monkeypatch.delenv(ENV_MANIFEST_KEY, raising=False)
    monkeypatch.setenv(ENV_RETRY_DELAY_MS, "0")
    return state_dir


@pytest.fixture
def state_dir(isolated_env):
    isolated_env.mkdir(parents=True, exist_ok=True)
    return isolated_env


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def source_dir(tmp_path):
    source = tmp_path / "source"
    source.mkdir()
    return source


@pytest.fixture
def write_file(source_dir):
    """Factory fixture to write files relative to the source directory."""
    def _write(path: str, content: str = "test content") -> Path:
        file_path = source_dir / path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)
        return file_path
    return _write


@pytest.fixture
def make_file_info():
    """Build a FileInfo for an existing file."""
    from internxt_backup.core import FileInfo
    from internxt_backup.hashing import compute_file_digest

    def _make(path: Path, relative_path: str, has_changed: Optional[bool] = True) -> FileInfo:
        return FileInfo(
            relative_path=relative_path,
            absolute_path=str(path),
            size=path.stat().st_size,
            checksum=compute_file_digest(path),
            has_changed=has_changed,
            mode=path.stat().st_mode,
        )
    return _make
