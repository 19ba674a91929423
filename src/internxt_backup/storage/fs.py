"""Filesystem storage implementation for local targets and testing."""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import List, Optional

from ..storage_models import (
    CLICheckResult,
    DownloadFileResult,
    FolderResult,
    ListResult,
    RemoteFile,
    UploadResult,
)
from .base import LocalPath, ProgressCallback

logger = logging.getLogger(__name__)


class FilesystemStorage:
    """
    Local directory that behaves like a remote drive.

    Remote path "/Backups/a.jpg" maps to ``base_dir/Backups/a.jpg``. The
    remote path doubles as the file id, so ``download_file`` accepts the
    ``uuid`` reported by the listing.
    """

    def __init__(self, base_dir: Path):
        """
        Initialize filesystem storage.

        Args:
            base_dir: Directory acting as the remote root
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, remote_path: str) -> Path:
        """Map a remote path to a local path inside ``base_dir``."""
        relative = remote_path.replace("\\", "/").strip("/")
        base = self.base_dir.resolve()
        local = (base / relative).resolve() if relative else base
        if local != base and base not in local.parents:
            raise ValueError(f"Remote path escapes storage root: {remote_path}")
        return local

    def _remote_path(self, local: Path) -> str:
        return "/" + local.resolve().relative_to(self.base_dir.resolve()).as_posix()

    def _entry(self, local: Path) -> RemoteFile:
        remote = self._remote_path(local)
        is_folder = local.is_dir()
        return RemoteFile(
            name=local.name,
            path=remote,
            size=0 if is_folder else local.stat().st_size,
            is_folder=is_folder,
            uuid=remote,
        )

    async def check_cli(self) -> CLICheckResult:
        return CLICheckResult(installed=True, authenticated=True, version="filesystem")

    async def upload_file(self, local_path: LocalPath, remote_path: str) -> UploadResult:
        try:
            dest = self._resolve(remote_path)
            dest.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, local_path, dest)
        except (OSError, ValueError) as e:
            return UploadResult(
                success=False, file_path=str(local_path), remote_path=remote_path, error=str(e)
            )
        return UploadResult(success=True, file_path=str(local_path), remote_path=remote_path)

    async def upload_file_with_progress(
        self,
        local_path: LocalPath,
        remote_path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        if on_progress:
            on_progress(0)
        result = await self.upload_file(local_path, remote_path)
        if result.success and on_progress:
            on_progress(100)
        return result

    async def download_file(self, file_id: str, target_dir: LocalPath) -> DownloadFileResult:
        try:
            src = self._resolve(file_id)
            if not src.is_file():
                return DownloadFileResult(success=False, error=f"File not found: {file_id}")
            dest = Path(target_dir) / src.name
            dest.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copyfile, src, dest)
        except (OSError, ValueError) as e:
            return DownloadFileResult(success=False, error=str(e))
        return DownloadFileResult(success=True, file_path=str(dest))

    async def create_folder(self, remote_path: str) -> FolderResult:
        try:
            folder = self._resolve(remote_path)
            folder.mkdir(parents=True, exist_ok=True)
        except (OSError, ValueError) as e:
            return FolderResult(success=False, path=remote_path, error=str(e))
        return FolderResult(success=True, path=remote_path, uuid=self._remote_path(folder))

    async def list_files(self, remote_path: str = "/") -> ListResult:
        try:
            folder = self._resolve(remote_path)
            if not folder.is_dir():
                return ListResult(success=False, error=f"Folder not found: {remote_path}")
            entries = [self._entry(child) for child in sorted(folder.iterdir())]
        except (OSError, ValueError) as e:
            return ListResult(success=False, error=str(e))
        return ListResult(success=True, files=entries)

    async def list_files_recursive(self, remote_path: str = "/") -> List[RemoteFile]:
        try:
            folder = self._resolve(remote_path)
        except ValueError as e:
            logger.warning("Cannot list %s: %s", remote_path, e)
            return []
        if not folder.is_dir():
            return []
        return [self._entry(p) for p in sorted(folder.rglob("*")) if p.is_file()]

    async def delete_file(self, remote_path: str) -> bool:
        try:
            target = self._resolve(remote_path)
            if not target.is_file():
                return False
            target.unlink()
        except (OSError, ValueError) as e:
            logger.debug("Delete failed for %s: %s", remote_path, e)
            return False
        return True
