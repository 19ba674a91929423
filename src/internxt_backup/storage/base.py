"""Base protocol for remote storage providers."""

from pathlib import Path
from typing import Callable, List, Optional, Protocol, Union

from ..storage_models import (
    CLICheckResult,
    DownloadFileResult,
    FolderResult,
    ListResult,
    RemoteFile,
    UploadResult,
)

ProgressCallback = Callable[[int], None]
LocalPath = Union[str, Path]


class RemoteStorage(Protocol):
    """
    Protocol for remote storage providers.

    Remote paths are absolute POSIX paths ("/Backups/a.jpg"). Every call
    reports failure through its result model; only programming errors raise.
    ``create_folder`` and ``list_files`` must be idempotent and safe to call
    repeatedly for the same path.
    """

    async def check_cli(self) -> CLICheckResult:
        """Report whether the provider is installed and authenticated."""
        ...

    async def upload_file(self, local_path: LocalPath, remote_path: str) -> UploadResult:
        """
        Upload a local file, replacing any existing remote file at that path.

        Args:
            local_path: File to upload
            remote_path: Destination path including the file name
        """
        ...

    async def upload_file_with_progress(
        self,
        local_path: LocalPath,
        remote_path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """
        Upload a local file, reporting 0-100 percent through ``on_progress``.
        """
        ...

    async def download_file(self, file_id: str, target_dir: LocalPath) -> DownloadFileResult:
        """
        Download a remote file by id into ``target_dir`` under its remote name.
        """
        ...

    async def create_folder(self, remote_path: str) -> FolderResult:
        """Create the folder and any missing parents."""
        ...

    async def list_files(self, remote_path: str = "/") -> ListResult:
        """List the direct children (files and folders) of a remote folder."""
        ...

    async def list_files_recursive(self, remote_path: str = "/") -> List[RemoteFile]:
        """Flat list of every file (not folder) below a remote folder."""
        ...

    async def delete_file(self, remote_path: str) -> bool:
        """
        Permanently delete a remote file.

        Returns:
            True if the file was deleted
        """
        ...
