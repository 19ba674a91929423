"""Result models returned by remote storage providers.

Providers report failures through these models (``success=False`` plus an
``error`` message) instead of raising, so per-file handlers can count them.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class CLICheckResult(BaseModel):
    """Provider CLI availability and login state."""
    installed: bool
    authenticated: bool
    version: str | None = None
    error: str | None = None


class UploadResult(BaseModel):
    """Result of a single file upload."""
    success: bool
    file_path: str
    remote_path: str
    output: str | None = None
    error: str | None = None


class FolderResult(BaseModel):
    """Result of a create-folder call."""
    success: bool
    path: str
    uuid: str | None = None
    error: str | None = None


class RemoteFile(BaseModel):
    """A file or folder in a remote listing."""
    name: str                     # File name including extension
    path: str                     # Absolute remote path, e.g. "/Backups/a.jpg"
    size: int = 0
    is_folder: bool = False
    uuid: str | None = None


class ListResult(BaseModel):
    """Direct children of one remote folder."""
    success: bool
    files: List[RemoteFile] = Field(default_factory=list)
    error: str | None = None


class DownloadFileResult(BaseModel):
    """Result of downloading one remote file into a local directory."""
    success: bool
    file_path: Optional[str] = None
    error: str | None = None
