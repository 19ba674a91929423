"""Factory for creating remote storage instances."""

from pathlib import Path
from typing import Optional

from .base import RemoteStorage
from .fs import FilesystemStorage
from .internxt import InternxtCLIStorage

FS_SCHEME = "fs://"


def make_remote_storage(location: Optional[str] = None) -> RemoteStorage:
    """
    Create a storage provider.

    Args:
        location: None for the Internxt drive, or ``fs://<directory>`` for a
            local directory acting as the remote root

    Returns:
        RemoteStorage instance

    Raises:
        NotImplementedError: If the location scheme is not supported
    """
    if not location:
        return InternxtCLIStorage()

    if location.startswith(FS_SCHEME):
        base_dir = location[len(FS_SCHEME):]
        if not base_dir:
            raise ValueError("fs:// storage requires a directory path")
        return FilesystemStorage(Path(base_dir).expanduser())

    raise NotImplementedError(f"Storage location {location} not supported")
