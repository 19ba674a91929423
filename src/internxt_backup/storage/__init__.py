"""Storage package for remote backup targets."""

from .base import RemoteStorage
from .factory import make_remote_storage

__all__ = ["RemoteStorage", "make_remote_storage"]
